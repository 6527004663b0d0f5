"""Ordered, per-launch write-behind queue.

SCORM API calls must answer synchronously, so every database write a call
implies is submitted here and executed by a single worker task in
submission order. Failures never reach the content package; they are
logged and handed to ``on_error`` so the surrounding application can tell
the learner.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, Exception], None]


class FlushQueue:
    def __init__(self, name: str, on_error: Optional[ErrorCallback] = None):
        self.name = name
        self.on_error = on_error
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False
        self.failures = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(
        self,
        label: str,
        job: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> None:
        """Queue ``job(*args)``. Must be called from the event loop."""
        if self._closed:
            raise RuntimeError(f"Flush queue {self.name} is closed")
        self._queue.put_nowait((label, job, args))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def drain(self) -> None:
        """Wait until everything submitted so far has been attempted."""
        await self._queue.join()

    async def close(self) -> None:
        await self.drain()
        self._closed = True
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def _run(self) -> None:
        while True:
            label, job, args = await self._queue.get()
            try:
                await job(*args)
            except Exception as exc:
                self.failures += 1
                logger.error(
                    "Flush queue %s: %s failed: %s",
                    self.name, label, exc, exc_info=True,
                )
                if self.on_error is not None:
                    self.on_error(label, exc)
            finally:
                self._queue.task_done()
