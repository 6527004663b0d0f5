"""
Launch registry

A launch is the capability handed to one content frame: a fresh
``ScormApi`` bound to the learner's live session, its flush queue and its
out-of-band notice list. It is created when the learner starts a package
and retired on frame teardown; nothing is installed process-wide.
"""

import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from scorm_runtime.models.records import PackageRecord
from scorm_runtime.services.content_proxy import proxy_url
from scorm_runtime.services.flush_queue import FlushQueue
from scorm_runtime.services.interaction_log import InteractionLog
from scorm_runtime.services.lifecycle import (
    SessionLifecycleManager,
    SessionState,
)
from scorm_runtime.services.scorm_api import ScormApi
from scorm_runtime.utils.feature_flags import FeatureFlagService, feature_flags

logger = logging.getLogger(__name__)

MAX_NOTICES = 50

# Launches without runtime traffic for this long are closed on the next open
LAUNCH_IDLE_SECONDS = int(os.getenv("SCORM_LAUNCH_IDLE_SECONDS", "1800"))


class PackageNotLaunchableError(Exception):
    """Raised when a package has no resolved entry path."""


class LaunchNotFoundError(Exception):
    """Raised for an unknown or already retired launch id."""


@dataclass
class Launch:
    id: str
    package_id: int
    title: str
    version: str
    launch_url: str
    state: SessionState
    api: ScormApi
    queue: FlushQueue
    notices: List[dict] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_activity: datetime = field(default_factory=datetime.utcnow)

    def touch(self) -> None:
        self.last_activity = datetime.utcnow()

    def is_idle(self, now: datetime, idle_seconds: int) -> bool:
        return now - self.last_activity > timedelta(seconds=idle_seconds)

    def notify(self, label: str, exc: Exception) -> None:
        self.notices.append({
            "level": "error",
            "message": f"Progress could not be saved ({label}): {exc}",
            "timestamp": datetime.utcnow().isoformat(),
        })
        del self.notices[:-MAX_NOTICES]

    def to_dict(self) -> dict:
        return {
            "launchId": self.id,
            "packageId": self.package_id,
            "title": self.title,
            "version": self.version,
            "launchUrl": self.launch_url,
            "playerUrl": f"/api/v1/scorm/player/{self.id}",
            "runtimeUrl": f"/api/v1/scorm/runtime/{self.id}",
            "session": self.state.to_dict(),
        }


class LaunchRegistry:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        flags: Optional[FeatureFlagService] = None,
        idle_seconds: int = LAUNCH_IDLE_SECONDS,
    ):
        self.lifecycle = SessionLifecycleManager(session_factory)
        self.interaction_log = InteractionLog(session_factory)
        self.flags = flags or feature_flags
        self.idle_seconds = idle_seconds
        self._launches: Dict[str, Launch] = {}

    def __len__(self) -> int:
        return len(self._launches)

    async def open(self, package: PackageRecord, user_id: str) -> Launch:
        """Resolve (or resume) the learner's session and start it."""
        if not package.entry_path:
            raise PackageNotLaunchableError(
                f"Package {package.id} has no resolved entry path"
            )

        await self.evict_idle()
        resolved = await self.lifecycle.resolve_session(package.id, user_id)
        state = self.lifecycle.attach(resolved)
        try:
            await self.lifecycle.begin_attempt(state.id)
        except Exception:
            self.lifecycle.release(state.id)
            raise

        launch_id = uuid.uuid4().hex
        queue = FlushQueue(f"launch-{launch_id}")
        api = ScormApi(
            session_id=state.id,
            user_id=user_id,
            lifecycle=self.lifecycle,
            interaction_log=self.interaction_log,
            queue=queue,
            strict_errors=self.flags.is_enabled("strict_error_codes"),
            log_interactions=self.flags.is_enabled("interaction_log"),
        )
        launch = Launch(
            id=launch_id,
            package_id=package.id,
            title=package.title,
            version=package.version,
            launch_url=proxy_url(package.id, package.entry_path),
            state=state,
            api=api,
            queue=queue,
        )
        queue.on_error = launch.notify
        self._launches[launch_id] = launch
        logger.info(
            "Launch %s opened: package %s user %s session %s attempt %s",
            launch_id, package.id, user_id, state.id, state.attempt,
        )
        return launch

    def get(self, launch_id: str) -> Launch:
        try:
            return self._launches[launch_id]
        except KeyError:
            raise LaunchNotFoundError(launch_id) from None

    async def close(self, launch_id: str) -> Launch:
        """Frame teardown: flush what is queued, then retire the launch."""
        launch = self._launches.pop(launch_id, None)
        if launch is None:
            raise LaunchNotFoundError(launch_id)
        try:
            await launch.queue.close()
        finally:
            self.lifecycle.release(launch.state.id)
        logger.info(
            "Launch %s closed (session %s, status %s)",
            launch_id, launch.state.id, launch.state.status,
        )
        return launch

    async def evict_idle(self, now: Optional[datetime] = None) -> int:
        """Close launches whose frame went away without a teardown call.

        Closing still drains the launch queue, so nothing it accepted is lost.
        """
        now = now or datetime.utcnow()
        stale = [
            launch_id
            for launch_id, launch in self._launches.items()
            if launch.is_idle(now, self.idle_seconds)
        ]
        for launch_id in stale:
            logger.info("Launch %s idle; closing", launch_id)
            try:
                await self.close(launch_id)
            except LaunchNotFoundError:
                # Torn down by its frame meanwhile
                continue
        return len(stale)

    async def close_all(self) -> None:
        for launch_id in list(self._launches):
            await self.close(launch_id)


_registry: Optional[LaunchRegistry] = None


def get_launch_registry() -> LaunchRegistry:
    """FastAPI dependency returning the process-wide launch registry."""
    global _registry
    if _registry is None:
        from scorm_runtime.db.config import get_sessionmaker

        _registry = LaunchRegistry(get_sessionmaker())
    return _registry
