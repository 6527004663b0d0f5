"""
SCORM API Shim
Implements the SCORM 1.2 (API) and SCORM 2004 (API_1484_11) Run-Time API
surface on top of one canonical operation set.

Every method answers synchronously with a string, as SCORM content expects.
Writes land in the live session mirror immediately; anything that must reach
the database is submitted to the launch's flush queue.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple, Union

from scorm_runtime.services.flush_queue import FlushQueue
from scorm_runtime.services.interaction_log import InteractionLog
from scorm_runtime.services.lifecycle import SessionLifecycleManager

logger = logging.getLogger(__name__)

SCORM_12 = "1.2"
SCORM_2004 = "2004"

NO_ERROR = "0"

# SCORM 1.2 error codes
SCORM_12_ERRORS = {
    '0': 'No error',
    '101': 'General exception',
    '201': 'Invalid argument error',
    '202': 'Element cannot have children',
    '203': 'Element not an array',
    '301': 'Not initialized',
    '401': 'Not implemented error',
    '402': 'Invalid set value',
    '403': 'Element is read only',
    '404': 'Element is write only',
    '405': 'Incorrect data type',
}

# SCORM 2004 error codes
SCORM_2004_ERRORS = {
    '0': 'No error',
    '101': 'General exception',
    '102': 'General initialization failure',
    '103': 'Already initialized',
    '104': 'Content instance terminated',
    '111': 'General termination failure',
    '112': 'Termination before initialization',
    '113': 'Termination after termination',
    '122': 'Retrieve data before initialization',
    '123': 'Retrieve data after termination',
    '132': 'Store data before initialization',
    '133': 'Store data after termination',
    '142': 'Commit before initialization',
    '143': 'Commit after termination',
    '201': 'General argument error',
    '401': 'Undefined data model element',
    '406': 'Data model element type mismatch',
}

ERROR_TABLES = {SCORM_12: SCORM_12_ERRORS, SCORM_2004: SCORM_2004_ERRORS}

# Misuse condition -> code per dialect (only reported in strict mode)
ERROR_CONDITIONS = {
    "already_initialized": {SCORM_12: "101", SCORM_2004: "103"},
    "initialize_after_terminate": {SCORM_12: "101", SCORM_2004: "104"},
    "terminate_before_init": {SCORM_12: "301", SCORM_2004: "112"},
    "terminate_after_terminate": {SCORM_12: "101", SCORM_2004: "113"},
    "get_before_init": {SCORM_12: "301", SCORM_2004: "122"},
    "get_after_terminate": {SCORM_12: "101", SCORM_2004: "123"},
    "set_before_init": {SCORM_12: "301", SCORM_2004: "132"},
    "set_after_terminate": {SCORM_12: "101", SCORM_2004: "133"},
    "commit_before_init": {SCORM_12: "301", SCORM_2004: "142"},
    "commit_after_terminate": {SCORM_12: "101", SCORM_2004: "143"},
    "type_mismatch": {SCORM_12: "405", SCORM_2004: "406"},
}

# Dialect adapter tables: API function name -> canonical operation
SCORM_12_METHODS = {
    "LMSInitialize": "initialize",
    "LMSFinish": "terminate",
    "LMSGetValue": "get_value",
    "LMSSetValue": "set_value",
    "LMSCommit": "commit",
    "LMSGetLastError": "get_last_error",
    "LMSGetErrorString": "get_error_string",
    "LMSGetDiagnostic": "get_diagnostic",
}

SCORM_2004_METHODS = {
    "Initialize": "initialize",
    "Terminate": "terminate",
    "GetValue": "get_value",
    "SetValue": "set_value",
    "Commit": "commit",
    "GetLastError": "get_last_error",
    "GetErrorString": "get_error_string",
    "GetDiagnostic": "get_diagnostic",
}

METHOD_TABLE: Dict[str, Tuple[str, str]] = {
    **{name: (SCORM_12, op) for name, op in SCORM_12_METHODS.items()},
    **{name: (SCORM_2004, op) for name, op in SCORM_2004_METHODS.items()},
}

OPERATION_ARITY = {
    "initialize": 1,
    "terminate": 1,
    "get_value": 1,
    "set_value": 2,
    "commit": 1,
    "get_last_error": 0,
    "get_error_string": 1,
    "get_diagnostic": 1,
}

# Element -> (lifecycle operation, reject means type mismatch)
ELEMENT_HANDLERS = {
    "cmi.core.lesson_status": ("record_status", False),
    "cmi.completion_status": ("record_status", False),
    "cmi.success_status": ("record_status", False),
    "cmi.core.score.raw": ("record_score", True),
    "cmi.score.raw": ("record_score", True),
    "cmi.core.session_time": ("record_time", False),
    "cmi.session_time": ("record_time", False),
}

STATUS_ELEMENTS = tuple(
    el for el, (op, _) in ELEMENT_HANDLERS.items() if op == "record_status"
)


def _learner_id(api: "ScormApi") -> str:
    return api.user_id


def _entry(api: "ScormApi") -> str:
    return "resume" if api.resumed else "ab-initio"


# Values served by GetValue when the content has not written the element
READ_DEFAULTS: Dict[str, Union[str, Callable[["ScormApi"], str]]] = {
    "cmi.core.student_id": _learner_id,
    "cmi.learner_id": _learner_id,
    "cmi.core.entry": _entry,
    "cmi.entry": _entry,
    "cmi.core.lesson_status": "not attempted",
    "cmi.completion_status": "unknown",
}


class UnknownApiMethodError(Exception):
    """Raised when the bridge forwards a name outside both API tables."""


class ScormApi:
    """Per-launch SCORM API capability bound to one live session."""

    def __init__(
        self,
        session_id: int,
        user_id: str,
        lifecycle: SessionLifecycleManager,
        interaction_log: InteractionLog,
        queue: FlushQueue,
        strict_errors: bool = False,
        log_interactions: bool = True,
    ):
        self.session_id = session_id
        self.user_id = user_id
        self._lifecycle = lifecycle
        self._interaction_log = interaction_log
        self._queue = queue
        self.strict_errors = strict_errors
        self.log_interactions = log_interactions

        self.resumed = bool(lifecycle.state(session_id).data)
        self.initialized = False
        self.terminated = False
        self._dialect = SCORM_12
        self._last_error = NO_ERROR
        self._diagnostic = ""

    # Dispatch ---------------------------------------------------------------
    def call(self, method: str, *args: str) -> str:
        """Invoke an API function by its SCORM 1.2 or 2004 name."""
        try:
            dialect, operation = METHOD_TABLE[method]
        except KeyError:
            raise UnknownApiMethodError(method) from None
        self._dialect = dialect
        arity = OPERATION_ARITY[operation]
        result = getattr(self, operation)(*args[:arity])
        logger.debug(
            "Session %s %s%r -> %r",
            self.session_id, method, tuple(args[:arity]), result,
        )
        return result

    @staticmethod
    def operation_for(method: str) -> Optional[str]:
        entry = METHOD_TABLE.get(method)
        return entry[1] if entry else None

    # Canonical operations ---------------------------------------------------
    def initialize(self, param: str = "") -> str:
        self._ok()
        if self.terminated:
            self._fail("initialize_after_terminate")
        elif self.initialized:
            self._fail("already_initialized")
        self.initialized = True
        return "true"

    def terminate(self, param: str = "") -> str:
        self._ok()
        if self.terminated:
            self._fail("terminate_after_terminate")
            return "true"
        if not self.initialized:
            self._fail("terminate_before_init")

        state = self._lifecycle.state(self.session_id)
        if not state.is_terminal and not any(
            el in state.data for el in STATUS_ELEMENTS
        ):
            # Content finished without ever reporting a status.
            self._lifecycle.record_status(self.session_id, "completed")
        self._submit_commit("terminate")
        self.terminated = True
        return "true"

    def get_value(self, element: str = "") -> str:
        self._ok()
        if self.terminated:
            self._fail("get_after_terminate")
        elif not self.initialized:
            self._fail("get_before_init")

        data = self._lifecycle.state(self.session_id).data
        if element in data:
            return data[element]
        default = READ_DEFAULTS.get(element, "")
        return default(self) if callable(default) else default

    def set_value(self, element: str = "", value: str = "") -> str:
        self._ok()
        if self.terminated:
            self._fail("set_after_terminate")
        elif not self.initialized:
            self._fail("set_before_init")

        element, value = str(element), str(value)
        self._lifecycle.write_element(self.session_id, element, value)

        handler = ELEMENT_HANDLERS.get(element)
        if handler is not None:
            operation, reject_is_mismatch = handler
            changed = getattr(self._lifecycle, operation)(
                self.session_id, value
            )
            if changed:
                self._submit_commit(operation)
            elif reject_is_mismatch:
                self._fail(
                    "type_mismatch", f"{element} expects a number, got {value!r}"
                )

        if self.log_interactions:
            self._queue.submit(
                "interaction",
                self._interaction_log.append,
                self.session_id,
                element,
                value,
                datetime.utcnow(),
            )
        return "true"

    def commit(self, param: str = "") -> str:
        self._ok()
        if self.terminated:
            self._fail("commit_after_terminate")
        elif not self.initialized:
            self._fail("commit_before_init")
        self._submit_commit("commit")
        return "true"

    def get_last_error(self) -> str:
        return self._last_error

    def get_error_string(self, code: str = "") -> str:
        code = str(code) or self._last_error
        if code == NO_ERROR:
            return ""
        return ERROR_TABLES[self._dialect].get(code, "")

    def get_diagnostic(self, code: str = "") -> str:
        code = str(code) or self._last_error
        if code == NO_ERROR or code != self._last_error:
            return ""
        return self._diagnostic

    # Helpers ----------------------------------------------------------------
    def _submit_commit(self, label: str) -> None:
        self._queue.submit(
            label,
            self._lifecycle.persist,
            self._lifecycle.snapshot(self.session_id),
        )

    def _ok(self) -> None:
        self._last_error = NO_ERROR
        self._diagnostic = ""

    def _fail(self, condition: str, diagnostic: str = "") -> None:
        code = ERROR_CONDITIONS[condition][self._dialect]
        logger.warning(
            "Session %s: tolerated SCORM misuse (%s, code %s)",
            self.session_id, condition, code,
        )
        if not self.strict_errors:
            return
        self._last_error = code
        self._diagnostic = diagnostic or ERROR_TABLES[self._dialect][code]
