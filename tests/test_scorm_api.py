"""
SCORM API shim tests: both dialects, element side effects, the interaction
trace and error reporting
"""

import pytest

from scorm_runtime.models.records import COMPLETED, IN_PROGRESS
from scorm_runtime.repositories.session_repo import SessionRepository
from scorm_runtime.services.launches import LaunchRegistry
from scorm_runtime.services.scorm_api import (
    ScormApi,
    UnknownApiMethodError,
)
from scorm_runtime.utils.feature_flags import FeatureFlagService


async def _open(registry, make_package, user_id="learner-1", **package_kwargs):
    package = await make_package(**package_kwargs)
    launch = await registry.open(package, user_id)
    return package, launch


async def _interactions(registry, session_id):
    records = await registry.interaction_log.most_recent(session_id, 100)
    return [(r.element, r.value) for r in reversed(records)]


async def test_fresh_launch_scenario(registry, make_package):
    package, launch = await _open(registry, make_package)
    api = launch.api

    assert launch.state.attempt == 1
    assert api.call("LMSInitialize", "") == "true"
    assert launch.state.status == IN_PROGRESS

    assert api.call("LMSSetValue", "cmi.core.lesson_status", "incomplete") == "true"
    assert launch.state.status == IN_PROGRESS
    api.call("LMSSetValue", "cmi.core.score.raw", "85")
    api.call("LMSSetValue", "cmi.core.lesson_status", "completed")
    assert api.call("LMSCommit", "") == "true"
    await launch.queue.drain()

    record = await registry.lifecycle.get_session(package.id, "learner-1")
    assert record.status == COMPLETED
    assert record.score == 85.0
    assert record.ended_at is not None
    assert record.json_data["cmi.core.lesson_status"] == "completed"


async def test_round_trip_returns_latest_value(registry, make_package):
    _, launch = await _open(registry, make_package)
    api = launch.api
    api.call("LMSInitialize", "")

    api.call("LMSSetValue", "cmi.suspend_data", "a=1")
    api.call("LMSSetValue", "cmi.suspend_data", "a=2")
    api.call("LMSSetValue", "cmi.vendor.custom", "x")

    assert api.call("LMSGetValue", "cmi.suspend_data") == "a=2"
    assert api.call("LMSGetValue", "cmi.vendor.custom") == "x"
    assert api.call("LMSGetValue", "cmi.never.written") == ""


async def test_2004_dialect_maps_to_same_operations(registry, make_package):
    package, launch = await _open(registry, make_package, version="2004")
    api = launch.api

    assert api.call("Initialize", "") == "true"
    api.call("SetValue", "cmi.score.raw", "91")
    api.call("SetValue", "cmi.session_time", "PT12M30S")
    api.call("SetValue", "cmi.success_status", "passed")
    assert api.call("GetValue", "cmi.score.raw") == "91"
    assert api.call("Terminate", "") == "true"
    await launch.queue.drain()

    record = await registry.lifecycle.get_session(package.id, "learner-1")
    assert record.status == COMPLETED
    assert record.score == 91.0
    assert record.total_time == "PT12M30S"


async def test_every_write_is_logged_once(registry, make_package):
    _, launch = await _open(registry, make_package)
    api = launch.api
    api.call("LMSInitialize", "")
    writes = [
        ("cmi.core.lesson_location", "page-2"),
        ("cmi.core.score.raw", "40"),
        ("cmi.core.lesson_location", "page-3"),
        ("cmi.interactions.0.id", "q1"),
    ]
    for element, value in writes:
        api.call("LMSSetValue", element, value)
    await launch.queue.drain()

    assert await _interactions(registry, launch.state.id) == writes


async def test_malformed_score_is_discarded_but_logged(registry, make_package):
    package, launch = await _open(registry, make_package)
    api = launch.api
    api.call("LMSInitialize", "")
    api.call("LMSSetValue", "cmi.core.score.raw", "70")

    assert api.call("LMSSetValue", "cmi.core.score.raw", "n/a") == "true"
    assert api.call("LMSGetLastError") == "0"
    api.call("LMSCommit", "")
    await launch.queue.drain()

    record = await registry.lifecycle.get_session(package.id, "learner-1")
    assert record.score == 70.0
    assert ("cmi.core.score.raw", "n/a") in await _interactions(
        registry, launch.state.id
    )


async def test_double_commit_is_harmless(registry, make_package):
    package, launch = await _open(registry, make_package)
    api = launch.api
    api.call("LMSInitialize", "")
    api.call("LMSSetValue", "cmi.suspend_data", "chapter=2")

    assert api.call("LMSCommit", "") == "true"
    await launch.queue.drain()
    first = await registry.lifecycle.get_session(package.id, "learner-1")
    assert api.call("LMSCommit", "") == "true"
    await launch.queue.drain()
    second = await registry.lifecycle.get_session(package.id, "learner-1")

    assert first.json_data == second.json_data == {"cmi.suspend_data": "chapter=2"}
    assert second.status == IN_PROGRESS


async def test_terminate_without_status_completes(registry, make_package):
    package, launch = await _open(registry, make_package)
    api = launch.api
    api.call("LMSInitialize", "")
    api.call("LMSSetValue", "cmi.core.lesson_location", "end")

    assert api.call("LMSFinish", "") == "true"
    await launch.queue.drain()

    record = await registry.lifecycle.get_session(package.id, "learner-1")
    assert record.status == COMPLETED
    assert record.ended_at is not None


async def test_terminate_keeps_reported_incomplete_status(registry, make_package):
    package, launch = await _open(registry, make_package)
    api = launch.api
    api.call("LMSInitialize", "")
    api.call("LMSSetValue", "cmi.core.lesson_status", "incomplete")

    api.call("LMSFinish", "")
    await launch.queue.drain()

    record = await registry.lifecycle.get_session(package.id, "learner-1")
    assert record.status == IN_PROGRESS
    assert record.ended_at is None


async def test_terminate_does_not_override_failed(registry, make_package):
    package, launch = await _open(registry, make_package)
    api = launch.api
    api.call("LMSInitialize", "")
    api.call("LMSSetValue", "cmi.core.lesson_status", "failed")
    api.call("LMSFinish", "")
    await launch.queue.drain()

    record = await registry.lifecycle.get_session(package.id, "learner-1")
    assert record.status == "failed"


async def test_calls_out_of_order_are_tolerated(registry, make_package):
    _, launch = await _open(registry, make_package)
    api = launch.api

    assert api.call("LMSSetValue", "cmi.suspend_data", "early") == "true"
    assert api.call("LMSGetLastError") == "0"
    assert api.call("LMSInitialize", "") == "true"
    assert api.call("LMSInitialize", "") == "true"
    assert api.call("LMSGetValue", "cmi.suspend_data") == "early"
    assert api.call("LMSFinish", "") == "true"
    assert api.call("LMSFinish", "") == "true"
    assert api.call("LMSGetLastError") == "0"


async def test_read_defaults_for_fresh_attempt(registry, make_package):
    _, launch = await _open(registry, make_package, user_id="learner-42")
    api = launch.api
    api.call("LMSInitialize", "")

    assert api.call("LMSGetValue", "cmi.core.student_id") == "learner-42"
    assert api.call("LMSGetValue", "cmi.core.entry") == "ab-initio"
    assert api.call("LMSGetValue", "cmi.core.lesson_status") == "not attempted"
    assert api.call("GetValue", "cmi.learner_id") == "learner-42"
    assert api.call("GetValue", "cmi.completion_status") == "unknown"


async def test_resumed_attempt_reports_resume_entry(registry, make_package):
    package, launch = await _open(registry, make_package)
    launch.api.call("LMSInitialize", "")
    launch.api.call("LMSSetValue", "cmi.suspend_data", "bookmark")
    launch.api.call("LMSCommit", "")
    await registry.close(launch.id)

    resumed = await registry.open(package, "learner-1")

    assert resumed.state.id == launch.state.id
    resumed.api.call("LMSInitialize", "")
    assert resumed.api.call("LMSGetValue", "cmi.core.entry") == "resume"
    assert resumed.api.call("LMSGetValue", "cmi.suspend_data") == "bookmark"


async def test_second_attempt_has_independent_data(registry, make_package):
    package, launch = await _open(registry, make_package)
    launch.api.call("LMSInitialize", "")
    launch.api.call("LMSSetValue", "cmi.suspend_data", "first-run")
    launch.api.call("LMSSetValue", "cmi.core.lesson_status", "passed")
    launch.api.call("LMSFinish", "")
    await registry.close(launch.id)

    second = await registry.open(package, "learner-1")

    assert second.state.attempt == 2
    assert second.state.id != launch.state.id
    assert second.state.data == {}
    assert second.api.call("LMSGetValue", "cmi.suspend_data") == ""


async def test_error_strings(registry, make_package):
    _, launch = await _open(registry, make_package)
    api = launch.api

    assert api.call("LMSGetErrorString", "0") == ""
    assert api.call("LMSGetErrorString", "301") == "Not initialized"
    assert api.call("GetErrorString", "406") == "Data model element type mismatch"
    assert api.call("LMSGetDiagnostic", "") == ""


async def test_unknown_method_raises(registry, make_package):
    _, launch = await _open(registry, make_package)
    with pytest.raises(UnknownApiMethodError):
        launch.api.call("LMSSetValueX", "a", "b")


def test_operation_for_both_dialects():
    assert ScormApi.operation_for("LMSFinish") == "terminate"
    assert ScormApi.operation_for("Terminate") == "terminate"
    assert ScormApi.operation_for("Commit") == "commit"
    assert ScormApi.operation_for("eval") is None


class TestStrictErrorCodes:
    """GetLastError reporting with the strict_error_codes flag on"""

    @pytest.fixture
    async def strict_registry(self, session_factory):
        flags = FeatureFlagService()
        assert flags.set_flag("strict_error_codes", True)
        launches = LaunchRegistry(session_factory, flags=flags)
        yield launches
        await launches.close_all()

    async def test_set_before_initialize_scorm_12(self, strict_registry, make_package):
        _, launch = await _open(strict_registry, make_package)
        api = launch.api

        assert api.call("LMSSetValue", "cmi.suspend_data", "x") == "true"
        assert api.call("LMSGetLastError") == "301"
        assert api.call("LMSGetErrorString", "301") == "Not initialized"
        assert api.call("LMSGetDiagnostic", "301") == "Not initialized"
        # The write is still recorded
        assert launch.state.data["cmi.suspend_data"] == "x"

    async def test_type_mismatch_scorm_2004(self, strict_registry, make_package):
        _, launch = await _open(strict_registry, make_package, version="2004")
        api = launch.api
        api.call("Initialize", "")

        api.call("SetValue", "cmi.score.raw", "eighty")

        assert api.call("GetLastError") == "406"
        assert "eighty" in api.call("GetDiagnostic", "406")
        assert api.call("GetDiagnostic", "101") == ""

    async def test_successful_call_clears_error(self, strict_registry, make_package):
        _, launch = await _open(strict_registry, make_package, version="2004")
        api = launch.api
        api.call("Initialize", "")
        api.call("Initialize", "")
        assert api.call("GetLastError") == "103"

        api.call("SetValue", "cmi.location", "p1")
        assert api.call("GetLastError") == "0"

    async def test_after_terminate(self, strict_registry, make_package):
        _, launch = await _open(strict_registry, make_package, version="2004")
        api = launch.api
        api.call("Initialize", "")
        api.call("Terminate", "")

        assert api.call("GetValue", "cmi.location") == ""
        assert api.call("GetLastError") == "123"
        assert api.call("Commit", "") == "true"
        assert api.call("GetLastError") == "143"


async def test_relaunch_before_flush_opens_next_attempt(
    registry, make_package, session_factory
):
    package, first = await _open(registry, make_package)
    first.api.call("LMSInitialize", "")
    first.api.call("LMSSetValue", "cmi.core.lesson_status", "completed")

    # No commit or drain: the completed status is only in memory so far
    second = await registry.open(package, "learner-1")

    assert second.state.attempt == 2
    assert second.state.id != first.state.id
    assert second.state.status == IN_PROGRESS
    record = await registry.lifecycle.get_session(package.id, "learner-1")
    assert record.id == second.state.id
    async with session_factory() as db:
        previous = await SessionRepository(db).get(first.state.id)
    assert previous.status == COMPLETED
