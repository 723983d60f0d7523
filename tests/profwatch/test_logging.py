import logging

import pytest

from profwatch.logging import SessionLoggerAdapter


def test_session_and_call_attributes(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    SessionLoggerAdapter(logging.getLogger(), {"profile_id": "abc"}).info("finished", exit_code=0)
    record = caplog.records[0]
    assert getattr(record, "profile_id") == "abc"
    assert getattr(record, "exit_code") == 0


def test_logging_kwargs_are_kept(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    SessionLoggerAdapter(logging.getLogger()).info("message", stack_info=True, extra={"pid": "42"})
    record = caplog.records[0]
    assert record.stack_info is not None
    assert getattr(record, "pid") == "42"


def test_call_attributes_override_session_ones(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    SessionLoggerAdapter(logging.getLogger(), {"profile_id": "abc"}).info("message", profile_id="def")
    assert getattr(caplog.records[0], "profile_id") == "def"
