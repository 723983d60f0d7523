from pathlib import Path

import pytest
from conftest import TARGET_PID, FakeRunner
from fastapi.testclient import TestClient

from profwatch.config import ProfilerConfig
from profwatch.controller import ProfilerController
from profwatch.server import create_app

CORS = {"access-control-allow-methods": "GET", "access-control-allow-origin": "*"}


@pytest.fixture
def client(controller: ProfilerController) -> TestClient:
    return TestClient(create_app(controller))


def assert_cors(response) -> None:
    for header, value in CORS.items():
        assert response.headers[header] == value


def test_status_and_session(client: TestClient, fake_runner: FakeRunner) -> None:
    response = client.get("/prof/status")
    assert response.status_code == 200
    assert response.text == "not running"
    assert response.headers["content-type"] == "text/plain; charset=utf-8"
    assert client.get("/prof/session").text == "no session yet"

    response = client.post("/prof/session")
    assert response.status_code == 200
    assert response.text.startswith("Started profiling, check back after 30 seconds\n")
    assert "status: RUNNING" in response.text
    assert client.get("/prof/status").text == "running"
    assert "status: RUNNING" in client.get("/prof/session").text

    response = client.post("/prof/session")
    assert response.text.startswith("Profiler already running, check back after 30 seconds\n")
    assert len(fake_runner.async_cmds) == 1


def test_start_and_stop_with_form(client: TestClient, fake_runner: FakeRunner) -> None:
    response = client.post("/prof/session", data={"start": "1", "event": "alloc"})
    assert "requestedDuration: until stopped" in response.text
    assert "event: alloc" in response.text
    assert fake_runner.async_cmds[0][1:4] == ["start", "-e", "alloc"]

    response = client.post("/prof/session?stop=1")
    assert response.text.startswith("Stopped profiling\n")
    assert "status: STOPPED" in response.text
    assert client.get("/prof/status").text == "not running"


def test_profile_once(client: TestClient, fake_runner: FakeRunner) -> None:
    response = client.get("/prof", params={"duration": "2", "pid": "777"})
    assert response.status_code == 200
    assert response.content == b"<svg/>"
    assert response.headers["content-type"] == "image/svg+xml; charset=utf-8"
    assert_cors(response)
    assert fake_runner.sync_cmds[0][-1] == "777"


@pytest.mark.parametrize(
    "output,content_type",
    [
        ("jfr", "application/octet-stream"),
        ("tree", "text/html; charset=utf-8"),
        ("collapsed", "text/plain; charset=utf-8"),
    ],
)
def test_profile_once_content_type(client: TestClient, output: str, content_type: str) -> None:
    response = client.get("/prof", params={"output": output, "event": "lock"})
    assert response.status_code == 200
    assert response.headers["content-type"] == content_type


def test_profile_once_tool_failure(client: TestClient, fake_runner: FakeRunner) -> None:
    fake_runner.one_shot_exit_code = 3
    response = client.get("/prof")
    assert response.status_code == 500
    assert response.text == "Error executing async-profiler"
    assert_cors(response)


def test_profile_once_while_session_runs(client: TestClient) -> None:
    client.post("/prof/session")
    response = client.get("/prof")
    assert response.status_code == 409
    assert "in progress" in response.text


def test_not_configured(fake_runner: FakeRunner, output_dir: Path) -> None:
    controller = ProfilerController(
        ProfilerConfig(profiler_home=None, pid=TARGET_PID, output_dir=str(output_dir)), runner=fake_runner
    )
    client = TestClient(create_app(controller))

    response = client.get("/prof")
    assert response.status_code == 500
    assert response.text == "ASYNC_PROFILER_HOME env is not set."
    assert response.headers["content-type"] == "text/plain; charset=utf-8"
    assert_cors(response)

    response = client.post("/prof/session")
    assert response.status_code == 500
    assert response.text == "ASYNC_PROFILER_HOME env is not set."


def test_pid_not_found(fake_runner: FakeRunner, output_dir: Path) -> None:
    controller = ProfilerController(
        ProfilerConfig(profiler_home="/opt/async-profiler", pid=None, output_dir=str(output_dir)), runner=fake_runner
    )
    response = TestClient(create_app(controller)).get("/prof")
    assert response.status_code == 500
    assert response.text == "Unable to determine PID of current process."


def test_shutdown_terminates_profiler(controller: ProfilerController, fake_runner: FakeRunner) -> None:
    with TestClient(create_app(controller)) as client:
        client.post("/prof/session", params={"start": ""})
    assert fake_runner.terminated == fake_runner.handles
