import logging
import os
import stat
import time
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from profwatch.config import ProfilerConfig
from profwatch.controller import ProfilerController
from profwatch.exceptions import ProcessSpawnError

TARGET_PID = "31337"

# Stands in for async-profiler's profiler.sh: records its arguments, and writes "profile of <pid>" to the -f file.
FAKE_PROFILER_SH = """#!/bin/sh
home=$(dirname "$0")
echo "$*" >> "$home/invocations.log"
if [ "$1" = "list" ]; then
    printf 'Basic events:\\n  cpu\\n  alloc\\n  lock\\n  wall\\n  itimer\\n'
    exit 0
fi
action=collect
duration=0
file=
while [ $# -gt 1 ]; do
    case "$1" in
        start|stop) action=$1 ;;
        -d) duration=$2; shift ;;
        -f) file=$2; shift ;;
        -e|-o|-i|-j|-b|--title|--width|--height|--minwidth) shift ;;
    esac
    shift
done
pid=$1
if [ -n "$FAKE_PROFILER_EXIT" ]; then
    echo "[ERROR] simulated failure"
    exit "$FAKE_PROFILER_EXIT"
fi
case "$action" in
    start) echo "Profiling started" ;;
    stop) printf 'stopped %s' "$pid" > "$file" ;;
    collect) sleep "$duration"; printf 'profile of %s' "$pid" > "$file" ;;
esac
"""


class FakeHandle:
    def __init__(self, cmd: List[str]) -> None:
        self.cmd = cmd
        self.alive = True
        self.log_closed = False

    def poll(self) -> Optional[int]:
        return None if self.alive else 0

    def close_log(self) -> None:
        self.log_closed = True


class FakeRunner:
    """
    Records the commands it's asked to run instead of running them. One-shot profiles "succeed" by writing
    one_shot_content to the -f file.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger("test-logger")
        self.sync_cmds: List[List[str]] = []
        self.async_cmds: List[List[str]] = []
        self.handles: List[FakeHandle] = []
        self.terminated: List[FakeHandle] = []
        self.list_output = ["Basic events:", "  cpu", "  alloc", "  lock", "  wall"]
        self.one_shot_exit_code = 0
        self.one_shot_content = b"<svg/>"
        self.spawn_error = False
        self.spawn_delay = 0.0

    def run_sync(self, cmd: List[str], timeout: float = None) -> Tuple[int, List[str]]:
        self.sync_cmds.append(cmd)
        if cmd[1] == "list":
            # only the configured target can be attached to
            return (0, self.list_output) if cmd[-1] == TARGET_PID else (1, ["[ERROR] No such process"])
        if self.one_shot_exit_code == 0:
            Path(cmd[cmd.index("-f") + 1]).write_bytes(self.one_shot_content)
        return self.one_shot_exit_code, ["[ERROR] fake"] if self.one_shot_exit_code else []

    def run_async(self, cmd: List[str], log_path: str = None) -> FakeHandle:
        if self.spawn_error:
            raise ProcessSpawnError(cmd, "No such file or directory")
        # widen the window for racing requests
        time.sleep(self.spawn_delay)
        self.async_cmds.append(cmd)
        handle = FakeHandle(cmd)
        self.handles.append(handle)
        return handle

    def is_alive(self, handle: FakeHandle) -> bool:
        return handle.alive

    def terminate(self, handle: FakeHandle, timeout: float = 5) -> int:
        handle.alive = False
        self.terminated.append(handle)
        return -15


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    path = tmp_path / "outputs"
    path.mkdir()
    return path


@pytest.fixture
def config(output_dir: Path) -> ProfilerConfig:
    return ProfilerConfig(profiler_home="/opt/async-profiler", pid=TARGET_PID, output_dir=str(output_dir))


@pytest.fixture
def controller(config: ProfilerConfig, fake_runner: FakeRunner, clock: FakeClock) -> ProfilerController:
    return ProfilerController(config, runner=fake_runner, clock=clock)


@pytest.fixture
def profiler_home(tmp_path: Path) -> Path:
    home = tmp_path / "async-profiler"
    home.mkdir()
    script = home / "profiler.sh"
    script.write_text(FAKE_PROFILER_SH)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return home


@pytest.fixture
def invocations(profiler_home: Path) -> Path:
    return profiler_home / "invocations.log"


@pytest.fixture(autouse=True)
def no_simulated_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FAKE_PROFILER_EXIT", raising=False)
    monkeypatch.delenv("PROFWATCH_TARGET_PID", raising=False)


def wait_for(condition, timeout: float = 10) -> None:
    end_time = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > end_time:
            raise TimeoutError()
        time.sleep(0.05)


@pytest.fixture(name="wait_for")
def wait_for_fixture():
    return wait_for


@pytest.fixture(scope="session")
def own_pid() -> str:
    return str(os.getpid())
