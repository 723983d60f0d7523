#
# Copyright (C) 2023 Intel Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
import contextlib
import os
import shutil
import tempfile
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from pydantic import BaseModel

from profwatch.config import ASYNC_PROFILER_HOME_ENV, ProfilerConfig
from profwatch.events import EventType, OutputFormat, discover_supported_events
from profwatch.exceptions import (
    OutputPathError,
    PidNotFound,
    ProcessSpawnError,
    ProfilerBusy,
    ProfilerNotConfigured,
    ProfilerToolError,
)
from profwatch.logging import LoggerType, SessionLoggerAdapter, get_logger
from profwatch.request import ProfileRequest
from profwatch.run_process import ProcessHandle, ProcessRunner
from profwatch.session import ProfileSession, SessionSnapshot, SessionStatus

NO_SESSION_MESSAGE = "no session yet"


class SessionReport(BaseModel):
    message: str
    session: Optional[SessionSnapshot] = None

    def render(self) -> str:
        if self.session is None:
            return self.message
        return f"{self.message}\n{self.session.render()}"


@dataclass
class ProfileArtifact:
    content: bytes
    output: OutputFormat

    @property
    def content_type(self) -> str:
        return self.output.content_type


class ProfilerController:
    """
    Owns the (single) profiling session of this process and serializes all requests on it.

    Bounded sessions are run with "profiler.sh -d <duration>", so async-profiler stops itself and writes the output
    when the duration is over. We don't watch for that: the next request that finds the process gone marks the
    session as stopped. Unbounded sessions are run with "profiler.sh start" and only end by an explicit stop request.
    """

    def __init__(
        self,
        config: ProfilerConfig,
        runner: ProcessRunner = None,
        logger: LoggerType = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._logger = logger if logger is not None else get_logger()
        self._runner = runner if runner is not None else ProcessRunner(self._logger)
        self._clock = clock
        self._lock = threading.Lock()
        self._session: Optional[ProfileSession] = None
        # the last profiler.sh invocation made for the current session (start, or stop)
        self._process: Optional[ProcessHandle] = None
        # replaced invocations that were still running, kept until they exit
        self._detached: List[ProcessHandle] = []
        self._supported_events: Optional[List[EventType]] = None
        self._logger.info(f"Profiling process PID: {config.pid} asyncProfilerHome: {config.profiler_home}")

    def submit(self, request: ProfileRequest) -> SessionReport:
        """
        Starts a session, stops an unbounded one, or reports on the current one - whichever fits the request and
        the current state.
        """
        self._check_configured()
        with self._lock:
            session = self._session
            if session is not None and session.status is SessionStatus.RUNNING:
                if session.is_bounded:
                    return self._poll_bounded(session)
                if request.stop:
                    return self._stop(session)
                self._session_logger(session).info("Profiler already running, ignoring start request")
                return SessionReport(
                    message="Profiler already running, send stop to finish", session=session.snapshot()
                )

            if request.stop:
                return SessionReport(
                    message="No profiling session is running, nothing to stop",
                    session=session.snapshot() if session is not None else None,
                )
            return self._start(request)

    def status(self) -> Optional[SessionSnapshot]:
        with self._lock:
            return self._session.snapshot() if self._session is not None else None

    def is_running(self) -> bool:
        with self._lock:
            return self._is_running()

    def profile_once(self, request: ProfileRequest) -> ProfileArtifact:
        """
        Profiles for the requested duration and returns the output. Blocks (and holds the lock) for the whole
        duration - async-profiler can't run two profiling sessions on the same process anyway.
        """
        self._check_configured()
        pid = self._target_pid(request)
        duration = request.duration or self._config.default_duration

        with self._lock:
            if self._is_running():
                assert self._session is not None
                raise ProfilerBusy(self._session.profile_id)

            try:
                fd, output_file = tempfile.mkstemp(
                    prefix=f"async-prof-pid-{pid}-", suffix=f".{request.output.extension}", dir=self._config.output_dir
                )
            except OSError as e:
                raise OutputPathError(self._config.output_dir, e.strerror or str(e)) from e
            os.close(fd)

            try:
                cmd = [self._config.profiler_script]
                if request.event is not EventType.CPU:
                    cmd += ["-e", request.event.value]
                cmd += ["-d", str(duration), "-o", request.output.value, "-f", output_file]
                cmd += self._option_args(request) + [pid]

                exit_code, lines = self._runner.run_sync(cmd, timeout=duration + self._config.sync_timeout_grace)
                if exit_code != 0:
                    self._logger.warning(f"async-profiler exited with {exit_code}", extra={"tool_output": lines})
                    raise ProfilerToolError(exit_code, lines)

                try:
                    with open(output_file, "rb") as f:
                        content = f.read()
                except OSError as e:
                    self._logger.warning(f"async-profiler output is missing: {e}", extra={"tool_output": lines})
                    raise ProfilerToolError(exit_code, lines) from e
            finally:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(output_file)

        self._logger.info(f"Profiled PID {pid} for {duration} seconds ({request.event}, {request.output})")
        return ProfileArtifact(content, request.output)

    def close(self) -> None:
        with self._lock:
            handles = self._detached + ([self._process] if self._process is not None else [])
            for handle in handles:
                if self._runner.is_alive(handle):
                    self._logger.info(f"Terminating {handle!r}")
                    self._runner.terminate(handle, self._config.terminate_timeout)
            self._detached = []

    def _check_configured(self) -> None:
        if not self._config.is_profiler_configured:
            raise ProfilerNotConfigured(ASYNC_PROFILER_HOME_ENV)
        if self._config.pid is None:
            raise PidNotFound()

    def _target_pid(self, request: ProfileRequest) -> str:
        # the per-request pid applies to this request only
        pid = request.pid if request.pid is not None else self._config.pid
        assert pid is not None, "configuration was not checked"
        return pid

    def _is_running(self) -> bool:
        session = self._session
        if session is None or session.status is not SessionStatus.RUNNING:
            return False
        if not session.is_bounded or self._process is None:
            return True
        return self._runner.is_alive(self._process)

    def _get_supported_events(self) -> List[EventType]:
        # called with the lock held, so the listing runs once even if the first requests race.
        # always lists against the configured pid: the result is kept for the lifetime of the server
        if self._supported_events is None:
            assert self._config.pid is not None, "configuration was not checked"
            self._supported_events = discover_supported_events(
                self._runner, self._config.profiler_script, self._config.pid
            )
            self._logger.info(f"Supported events: {', '.join(str(e) for e in self._supported_events)}")
        return list(self._supported_events)

    def _start(self, request: ProfileRequest) -> SessionReport:
        pid = self._target_pid(request)
        unbounded = request.start and request.duration is None
        session = ProfileSession(
            event=request.event,
            output=request.output,
            requested_duration_seconds=None if unbounded else request.duration or self._config.default_duration,
            supported_events=self._get_supported_events(),
            pid=pid,
            started_at=self._clock(),
        )
        logger = self._session_logger(session)
        if not session.create_output_dir(self._config.output_dir):
            logger.error(f"Unable to create output directory under {self._config.output_dir!r}")
            raise OutputPathError(os.path.join(self._config.output_dir, session.profile_id), "mkdir failed")

        if session.requested_duration_seconds is None:
            mode = ["start"]
        else:
            mode = ["-d", str(session.requested_duration_seconds)]
        cmd = [self._config.profiler_script] + mode + self._output_args(session) + self._option_args(request) + [pid]

        try:
            process = self._runner.run_async(cmd, log_path=session.log_file)
        except ProcessSpawnError:
            # the previous session stays current, and nothing refers to the new directory
            assert session.session_dir is not None
            shutil.rmtree(session.session_dir, ignore_errors=True)
            raise
        self._replace_process(process)
        self._session = session

        if session.is_bounded:
            logger.info(f"Started profiling PID {pid} for {session.requested_duration_seconds} seconds")
            message = f"Started profiling, check back after {session.requested_duration_seconds} seconds"
        else:
            logger.info(f"Started profiling PID {pid} until stopped")
            message = "Started profiling, send stop to finish"
        return SessionReport(message=message, session=session.snapshot())

    def _stop(self, session: ProfileSession) -> SessionReport:
        cmd = [self._config.profiler_script, "stop"] + self._output_args(session) + [session.pid]
        # not waited for, async-profiler writes the output file once it's done
        self._replace_process(self._runner.run_async(cmd, log_path=session.log_file))
        session.mark_stopped(self._clock())
        self._session_logger(session).info(f"Stopped profiling after {session.duration_seconds:.3f} seconds")
        return SessionReport(message="Stopped profiling", session=session.snapshot())

    def _poll_bounded(self, session: ProfileSession) -> SessionReport:
        now = self._clock()
        if self._process is not None and not self._runner.is_alive(self._process):
            session.mark_stopped(now)
            self._session_logger(session).info(
                f"Profiling finished after {session.duration_seconds:.3f} seconds", exit_code=self._process.poll()
            )
            return SessionReport(message="Profiling finished", session=session.snapshot())

        remaining = session.remaining(now)
        self._session_logger(session).info(f"Profiler already running, {remaining} seconds remaining")
        return SessionReport(
            message=f"Profiler already running, check back after {remaining} seconds", session=session.snapshot()
        )

    def _replace_process(self, process: ProcessHandle) -> None:
        previous = self._process
        if previous is not None:
            previous.close_log()
            if previous.poll() is None:
                self._detached.append(previous)
        # reap earlier invocations that have exited since
        self._detached = [handle for handle in self._detached if handle.poll() is None]
        self._process = process

    def _session_logger(self, session: ProfileSession) -> SessionLoggerAdapter:
        return SessionLoggerAdapter(self._logger, {"profile_id": session.profile_id})

    @staticmethod
    def _output_args(session: ProfileSession) -> List[str]:
        assert session.output_file is not None, "session has no output file"
        args = []
        if session.event is not EventType.CPU:
            args += ["-e", session.event.value]
        if session.output is not OutputFormat.SVG:
            args += ["-o", session.output.value]
        return args + ["-f", session.output_file]

    @staticmethod
    def _option_args(request: ProfileRequest) -> List[str]:
        args: List[str] = []
        if request.interval is not None:
            args += ["-i", str(request.interval)]
        if request.jstackdepth is not None:
            args += ["-j", str(request.jstackdepth)]
        if request.bufsize is not None:
            args += ["-b", str(request.bufsize)]
        if request.thread:
            args.append("-t")
        if request.simple:
            args.append("-s")
        if request.title is not None:
            args += ["--title", request.title]
        if request.width is not None:
            args += ["--width", str(request.width)]
        if request.height is not None:
            args += ["--height", str(request.height)]
        if request.minwidth is not None:
            args += ["--minwidth", request.minwidth]
        if request.reverse:
            args.append("--reverse")
        return args
