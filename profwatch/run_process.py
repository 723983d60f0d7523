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
import os
import signal
import subprocess
import time
from typing import IO, List, Optional, Tuple, Union

import psutil

from profwatch.exceptions import ProcessSpawnError
from profwatch.logging import LoggerType, get_logger

FAILURE_EXIT_CODE = -1


class ProcessHandle:
    """
    A spawned external command. Each invocation of the profiler gets its own handle.
    """

    def __init__(self, cmd: List[str], popen: subprocess.Popen, log_file: Optional[IO[bytes]] = None) -> None:
        self.cmd = cmd
        self.popen = popen
        self.started_at = time.time()
        self._log_file = log_file

    @property
    def pid(self) -> int:
        return self.popen.pid

    def poll(self) -> Optional[int]:
        returncode = self.popen.poll()
        if returncode is not None:
            self.close_log()
        return returncode

    def close_log(self) -> None:
        # the child keeps its own descriptor of the log, closing ours doesn't cut its output
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, cmd={self.cmd!r})"


class ProcessRunner:
    def __init__(self, logger: LoggerType = None) -> None:
        self.logger = logger if logger is not None else get_logger()

    def _popen(self, cmd: List[str], stdout: Union[int, IO[bytes]], stderr: Union[int, IO[bytes]]) -> subprocess.Popen:
        self.logger.debug(f"Running command: ({' '.join(cmd)})")
        # own process group, so terminal signals sent to the server don't reach the profiler mid-dump
        return subprocess.Popen(cmd, stdout=stdout, stderr=stderr, stdin=subprocess.DEVNULL, preexec_fn=os.setpgrp)

    def run_sync(self, cmd: List[str], timeout: float = None) -> Tuple[int, List[str]]:
        """
        Runs cmd to completion with stderr merged into stdout.
        Returns (FAILURE_EXIT_CODE, []) if the command could not be launched or did not finish within timeout.
        """
        try:
            process = self._popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        except OSError as e:
            self.logger.warning(f"Failed to launch {cmd[0]!r}: {e}")
            return FAILURE_EXIT_CODE, []

        with process:
            try:
                stdout, _ = process.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                self.logger.warning(f"({cmd!r}) did not finish in {timeout} seconds, killing it")
                self._kill_tree(process.pid, signal.SIGKILL)
                process.communicate()
                return FAILURE_EXIT_CODE, []

        lines = stdout.decode(errors="replace").splitlines()
        self.logger.debug(f"({cmd!r}) exit code: {process.returncode}")
        return process.returncode, lines

    def run_async(self, cmd: List[str], log_path: str = None) -> ProcessHandle:
        """
        Launches cmd and returns without waiting for it.
        The command's output is written to log_path if given, otherwise it's discarded.
        """
        log_file = None
        try:
            if log_path is not None:
                log_file = open(log_path, "ab")
                popen = self._popen(cmd, stdout=log_file, stderr=subprocess.STDOUT)
            else:
                popen = self._popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            if log_file is not None:
                log_file.close()
            raise ProcessSpawnError(cmd, str(e)) from e

        return ProcessHandle(cmd, popen, log_file)

    def is_alive(self, handle: ProcessHandle) -> bool:
        # poll() also reaps the child, so an exited process never lingers as a zombie
        return handle.poll() is None

    def terminate(self, handle: ProcessHandle, timeout: float = 5) -> int:
        """
        Sends SIGTERM to the process and its children, escalating to SIGKILL after timeout.
        Blocks until the process exits and returns its exit code.
        """
        if handle.poll() is not None:
            return handle.popen.returncode

        self._kill_tree(handle.pid, signal.SIGTERM)
        try:
            handle.popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.logger.warning(f"{handle!r} did not exit after SIGTERM, killing it")
            self._kill_tree(handle.pid, signal.SIGKILL)
            handle.popen.wait()

        returncode = handle.poll()
        assert returncode is not None  # only None if child has not terminated
        self.logger.debug(f"{handle!r} was terminated by us, exit code: {returncode}")
        return returncode

    def _kill_tree(self, pid: int, sig: signal.Signals) -> None:
        try:
            parent = psutil.Process(pid)
            children = parent.children(recursive=True)
        except psutil.NoSuchProcess:
            return

        for proc in [parent] + children:
            try:
                proc.send_signal(sig)
            except psutil.NoSuchProcess:
                pass
