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
from typing import Any, List


class ProfwatchError(Exception):
    """
    Base for errors surfaced to the HTTP caller. Keyword arguments are kept as logging extras.
    """

    def __init__(self, *args: Any, **extra: Any) -> None:
        super().__init__(*args)
        self.extra = extra


class ProfilerNotConfigured(ProfwatchError):
    def __init__(self, env_var: str) -> None:
        super().__init__(f"{env_var} env is not set.", env_var=env_var)


class PidNotFound(ProfwatchError):
    def __init__(self) -> None:
        super().__init__("Unable to determine PID of current process.")


class ProcessSpawnError(ProfwatchError):
    def __init__(self, cmd: List[str], reason: str) -> None:
        super().__init__(f"Could not launch {cmd[0]!r}: {reason}", cmd=cmd)
        self.cmd = cmd


class OutputPathError(ProfwatchError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Unable to create profiler output at {path!r}: {reason}", path=path)


class ProfilerToolError(ProfwatchError):
    def __init__(self, exit_code: int, output: List[str]) -> None:
        super().__init__("Error executing async-profiler", exit_code=exit_code, tool_output=output)
        self.exit_code = exit_code
        self.output = output


class ProfilerBusy(ProfwatchError):
    def __init__(self, profile_id: str) -> None:
        super().__init__(f"Profiling session {profile_id} is in progress, try again later.", profile_id=profile_id)
