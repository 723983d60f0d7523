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
import tempfile
from dataclasses import dataclass, field
from typing import Mapping, Optional

ASYNC_PROFILER_HOME_ENV = "ASYNC_PROFILER_HOME"
TARGET_PID_ENV = "PROFWATCH_TARGET_PID"
PROFILER_SCRIPT = "profiler.sh"

DEFAULT_DURATION_SECONDS = 30
# extra time a one-shot profile may take beyond its duration (attach, dump and write the output)
DEFAULT_SYNC_TIMEOUT_GRACE_SECONDS = 10
DEFAULT_TERMINATE_TIMEOUT_SECONDS = 5


def get_own_pid(environ: Mapping[str, str] = os.environ) -> Optional[str]:
    """
    The process we profile: our own unless overridden by PROFWATCH_TARGET_PID.
    Returns None if the override isn't a valid PID.
    """
    override = environ.get(TARGET_PID_ENV)
    if override is None:
        return str(os.getpid())
    override = override.strip()
    if not override.isdigit() or int(override) <= 0:
        return None
    return override


@dataclass
class ProfilerConfig:
    profiler_home: Optional[str]
    pid: Optional[str]
    output_dir: str = field(default_factory=tempfile.gettempdir)
    default_duration: int = DEFAULT_DURATION_SECONDS
    sync_timeout_grace: int = DEFAULT_SYNC_TIMEOUT_GRACE_SECONDS
    terminate_timeout: int = DEFAULT_TERMINATE_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ, **overrides: object) -> "ProfilerConfig":
        config = cls(profiler_home=environ.get(ASYNC_PROFILER_HOME_ENV), pid=get_own_pid(environ))
        for name, value in overrides.items():
            if value is not None:
                setattr(config, name, value)
        return config

    @property
    def is_profiler_configured(self) -> bool:
        return self.profiler_home is not None and self.profiler_home.strip() != ""

    @property
    def profiler_script(self) -> str:
        assert self.profiler_home is not None, "profiler_home is not configured"
        return os.path.join(self.profiler_home.strip(), PROFILER_SCRIPT)
