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
import math
from typing import Any, Mapping, Optional

from pydantic import BaseModel, field_validator

from profwatch.events import EventType, OutputFormat


def positive_int_or_none(value: Any) -> Optional[int]:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


class ProfileRequest(BaseModel):
    """
    Parameters of a profiling request, decoded permissively: values that don't parse fall back to their defaults
    instead of failing the request. Flags (start, stop, thread, simple, reverse) are set by presence alone.
    """

    event: EventType = EventType.CPU
    output: OutputFormat = OutputFormat.SVG
    duration: Optional[int] = None
    start: bool = False
    stop: bool = False
    pid: Optional[str] = None

    # passed through to profiler.sh
    interval: Optional[int] = None
    jstackdepth: Optional[int] = None
    bufsize: Optional[int] = None
    thread: bool = False
    simple: bool = False
    title: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    minwidth: Optional[str] = None
    reverse: bool = False

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "ProfileRequest":
        return cls.model_validate({k: v for k, v in params.items() if k in cls.model_fields})

    @field_validator("event", mode="before")
    @classmethod
    def _normalize_event(cls, value: Any) -> EventType:
        return EventType.normalize(value if isinstance(value, str) else None)

    @field_validator("output", mode="before")
    @classmethod
    def _normalize_output(cls, value: Any) -> OutputFormat:
        return OutputFormat.normalize(value if isinstance(value, str) else None)

    @field_validator("duration", "interval", "jstackdepth", "bufsize", "width", "height", mode="before")
    @classmethod
    def _positive_int(cls, value: Any) -> Optional[int]:
        return positive_int_or_none(value)

    @field_validator("start", "stop", "thread", "simple", "reverse", mode="before")
    @classmethod
    def _presence_flag(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return value is not None

    @field_validator("pid", mode="before")
    @classmethod
    def _numeric_pid(cls, value: Any) -> Optional[str]:
        pid = positive_int_or_none(value)
        return str(pid) if pid is not None else None

    @field_validator("minwidth", mode="before")
    @classmethod
    def _numeric_minwidth(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        try:
            minwidth = float(value)
            if not math.isfinite(minwidth) or minwidth < 0:
                return None
        except (TypeError, ValueError):
            return None
        return str(value).strip()

    @field_validator("title", mode="before")
    @classmethod
    def _non_empty_title(cls, value: Any) -> Optional[str]:
        if value is None or str(value).strip() == "":
            return None
        return str(value)
