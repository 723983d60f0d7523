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
from enum import Enum
from typing import List, Optional

from profwatch.run_process import ProcessRunner

CONTENT_TYPE_SVG = "image/svg+xml; charset=utf-8"
CONTENT_TYPE_HTML = "text/html; charset=utf-8"
CONTENT_TYPE_TEXT = "text/plain; charset=utf-8"
CONTENT_TYPE_BINARY = "application/octet-stream"


class EventType(str, Enum):
    """
    Profiling events we let callers choose from. async-profiler samples "cpu" when no event is given.
    """

    CPU = "cpu"
    ALLOC = "alloc"
    LOCK = "lock"
    CACHE_MISSES = "cache-misses"

    @classmethod
    def normalize(cls, name: Optional[str]) -> "EventType":
        if name is not None:
            name = name.strip().lower()
            for event in cls:
                if event.value == name:
                    return event
        return cls.CPU

    def __str__(self) -> str:
        return self.value


class OutputFormat(str, Enum):
    SVG = "svg"
    TREE = "tree"
    JFR = "jfr"
    SUMMARY = "summary"
    TRACES = "traces"
    FLAT = "flat"
    COLLAPSED = "collapsed"

    @classmethod
    def normalize(cls, name: Optional[str]) -> "OutputFormat":
        if name is not None:
            name = name.strip().lower()
            for fmt in cls:
                if fmt.value == name:
                    return fmt
        return cls.SVG

    @property
    def content_type(self) -> str:
        if self is OutputFormat.SVG:
            return CONTENT_TYPE_SVG
        elif self is OutputFormat.TREE:
            return CONTENT_TYPE_HTML
        elif self is OutputFormat.JFR:
            return CONTENT_TYPE_BINARY
        return CONTENT_TYPE_TEXT

    @property
    def extension(self) -> str:
        if self is OutputFormat.TREE:
            return "html"
        elif self in (OutputFormat.SVG, OutputFormat.JFR, OutputFormat.COLLAPSED):
            return self.value
        return "txt"

    def __str__(self) -> str:
        return self.value


def discover_supported_events(runner: ProcessRunner, profiler_script: str, pid: str) -> List[EventType]:
    """
    Asks async-profiler which events it can sample on this host ("profiler.sh list <pid>").
    The listing contains section headers ("Basic events:", "Perf events:") followed by indented event names,
    we only keep the names we know. Falls back to [CPU] if nothing matched, or the listing failed.
    """
    exit_code, lines = runner.run_sync([profiler_script, "list", pid])
    if exit_code != 0:
        runner.logger.warning(f"Listing async-profiler events failed with exit code {exit_code}")

    names = {line.strip().lower() for line in lines}
    supported = [event for event in EventType if event.value in names]
    return supported or [EventType.CPU]
