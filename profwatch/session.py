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
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from profwatch.events import EventType, OutputFormat

PROFILE_FILE_BASENAME = "profile"
PROFILER_LOG_BASENAME = "profiler.log"


class SessionStatus(str, Enum):
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class SessionSnapshot(BaseModel):
    profile_id: str
    event: EventType
    pid: str
    output: OutputFormat
    status: SessionStatus
    output_file: Optional[str]
    started_at: datetime
    requested_duration_seconds: Optional[int]
    duration_seconds: Optional[float]
    supported_events: List[EventType]

    def render(self) -> str:
        requested = (
            f"{self.requested_duration_seconds}s"
            if self.requested_duration_seconds is not None
            else "until stopped"
        )
        duration = f"{self.duration_seconds:.3f}s" if self.duration_seconds is not None else "-"
        return (
            f"profileId: {self.profile_id}, pid: {self.pid}, event: {self.event}, status: {self.status.value},"
            f" outputFile: {self.output_file}, startTimestamp: {self.started_at.isoformat(sep=' ')},"
            f" requestedDuration: {requested}, durationSeconds: {duration},"
            f" supportedEvents: [{', '.join(str(e) for e in self.supported_events)}]"
        )


@dataclass
class ProfileSession:
    """
    A single profiling attempt. A session is RUNNING from creation until it is stopped (explicitly, or when its
    bounded run is found to be over), and is never restarted; the controller replaces it with a new one.

    requested_duration_seconds is None for sessions that run until an explicit stop.
    """

    event: EventType
    output: OutputFormat
    requested_duration_seconds: Optional[int]
    supported_events: List[EventType]
    pid: str
    profile_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: float = field(default_factory=time.time)
    status: SessionStatus = SessionStatus.RUNNING
    output_file: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def is_bounded(self) -> bool:
        return self.requested_duration_seconds is not None

    @property
    def session_dir(self) -> Optional[str]:
        return os.path.dirname(self.output_file) if self.output_file is not None else None

    @property
    def log_file(self) -> Optional[str]:
        session_dir = self.session_dir
        return os.path.join(session_dir, PROFILER_LOG_BASENAME) if session_dir is not None else None

    def create_output_dir(self, output_dir: str) -> bool:
        """
        Creates <output_dir>/<profile_id> and sets output_file inside it.
        Returns False (leaving output_file unset) if the directory could not be created.
        """
        session_dir = os.path.join(os.path.abspath(output_dir), self.profile_id)
        try:
            os.makedirs(session_dir)
        except OSError:
            return False
        self.output_file = os.path.join(session_dir, f"{PROFILE_FILE_BASENAME}.{self.output.extension}")
        return True

    def elapsed(self, now: float) -> float:
        return max(now - self.started_at, 0.0)

    def remaining(self, now: float) -> int:
        assert self.requested_duration_seconds is not None, "unbounded sessions have no remaining time"
        return max(math.ceil(self.requested_duration_seconds - self.elapsed(now)), 1)

    def mark_stopped(self, now: float) -> None:
        assert self.status is SessionStatus.RUNNING, f"session {self.profile_id} was already stopped"
        self.status = SessionStatus.STOPPED
        self.duration_seconds = self.elapsed(now)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            profile_id=self.profile_id,
            event=self.event,
            pid=self.pid,
            output=self.output,
            status=self.status,
            output_file=self.output_file,
            started_at=datetime.fromtimestamp(self.started_at),
            requested_duration_seconds=self.requested_duration_seconds,
            duration_seconds=self.duration_seconds,
            supported_events=list(self.supported_events),
        )
