"""Job record data model for async conversion."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional
from pydantic import BaseModel, ConfigDict, Field
import uuid

from noteforge.errors import InvalidTransitionError


class JobState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.ERROR})

_ALLOWED_TRANSITIONS = {
    JobState.QUEUED: {JobState.PROCESSING},
    JobState.PROCESSING: {JobState.COMPLETED, JobState.ERROR},
    JobState.COMPLETED: set(),
    JobState.ERROR: set(),
}


class OutputFormat(str, Enum):
    DOCX = "docx"
    PDF = "pdf"

    @property
    def extension(self) -> str:
        return f".{self.value}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UploadedInput:
    """Raw upload as persisted by the HTTP layer."""
    path: str
    original_name: str
    size_bytes: int


class JobRecord(BaseModel):
    """Tracks the lifecycle of one conversion job.

    Only the pipeline worker running the job mutates it after admission;
    the manager hands out deep copies to readers.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    state: JobState = JobState.QUEUED
    progress: int = 0
    file_size_bytes: int = 0
    original_name: str = "upload.md"
    input_path: Optional[str] = None
    requested_formats: FrozenSet[OutputFormat] = frozenset({OutputFormat.DOCX})
    outputs: Dict[OutputFormat, str] = Field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_duration_ms: int = 0

    def _transition(self, new_state: JobState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Job {self.id}: illegal transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def wants(self, fmt: OutputFormat) -> bool:
        return fmt in self.requested_formats

    def start(self, estimated_duration_ms: int) -> None:
        self._transition(JobState.PROCESSING)
        self.started_at = utcnow()
        self.estimated_duration_ms = estimated_duration_ms

    def advance(self, progress: int) -> None:
        """Move progress forward; lower values are ignored."""
        self.progress = max(self.progress, min(100, progress))

    def add_output(self, fmt: OutputFormat, path: str) -> None:
        if fmt not in self.requested_formats:
            raise InvalidTransitionError(f"Job {self.id}: {fmt.value} was not requested")
        self.outputs[fmt] = path

    def complete(self) -> None:
        self._transition(JobState.COMPLETED)
        self.advance(100)
        self.completed_at = utcnow()

    def fail(self, message: str) -> None:
        self._transition(JobState.ERROR)
        self.error = message
        self.completed_at = utcnow()


class JobStatusView(BaseModel):
    """What polling clients see."""
    model_config = ConfigDict(populate_by_name=True)

    state: JobState
    progress: int
    time_left: int = Field(alias="timeLeft")
    outputs: Dict[str, bool]
    error: Optional[str] = None
