"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Iterable

from noteforge.jobs.models import JobRecord, OutputFormat, UploadedInput


class JobDispatcher(ABC):
    """Abstract interface for job dispatching."""

    @abstractmethod
    async def submit(self, upload: UploadedInput, requested_formats: Iterable[OutputFormat]) -> str:
        """Admit a job for processing. Returns job_id."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> JobRecord:
        """Snapshot of a job. Raises NotFoundError for unknown ids."""
        ...

    @abstractmethod
    async def cancel(self, job_id: str) -> None:
        """Forget a job and delete whatever outputs it has."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start background maintenance."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
