"""Error taxonomy shared by the job manager, pipeline and HTTP layer."""

from typing import Optional


class NoteforgeError(Exception):
    """Base class. ``http_status`` is what the API answers with."""

    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(NoteforgeError):
    http_status = 400


class NotFoundError(NoteforgeError):
    http_status = 404


class NoContentError(NoteforgeError):
    http_status = 404


class NetworkError(NoteforgeError):
    """Asset fetch failure. Recovered locally by the preprocessor."""

    http_status = 502


class InternalError(NoteforgeError):
    pass


class InvalidTransitionError(InternalError):
    pass


class ConversionError(NoteforgeError):
    """A pipeline stage failed. Recorded on the job, never raised to the scheduler."""


class InputReadError(ConversionError):
    pass


class ExternalToolError(ConversionError):
    def __init__(self, binary: str, exit_code: Optional[int], stderr: str):
        detail = stderr.strip() or "no diagnostic output"
        super().__init__(f"{binary} exited with code {exit_code}: {detail}")
        self.binary = binary
        self.exit_code = exit_code
        self.stderr = stderr


class LaunchError(ConversionError):
    def __init__(self, binary: str, reason: str):
        super().__init__(f"Failed to start {binary}: {reason}")
        self.binary = binary


class ToolTimeoutError(ConversionError):
    def __init__(self, binary: str, timeout: float):
        super().__init__(f"{binary} timed out after {timeout:g} seconds")
        self.binary = binary
        self.timeout = timeout
