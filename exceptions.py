"""
Error taxonomy for the render orchestrator.
"""


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestrator."""


class ValidationError(OrchestratorError):
    """Malformed identifiers or missing script. Never retried."""


class AdmissionRejected(OrchestratorError):
    """Capacity exceeded. Never retried."""

    def __init__(self, active: int, capacity: int):
        super().__init__(f"Rate limit exceeded - {active}/{capacity} requests in flight")
        self.active = active
        self.capacity = capacity


class ReuseUnavailable(OrchestratorError):
    """No previous artifact could be materialized. Falls through to a render."""


class RenderError(OrchestratorError):
    """Non-recoverable renderer failure."""


class RenderTimeoutError(RenderError):
    """The renderer exceeded its hard timeout and was killed."""


class ModerationExhaustedError(RenderError):
    """Moderation kept blocking images after every fallback attempt."""


class UploadError(OrchestratorError):
    """Base class for upload failures."""


class UploadFatalError(UploadError):
    """Conflict, permission or other non-transient upload failure."""


class UploadExhaustedError(UploadError):
    """Transient upload failures outlasted the retry ceiling."""


class PersistenceError(OrchestratorError):
    """Writing job status failed."""


class JobFailedError(OrchestratorError):
    """A job being waited on reached the failed state."""


class CompletionWaitExhausted(OrchestratorError):
    """A job did not complete within the configured number of polls."""


class StorageError(Exception):
    """Base class for artifact store errors."""


class StorageApiError(StorageError):
    """The store answered with a structured error."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class StorageResponseFormatError(StorageError):
    """The store answered with something other than JSON, usually an HTML error page."""
