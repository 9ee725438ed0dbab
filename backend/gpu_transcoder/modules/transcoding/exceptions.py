"""Error taxonomy for the transcode orchestration client.

- TransportError: the worker could not be reached or answered non-2xx.
- JobFailure: the worker reports the job itself as failed.
- AdmissionError: a local precondition failed before submission.
- PathTranslationError: a path is outside the namespace it is translated from.

Soft failures of thumbnail and cleanup steps are not exceptions; they are
reported as results with ``success=False``.
"""

from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from gpu_transcoder.modules.transcoding.schemas import TranscodeJob


class TranscoderError(Exception):
    """Base exception for transcode orchestration errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransportError(TranscoderError):
    """Network failure, timeout or non-2xx response from the worker."""

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
    ):
        self.operation = operation
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class JobFailure(TranscoderError):
    """The worker reported a job in the failed state.

    ``reason`` is the worker's failure message, or None when it reported none.
    """

    def __init__(self, job: "TranscodeJob"):
        self.job = job
        self.job_id = job.id
        self.reason = job.failed_reason
        message = f"Transcode job {job.id} failed"
        if job.failed_reason:
            message += f": {job.failed_reason}"
        super().__init__(message)


class AdmissionError(TranscoderError):
    """Submission refused locally before reaching the worker."""

    def __init__(self, message: str, reason: str = "capacity"):
        self.reason = reason
        super().__init__(message)


class PathTranslationError(TranscoderError, ValueError):
    """Raised when a path is outside the namespace it is translated from."""

    def __init__(self, path: str, namespace: str):
        self.path = path
        self.namespace = namespace
        super().__init__(f"Path {path!r} is not under the {namespace} namespace")
