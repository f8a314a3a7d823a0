"""Error taxonomy shared by the job queue, approvals and the scheduler."""

from typing import Optional


class OrchestratorError(Exception):
    """Base class for orchestration errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class NotFoundError(OrchestratorError):
    """Missing project, approval, packet or job."""

    status_code = 404


class ForbiddenError(OrchestratorError):
    """Caller does not own the resource or lacks a permission grant."""

    status_code = 403


class ConflictError(OrchestratorError):
    """Version mismatch or illegal state transition."""

    status_code = 409

    def __init__(self, message: str, current_version: Optional[int] = None):
        super().__init__(message)
        self.current_version = current_version

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.current_version is not None:
            body["current_version"] = self.current_version
        return body


class ValidationError(OrchestratorError):
    """Malformed input, e.g. a revision without guidance."""

    status_code = 422


class TransientError(OrchestratorError):
    """Storage or network hiccup that may succeed on retry."""

    status_code = 503


class PermanentError(OrchestratorError):
    """Logic/data error, or a transient error that exhausted its retries."""

    status_code = 500
