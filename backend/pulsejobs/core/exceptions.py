from typing import Any, Dict, Optional


class JobServiceError(Exception):
    """Base exception for the job client"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
        }


class ValidationError(JobServiceError):
    """Raised for bad input; never retried"""
    def __init__(self, message: str = "Validation error"):
        super().__init__(message, 400)


class RemoteError(JobServiceError):
    """Raised when the job service answers with a non-2xx response"""
    def __init__(self, message: str = "Remote job service error", status_code: Optional[int] = None):
        super().__init__(message, status_code)


class NetworkError(RemoteError):
    """Raised when the job service could not be reached at all"""
    def __init__(self, message: str = "Job service unreachable"):
        super().__init__(message, None)


class OwnershipError(RemoteError):
    """Raised when the current identity does not own the job (403/404)"""
    def __init__(self, message: str = "Job not found or access denied", status_code: int = 403):
        super().__init__(message, status_code)


NotFoundOrForbidden = OwnershipError


class JobTimeoutError(JobServiceError, TimeoutError):
    """Raised when the polling attempt budget runs out.

    The remote job may still be running; its local record is kept so a later
    recovery can pick it up.
    """
    def __init__(self, message: str = "Job polling timeout", attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)
