from __future__ import annotations


class BackendError(Exception):
    """Base class for everything the OpenCode backend raises."""


class NetworkError(BackendError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedEventError(BackendError):
    """A push payload that is not a JSON object. Never surfaced to callers."""


class ResponseTimeoutError(BackendError, TimeoutError):
    pass


class SendInProgressError(BackendError):
    pass


class SessionAlreadyStartedError(BackendError):
    pass


class BackendDisposedError(BackendError):
    pass
