"""
Errors raised by the App Hub REST client.

NetworkError is the only transient kind: no HTTP response was received.
Everything carrying a status code, and bodies that cannot be parsed, are fatal.
"""

from __future__ import annotations

from typing import Optional


class ApiError(Exception):
    """Base class for failures talking to the App Hub API."""

    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NetworkError(ApiError):
    """The request never produced a response (connection refused, timeout, ...)."""

    transient = True


class ValidationError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


class ConflictError(ApiError):
    pass


class ServerError(ApiError):
    pass


class MalformedResponseError(ApiError):
    """A 2xx response whose body is not the JSON we expected."""


_BY_STATUS = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
}


def error_for_status(status_code: int, message: str) -> ApiError:
    if status_code >= 500:
        return ServerError(message, status_code)
    return _BY_STATUS.get(status_code, ApiError)(message, status_code)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and exc.transient
