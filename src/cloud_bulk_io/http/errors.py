"""Exceptions raised by request execution."""

from typing import Optional

from cloud_bulk_io.http.messages import HttpCommand, HttpResponse


class HttpError(Exception):
    """Base exception for HTTP operations."""

    pass


class HttpResponseError(HttpError):
    """A command failed; carries the command and the response, if any."""

    def __init__(
        self,
        message: str,
        command: Optional[HttpCommand] = None,
        response: Optional[HttpResponse] = None,
        content: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.response = response
        self.content = content

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None


class AuthorizationError(HttpResponseError):
    """Request was not authenticated or not permitted."""

    pass


class ResourceNotFoundError(HttpResponseError):
    """Resource does not exist."""

    pass


class IllegalStateError(HttpResponseError):
    """Resource is in a state that conflicts with the request."""

    pass


class RateLimitError(HttpResponseError):
    """Rate limit exceeded."""

    pass


class RequestValidationError(HttpError, ValueError):
    """A request is malformed and must not be sent."""

    pass
