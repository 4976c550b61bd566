"""Abstract collaborators of the request executor."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from cloud_bulk_io.http.messages import HttpCommand, HttpRequest, HttpResponse


class HttpRequestFilter(ABC):
    """Transforms a request before it is sent (signing, dating, ...)."""

    @abstractmethod
    def filter(self, request: HttpRequest) -> HttpRequest:
        """Return the request to send in place of the given one.

        Args:
            request: Request produced by the previous filter.

        Returns:
            Transformed request.

        Raises:
            HttpError: If the request cannot be prepared.
        """
        pass


class RetryHandler(ABC):
    """Decides whether a command that got a response >= 300 is retried."""

    @abstractmethod
    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        """Decide whether to send the command again.

        May sleep before returning and may replace the command's current
        request. Must not close the response payload.

        Args:
            command: Command being executed.
            response: Response received for the current request.

        Returns:
            True if the command should be sent again.
        """
        pass


class IOExceptionRetryHandler(ABC):
    """Decides whether a command that hit an I/O error is retried."""

    @abstractmethod
    def should_retry_after_error(self, command: HttpCommand, error: OSError) -> bool:
        """Decide whether to send the command again after an I/O error.

        Only consulted for idempotent methods.

        Args:
            command: Command being executed.
            error: First OSError found in the failure's cause chain.

        Returns:
            True if the command should be sent again.
        """
        pass


class ErrorHandler(ABC):
    """Translates a final error response into an exception on the command."""

    @abstractmethod
    def handle_error(self, command: HttpCommand, response: HttpResponse) -> None:
        """Record a terminal exception on the command.

        Args:
            command: Command that failed.
            response: Response that will not be retried.
        """
        pass


class Transport(ABC):
    """Moves requests over the wire."""

    @abstractmethod
    def convert(self, request: HttpRequest) -> Any:
        """Build the native request for a filtered request.

        Args:
            request: Request that passed the filter chain.

        Returns:
            Native request handle passed to send() and cleanup().

        Raises:
            OSError: If the request cannot be prepared for sending.
        """
        pass

    @abstractmethod
    def send(self, native_request: Any) -> HttpResponse:
        """Perform the wire call.

        Args:
            native_request: Handle returned by convert().

        Returns:
            Response whose payload, if any, owns the connection.

        Raises:
            OSError: On connection or protocol failures.
        """
        pass

    @abstractmethod
    def cleanup(self, native_request: Optional[Any]) -> None:
        """Release resources held by a native request.

        Called after every attempt; None means the response took
        ownership of the connection or nothing was created.
        """
        pass
