"""Request lifecycle: filter, send, classify, retry or fail, clean up."""

from typing import Any, Optional

from cloud_bulk_io.config import HttpSettings
from cloud_bulk_io.http.base import (
    ErrorHandler,
    IOExceptionRetryHandler,
    RetryHandler,
    Transport,
)
from cloud_bulk_io.http.errors import HttpResponseError, RequestValidationError
from cloud_bulk_io.http.handlers import (
    BackoffLimitedRetryHandler,
    DelegatingRetryHandler,
    RedirectionRetryHandler,
    StatusCodeErrorHandler,
)
from cloud_bulk_io.http.messages import HttpCommand, HttpRequest, HttpResponse
from cloud_bulk_io.http.payloads import release_payload
from cloud_bulk_io.http.transport import RequestsTransport
from cloud_bulk_io.http.wire import HttpWire
from cloud_bulk_io.utils.logging import get_logger

logger = get_logger(__name__)


def first_io_error(error: BaseException) -> Optional[OSError]:
    """Find the first OSError in an exception's cause chain.

    Args:
        error: Exception raised during an attempt.

    Returns:
        The error itself or the closest OSError it was raised from, or
        None if the chain holds no I/O failure.
    """
    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        if isinstance(current, OSError):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def check_content_length_or_chunked(request: HttpRequest) -> None:
    """Reject a request whose payload has no declared framing.

    Raises:
        RequestValidationError: If the payload has neither a content
            length nor chunked transfer encoding.
    """
    if request.payload is None:
        return
    if request.payload.content_length is None and not request.is_chunked:
        raise RequestValidationError(
            "After filtering, the request has neither chunked encoding nor "
            f"content length: {request.request_line}"
        )


class HttpCommandExecutor:
    """Executes commands to completion over a transport.

    Responses below 300 are returned. Responses at or above 300 are
    offered to the retry handler; refused ones go to the error handler,
    which records the terminal exception on the command. I/O errors are
    retried only for idempotent methods and only if the I/O retry handler
    agrees. The transport's native request is cleaned up after every
    attempt.
    """

    def __init__(
        self,
        transport: Transport,
        retry_handler: Optional[RetryHandler] = None,
        io_retry_handler: Optional[IOExceptionRetryHandler] = None,
        error_handler: Optional[ErrorHandler] = None,
        wire: Optional[HttpWire] = None,
    ) -> None:
        """Initialize executor.

        Args:
            transport: Transport performing the wire calls.
            retry_handler: Consulted for responses >= 300.
            io_retry_handler: Consulted for I/O errors on idempotent methods.
            error_handler: Translates responses that will not be retried.
            wire: Header and body logging.
        """
        self.transport = transport
        self.retry_handler = retry_handler or DelegatingRetryHandler()
        self.io_retry_handler = io_retry_handler or BackoffLimitedRetryHandler()
        self.error_handler = error_handler or StatusCodeErrorHandler()
        self.wire = wire or HttpWire()

    def invoke(self, command: HttpCommand) -> HttpResponse:
        """Execute a command, retrying as the handlers allow.

        Args:
            command: Command to execute. Its current request may be
                replaced by retry handlers.

        Returns:
            The last response received.

        Raises:
            HttpResponseError: If the command failed terminally.
            RequestValidationError: If a filtered request has a payload but
                neither a content length nor chunked encoding.
        """
        response: Optional[HttpResponse] = None
        while True:
            request = command.current_request
            native_request: Any = None
            received: Optional[HttpResponse] = None
            try:
                for request_filter in request.filters:
                    request = request_filter.filter(request)
                check_content_length_or_chunked(request)

                logger.debug("request_sent", id=id(command), request=request.request_line)
                request = self.wire.output(request)
                native_request = self.transport.convert(request)
                response = self.transport.send(native_request)
                # the response payload owns the connection from here on
                native_request = None
                received = response
                logger.debug("response_received", id=id(command), status=response.status_line)
                response = received = self.wire.input(response)

                if response.status_code >= 300 and self.should_continue(command, response):
                    continue
                break
            except RequestValidationError as e:
                command.exception = e
                raise
            except Exception as e:
                if received is not None:
                    release_payload(received.payload)
                io_error = first_io_error(e)
                if (
                    io_error is not None
                    and command.is_idempotent
                    and self.io_retry_handler.should_retry_after_error(command, io_error)
                ):
                    logger.debug(
                        "retrying_after_io_error",
                        id=id(command),
                        request=command.current_request.request_line,
                        error=str(io_error),
                    )
                    continue
                error = HttpResponseError(
                    f"{e} connecting to {command.current_request.request_line}",
                    command,
                )
                error.__cause__ = e
                command.exception = error
                break
            finally:
                self.transport.cleanup(native_request)

        if command.exception is not None:
            logger.debug(
                "command_failed",
                id=id(command),
                request=command.current_request.request_line,
                error=str(command.exception),
            )
            raise command.exception
        return response

    def should_continue(self, command: HttpCommand, response: HttpResponse) -> bool:
        """Retry or fail a command after a response >= 300.

        The response payload is released either way, so a retry never
        leaks the previous connection.

        Returns:
            True if the command should be sent again.
        """
        retry = self.retry_handler.should_retry_request(command, response)
        if not retry:
            self.error_handler.handle_error(command, response)
        release_payload(response.payload)
        return retry

    def execute(self, request: HttpRequest) -> HttpResponse:
        """Convenience wrapper running a fresh command for one request."""
        return self.invoke(HttpCommand(request))


def executor_from_settings(settings: Optional[HttpSettings] = None) -> HttpCommandExecutor:
    """Build an executor over a requests transport, wired from settings."""
    settings = settings or HttpSettings()
    backoff = BackoffLimitedRetryHandler(settings.max_retries, settings.retry_delay_start)
    return HttpCommandExecutor(
        RequestsTransport(settings),
        retry_handler=DelegatingRetryHandler(
            redirection_handler=RedirectionRetryHandler(settings.max_redirects),
            server_error_handler=backoff,
        ),
        io_retry_handler=backoff,
        wire=HttpWire(settings.wire_log),
    )
