"""Retry and error handlers consulted by the executor."""

import time
from dataclasses import replace
from typing import Optional
from urllib.parse import urljoin

from cloud_bulk_io.http.base import ErrorHandler, IOExceptionRetryHandler, RetryHandler
from cloud_bulk_io.http.errors import (
    AuthorizationError,
    HttpResponseError,
    IllegalStateError,
    RateLimitError,
    ResourceNotFoundError,
)
from cloud_bulk_io.http.messages import HttpCommand, HttpResponse
from cloud_bulk_io.http.payloads import StreamPayload
from cloud_bulk_io.utils.logging import get_logger
from cloud_bulk_io.utils.validators import validate_endpoint

logger = get_logger(__name__)

REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})
MAX_ERROR_CONTENT = 4096


class BackoffLimitedRetryHandler(RetryHandler, IOExceptionRetryHandler):
    """Retries with exponential backoff until a failure count is reached.

    Each consultation counts as one failure on the command. A command is
    retried while its failure count is at most ``retry_count_limit`` and
    its request can be sent again; before answering yes the handler
    sleeps ``min(delay_start * failures ** 2, delay_start * 10)``.
    """

    def __init__(self, retry_count_limit: int = 5, delay_start: float = 0.05) -> None:
        """Initialize handler.

        Args:
            retry_count_limit: Maximum failures before giving up.
            delay_start: Base backoff period in seconds.
        """
        self.retry_count_limit = retry_count_limit
        self.delay_start = delay_start

    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        return self._should_retry(command, f"server error {response.status_code}")

    def should_retry_after_error(self, command: HttpCommand, error: OSError) -> bool:
        return self._should_retry(command, f"io error {error!r}")

    def _should_retry(self, command: HttpCommand, reason: str) -> bool:
        failures = command.increment_failure_count()
        if not command.is_replayable():
            logger.error(
                "retry_refused_not_replayable",
                request=command.current_request.request_line,
                reason=reason,
            )
            return False
        if failures > self.retry_count_limit:
            logger.warning(
                "retry_limit_exceeded",
                request=command.current_request.request_line,
                failures=failures,
                limit=self.retry_count_limit,
                reason=reason,
            )
            return False
        self.impose_backoff_exponential_delay(
            failures, f"{reason} on {command.current_request.request_line}"
        )
        return True

    def impose_backoff_exponential_delay(
        self,
        failure_count: int,
        description: str,
        period: Optional[float] = None,
        exponent: int = 2,
        max_attempts: Optional[int] = None,
    ) -> float:
        """Sleep for the backoff interval of the given attempt.

        Args:
            failure_count: Number of failures so far, starting at 1.
            description: What is being retried, for the log.
            period: Base period in seconds. Defaults to delay_start.
            exponent: Growth exponent.
            max_attempts: Attempt limit, for the log only.

        Returns:
            Seconds slept.
        """
        period = self.delay_start if period is None else period
        max_attempts = self.retry_count_limit if max_attempts is None else max_attempts
        delay = min(period * failure_count**exponent, period * 10)
        logger.debug(
            "backoff_delay",
            attempt=failure_count,
            max_attempts=max_attempts,
            delay=delay,
            description=description,
        )
        time.sleep(delay)
        return delay


class NeverRetryHandler(RetryHandler):
    """Refuses every retry."""

    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        return False


class RedirectionRetryHandler(RetryHandler):
    """Follows 3xx responses by rewriting the command's current request."""

    def __init__(self, max_redirects: int = 5) -> None:
        self.max_redirects = max_redirects

    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        location = response.first_header("Location")
        if response.status_code not in REDIRECT_CODES or not location:
            return False
        if command.redirect_count >= self.max_redirects:
            logger.warning(
                "redirect_limit_exceeded",
                request=command.current_request.request_line,
                limit=self.max_redirects,
            )
            return False
        if not command.is_replayable():
            return False

        request = command.current_request
        target = urljoin(request.endpoint, location)
        try:
            validate_endpoint(target)
        except ValueError as e:
            logger.warning("redirect_refused", location=location, error=str(e))
            return False
        if response.status_code == 303 and request.method != "HEAD":
            request = replace(
                request.without_header("Content-Length").without_header("Content-Type"),
                method="GET",
                endpoint=target,
                payload=None,
            )
        else:
            request = request.with_endpoint(target)

        command.increment_redirect_count()
        command.current_request = request
        logger.debug("following_redirect", status=response.status_code, location=target)
        return True


class DelegatingRetryHandler(RetryHandler):
    """Routes the retry decision by status class."""

    def __init__(
        self,
        redirection_handler: Optional[RetryHandler] = None,
        client_error_handler: Optional[RetryHandler] = None,
        server_error_handler: Optional[RetryHandler] = None,
    ) -> None:
        self.redirection_handler = redirection_handler or RedirectionRetryHandler()
        self.client_error_handler = client_error_handler or NeverRetryHandler()
        self.server_error_handler = server_error_handler or BackoffLimitedRetryHandler()

    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        status = response.status_code
        if 300 <= status < 400:
            return self.redirection_handler.should_retry_request(command, response)
        if status == 401:
            return False
        if 400 <= status < 500:
            return self.client_error_handler.should_retry_request(command, response)
        if status >= 500:
            return self.server_error_handler.should_retry_request(command, response)
        return False


class StatusCodeErrorHandler(ErrorHandler):
    """Maps error status codes to typed exceptions on the command."""

    def handle_error(self, command: HttpCommand, response: HttpResponse) -> None:
        content = self._read_content(response)
        request_line = command.current_request.request_line
        message = f"command: {request_line} failed with response: {response.status_line}"
        if content:
            message = f"{message}; content: [{content}]"

        status = response.status_code
        if status in (401, 403):
            error_type: type[HttpResponseError] = AuthorizationError
        elif status == 404:
            error_type = ResourceNotFoundError
        elif status in (409, 412):
            error_type = IllegalStateError
        elif status == 429:
            error_type = RateLimitError
        else:
            error_type = HttpResponseError

        command.exception = error_type(message, command, response, content)

    @staticmethod
    def _read_content(response: HttpResponse) -> Optional[str]:
        payload = response.payload
        if payload is None:
            return None
        if isinstance(payload, StreamPayload):
            payload = payload.buffer()
            response.payload = payload
        data = payload.open_stream().read(MAX_ERROR_CONTENT)
        return data.decode("utf-8", errors="replace") if data else None
