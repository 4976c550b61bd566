"""Unit tests for the command executor."""

import io
from typing import Any, Optional
from unittest.mock import Mock

import pytest

from cloud_bulk_io.config import HttpSettings
from cloud_bulk_io.http.base import HttpRequestFilter, Transport
from cloud_bulk_io.http.errors import (
    HttpResponseError,
    RequestValidationError,
    ResourceNotFoundError,
)
from cloud_bulk_io.http.executor import (
    HttpCommandExecutor,
    check_content_length_or_chunked,
    executor_from_settings,
    first_io_error,
)
from cloud_bulk_io.http.handlers import BackoffLimitedRetryHandler, DelegatingRetryHandler
from cloud_bulk_io.http.messages import HttpCommand, HttpRequest, HttpResponse
from cloud_bulk_io.http.payloads import BytesPayload, StreamPayload
from cloud_bulk_io.http.transport import RequestsTransport

ENDPOINT = "http://localhost/container/key"


class FakeTransport(Transport):
    """Replays canned responses or raises canned errors, recording calls."""

    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.sent: list[HttpRequest] = []
        self.cleaned: list[Any] = []

    def convert(self, request: HttpRequest) -> Any:
        return {"request": request}

    def send(self, native_request: Any) -> HttpResponse:
        self.sent.append(native_request["request"])
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def cleanup(self, native_request: Optional[Any]) -> None:
        self.cleaned.append(native_request)


def response(status: int, body: bytes = b"") -> HttpResponse:
    return HttpResponse(status, "", {}, StreamPayload(io.BytesIO(body)))


@pytest.fixture
def retry_handler() -> Mock:
    handler = Mock()
    handler.should_retry_request.return_value = False
    return handler


@pytest.fixture
def io_retry_handler() -> Mock:
    handler = Mock()
    handler.should_retry_after_error.return_value = False
    return handler


@pytest.fixture
def error_handler() -> Mock:
    return Mock()


def make_executor(
    transport: Transport, retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> HttpCommandExecutor:
    return HttpCommandExecutor(
        transport,
        retry_handler=retry_handler,
        io_retry_handler=io_retry_handler,
        error_handler=error_handler,
    )


def test_success_is_returned_without_retry(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that a 2xx response is returned as is."""
    ok = response(200, b"hello")
    transport = FakeTransport([ok])
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    result = executor.execute(HttpRequest("GET", ENDPOINT))

    assert result is ok
    assert result.payload.open_stream().read() == b"hello"
    retry_handler.should_retry_request.assert_not_called()
    error_handler.handle_error.assert_not_called()
    assert transport.cleaned == [None]


def test_refused_error_goes_to_error_handler_once(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that a refused retry runs the error handler and releases the payload."""
    failed = response(500, b"boom")
    transport = FakeTransport([failed])
    error = HttpResponseError("server failed")

    def set_exception(command: HttpCommand, response: HttpResponse) -> None:
        command.exception = error

    error_handler.handle_error.side_effect = set_exception
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    with pytest.raises(HttpResponseError) as exc_info:
        executor.execute(HttpRequest("GET", ENDPOINT))

    assert exc_info.value is error
    error_handler.handle_error.assert_called_once()
    assert failed.payload.released
    assert len(transport.sent) == 1


def test_retried_response_is_released_and_resent(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that an accepted retry sends the request again."""
    failed = response(503)
    ok = response(200)
    transport = FakeTransport([failed, ok])
    retry_handler.should_retry_request.side_effect = [True]
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    result = executor.execute(HttpRequest("GET", ENDPOINT))

    assert result is ok
    assert failed.payload.released
    assert not ok.payload.released
    assert len(transport.sent) == 2
    assert len(transport.cleaned) == 2
    error_handler.handle_error.assert_not_called()


def test_io_error_on_post_is_never_retried(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that non-idempotent methods fail on the first I/O error."""
    transport = FakeTransport([ConnectionResetError("reset")])
    io_retry_handler.should_retry_after_error.return_value = True
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)
    command = HttpCommand(HttpRequest("POST", ENDPOINT, payload=BytesPayload(b"x")))

    with pytest.raises(HttpResponseError) as exc_info:
        executor.invoke(command)

    io_retry_handler.should_retry_after_error.assert_not_called()
    assert isinstance(exc_info.value.__cause__, ConnectionResetError)
    assert command.exception is exc_info.value
    assert len(transport.sent) == 1


def test_io_error_on_get_retried_while_handler_agrees(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that idempotent requests are retried until the handler refuses."""
    transport = FakeTransport([OSError("a"), OSError("b"), OSError("c")])
    io_retry_handler.should_retry_after_error.side_effect = [True, True, False]
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    with pytest.raises(HttpResponseError, match="connecting to GET"):
        executor.execute(HttpRequest("GET", ENDPOINT))

    assert io_retry_handler.should_retry_after_error.call_count == 3
    assert len(transport.sent) == 3
    assert len(transport.cleaned) == 3


def test_io_error_then_success(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test recovery after a transient I/O error."""
    ok = response(200)
    transport = FakeTransport([TimeoutError("slow"), ok])
    io_retry_handler.should_retry_after_error.return_value = True
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    assert executor.execute(HttpRequest("DELETE", ENDPOINT)) is ok


def test_wrapped_io_error_is_found_in_cause_chain(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that an I/O error nested in another exception is retried."""
    try:
        try:
            raise ConnectionError("refused")
        except ConnectionError as e:
            raise RuntimeError("transport failed") from e
    except RuntimeError as e:
        wrapped = e
    transport = FakeTransport([wrapped, response(200)])
    io_retry_handler.should_retry_after_error.return_value = True
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    executor.execute(HttpRequest("HEAD", ENDPOINT))

    error = io_retry_handler.should_retry_after_error.call_args.args[1]
    assert isinstance(error, ConnectionError)


def test_non_io_error_is_terminal(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that errors without an I/O cause are not retried."""
    transport = FakeTransport([KeyError("bug")])
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    with pytest.raises(HttpResponseError) as exc_info:
        executor.execute(HttpRequest("GET", ENDPOINT))

    io_retry_handler.should_retry_after_error.assert_not_called()
    assert isinstance(exc_info.value.__cause__, KeyError)


@pytest.mark.parametrize("retried", [False, True])
def test_response_released_when_retry_handler_raises(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock, retried: bool
) -> None:
    """Test that a received response is released if handling it fails."""
    failed = response(503, b"busy")
    ok = response(200)
    transport = FakeTransport([failed, ok])
    retry_handler.should_retry_request.side_effect = OSError("handler failed")
    io_retry_handler.should_retry_after_error.return_value = retried
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    if retried:
        assert executor.execute(HttpRequest("GET", ENDPOINT)) is ok
    else:
        with pytest.raises(HttpResponseError):
            executor.execute(HttpRequest("GET", ENDPOINT))

    assert failed.payload.released
    assert not ok.payload.released


def test_response_released_when_wire_logging_raises(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that a failure reading the response for the wire log frees the connection."""
    received = response(200, b"hello")
    transport = FakeTransport([received])
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)
    executor.wire = Mock()
    executor.wire.output.side_effect = lambda request: request
    executor.wire.input.side_effect = ValueError("undecodable")

    with pytest.raises(HttpResponseError):
        executor.execute(HttpRequest("GET", ENDPOINT))

    assert received.payload.released


def test_cleanup_runs_when_conversion_fails(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that cleanup runs even when the request never reached the wire."""
    transport = FakeTransport([])
    transport.convert = Mock(side_effect=ValueError("bad url"))
    transport.cleanup = Mock()
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)

    with pytest.raises(HttpResponseError):
        executor.execute(HttpRequest("GET", ENDPOINT))

    transport.cleanup.assert_called_once_with(None)


def test_filters_applied_in_order_on_every_attempt(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that filters run in order before each attempt."""

    class Append(HttpRequestFilter):
        def __init__(self, value: str) -> None:
            self.value = value

        def filter(self, request: HttpRequest) -> HttpRequest:
            trail = request.first_header("X-Trail") or ""
            return request.with_header("X-Trail", trail + self.value)

    transport = FakeTransport([response(500), response(200)])
    retry_handler.should_retry_request.side_effect = [True]
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)
    request = HttpRequest("GET", ENDPOINT, filters=(Append("a"), Append("b")))

    executor.execute(request)

    assert [r.first_header("X-Trail") for r in transport.sent] == ["ab", "ab"]


def test_payload_without_length_is_rejected(
    retry_handler: Mock, io_retry_handler: Mock, error_handler: Mock
) -> None:
    """Test that a payload needs a length or chunked encoding."""
    transport = FakeTransport([response(200)])
    executor = make_executor(transport, retry_handler, io_retry_handler, error_handler)
    command = HttpCommand(
        HttpRequest("PUT", ENDPOINT, payload=StreamPayload(io.BytesIO(b"data")))
    )

    with pytest.raises(RequestValidationError):
        executor.invoke(command)

    assert transport.sent == []
    assert isinstance(command.exception, RequestValidationError)
    assert transport.cleaned == [None]


def test_chunked_payload_is_accepted() -> None:
    """Test that chunked encoding makes a length unnecessary."""
    request = HttpRequest(
        "PUT",
        ENDPOINT,
        headers={"Transfer-Encoding": "chunked"},
        payload=StreamPayload(io.BytesIO(b"data")),
    )

    check_content_length_or_chunked(request)


def test_default_handlers_map_not_found() -> None:
    """Test the default error handling end to end."""
    transport = FakeTransport([response(404, b"no such key")])
    executor = HttpCommandExecutor(transport)

    with pytest.raises(ResourceNotFoundError) as exc_info:
        executor.execute(HttpRequest("GET", ENDPOINT))

    assert exc_info.value.status_code == 404
    assert exc_info.value.content == "no such key"


def test_default_handlers_retry_server_errors() -> None:
    """Test that 5xx responses are retried with backoff by default."""
    transport = FakeTransport([response(500), response(502), response(200)])
    executor = HttpCommandExecutor(
        transport,
        retry_handler=DelegatingRetryHandler(
            server_error_handler=BackoffLimitedRetryHandler(delay_start=0.001)
        ),
    )
    command = HttpCommand(HttpRequest("GET", ENDPOINT))

    assert executor.invoke(command).status_code == 200
    assert command.failure_count == 2


def test_first_io_error() -> None:
    """Test cause chain traversal."""
    root = OSError("disk")
    try:
        try:
            raise root
        except OSError:
            raise ValueError("outer")
    except ValueError as e:
        assert first_io_error(e) is root

    assert first_io_error(ValueError("plain")) is None
    assert first_io_error(root) is root


def test_executor_from_settings() -> None:
    """Test wiring from settings."""
    settings = HttpSettings(max_retries=2, retry_delay_start=0.5, max_redirects=1, wire_log=True)

    executor = executor_from_settings(settings)

    assert isinstance(executor.transport, RequestsTransport)
    assert executor.io_retry_handler.retry_count_limit == 2
    assert executor.io_retry_handler.delay_start == 0.5
    assert executor.retry_handler.server_error_handler is executor.io_retry_handler
    assert executor.retry_handler.redirection_handler.max_redirects == 1
    assert executor.wire.enabled
