"""HTTP request, response and command models."""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Optional

from cloud_bulk_io.http.payloads import Payload

if TYPE_CHECKING:
    from cloud_bulk_io.http.base import HttpRequestFilter

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})
NON_PAYLOAD_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "DELETE", "TRACE", "CONNECT"})


def _first(headers: dict[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


@dataclass(frozen=True)
class HttpRequest:
    """Immutable description of one HTTP request.

    Filters travel with the request and are applied, in order, by the
    executor right before the request is sent.
    """

    method: str
    endpoint: str
    headers: dict[str, str] = field(default_factory=dict)
    payload: Optional[Payload] = None
    filters: tuple["HttpRequestFilter", ...] = ()

    def first_header(self, name: str) -> Optional[str]:
        return _first(self.headers, name)

    def with_header(self, name: str, value: str) -> "HttpRequest":
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        headers[name] = value
        return replace(self, headers=headers)

    def without_header(self, name: str) -> "HttpRequest":
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        return replace(self, headers=headers)

    def with_endpoint(self, endpoint: str) -> "HttpRequest":
        return replace(self, endpoint=endpoint)

    def with_payload(self, payload: Optional[Payload]) -> "HttpRequest":
        return replace(self, payload=payload)

    @property
    def is_chunked(self) -> bool:
        encoding = self.first_header("Transfer-Encoding")
        return encoding is not None and encoding.lower() == "chunked"

    @property
    def request_line(self) -> str:
        return f"{self.method} {self.endpoint} HTTP/1.1"


@dataclass
class HttpResponse:
    """Status, headers and an optional streamed body."""

    status_code: int
    message: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    payload: Optional[Payload] = None

    def first_header(self, name: str) -> Optional[str]:
        return _first(self.headers, name)

    @property
    def status_line(self) -> str:
        return f"HTTP/1.1 {self.status_code} {self.message}".rstrip()


class HttpCommand:
    """Mutable execution state of one logical HTTP operation.

    Retry handlers may replace the current request (for example to follow
    a redirect) and count failures on the command; an error handler
    records the terminal exception on it.
    """

    def __init__(self, request: HttpRequest) -> None:
        self.current_request = request
        self.failure_count = 0
        self.redirect_count = 0
        self.exception: Optional[Exception] = None

    def increment_failure_count(self) -> int:
        self.failure_count += 1
        return self.failure_count

    def increment_redirect_count(self) -> int:
        self.redirect_count += 1
        return self.redirect_count

    def is_replayable(self) -> bool:
        payload = self.current_request.payload
        return payload is None or payload.is_repeatable

    @property
    def is_idempotent(self) -> bool:
        return self.current_request.method.upper() in IDEMPOTENT_METHODS

    def __repr__(self) -> str:
        return (
            f"HttpCommand(request={self.current_request.request_line!r}, "
            f"failures={self.failure_count})"
        )
