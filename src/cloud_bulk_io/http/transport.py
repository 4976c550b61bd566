"""Transport over a requests session."""

import platform
from dataclasses import dataclass
from typing import Optional

import requests

from cloud_bulk_io.config import HttpSettings
from cloud_bulk_io.http.base import Transport
from cloud_bulk_io.http.messages import NON_PAYLOAD_METHODS, HttpRequest, HttpResponse
from cloud_bulk_io.http.payloads import ContentMetadata, StreamPayload
from cloud_bulk_io.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_USER_AGENT = f"cloud-bulk-io/0.1.0 python/{platform.python_version()}"
CONTENT_HEADERS = frozenset({"content-length", "content-type", "content-md5"})


@dataclass
class Exchange:
    """Native request handle: the prepared request and, once sent, its response."""

    prepared: requests.PreparedRequest
    response: Optional[requests.Response] = None


class RequestsTransport(Transport):
    """Sends requests with a ``requests.Session``.

    Redirects are never followed here; they are a retry decision. Bodies
    are streamed in both directions.
    """

    def __init__(
        self,
        settings: Optional[HttpSettings] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize transport.

        Args:
            settings: Timeouts, TLS and user agent settings.
            session: Session to reuse. A new one is created if omitted.
        """
        self.settings = settings or HttpSettings()
        self.session = session or requests.Session()
        self.user_agent = self.settings.user_agent or DEFAULT_USER_AGENT

    def convert(self, request: HttpRequest) -> Exchange:
        headers = dict(request.headers)
        if not any(name.lower() == "user-agent" for name in headers):
            headers["User-Agent"] = self.user_agent

        data = None
        payload = request.payload
        if payload is not None:
            for name, value in payload.metadata.to_headers().items():
                headers.setdefault(name, value)
            if request.is_chunked:
                headers.pop("Content-Length", None)
                data = payload.iter_chunks()
            elif payload.content_length:
                data = payload.open_stream()
        if data is None and request.method.upper() not in NON_PAYLOAD_METHODS:
            headers["Content-Length"] = "0"

        prepared = self.session.prepare_request(
            requests.Request(request.method, request.endpoint, headers=headers, data=data)
        )
        if payload is not None and not request.is_chunked and payload.content_length:
            # requests falls back to chunked encoding for streams of unknown size
            prepared.headers.pop("Transfer-Encoding", None)
            prepared.headers["Content-Length"] = str(payload.content_length)
        return Exchange(prepared)

    def send(self, native_request: Exchange) -> HttpResponse:
        raw = self.session.send(
            native_request.prepared,
            stream=True,
            allow_redirects=False,
            timeout=(self.settings.connection_timeout, self.settings.socket_timeout),
            verify=not self.settings.trust_all_certs,
        )
        native_request.response = raw

        headers = dict(raw.headers)
        payload = None
        if raw.status_code != 204 and native_request.prepared.method != "HEAD":
            length = raw.headers.get("Content-Length")
            payload = StreamPayload(
                _ResponseStream(raw),
                ContentMetadata(
                    content_length=int(length) if length is not None else None,
                    content_type=raw.headers.get("Content-Type"),
                ),
            )
        else:
            raw.close()

        return HttpResponse(
            status_code=raw.status_code,
            message=raw.reason or "",
            headers={k: v for k, v in headers.items() if k.lower() not in CONTENT_HEADERS},
            payload=payload,
        )

    def cleanup(self, native_request: Optional[Exchange]) -> None:
        if native_request is not None and native_request.response is not None:
            native_request.response.close()

    def close(self) -> None:
        self.session.close()


class _ResponseStream:
    """File-like view of a streamed response body that closes the response."""

    def __init__(self, response: requests.Response) -> None:
        self._response = response
        self._raw = response.raw

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return self._raw.read(decode_content=True)
        return self._raw.read(size, decode_content=True)

    def close(self) -> None:
        self._response.close()
