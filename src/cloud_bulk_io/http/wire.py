"""Opt-in logging of request and response bodies."""

from cloud_bulk_io.http.messages import HttpRequest, HttpResponse
from cloud_bulk_io.http.payloads import StreamPayload
from cloud_bulk_io.utils.logging import get_logger, redact_headers

logger = get_logger("cloud_bulk_io.wire")
header_logger = get_logger("cloud_bulk_io.headers")

MAX_LOGGED_BYTES = 16 * 1024


class HttpWire:
    """Logs what goes over the wire.

    Headers are always logged at debug level with credentials redacted.
    Bodies are only logged when ``enabled``; a streamed body is buffered
    into memory first so it can still be sent or read afterwards.
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled

    def output(self, request: HttpRequest) -> HttpRequest:
        header_logger.debug(
            "request_headers",
            request=request.request_line,
            headers=redact_headers(request.headers),
        )
        if not self.enabled or request.payload is None:
            return request
        payload = request.payload
        if isinstance(payload, StreamPayload) and not request.is_chunked:
            payload = payload.buffer()
            request = request.with_payload(payload)
        if payload.is_repeatable:
            logger.debug(
                "wire_out",
                request=request.request_line,
                body=self._preview(payload.open_stream().read(MAX_LOGGED_BYTES)),
            )
        return request

    def input(self, response: HttpResponse) -> HttpResponse:
        header_logger.debug(
            "response_headers",
            status=response.status_line,
            headers=redact_headers(response.headers),
        )
        if not self.enabled or response.payload is None:
            return response
        if isinstance(response.payload, StreamPayload):
            response.payload = response.payload.buffer()
        logger.debug(
            "wire_in",
            status=response.status_line,
            body=self._preview(response.payload.open_stream().read(MAX_LOGGED_BYTES)),
        )
        return response

    @staticmethod
    def _preview(data: bytes) -> str:
        return data.decode("utf-8", errors="replace")
