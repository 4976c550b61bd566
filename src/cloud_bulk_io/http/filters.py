"""Stock request filters."""

import base64
from email.utils import formatdate
from typing import Callable, Optional

from pydantic import SecretStr

from cloud_bulk_io.http.base import HttpRequestFilter
from cloud_bulk_io.http.messages import HttpRequest


class BasicAuthentication(HttpRequestFilter):
    """Adds an HTTP Basic ``Authorization`` header."""

    def __init__(self, user: str, password: SecretStr) -> None:
        token = f"{user}:{password.get_secret_value()}".encode("utf-8")
        self._header = "Basic " + base64.b64encode(token).decode("ascii")

    def filter(self, request: HttpRequest) -> HttpRequest:
        return request.with_header("Authorization", self._header)


class AddDefaultHeaders(HttpRequestFilter):
    """Sets headers the request does not already carry.

    A ``Date`` header is stamped on every attempt so a retried request is
    not rejected as stale.
    """

    def __init__(
        self,
        headers: Optional[dict[str, str]] = None,
        stamp_date: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.headers = dict(headers or {})
        self.stamp_date = stamp_date
        self.clock = clock

    def filter(self, request: HttpRequest) -> HttpRequest:
        for name, value in self.headers.items():
            if request.first_header(name) is None:
                request = request.with_header(name, value)
        if self.stamp_date:
            now = self.clock() if self.clock is not None else None
            request = request.with_header("Date", formatdate(now, usegmt=True))
        return request


class StripExpectHeader(HttpRequestFilter):
    """Removes ``Expect: 100-continue``, which some servers mishandle."""

    def filter(self, request: HttpRequest) -> HttpRequest:
        return request.without_header("Expect")
