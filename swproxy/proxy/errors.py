"""Local failure kinds surfaced to the caller as HTTP errors."""

from __future__ import annotations


class ProxyError(Exception):
    """Base class for failures answered directly by the proxy."""

    status_code: int = 500
    message: str = "Internal Server Error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail


class BodyReadError(ProxyError):
    status_code = 500
    message = "Failed to read request body"


class InvalidBodyError(ProxyError):
    status_code = 400
    message = "Invalid JSON in request body"


class BodyEncodeError(ProxyError):
    status_code = 500
    message = "Failed to modify request body"


class UnknownEndpointError(ProxyError):
    status_code = 400
    message = "Unknown endpoint"


class UpstreamError(ProxyError):
    """Upstream could not be reached or its response could not be read."""

    status_code = 502
    message = "Bad Gateway"
