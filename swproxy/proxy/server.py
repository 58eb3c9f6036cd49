"""Rewrite-and-forward reverse proxy for chat-completion APIs.

Accepts requests under ``/v1/`` and ``/anthropic/``, rewrites the model
(and for Anthropic the max-token budget) by path prefix, forces streaming,
stamps the identity headers and forwards the request to the configured
upstream host on the same path.

Usage::

    HOST=api.example.com X_ID=... X_SIGNATURE=... USER_AGENT=... X_LICENSE=... \
        uvicorn --factory swproxy.proxy.server:create_app --port 8443

or ``swproxy serve`` (see :mod:`swproxy.cli`).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from swproxy.core.config import ProxyConfig, get_proxy_config

from .errors import BodyReadError, ProxyError, UpstreamError
from .headers import build_upstream_headers, response_headers
from .rewrite import rewrite_body

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]


class UpstreamClient:
    """Lazily-created :class:`httpx.AsyncClient` shared by one app."""

    def __init__(
        self,
        cfg: ProxyConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def get(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._cfg.upstream_timeout_s),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _upstream_url(cfg: ProxyConfig, request: Request) -> str:
    url = f"{cfg.upstream_origin}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


async def _relay(upstream_response: httpx.Response, cfg: ProxyConfig) -> AsyncIterator[bytes]:
    """Yield raw upstream bytes; a mid-stream failure ends the stream.

    The upstream response is closed however iteration ends, including when
    the caller disconnects and the background task never runs.
    """
    try:
        async for chunk in upstream_response.aiter_raw():
            if cfg.log_bodies:
                logger.info("Outgoing response chunk: %s", chunk.decode("utf-8", errors="replace"))
            yield chunk
    except httpx.HTTPError as e:
        logger.error("Upstream stream interrupted for %s: %s", upstream_response.url, e)
    finally:
        await upstream_response.aclose()


async def forward(
    request: Request, cfg: ProxyConfig, upstream: UpstreamClient,
) -> Response:
    """Rewrite the inbound request and relay the upstream response."""
    path = request.url.path
    logger.info("Incoming request: %s %s", request.method, path)

    try:
        raw = await request.body()
    except ClientDisconnect as e:
        raise BodyReadError(str(e)) from e

    if cfg.log_bodies:
        logger.info("Incoming request body: %s", raw.decode("utf-8", errors="replace"))

    body = rewrite_body(path, raw, cfg.routes, force_stream=cfg.force_stream)

    if cfg.log_bodies:
        logger.info("Outgoing request body: %s", body.decode("utf-8", errors="replace"))

    client_host = request.client.host if request.client else None
    headers = build_upstream_headers(
        request.headers.items(), cfg, content_length=len(body), client_host=client_host,
    )
    url = _upstream_url(cfg, request)
    logger.info("Forwarding request to target URL: %s", url)

    client = upstream.get()
    upstream_request = client.build_request(request.method, url, headers=headers, content=body)
    try:
        upstream_response = await client.send(upstream_request, stream=True)
    except httpx.HTTPError as e:
        logger.error("Upstream request to %s failed: %s", url, e)
        raise UpstreamError(str(e)) from e

    logger.info("Upstream responded %d for %s", upstream_response.status_code, path)
    relayed = response_headers(upstream_response.headers.multi_items())

    if cfg.streaming:
        response: Response = StreamingResponse(
            _relay(upstream_response, cfg),
            status_code=upstream_response.status_code,
            background=BackgroundTask(upstream_response.aclose),
        )
    else:
        try:
            content = b"".join([chunk async for chunk in upstream_response.aiter_raw()])
        except httpx.HTTPError as e:
            logger.error("Failed to read response body from %s: %s", url, e)
            raise UpstreamError(str(e)) from e
        finally:
            await upstream_response.aclose()
        if cfg.log_bodies:
            logger.info("Outgoing response body: %s", content.decode("utf-8", errors="replace"))
        response = Response(content=content, status_code=upstream_response.status_code)

    for name, value in relayed:
        response.headers.append(name, value)
    return response


async def _proxy_error_handler(request: Request, exc: ProxyError) -> Response:
    if exc.status_code >= 500:
        logger.error("%s %s -> %d %s (%s)", request.method, request.url.path,
                     exc.status_code, exc.message, exc.detail)
    else:
        logger.warning("%s %s -> %d %s (%s)", request.method, request.url.path,
                       exc.status_code, exc.message, exc.detail)
    return PlainTextResponse(f"{exc.message}\n", status_code=exc.status_code)


def create_app(
    cfg: ProxyConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the proxy app.

    Args:
        cfg: Proxy config; defaults to :func:`get_proxy_config`.
        transport: Optional httpx transport for upstream calls (tests pass
            ``httpx.MockTransport``).
    """
    if cfg is None:
        cfg = get_proxy_config()
    upstream = UpstreamClient(cfg, transport=transport)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await upstream.aclose()

    app = FastAPI(title="swproxy", lifespan=lifespan)
    app.state.proxy_config = cfg
    app.state.upstream = upstream
    app.add_exception_handler(ProxyError, _proxy_error_handler)  # type: ignore[arg-type]

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.api_route("/v1/{path:path}", methods=PROXY_METHODS)
    async def openai_route(request: Request, path: str) -> Response:
        return await forward(request, cfg, upstream)

    @app.api_route("/anthropic/{path:path}", methods=PROXY_METHODS)
    async def anthropic_route(request: Request, path: str) -> Response:
        return await forward(request, cfg, upstream)

    return app
