"""Outbound and relayed header construction."""

from __future__ import annotations

from collections.abc import Iterable

import httpx

from swproxy.core.config import ProxyConfig

# Headers that describe a single connection and must not be relayed.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-connection",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

ACCEPT_ENCODING = "br;q=1.0, gzip;q=0.9, deflate;q=0.8"
ACCEPT_LANGUAGE = "en-US;q=1.0, en-IN;q=0.9"


def identity_headers(cfg: ProxyConfig) -> dict[str, str]:
    """Return the fixed header set applied to every upstream request."""
    return {
        "Host": cfg.upstream_host,
        "Content-Type": "application/json",
        "X-ID": cfg.x_id,
        "X-Signature": cfg.x_signature,
        "Accept": "*/*",
        "Connection": "keep-alive",
        "User-Agent": cfg.user_agent,
        "X-License": cfg.x_license,
        "Accept-Encoding": ACCEPT_ENCODING,
        "Accept-Language": ACCEPT_LANGUAGE,
    }


def _connection_tokens(items: list[tuple[str, str]]) -> set[str]:
    """Header names listed in ``Connection``; those are hop-by-hop too."""
    tokens: set[str] = set()
    for name, value in items:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def _strip(items: list[tuple[str, str]], extra: Iterable[str] = ()) -> list[tuple[str, str]]:
    drop = HOP_BY_HOP_HEADERS | _connection_tokens(items) | {h.lower() for h in extra}
    return [(name, value) for name, value in items if name.lower() not in drop]


def build_upstream_headers(
    incoming: Iterable[tuple[str, str]],
    cfg: ProxyConfig,
    *,
    content_length: int,
    client_host: str | None = None,
) -> httpx.Headers:
    """Merge caller headers with the identity set for the upstream request.

    Caller values for any identity header are replaced, not appended.
    """
    headers = httpx.Headers(_strip(list(incoming), extra=("host", "content-length")))
    for name, value in identity_headers(cfg).items():
        headers[name] = value
    headers["Content-Length"] = str(content_length)

    if client_host:
        prior = headers.get_list("x-forwarded-for")
        headers["X-Forwarded-For"] = ", ".join([*prior, client_host])
    return headers


def response_headers(upstream: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Return upstream response headers safe to relay to the caller.

    ``Content-Length`` is dropped; the relaying response sets its own.
    """
    return _strip(list(upstream), extra=("content-length",))
