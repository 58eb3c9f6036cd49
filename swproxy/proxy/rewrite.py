"""Path-based rewriting of chat-completion request bodies."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from pydantic import ValidationError

from swproxy.core.config import RouteRule
from swproxy.core.types import ChatRequestBody

from .errors import BodyEncodeError, InvalidBodyError, UnknownEndpointError

logger = logging.getLogger(__name__)


def match_route(path: str, routes: Sequence[RouteRule]) -> RouteRule:
    """Return the first rule whose prefix matches *path*."""
    for rule in routes:
        if path.startswith(rule.prefix):
            return rule
    raise UnknownEndpointError(f"no route for {path}")


def parse_body(raw: bytes) -> ChatRequestBody:
    """Parse *raw* into a :class:`ChatRequestBody`.

    Raises :class:`InvalidBodyError` for malformed JSON as well as for
    well-formed JSON that does not fit the body schema.
    """
    try:
        return ChatRequestBody.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidBodyError(str(e)) from e


def apply_route(body: ChatRequestBody, rule: RouteRule, *, force_stream: bool) -> None:
    """Overwrite routed fields on *body* in place."""
    body.model = rule.model
    if rule.max_tokens is not None:
        body.max_tokens = rule.max_tokens
    if force_stream and not body.stream:
        body.stream = True


def encode_body(body: ChatRequestBody) -> bytes:
    try:
        return json.dumps(
            body.to_upstream_dict(), ensure_ascii=False, separators=(",", ":"),
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise BodyEncodeError(str(e)) from e


def rewrite_body(
    path: str,
    raw: bytes,
    routes: Sequence[RouteRule],
    *,
    force_stream: bool = True,
) -> bytes:
    """Parse, rewrite and re-serialize a request body for *path*.

    The body is parsed before the route is resolved, so a malformed body is
    reported as such even on an unknown path.
    """
    body = parse_body(raw)
    rule = match_route(path, routes)
    apply_route(body, rule, force_stream=force_stream)
    logger.debug("Rewrote body for %s: model=%s max_tokens=%s", path, body.model, body.max_tokens)
    return encode_body(body)
