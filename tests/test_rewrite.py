"""Tests for path-based body rewriting."""

from __future__ import annotations

import json

import pytest

from swproxy.core.config import DEFAULT_ROUTES, RouteRule
from swproxy.core.types import ChatRequestBody
from swproxy.proxy.errors import BodyEncodeError, InvalidBodyError, UnknownEndpointError
from swproxy.proxy.rewrite import encode_body, match_route, parse_body, rewrite_body

MESSAGES = [{"role": "user", "content": "hi"}]


def _rewrite(path: str, body: dict | bytes, **kwargs) -> dict:
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    return json.loads(rewrite_body(path, raw, DEFAULT_ROUTES, **kwargs))


class TestMatchRoute:
    def test_anthropic_prefix(self):
        assert match_route("/anthropic/v1/messages", DEFAULT_ROUTES).model == "sw-claude-3-5-sonnet"

    def test_openai_prefix(self):
        assert match_route("/v1/chat/completions", DEFAULT_ROUTES).model == "sw-gpt-4o"

    def test_prefix_match_allows_suffix(self):
        assert match_route("/v1/chat/completions/extra", DEFAULT_ROUTES).model == "sw-gpt-4o"

    @pytest.mark.parametrize("path", ["/v1/completions", "/anthropic/v1/complete", "/"])
    def test_unknown(self, path):
        with pytest.raises(UnknownEndpointError):
            match_route(path, DEFAULT_ROUTES)

    def test_first_rule_wins(self):
        routes = (RouteRule("/v1/", "first"), RouteRule("/v1/chat", "second"))
        assert match_route("/v1/chat/completions", routes).model == "first"


class TestRewriteBody:
    def test_openai_sets_model_keeps_max_tokens(self):
        out = _rewrite("/v1/chat/completions", {
            "model": "gpt-4o", "messages": MESSAGES, "max_tokens": 77,
        })
        assert out["model"] == "sw-gpt-4o"
        assert out["max_tokens"] == 77
        assert out["messages"] == MESSAGES

    def test_anthropic_sets_model_and_budget(self):
        out = _rewrite("/anthropic/v1/messages", {
            "model": "claude", "messages": MESSAGES, "max_tokens": 100000,
        })
        assert out["model"] == "sw-claude-3-5-sonnet"
        assert out["max_tokens"] == 2048

    def test_stream_forced(self):
        out = _rewrite("/v1/chat/completions", {"messages": MESSAGES, "stream": False})
        assert out["stream"] is True

    def test_stream_not_forced_when_disabled(self):
        out = _rewrite(
            "/v1/chat/completions", {"messages": MESSAGES, "stream": False}, force_stream=False,
        )
        assert "stream" not in out

    def test_caller_stream_kept_when_not_forced(self):
        out = _rewrite(
            "/v1/chat/completions", {"messages": MESSAGES, "stream": True}, force_stream=False,
        )
        assert out["stream"] is True

    def test_unknown_fields_preserved(self):
        out = _rewrite("/v1/chat/completions", {
            "messages": MESSAGES, "temperature": 0.2, "tools": [{"type": "function"}],
        })
        assert out["temperature"] == 0.2
        assert out["tools"] == [{"type": "function"}]

    def test_system_string_and_blocks(self):
        out = _rewrite("/anthropic/v1/messages", {"messages": MESSAGES, "system": "be brief"})
        assert out["system"] == "be brief"
        blocks = [{"type": "text", "text": "be brief"}]
        out = _rewrite("/anthropic/v1/messages", {"messages": MESSAGES, "system": blocks})
        assert out["system"] == blocks

    def test_empty_fields_omitted(self):
        out = _rewrite("/v1/chat/completions", {"messages": MESSAGES, "system": "", "max_tokens": 0})
        assert "system" not in out
        assert "max_tokens" not in out

    @pytest.mark.parametrize("field", ["model", "stream", "max_tokens", "system"])
    def test_null_field_treated_as_empty(self, field):
        out = _rewrite(
            "/v1/chat/completions", {"messages": MESSAGES, field: None}, force_stream=False,
        )
        assert out["model"] == "sw-gpt-4o"
        assert out["messages"] == MESSAGES
        if field != "model":
            assert field not in out

    def test_missing_messages_serialized_as_null(self):
        out = _rewrite("/v1/chat/completions", {"model": "x"})
        assert out["messages"] is None

    def test_non_ascii_kept(self):
        raw = rewrite_body(
            "/v1/chat/completions",
            json.dumps({"messages": [{"role": "user", "content": "héllo"}]}).encode(),
            DEFAULT_ROUTES,
        )
        assert "héllo".encode() in raw


class TestRewriteErrors:
    @pytest.mark.parametrize("raw", [b"", b"{", b"not json", b"[]", b'"text"'])
    def test_malformed(self, raw):
        with pytest.raises(InvalidBodyError):
            rewrite_body("/v1/chat/completions", raw, DEFAULT_ROUTES)

    @pytest.mark.parametrize("body", [
        {"messages": MESSAGES, "max_tokens": "10"},
        {"messages": MESSAGES, "stream": "yes"},
        {"messages": MESSAGES, "model": 4},
        {"messages": "hello"},
        {"messages": MESSAGES, "system": 1},
    ])
    def test_schema_mismatch(self, body):
        with pytest.raises(InvalidBodyError):
            _rewrite("/v1/chat/completions", body)

    def test_malformed_reported_before_unknown_path(self):
        with pytest.raises(InvalidBodyError):
            rewrite_body("/v1/embeddings", b"{", DEFAULT_ROUTES)

    def test_unknown_path(self):
        with pytest.raises(UnknownEndpointError):
            _rewrite("/v1/embeddings", {"messages": MESSAGES})

    def test_encode_failure(self, monkeypatch):
        body = parse_body(b'{"messages": []}')
        monkeypatch.setattr(
            ChatRequestBody, "to_upstream_dict", lambda self: {"bad": object()},
        )
        with pytest.raises(BodyEncodeError):
            encode_body(body)


class TestErrorKinds:
    @pytest.mark.parametrize("exc,status,message", [
        (InvalidBodyError, 400, "Invalid JSON in request body"),
        (UnknownEndpointError, 400, "Unknown endpoint"),
        (BodyEncodeError, 500, "Failed to modify request body"),
    ])
    def test_status_and_message(self, exc, status, message):
        err = exc("detail")
        assert err.status_code == status
        assert err.message == message
        assert err.detail == "detail"
