"""Pydantic models for request bodies handled by the proxy."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

# Fields dropped from the serialized body when they hold their zero value.
_OMIT_WHEN_EMPTY = ("model", "stream", "max_tokens", "system")

_ZERO_VALUES: dict[str, Any] = {"model": "", "stream": False, "max_tokens": 0, "system": ""}


class ChatRequestBody(BaseModel):
    """Chat-completion body as seen in transit.

    Only the fields the proxy rewrites are typed. Any other top-level keys
    the caller sent are kept as extras and written back unchanged.
    """

    model_config = ConfigDict(extra="allow", strict=True)

    messages: list[dict[str, Any]] | None = None
    model: str = ""
    stream: bool = False
    max_tokens: int = 0
    system: str | list[dict[str, Any]] = ""

    @field_validator("model", "stream", "max_tokens", "system", mode="before")
    @classmethod
    def _null_is_zero(cls, value: Any, info: ValidationInfo) -> Any:
        """JSON ``null`` decodes to the field's zero value."""
        if value is None:
            return _ZERO_VALUES[info.field_name]
        return value

    def to_upstream_dict(self) -> dict[str, Any]:
        """Return the outbound payload, omitting empty typed fields."""
        payload = self.model_dump(mode="json")
        for key in _OMIT_WHEN_EMPTY:
            if not payload.get(key):
                payload.pop(key, None)
        payload.setdefault("messages", None)
        return payload
