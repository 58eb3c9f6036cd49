"""Centralized configuration for swproxy.

Configuration is resolved from two sources:

1. **YAML config**: loaded via Hydra from ``swproxy/core/configs/proxy.yaml``
2. **Environment variables**: identity secrets, the upstream host and the
   listening port override

Use Hydra CLI overrides (``key=value``) to customize non-secret values.

Usage::

    from swproxy.core.config import get_proxy_config

    cfg = get_proxy_config()
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

_CONFIG_DIR = str(Path(__file__).parent / "configs")
_CONFIG_NAME = "proxy"

RESPONSE_MODES = frozenset({"stream", "buffer"})

# Identity environment variables, in the order they are reported.
IDENTITY_ENV_VARS = ("HOST", "X_ID", "X_SIGNATURE", "USER_AGENT", "X_LICENSE")


# ---------------------------------------------------------------------------
# YAML loading via Hydra Compose API
# ---------------------------------------------------------------------------

def _load_yaml_config(
    config_name: str, overrides: Sequence[str] = (),
) -> dict[str, object]:
    """Load a YAML config via Hydra Compose API.

    Returns an empty dict if the config file cannot be loaded and no
    overrides were requested. Bad overrides propagate.
    """
    try:
        from hydra import compose, initialize_config_dir
        from omegaconf import OmegaConf

        abs_dir = os.path.abspath(_CONFIG_DIR)
        with initialize_config_dir(version_base=None, config_dir=abs_dir):
            cfg = compose(config_name=config_name, overrides=list(overrides))
        container = OmegaConf.to_container(cfg, resolve=True)
        if isinstance(container, dict):
            return container  # type: ignore[return-value]
        return {}
    except Exception:
        if overrides:
            raise
        logger.debug("Failed to load YAML config %r, falling back to defaults", config_name)
        return {}


# ---------------------------------------------------------------------------
# YAML / env value helpers
# ---------------------------------------------------------------------------

def _yaml_str(yaml: dict[str, object], key: str, default: str = "") -> str:
    val = yaml.get(key)
    return str(val) if val is not None else default


def _yaml_optional_float(yaml: dict[str, object], key: str) -> float | None:
    val = yaml.get(key)
    return float(str(val)) if val is not None else None


def _yaml_bool(yaml: dict[str, object], key: str, default: bool = False) -> bool:
    val = yaml.get(key)
    if val is None:
        return default
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _secret(name: str, default: str = "") -> str:
    """Read a secret from an environment variable."""
    raw = os.environ.get(name)
    return raw.strip() if raw is not None else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_port(raw: object) -> int:
    try:
        port = int(str(raw).strip())
    except ValueError:
        raise ValueError(f"Invalid listen port: {raw!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"Listen port out of range: {port}")
    return port


# ---------------------------------------------------------------------------
# Config types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RouteRule:
    """Body overrides applied to requests whose path starts with ``prefix``.

    ``max_tokens`` of ``None`` leaves the caller's budget untouched.
    """

    prefix: str
    model: str
    max_tokens: int | None = None


DEFAULT_ROUTES: tuple[RouteRule, ...] = (
    RouteRule(prefix="/anthropic/v1/messages", model="sw-claude-3-5-sonnet", max_tokens=2048),
    RouteRule(prefix="/v1/chat/completions", model="sw-gpt-4o"),
)


@dataclass(frozen=True)
class ProxyConfig:
    """Runtime configuration for the rewrite-and-forward proxy."""

    upstream_host: str = ""
    upstream_scheme: str = "https"
    x_id: str = ""
    x_signature: str = ""
    user_agent: str = ""
    x_license: str = ""
    listen_host: str = "0.0.0.0"
    listen_port: int = 443
    force_stream: bool = True
    response_mode: str = "stream"
    log_bodies: bool = False
    upstream_timeout_s: float | None = None
    routes: tuple[RouteRule, ...] = field(default=DEFAULT_ROUTES)

    @property
    def upstream_origin(self) -> str:
        """Return ``scheme://host`` for the upstream (no trailing slash)."""
        return f"{self.upstream_scheme}://{self.upstream_host}"

    @property
    def streaming(self) -> bool:
        return self.response_mode == "stream"


def _parse_routes(yaml: dict[str, object]) -> tuple[RouteRule, ...]:
    raw = yaml.get("routes")
    if raw is None:
        return DEFAULT_ROUTES
    if not isinstance(raw, list):
        raise ValueError("routes must be a list of {prefix, model, max_tokens} entries")
    rules: list[RouteRule] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("prefix") or not entry.get("model"):
            raise ValueError(f"Invalid route entry: {entry!r}")
        max_tokens = entry.get("max_tokens")
        rules.append(
            RouteRule(
                prefix=str(entry["prefix"]),
                model=str(entry["model"]),
                max_tokens=int(max_tokens) if max_tokens is not None else None,
            )
        )
    return tuple(rules)


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------

def load_proxy_config(overrides: Sequence[str] = ()) -> ProxyConfig:
    """Build a fresh :class:`ProxyConfig` from YAML (plus overrides) and env."""
    yaml = _load_yaml_config(_CONFIG_NAME, overrides)

    response_mode = _yaml_str(yaml, "response_mode", "stream").strip().lower()
    if response_mode not in RESPONSE_MODES:
        raise ValueError(f"Unsupported response_mode: {response_mode!r}")

    port_env = os.environ.get("PORT")
    port_raw: object = port_env if port_env else yaml.get("listen_port", 443)

    return ProxyConfig(
        upstream_host=_secret("HOST"),
        upstream_scheme=_yaml_str(yaml, "upstream_scheme", "https"),
        x_id=_secret("X_ID"),
        x_signature=_secret("X_SIGNATURE"),
        user_agent=_secret("USER_AGENT"),
        x_license=_secret("X_LICENSE"),
        listen_host=_yaml_str(yaml, "listen_host", "0.0.0.0"),
        listen_port=_parse_port(port_raw),
        force_stream=_yaml_bool(yaml, "force_stream", True),
        response_mode=response_mode,
        log_bodies=_env_bool("SWPROXY_DEBUG", _yaml_bool(yaml, "log_bodies", False)),
        upstream_timeout_s=_yaml_optional_float(yaml, "upstream_timeout_s"),
        routes=_parse_routes(yaml),
    )


@lru_cache(maxsize=1)
def get_proxy_config() -> ProxyConfig:
    """Return the proxy config.

    Cached; call ``get_proxy_config.cache_clear()`` to re-read.
    """
    return load_proxy_config()


def missing_env(cfg: ProxyConfig | None = None) -> list[str]:
    """Return the identity environment variables that are unset or empty."""
    if cfg is None:
        return [name for name in IDENTITY_ENV_VARS if not _secret(name)]
    values = {
        "HOST": cfg.upstream_host,
        "X_ID": cfg.x_id,
        "X_SIGNATURE": cfg.x_signature,
        "USER_AGENT": cfg.user_agent,
        "X_LICENSE": cfg.x_license,
    }
    return [name for name in IDENTITY_ENV_VARS if not values[name]]
