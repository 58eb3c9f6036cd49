"""swproxy CLI.

Usage:
    swproxy serve [key=value ...] [--host HOST] [--port PORT]
    swproxy check-env
    swproxy show-config [key=value ...]
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys

from .core.config import IDENTITY_ENV_VARS, load_proxy_config, missing_env

logger = logging.getLogger(__name__)

_SECRET_FIELDS = ("x_id", "x_signature", "x_license")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the proxy under uvicorn."""
    import uvicorn

    from .proxy.server import create_app

    _configure_logging(args.verbose)
    cfg = load_proxy_config(args.overrides)
    if args.host:
        cfg = dataclasses.replace(cfg, listen_host=args.host)
    if args.port:
        cfg = dataclasses.replace(cfg, listen_port=args.port)

    missing = missing_env(cfg)
    for name in missing:
        logger.warning("Environment variable %s is not set", name)
    if "HOST" in missing:
        logger.error("HOST is required: it names the upstream to forward to")
        return 1

    logger.info(
        "Starting proxy server on %s:%d -> %s (response_mode=%s, force_stream=%s)",
        cfg.listen_host, cfg.listen_port, cfg.upstream_origin,
        cfg.response_mode, cfg.force_stream,
    )
    uvicorn.run(create_app(cfg), host=cfg.listen_host, port=cfg.listen_port)
    return 0


def cmd_check_env(args: argparse.Namespace) -> int:
    """Report which identity environment variables are set."""
    missing = set(missing_env())
    for name in IDENTITY_ENV_VARS:
        print(f"  {name}: {'missing' if name in missing else 'set'}")
    return 1 if missing else 0


def cmd_show_config(args: argparse.Namespace) -> int:
    """Print the resolved config with secrets masked."""
    cfg = load_proxy_config(args.overrides)
    data = dataclasses.asdict(cfg)
    for key in _SECRET_FIELDS:
        if data[key]:
            data[key] = "***"
    print(json.dumps(data, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="swproxy",
        description="Rewrite-and-forward proxy for chat-completion APIs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the proxy server")
    serve_parser.add_argument(
        "overrides",
        nargs="*",
        help="Hydra overrides, e.g. response_mode=buffer log_bodies=true",
    )
    serve_parser.add_argument("--host", default=None, help="Listen address")
    serve_parser.add_argument(
        "--port", type=int, default=None, help="Listen port (overrides PORT)",
    )
    serve_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    serve_parser.set_defaults(func=cmd_serve)

    check_parser = subparsers.add_parser(
        "check-env", help="Check identity environment variables",
    )
    check_parser.set_defaults(func=cmd_check_env)

    show_parser = subparsers.add_parser("show-config", help="Print resolved config")
    show_parser.add_argument("overrides", nargs="*", help="Hydra overrides")
    show_parser.set_defaults(func=cmd_show_config)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
