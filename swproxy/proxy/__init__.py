"""Reverse-proxy request handling."""

from .server import create_app

__all__ = ["create_app"]
