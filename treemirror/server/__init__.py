"""HTTP API and tree explorer for the consumer side."""

from .app import create_app

__all__ = ["create_app"]
