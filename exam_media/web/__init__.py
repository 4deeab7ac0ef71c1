"""Web interface for the exam media service."""

from .server import create_app

__all__ = ["create_app"]
