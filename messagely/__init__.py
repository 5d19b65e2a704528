"""Core package for the messagely messaging service."""

from __future__ import annotations

from typing import Any

from .database import Database, resolve_database_path
from .messages import MessageStore
from .users import UserDirectory


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the FastAPI application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "MessageStore",
    "UserDirectory",
    "create_app",
    "resolve_database_path",
]
