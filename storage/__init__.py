"""Storage package providing persistence utilities for options flow data."""

from .sqlite_repository import SQLiteRepository

__all__ = ["SQLiteRepository"]
