"""SQLite-backed order store used by the import pipeline."""

from .db import OrderStore

__all__ = ["OrderStore"]
