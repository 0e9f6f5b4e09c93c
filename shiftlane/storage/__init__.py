"""Durable storage backends."""

from shiftlane.storage.sqlite import SQLiteStore

__all__ = ["SQLiteStore"]
