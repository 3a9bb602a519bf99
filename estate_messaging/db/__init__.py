"""Database module."""

from estate_messaging.db.base import Base, JSONType

__all__ = ["Base", "JSONType"]
