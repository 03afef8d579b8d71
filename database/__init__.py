"""Persistence layer: ORM models, repositories and the DatabaseManager facade."""
from .manager import DatabaseManager

__all__ = ["DatabaseManager"]
