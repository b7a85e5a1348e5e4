"""Persistence layer: repository interface and its SQLAlchemy implementation."""

from .base import Repository
from .sql import SqlRepository

__all__ = ["Repository", "SqlRepository"]
