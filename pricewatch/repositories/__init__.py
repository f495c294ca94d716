"""Catalog storage implementations."""

from .base import CatalogRepository
from .memory import InMemoryCatalogRepository

__all__ = [
    "CatalogRepository",
    "InMemoryCatalogRepository",
]
