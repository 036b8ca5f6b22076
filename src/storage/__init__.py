"""Storage layer for digest persistence."""

from src.storage.database import Database
from src.storage.repository import (
    DigestRepository,
    InMemoryDigestRepository,
    PostgresDigestRepository,
)
from src.storage.schemas import Digest

__all__ = [
    "Database",
    "Digest",
    "DigestRepository",
    "InMemoryDigestRepository",
    "PostgresDigestRepository",
]
