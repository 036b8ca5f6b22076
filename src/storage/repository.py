"""
Digest repositories.

Provides the persistence contract the pipeline writes digests through,
with an in-memory implementation for tests and mock runs and an asyncpg
implementation for PostgreSQL.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from src.storage.database import Database
from src.storage.schemas import MUTABLE_DIGEST_FIELDS, Digest, generate_digest_id

logger = logging.getLogger(__name__)


def _check_update_fields(fields: dict[str, Any]) -> None:
    illegal = set(fields) - MUTABLE_DIGEST_FIELDS
    if illegal:
        raise ValueError(f"Digest fields are immutable: {sorted(illegal)}")


class DigestRepository(ABC):
    """Abstract digest store."""

    @abstractmethod
    async def insert(self, digest: Digest) -> str:
        """Store a digest atomically and return its id."""

    @abstractmethod
    async def update(self, digest_id: str, fields: dict[str, Any]) -> bool:
        """Update distribution fields. Returns False if the digest is unknown.

        Raises:
            ValueError: a field other than the distribution fields was given
        """

    @abstractmethod
    async def get(self, digest_id: str) -> Digest | None:
        """Get a digest by id."""

    @abstractmethod
    async def list_recent(self, limit: int = 10) -> list[Digest]:
        """Most recently created digests first."""


class InMemoryDigestRepository(DigestRepository):
    """Process-local digest store."""

    def __init__(self) -> None:
        self._digests: dict[str, Digest] = {}
        self._lock = asyncio.Lock()

    async def insert(self, digest: Digest) -> str:
        digest_id = digest.id or generate_digest_id()
        async with self._lock:
            if digest_id in self._digests:
                raise ValueError(f"Digest {digest_id} already exists")
            self._digests[digest_id] = digest.model_copy(update={"id": digest_id})
        return digest_id

    async def update(self, digest_id: str, fields: dict[str, Any]) -> bool:
        _check_update_fields(fields)
        async with self._lock:
            digest = self._digests.get(digest_id)
            if digest is None:
                return False
            self._digests[digest_id] = digest.model_copy(
                update={**fields, "updated_at": datetime.now(timezone.utc)}
            )
        return True

    async def get(self, digest_id: str) -> Digest | None:
        return self._digests.get(digest_id)

    async def list_recent(self, limit: int = 10) -> list[Digest]:
        digests = sorted(
            self._digests.values(), key=lambda d: d.created_at, reverse=True
        )
        return digests[:limit]

    def __len__(self) -> int:
        return len(self._digests)


class PostgresDigestRepository(DigestRepository):
    """
    Digest storage in the ``digests`` table.

    Each insert is a single statement, so a digest is either fully
    stored or absent.
    """

    def __init__(self, database: Database):
        """
        Initialize repository.

        Args:
            database: Connected Database instance
        """
        self._db = database

    async def create_tables(self) -> None:
        """Create the digests table if it doesn't exist."""
        create_sql = """
        CREATE TABLE IF NOT EXISTS digests (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            summary TEXT NOT NULL DEFAULT '',
            content JSONB NOT NULL DEFAULT '{}',
            ai_model TEXT NOT NULL,
            ai_provider TEXT NOT NULL,
            token_usage JSONB NOT NULL DEFAULT '{}',
            data_from TIMESTAMPTZ NOT NULL,
            data_to TIMESTAMPTZ NOT NULL,
            distribution_status JSONB NOT NULL DEFAULT '{}',
            distribution_urls JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_digests_created_at
            ON digests(created_at DESC);
        """
        await self._db.execute(create_sql)
        logger.info("Digest tables created/verified")

    async def insert(self, digest: Digest) -> str:
        sql = """
            INSERT INTO digests (
                id, title, summary, content, ai_model, ai_provider,
                token_usage, data_from, data_to, distribution_status,
                distribution_urls, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            RETURNING id
        """
        digest_id = digest.id or generate_digest_id()
        return await self._db.fetchval(
            sql,
            digest_id,
            digest.title,
            digest.summary,
            json.dumps(digest.content),
            digest.ai_model,
            digest.ai_provider,
            digest.token_usage.model_dump_json(),
            digest.data_from,
            digest.data_to,
            json.dumps(digest.distribution_status),
            json.dumps(digest.distribution_urls),
            digest.created_at,
            digest.updated_at,
        )

    async def update(self, digest_id: str, fields: dict[str, Any]) -> bool:
        _check_update_fields(fields)
        if not fields:
            return await self.get(digest_id) is not None

        assignments = []
        args: list[Any] = [digest_id]
        for name in sorted(fields):
            args.append(json.dumps(fields[name]))
            assignments.append(f"{name} = ${len(args)}")

        sql = f"""
            UPDATE digests
            SET {", ".join(assignments)}, updated_at = NOW()
            WHERE id = $1
            RETURNING id
        """
        result = await self._db.fetchval(sql, *args)
        return result is not None

    async def get(self, digest_id: str) -> Digest | None:
        row = await self._db.fetchrow("SELECT * FROM digests WHERE id = $1", digest_id)
        if row is None:
            return None
        return _row_to_digest(row)

    async def list_recent(self, limit: int = 10) -> list[Digest]:
        rows = await self._db.fetch(
            "SELECT * FROM digests ORDER BY created_at DESC LIMIT $1", limit
        )
        return [_row_to_digest(row) for row in rows]


def _json_field(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_digest(row: Any) -> Digest:
    """Convert an asyncpg Record to a Digest."""
    return Digest(
        id=row["id"],
        title=row["title"],
        summary=row["summary"],
        content=_json_field(row["content"], {}),
        ai_model=row["ai_model"],
        ai_provider=row["ai_provider"],
        token_usage=_json_field(row["token_usage"], {}),
        data_from=row["data_from"],
        data_to=row["data_to"],
        distribution_status=_json_field(row["distribution_status"], {}),
        distribution_urls=_json_field(row["distribution_urls"], {}),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
