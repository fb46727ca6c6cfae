# gigsync/db/document_store.py
"""
JSONB document table used to persist the aggregates (users, apps, platforms,
platform data, sync logs).

Every document lives in one ``documents`` row keyed by (collection, id). The
fetch scheduler's candidate query runs directly against the JSON of the users'
platform connections.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from gigsync.db.helpers import DatabaseError, fetch_all, fetch_one, fetch_val, with_db_retry
from gigsync.db.pool import db_pool
from gigsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DOCUMENTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    body JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (collection, id)
);
CREATE INDEX IF NOT EXISTS documents_body_idx ON documents USING GIN (body jsonb_path_ops);
"""

USERS_COLLECTION = "users"

MIN_POLL_INTERVAL_QUERY = """
SELECT MIN((pc->>'poll_interval_seconds')::int) AS min_interval
FROM documents d
CROSS JOIN LATERAL jsonb_array_elements(d.body->'platform_connections') pc
WHERE d.collection = %s
  AND NOT COALESCE((pc->>'is_deleted')::boolean, false)
  AND pc->>'poll_interval_seconds' IS NOT NULL
"""

# A user is a candidate when any live, polled connection has never completed a
# fetch or completed it at or before the cutoff.
POSSIBLY_RIPE_USERS_QUERY = """
SELECT d.id
FROM documents d
WHERE d.collection = %s
  AND EXISTS (
    SELECT 1
    FROM jsonb_array_elements(d.body->'platform_connections') pc
    WHERE NOT COALESCE((pc->>'is_deleted')::boolean, false)
      AND pc->>'poll_interval_seconds' IS NOT NULL
      AND (
        pc->>'last_fetch_attempt_completed' IS NULL
        OR (pc->>'last_fetch_attempt_completed')::timestamptz <= %s
      )
  )
ORDER BY d.id
"""


class DocumentStoreError(DatabaseError):
    """Raised when documents cannot be read or written."""


class PostgresDocumentStore:
    """Load/query/persist contract over the ``documents`` table."""

    async def ensure_schema(self) -> None:
        async with db_pool.connection() as conn:
            await conn.execute(DOCUMENTS_SCHEMA)
        logger.info("Document schema ensured")

    @with_db_retry()
    async def load(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        row = await fetch_one(
            "SELECT body FROM documents WHERE collection = %s AND id = %s",
            (collection, doc_id),
        )
        return row["body"] if row else None

    @with_db_retry()
    async def load_many(self, collection: str, doc_ids: list[str]) -> dict[str, dict[str, Any]]:
        if not doc_ids:
            return {}
        rows = await fetch_all(
            "SELECT id, body FROM documents WHERE collection = %s AND id = ANY(%s)",
            (collection, list(doc_ids)),
        )
        return {row["id"]: row["body"] for row in rows}

    @with_db_retry()
    async def query(self, collection: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        """Documents whose body contains every key/value in ``filters``."""
        rows = await fetch_all(
            "SELECT body FROM documents WHERE collection = %s AND body @> %s ORDER BY id",
            (collection, Jsonb(filters)),
        )
        return [row["body"] for row in rows]

    async def apply_changes(
        self,
        upserts: list[tuple[str, str, dict[str, Any]]],
        deletes: list[tuple[str, str]],
    ) -> None:
        """Write a unit of work in a single transaction."""
        if not upserts and not deletes:
            return

        try:
            async with db_pool.transaction() as conn:
                for collection, doc_id, body in upserts:
                    await conn.execute(
                        """
                        INSERT INTO documents (collection, id, body, updated_at)
                        VALUES (%s, %s, %s, now())
                        ON CONFLICT (collection, id)
                        DO UPDATE SET body = EXCLUDED.body, updated_at = now()
                        """,
                        (collection, doc_id, Jsonb(body)),
                    )
                for collection, doc_id in deletes:
                    await conn.execute(
                        "DELETE FROM documents WHERE collection = %s AND id = %s",
                        (collection, doc_id),
                    )
        except Exception as e:
            logger.error(
                "Document unit of work failed",
                upserts=len(upserts),
                deletes=len(deletes),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DocumentStoreError(
                f"Failed to apply document changes: {e}", operation="apply_changes"
            ) from e

        logger.debug("Document changes applied", upserts=len(upserts), deletes=len(deletes))

    async def min_poll_interval_seconds(self) -> int | None:
        """Smallest poll interval across all live connections."""
        value = await fetch_val(MIN_POLL_INTERVAL_QUERY, (USERS_COLLECTION,))
        return int(value) if value is not None else None

    async def user_ids_possibly_ripe(self, cutoff: datetime) -> list[str]:
        """Users that might have a ripe connection at ``cutoff + min interval``."""
        rows = await fetch_all(POSSIBLY_RIPE_USERS_QUERY, (USERS_COLLECTION, cutoff))
        return [row["id"] for row in rows]


# Global instance
document_store = PostgresDocumentStore()
