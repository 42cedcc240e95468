"""Repository pattern for all trawler database operations.

Single interface for: sources, chunks, embeddings, similarity search and
the aggregate queries behind the metrics endpoint. Embeddings live in the
``chunks.embedding`` BLOB (float32, sqlite-vec layout) next to the model
that produced them.
"""

from __future__ import annotations

import sqlite3
import struct
from collections.abc import Iterable, Sequence

import sqlite_vec

from trawler.db.models import Chunk, Source, SourceStatus

_SOURCE_COLUMNS = "id, agent_id, type, name, status, metadata, size, created_at, updated_at"
_CHUNK_COLUMNS = (
    "id, source_id, agent_id, content, position, embedding, embedding_model, metadata, created_at"
)

# Statuses from which a crawl may claim a source.
_CLAIMABLE = (
    SourceStatus.PENDING.value,
    SourceStatus.READY.value,
    SourceStatus.ERROR.value,
)


class Repository:
    """Data access layer for sources and chunks.

    Wraps an open sqlite3.Connection. Every public write commits before
    returning, so a failure in a later call never rolls back an earlier one.
    The connection is owned by the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see trawler.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> None:
        """Insert a new source record."""
        self._conn.execute(
            """
            INSERT INTO sources (id, agent_id, type, name, status, metadata, size)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.agent_id,
                _str(source.type),
                source.name,
                _str(source.status),
                source.metadata,
                source.size,
            ),
        )
        self._conn.commit()

    def get_source(self, source_id: str) -> Source | None:
        """Return a source by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(
        self,
        agent_id: str | None = None,
        *,
        status: str | None = None,
        source_type: str | None = None,
    ) -> list[Source]:
        """Return sources ordered by creation time (oldest first).

        Args:
            agent_id: Restrict to one agent; None lists every agent.
            status: Restrict to one status.
            source_type: Restrict to one source type.
        """
        clauses: list[str] = []
        params: list[object] = []
        if agent_id is not None:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(_str(status))
        if source_type is not None:
            clauses.append("type = ?")
            params.append(_str(source_type))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources {where} ORDER BY created_at, rowid",
            params,
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def update_source(
        self,
        source_id: str,
        *,
        status: str | None = None,
        metadata: str | None = None,
        size: int | None = None,
        name: str | None = None,
    ) -> None:
        """Update the given fields of a source and bump ``updated_at``."""
        sets = ["updated_at = datetime('now')"]
        params: list[object] = []
        if status is not None:
            sets.append("status = ?")
            params.append(_str(status))
        if metadata is not None:
            sets.append("metadata = ?")
            params.append(metadata)
        if size is not None:
            sets.append("size = ?")
            params.append(size)
        if name is not None:
            sets.append("name = ?")
            params.append(name)
        params.append(source_id)
        self._conn.execute(f"UPDATE sources SET {', '.join(sets)} WHERE id = ?", params)
        self._conn.commit()

    def claim_for_processing(self, source_id: str, metadata: str | None = None) -> bool:
        """Atomically move a source to ``processing``.

        Returns False when the source is missing or not in a claimable status
        (already processing, critical, or removed). This is the guard that
        keeps two crawls off the same source, across processes.
        """
        placeholders = ",".join("?" * len(_CLAIMABLE))
        sql = (
            "UPDATE sources SET status = ?, updated_at = datetime('now')"
            + (", metadata = ?" if metadata is not None else "")
            + f" WHERE id = ? AND status IN ({placeholders})"
        )
        params: list[object] = [SourceStatus.PROCESSING.value]
        if metadata is not None:
            params.append(metadata)
        params.append(source_id)
        params.extend(_CLAIMABLE)
        cur = self._conn.execute(sql, params)
        self._conn.commit()
        return cur.rowcount == 1

    def delete_source(self, source_id: str) -> None:
        """Hard-delete a source; its chunks go with it (ON DELETE CASCADE)."""
        self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        self._conn.commit()

    def purge_removed(self, agent_id: str) -> list[str]:
        """Hard-delete every ``removed`` source of *agent_id*. Returns their ids."""
        ids = [
            r["id"]
            for r in self._conn.execute(
                "SELECT id FROM sources WHERE agent_id = ? AND status = ?",
                (agent_id, SourceStatus.REMOVED.value),
            ).fetchall()
        ]
        if ids:
            placeholders = ",".join("?" * len(ids))
            self._conn.execute(f"DELETE FROM sources WHERE id IN ({placeholders})", ids)
            self._conn.commit()
        return ids

    def list_stale_processing(self, older_than_seconds: float) -> list[Source]:
        """Return ``processing`` sources not updated for *older_than_seconds*."""
        rows = self._conn.execute(
            f"""
            SELECT {_SOURCE_COLUMNS} FROM sources
            WHERE status = ?
              AND updated_at <= datetime('now', ?)
            ORDER BY updated_at
            """,
            (SourceStatus.PROCESSING.value, f"-{int(older_than_seconds)} seconds"),
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def add_embedding_usage(
        self, source_id: str, tokens: int, cost: float, model: str
    ) -> None:
        """Add *tokens* / *cost* to the source's running embedding totals."""
        self._conn.execute(
            """
            UPDATE sources SET
                metadata = json_set(
                    metadata,
                    '$.total_embedding_tokens',
                    COALESCE(json_extract(metadata, '$.total_embedding_tokens'), 0) + ?,
                    '$.embedding_cost_usd',
                    COALESCE(json_extract(metadata, '$.embedding_cost_usd'), 0) + ?,
                    '$.embedding_model', ?
                ),
                updated_at = datetime('now')
            WHERE id = ?
            """,
            (tokens, cost, model, source_id),
        )
        self._conn.commit()

    def count_sources_by_status(self, agent_id: str | None = None) -> dict[str, int]:
        """Return ``{status: count}`` for one agent or for every agent."""
        sql = "SELECT status, COUNT(*) AS n FROM sources"
        params: tuple = ()
        if agent_id is not None:
            sql += " WHERE agent_id = ?"
            params = (agent_id,)
        sql += " GROUP BY status"
        return {r["status"]: r["n"] for r in self._conn.execute(sql, params).fetchall()}

    def recent_crawl_stats(self, limit: int = 10) -> list[tuple[int, int]]:
        """Return ``[(chunk_count, size_bytes), ...]`` for the newest website sources."""
        rows = self._conn.execute(
            """
            SELECT s.size AS size,
                   (SELECT COUNT(*) FROM chunks c WHERE c.source_id = s.id) AS n
            FROM sources s
            WHERE s.type = 'website'
            ORDER BY s.created_at DESC, s.rowid DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [(r["n"], r["size"]) for r in rows]

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Insert *chunks* in one transaction. Returns the number inserted.

        Either every chunk is stored or none is: a failure part-way through
        rolls the whole batch back and re-raises.
        """
        if not chunks:
            return 0
        try:
            self._conn.executemany(
                """
                INSERT INTO chunks (source_id, agent_id, content, position, metadata)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (c.source_id, c.agent_id, c.content, c.position, c.metadata)
                    for c in chunks
                ],
            )
        except sqlite3.Error:
            self._conn.rollback()
            raise
        self._conn.commit()
        return len(chunks)

    def list_chunks(self, source_id: str) -> list[Chunk]:
        """Return the chunks of *source_id* in position order."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE source_id = ? ORDER BY position",
            (source_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks_by_source(self, source_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def count_chunks(self, agent_id: str | None = None) -> int:
        """Count chunks for one agent, or in the whole database."""
        if agent_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE agent_id = ?", (agent_id,)
        ).fetchone()[0]

    def delete_chunks_by_source(self, source_id: str) -> int:
        """Delete every chunk of *source_id*. Returns the number deleted."""
        cur = self._conn.execute("DELETE FROM chunks WHERE source_id = ?", (source_id,))
        self._conn.commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def pending_chunks(self, agent_id: str) -> list[Chunk]:
        """Chunks of *agent_id* without an embedding, by (source_id, position).

        Chunks of removed sources are skipped; they are purged, not embedded.
        """
        rows = self._conn.execute(
            f"""
            SELECT {', '.join('c.' + col.strip() for col in _CHUNK_COLUMNS.split(','))}
            FROM chunks c
            JOIN sources s ON s.id = c.source_id
            WHERE c.agent_id = ?
              AND c.embedding IS NULL
              AND s.status != ?
            ORDER BY c.source_id, c.position
            """,
            (agent_id, SourceStatus.REMOVED.value),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_pending_chunks(self, agent_id: str) -> int:
        """Number of chunks ``pending_chunks`` would return."""
        return self._conn.execute(
            """
            SELECT COUNT(*)
            FROM chunks c
            JOIN sources s ON s.id = c.source_id
            WHERE c.agent_id = ?
              AND c.embedding IS NULL
              AND s.status != ?
            """,
            (agent_id, SourceStatus.REMOVED.value),
        ).fetchone()[0]

    def set_embeddings(
        self, items: Iterable[tuple[int, list[float]]], model: str
    ) -> None:
        """Attach ``(chunk_id, vector)`` pairs produced by *model*, in one commit."""
        try:
            self._conn.executemany(
                "UPDATE chunks SET embedding = ?, embedding_model = ? WHERE id = ?",
                [
                    (sqlite_vec.serialize_float32(vector), model, chunk_id)
                    for chunk_id, vector in items
                ],
            )
        except sqlite3.Error:
            self._conn.rollback()
            raise
        self._conn.commit()

    def search_similar(
        self,
        agent_id: str,
        embedding: list[float],
        model: str,
        *,
        limit: int,
        threshold: float,
        source_types: Sequence[str] | None = None,
    ) -> list[tuple[Chunk, float, str]]:
        """Cosine-similarity search scoped to one agent and one embedding model.

        The threshold is applied before ``LIMIT``, so at most *limit* rows come
        back and every one of them has similarity >= *threshold*.

        Returns:
            ``(chunk, similarity, source_type)`` tuples, most similar first.
        """
        type_clause = ""
        params: list[object] = [
            sqlite_vec.serialize_float32(embedding),
            agent_id,
            model,
            SourceStatus.REMOVED.value,
        ]
        if source_types:
            type_clause = f"AND s.type IN ({','.join('?' * len(source_types))})"
            params.extend(_str(t) for t in source_types)
        params.extend([threshold, limit])

        rows = self._conn.execute(
            f"""
            SELECT * FROM (
                SELECT {', '.join('c.' + col.strip() for col in _CHUNK_COLUMNS.split(','))},
                       s.type AS source_type,
                       1.0 - vec_distance_cosine(c.embedding, ?) AS similarity
                FROM chunks c
                JOIN sources s ON s.id = c.source_id
                WHERE c.agent_id = ?
                  AND c.embedding IS NOT NULL
                  AND c.embedding_model = ?
                  AND s.status != ?
                  {type_clause}
            )
            WHERE similarity >= ?
            ORDER BY similarity DESC, source_id, position
            LIMIT ?
            """,
            params,
        ).fetchall()
        return [(_row_to_chunk(r), r["similarity"], r["source_type"]) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _str(value: object) -> str:
    """Plain string for enum members and strings alike."""
    return getattr(value, "value", value)  # type: ignore[return-value]


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        agent_id=row["agent_id"],
        type=row["type"],
        name=row["name"],
        status=row["status"],
        metadata=row["metadata"],
        size=row["size"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    blob = row["embedding"]
    return Chunk(
        id=row["id"],
        source_id=row["source_id"],
        agent_id=row["agent_id"],
        content=row["content"],
        position=row["position"],
        embedding=_deserialize(blob) if blob is not None else None,
        embedding_model=row["embedding_model"],
        metadata=row["metadata"],
        created_at=row["created_at"],
    )


def _deserialize(blob: bytes) -> list[float]:
    # sqlite-vec float32 layout: packed little-endian floats.
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))
