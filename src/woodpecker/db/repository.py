"""Repository pattern for all Woodpecker database operations.

Single interface for: knowledge sources, chunk generations, FTS5 search,
workspaces + source links, conversations and messages.

Chunk sets are versioned by generation. ``replace_chunks`` writes the new
generation, swaps ``knowledge_sources.chunk_generation`` and deletes every
other generation inside one ``BEGIN IMMEDIATE`` transaction, so readers see
either the old set or the new set, never a mix. Search only returns rows of
the current generation.
"""

from __future__ import annotations

import functools
import json
import re
import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Callable, TypeVar

from woodpecker.db.models import (
    Citation,
    Conversation,
    DocumentChunk,
    KnowledgeSource,
    Message,
    MessageRole,
    SearchHit,
    SourceStatus,
    SourceType,
    Workspace,
    WorkspaceMode,
    WorkspaceSource,
)
from woodpecker.errors import InvalidTransitionError, NotFoundError, PersistenceError

_F = TypeVar("_F", bound=Callable[..., Any])

_SOURCE_COLUMNS = (
    "id, owner_id, name, source_type, status, file_path, original_url, mime_type, "
    "file_size, chunk_count, chunk_generation, error_message, last_processed_at, "
    "created_at, updated_at"
)

# Number of leading query words the substring fallback considers.
_FALLBACK_WORDS = 3


def _persists(method: _F) -> _F:
    """Wrap sqlite3 errors raised by a write method in PersistenceError."""

    @functools.wraps(method)
    def wrapper(self: Repository, *args: Any, **kwargs: Any) -> Any:
        try:
            return method(self, *args, **kwargs)
        except sqlite3.Error as exc:
            raise PersistenceError(f"{method.__name__} failed: {exc}") from exc

    return wrapper  # type: ignore[return-value]


class Repository:
    """Data access layer for all Woodpecker database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use; a connection must not be shared across
    threads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see woodpecker.db.migrations.initialize).
        """
        self._conn = conn

    @contextmanager
    def _immediate(self) -> Iterator[None]:
        """Run the block in a write-locked transaction; roll back on error."""
        if self._conn.in_transaction:
            self._conn.commit()
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        self._conn.commit()

    # ------------------------------------------------------------------
    # Knowledge sources
    # ------------------------------------------------------------------

    @_persists
    def add_source(self, source: KnowledgeSource) -> None:
        """Insert a new source record (normally in ``pending``)."""
        self._conn.execute(
            """
            INSERT INTO knowledge_sources
                (id, owner_id, name, source_type, status, file_path, original_url,
                 mime_type, file_size)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.owner_id,
                source.name,
                SourceType(source.source_type).value,
                SourceStatus(source.status).value,
                source.file_path,
                source.original_url,
                source.mime_type,
                source.file_size,
            ),
        )
        self._conn.commit()

    def get_source(self, source_id: str) -> KnowledgeSource | None:
        """Return a source by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM knowledge_sources WHERE id = ?",
            (source_id,),
        ).fetchone()
        return _row_to_source(row) if row else None

    def require_source(self, source_id: str) -> KnowledgeSource:
        """Return a source by ID or raise NotFoundError."""
        source = self.get_source(source_id)
        if source is None:
            raise NotFoundError(f"Source not found: {source_id}")
        return source

    def list_sources(self, status: SourceStatus | None = None) -> list[KnowledgeSource]:
        """Return all sources (optionally of one status), oldest first."""
        sql = f"SELECT {_SOURCE_COLUMNS} FROM knowledge_sources"
        params: tuple = ()
        if status is not None:
            sql += " WHERE status = ?"
            params = (SourceStatus(status).value,)
        sql += " ORDER BY created_at, rowid"
        return [_row_to_source(r) for r in self._conn.execute(sql, params).fetchall()]

    @_persists
    def delete_source(self, source_id: str) -> None:
        """Delete a source with its chunks (+ FTS rows) and workspace links."""
        with self._immediate():
            self._delete_chunk_rows("source_id = ?", (source_id,))
            self._conn.execute("DELETE FROM knowledge_sources WHERE id = ?", (source_id,))

    # ------------------------------------------------------------------
    # Source lifecycle
    # ------------------------------------------------------------------

    @_persists
    def transition_status(
        self,
        source_id: str,
        target: SourceStatus,
        *,
        error_message: str | None = None,
    ) -> None:
        """Move a source to *target* if its current status allows it.

        The check and the write are one compare-and-set UPDATE, so two
        concurrent callers cannot both move a source out of the same state.

        Raises:
            NotFoundError: If the source does not exist.
            InvalidTransitionError: If the current status does not allow *target*.
        """
        target = SourceStatus(target)
        allowed = SourceStatus.sources_of(target)
        placeholders = ",".join("?" * len(allowed)) or "NULL"
        assignments = "status = ?, updated_at = datetime('now')"
        params: list[Any] = [target.value]
        if target is SourceStatus.ERROR:
            assignments += ", error_message = ?"
            params.append(error_message or "Unknown processing error")
        elif target is SourceStatus.READY:
            assignments += ", error_message = NULL, last_processed_at = datetime('now')"

        cur = self._conn.execute(
            f"UPDATE knowledge_sources SET {assignments} "
            f"WHERE id = ? AND status IN ({placeholders})",
            (*params, source_id, *(s.value for s in allowed)),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            current = self.require_source(source_id).status
            raise InvalidTransitionError(
                f"Source status cannot change from '{current.value}' to '{target.value}'"
            )

    @_persists
    def reset_for_reingestion(self, source_id: str) -> KnowledgeSource:
        """Explicit re-ingestion request: put a settled source back to ``pending``.

        Resets status and error message in a single write. The current chunk
        generation (and its ``chunk_count`` / ``last_processed_at``) stays
        visible until a new generation replaces it.

        Raises:
            NotFoundError: If the source does not exist.
            InvalidTransitionError: If the source is currently ``processing``.
        """
        cur = self._conn.execute(
            """
            UPDATE knowledge_sources
            SET status = 'pending', error_message = NULL, updated_at = datetime('now')
            WHERE id = ? AND status IN ('pending', 'ready', 'error')
            """,
            (source_id,),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            current = self.require_source(source_id).status
            raise InvalidTransitionError(
                f"Source '{source_id}' is {current.value}; wait for it to finish "
                "before requesting re-ingestion"
            )
        return self.require_source(source_id)

    @_persists
    def update_source_size(self, source_id: str, file_size: int) -> None:
        self._conn.execute(
            "UPDATE knowledge_sources SET file_size = ?, updated_at = datetime('now') "
            "WHERE id = ?",
            (file_size, source_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    @_persists
    def replace_chunks(self, source_id: str, chunks: Sequence[DocumentChunk]) -> int:
        """Atomically replace the full chunk set of *source_id*.

        Writes *chunks* as a new generation, points the source at it, sets
        ``chunk_count`` and removes all other generations, in one transaction.

        Args:
            source_id: UUID of the owning source.
            chunks: Complete new chunk set with contiguous ``chunk_index`` 0..n-1.

        Returns:
            The new generation number.
        """
        indexes = [c.chunk_index for c in chunks]
        if indexes != list(range(len(chunks))):
            raise ValueError("chunk_index values must be contiguous 0..n-1 in order")

        with self._immediate():
            row = self._conn.execute(
                "SELECT chunk_generation FROM knowledge_sources WHERE id = ?",
                (source_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Source not found: {source_id}")
            generation = row["chunk_generation"] + 1

            for chunk in chunks:
                cur = self._conn.execute(
                    """
                    INSERT INTO chunks
                        (source_id, generation, chunk_index, content, token_count, metadata)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        source_id,
                        generation,
                        chunk.chunk_index,
                        chunk.content,
                        chunk.token_count,
                        chunk.metadata,
                    ),
                )
                self._conn.execute(
                    "INSERT INTO chunks_fts(rowid, content) VALUES (?, ?)",
                    (cur.lastrowid, chunk.content),
                )

            self._conn.execute(
                """
                UPDATE knowledge_sources
                SET chunk_generation = ?, chunk_count = ?, updated_at = datetime('now')
                WHERE id = ?
                """,
                (generation, len(chunks), source_id),
            )
            self._delete_chunk_rows(
                "source_id = ? AND generation != ?", (source_id, generation)
            )
        return generation

    def list_chunks(self, source_id: str) -> list[DocumentChunk]:
        """Return the current-generation chunks of *source_id* by chunk_index."""
        rows = self._conn.execute(
            """
            SELECT c.rowid, c.source_id, c.generation, c.chunk_index, c.content,
                   c.token_count, c.metadata, c.created_at
            FROM chunks c
            JOIN knowledge_sources s ON s.id = c.source_id
                AND c.generation = s.chunk_generation
            WHERE c.source_id = ?
            ORDER BY c.chunk_index
            """,
            (source_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks_by_source(self, source_id: str) -> int:
        """Return the number of current-generation chunks of *source_id*."""
        return self._conn.execute(
            """
            SELECT COUNT(*) FROM chunks c
            JOIN knowledge_sources s ON s.id = c.source_id
                AND c.generation = s.chunk_generation
            WHERE c.source_id = ?
            """,
            (source_id,),
        ).fetchone()[0]

    def _delete_chunk_rows(self, where: str, params: tuple) -> None:
        """Delete chunk rows matching *where* and their FTS entries (no commit)."""
        rowids = [
            r[0]
            for r in self._conn.execute(
                f"SELECT rowid FROM chunks WHERE {where}", params
            ).fetchall()
        ]
        if rowids:
            placeholders = ",".join("?" * len(rowids))
            self._conn.execute(
                f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", rowids
            )
        self._conn.execute(f"DELETE FROM chunks WHERE {where}", params)

    # ------------------------------------------------------------------
    # Ranked search
    # ------------------------------------------------------------------

    def search_chunks(
        self, query: str, source_ids: Sequence[str], max_results: int = 5
    ) -> list[SearchHit]:
        """Ranked full-text search over the current chunks of *source_ids*.

        Stages, first non-empty result wins:
          1. all query terms must match (BM25 rank)
          2. any query term may match (BM25 rank)
          3. substring match on the first three words

        ``rank`` is ``-bm25()`` so larger is better. Ties are broken by
        source id, chunk index and row id.
        """
        if not source_ids or max_results < 1:
            return []
        terms = _query_terms(query)
        if not terms:
            return []

        quoted = [f'"{t}"' for t in terms]
        hits = self._search_fts(" ".join(quoted), source_ids, max_results)
        if not hits and len(quoted) > 1:
            hits = self._search_fts(" OR ".join(quoted), source_ids, max_results)
        if not hits:
            hits = self._search_substring(query, terms, source_ids, max_results)
        return hits

    def _search_fts(
        self, match: str, source_ids: Sequence[str], limit: int
    ) -> list[SearchHit]:
        placeholders = ",".join("?" * len(source_ids))
        rows = self._conn.execute(
            f"""
            SELECT c.rowid AS id, c.source_id, c.chunk_index, c.content,
                   -bm25(chunks_fts) AS score, s.name AS source_name
            FROM chunks_fts
            JOIN chunks c ON c.rowid = chunks_fts.rowid
            JOIN knowledge_sources s ON s.id = c.source_id
                AND c.generation = s.chunk_generation
            WHERE chunks_fts MATCH ? AND c.source_id IN ({placeholders})
            ORDER BY score DESC, c.source_id, c.chunk_index, c.rowid
            LIMIT ?
            """,
            (match, *source_ids, limit),
        ).fetchall()
        return [_row_to_hit(r) for r in rows]

    def _search_substring(
        self, query: str, terms: list[str], source_ids: Sequence[str], limit: int
    ) -> list[SearchHit]:
        words = terms[:_FALLBACK_WORDS]
        placeholders = ",".join("?" * len(source_ids))
        any_word = " OR ".join("c.content LIKE ?" for _ in words)
        rows = self._conn.execute(
            f"""
            SELECT c.rowid AS id, c.source_id, c.chunk_index, c.content,
                   CASE
                       WHEN c.content LIKE ? THEN 3.0
                       WHEN c.content LIKE ? THEN 2.0
                       ELSE 1.0
                   END AS score,
                   s.name AS source_name
            FROM chunks c
            JOIN knowledge_sources s ON s.id = c.source_id
                AND c.generation = s.chunk_generation
            WHERE c.source_id IN ({placeholders}) AND ({any_word})
            ORDER BY score DESC, c.chunk_index, c.source_id, c.rowid
            LIMIT ?
            """,
            (
                f"%{query.strip()}%",
                f"%{words[0]}%",
                *source_ids,
                *(f"%{w}%" for w in words),
                limit,
            ),
        ).fetchall()
        return [_row_to_hit(r) for r in rows]

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    @_persists
    def add_workspace(self, workspace: Workspace) -> None:
        self._conn.execute(
            """
            INSERT INTO workspaces (id, name, description, mode, color, settings)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                workspace.id,
                workspace.name,
                workspace.description,
                WorkspaceMode(workspace.mode).value,
                workspace.color,
                json.dumps(workspace.settings),
            ),
        )
        self._conn.commit()

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        row = self._conn.execute(
            "SELECT id, name, description, mode, color, settings, created_at "
            "FROM workspaces WHERE id = ?",
            (workspace_id,),
        ).fetchone()
        return _row_to_workspace(row) if row else None

    def require_workspace(self, workspace_id: str) -> Workspace:
        workspace = self.get_workspace(workspace_id)
        if workspace is None:
            raise NotFoundError(f"Workspace not found: {workspace_id}")
        return workspace

    def list_workspaces(self) -> list[Workspace]:
        rows = self._conn.execute(
            "SELECT id, name, description, mode, color, settings, created_at "
            "FROM workspaces ORDER BY created_at, rowid"
        ).fetchall()
        return [_row_to_workspace(r) for r in rows]

    @_persists
    def link_source(self, workspace_id: str, source_id: str, enabled: bool = True) -> None:
        """Link *source_id* to *workspace_id* (idempotent; updates the flag)."""
        self._conn.execute(
            """
            INSERT INTO workspace_sources (workspace_id, source_id, is_enabled)
            VALUES (?, ?, ?)
            ON CONFLICT(workspace_id, source_id) DO UPDATE SET
                is_enabled = excluded.is_enabled
            """,
            (workspace_id, source_id, int(enabled)),
        )
        self._conn.commit()

    @_persists
    def unlink_source(self, workspace_id: str, source_id: str) -> None:
        self._conn.execute(
            "DELETE FROM workspace_sources WHERE workspace_id = ? AND source_id = ?",
            (workspace_id, source_id),
        )
        self._conn.commit()

    @_persists
    def set_source_enabled(self, workspace_id: str, source_id: str, enabled: bool) -> None:
        """Toggle an existing link. Raises NotFoundError if there is no link."""
        cur = self._conn.execute(
            "UPDATE workspace_sources SET is_enabled = ? "
            "WHERE workspace_id = ? AND source_id = ?",
            (int(enabled), workspace_id, source_id),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            raise NotFoundError(
                f"Source {source_id} is not linked to workspace {workspace_id}"
            )

    def list_workspace_sources(self, workspace_id: str) -> list[WorkspaceSource]:
        rows = self._conn.execute(
            "SELECT workspace_id, source_id, is_enabled, added_at FROM workspace_sources "
            "WHERE workspace_id = ? ORDER BY added_at, rowid",
            (workspace_id,),
        ).fetchall()
        return [
            WorkspaceSource(
                workspace_id=r["workspace_id"],
                source_id=r["source_id"],
                enabled=bool(r["is_enabled"]),
                added_at=r["added_at"],
            )
            for r in rows
        ]

    def enabled_source_ids(self, workspace_id: str) -> list[str]:
        """Return the retrieval scope: sources linked to *workspace_id* with enabled=true."""
        rows = self._conn.execute(
            "SELECT source_id FROM workspace_sources "
            "WHERE workspace_id = ? AND is_enabled = 1 ORDER BY source_id",
            (workspace_id,),
        ).fetchall()
        return [r["source_id"] for r in rows]

    # ------------------------------------------------------------------
    # Conversations + messages
    # ------------------------------------------------------------------

    @_persists
    def create_conversation(self, workspace_id: str, title: str | None) -> Conversation:
        conversation_id = str(uuid.uuid4())
        self._conn.execute(
            "INSERT INTO conversations (id, workspace_id, title) VALUES (?, ?, ?)",
            (conversation_id, workspace_id, title),
        )
        self._conn.commit()
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            raise PersistenceError(f"Conversation {conversation_id} was not stored")
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = self._conn.execute(
            "SELECT id, workspace_id, title, created_at, updated_at "
            "FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        return _row_to_conversation(row) if row else None

    def list_conversations(self, workspace_id: str) -> list[Conversation]:
        """Conversations of *workspace_id*, most recently updated first."""
        rows = self._conn.execute(
            "SELECT id, workspace_id, title, created_at, updated_at FROM conversations "
            "WHERE workspace_id = ? ORDER BY updated_at DESC, rowid DESC",
            (workspace_id,),
        ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    @_persists
    def rename_conversation(self, conversation_id: str, title: str) -> None:
        cur = self._conn.execute(
            "UPDATE conversations SET title = ?, updated_at = datetime('now') WHERE id = ?",
            (title, conversation_id),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            raise NotFoundError(f"Conversation not found: {conversation_id}")

    @_persists
    def delete_conversation(self, conversation_id: str) -> None:
        self._conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        self._conn.commit()

    @_persists
    def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        citations: Sequence[Citation] = (),
    ) -> Message:
        """Append a message to a conversation. Messages are never updated."""
        message_id = str(uuid.uuid4())
        with self._immediate():
            self._conn.execute(
                """
                INSERT INTO messages (id, conversation_id, role, content, sources)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    conversation_id,
                    MessageRole(role).value,
                    content,
                    json.dumps([c.to_dict() for c in citations]),
                ),
            )
            self._conn.execute(
                "UPDATE conversations SET updated_at = datetime('now') WHERE id = ?",
                (conversation_id,),
            )
        return Message(
            id=message_id,
            conversation_id=conversation_id,
            role=MessageRole(role),
            content=content,
            citations=list(citations),
        )

    def list_messages(self, conversation_id: str) -> list[Message]:
        """Messages of a conversation in insertion order."""
        rows = self._conn.execute(
            "SELECT id, conversation_id, role, content, sources, created_at "
            "FROM messages WHERE conversation_id = ? ORDER BY rowid",
            (conversation_id,),
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    def has_unanswered_message(self, conversation_id: str) -> bool:
        """True if the last message of the conversation is a user message."""
        row = self._conn.execute(
            "SELECT role FROM messages WHERE conversation_id = ? "
            "ORDER BY rowid DESC LIMIT 1",
            (conversation_id,),
        ).fetchone()
        return row is not None and row["role"] == MessageRole.USER.value


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _query_terms(query: str) -> list[str]:
    # FTS5 MATCH rejects punctuation; keep word characters only.
    return re.sub(r"[^\w\s]", " ", query).split()


def _row_to_source(row: sqlite3.Row) -> KnowledgeSource:
    return KnowledgeSource(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        source_type=SourceType(row["source_type"]),
        status=SourceStatus(row["status"]),
        file_path=row["file_path"],
        original_url=row["original_url"],
        mime_type=row["mime_type"],
        file_size=row["file_size"],
        chunk_count=row["chunk_count"],
        chunk_generation=row["chunk_generation"],
        error_message=row["error_message"],
        last_processed_at=row["last_processed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> DocumentChunk:
    return DocumentChunk(
        id=row["rowid"],
        source_id=row["source_id"],
        generation=row["generation"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        token_count=row["token_count"],
        metadata=row["metadata"],
        created_at=row["created_at"],
    )


def _row_to_hit(row: sqlite3.Row) -> SearchHit:
    return SearchHit(
        id=row["id"],
        source_id=row["source_id"],
        source_name=row["source_name"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        rank=float(row["score"]),
    )


def _row_to_workspace(row: sqlite3.Row) -> Workspace:
    return Workspace(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        mode=WorkspaceMode(row["mode"]),
        color=row["color"],
        settings=json.loads(row["settings"] or "{}"),
        created_at=row["created_at"],
    )


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        workspace_id=row["workspace_id"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=MessageRole(row["role"]),
        content=row["content"],
        citations=[Citation.from_dict(c) for c in json.loads(row["sources"] or "[]")],
        created_at=row["created_at"],
    )
