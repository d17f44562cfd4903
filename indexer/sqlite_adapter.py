"""SQLite document store for siteqa.

Holds the crawled corpus (pages, chunks), the session journal (sessions,
turns) and the reviewed-answer overrides. The interface is async so callers
stay agnostic of the backend; the work itself runs on one sqlite3 connection.
"""

import functools
import json
import logging
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from indexer.embeddings import deserialize_embedding, serialize_embedding
from services.models import (
    ChunkRecord,
    Feedback,
    Override,
    Page,
    Session,
    SessionPage,
    SessionSummary,
    Turn,
    utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS pages (
    url TEXT PRIMARY KEY,
    title TEXT NOT NULL DEFAULT '',
    content_hash TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL REFERENCES pages(url) ON DELETE CASCADE,
    idx INTEGER NOT NULL,
    text TEXT NOT NULL,
    embedding BLOB
);
CREATE INDEX IF NOT EXISTS idx_chunks_url ON chunks(url, idx);

CREATE TABLE IF NOT EXISTS sessions (
    sid TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at);

CREATE TABLE IF NOT EXISTS turns (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    mid TEXT NOT NULL UNIQUE,
    sid TEXT NOT NULL REFERENCES sessions(sid) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    sources TEXT NOT NULL DEFAULT '[]',
    ts TEXT NOT NULL,
    feedback TEXT,
    correct INTEGER,
    meta TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_turns_sid ON turns(sid, seq);

CREATE TABLE IF NOT EXISTS faq_overrides (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    question TEXT NOT NULL,
    norm_question TEXT NOT NULL UNIQUE,
    answer TEXT NOT NULL DEFAULT '',
    question_embedding BLOB,
    force INTEGER NOT NULL DEFAULT 0,
    reviewer TEXT NOT NULL DEFAULT '',
    sid TEXT,
    assistant_mid TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

FULLTEXT_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(text, content='chunks', content_rowid='id');

CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON chunks BEGIN
    INSERT INTO chunks_fts(rowid, text) VALUES (new.id, new.text);
END;
CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, text) VALUES ('delete', old.id, old.text);
END;
CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, text) VALUES ('delete', old.id, old.text);
    INSERT INTO chunks_fts(rowid, text) VALUES (new.id, new.text);
END;
"""

CHUNK_COLUMNS = "id, url, idx, text, embedding"


def _ts(value: Optional[datetime] = None) -> str:
    """Stored timestamp format: UTC ISO-8601 with fixed microsecond precision."""
    value = value or utcnow()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@functools.lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern, re.IGNORECASE)


def _regexp(pattern: str, value: Optional[str]) -> bool:
    # sqlite calls regexp(Y, X) for "X REGEXP Y"
    if value is None:
        return False
    return _compile(pattern).search(value) is not None


class SQLiteAdapter:
    """SQLite document store with an async interface."""

    def __init__(self, db_path: str, enable_fulltext: bool = True):
        self.db_path = db_path
        self.enable_fulltext = enable_fulltext
        self.supports_fulltext = False
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Open the connection, register functions and ensure the schema exists."""
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.create_function("REGEXP", 2, _regexp, deterministic=True)

            self.conn.executescript(SCHEMA_SQL)
            self.conn.commit()
            self.supports_fulltext = self._probe_fulltext()

            logger.info(f"SQLite adapter initialized: {self.db_path} (fulltext={self.supports_fulltext})")

        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite: {e}")
            raise

    def _probe_fulltext(self) -> bool:
        if not self.enable_fulltext:
            return False
        try:
            self.conn.executescript(FULLTEXT_SQL)
            self.conn.commit()
        except sqlite3.OperationalError as e:
            logger.warning(f"FTS5 unavailable, lexical search will scan: {e}")
            return False
        return True

    async def close(self):
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("SQLite connection closed")

    # ------------------------------------------------------------------ pages

    async def get_page(self, url: str) -> Optional[Page]:
        row = self.conn.execute(
            "SELECT url, title, content_hash, updated_at FROM pages WHERE url = ?", (url,)
        ).fetchone()
        if not row:
            return None
        return Page(
            url=row["url"],
            title=row["title"],
            content_hash=row["content_hash"],
            updated_at=_parse_ts(row["updated_at"]),
        )

    async def touch_page(self, url: str, when: Optional[datetime] = None):
        """Bump a page's updated_at without touching its chunks."""
        with self.conn:
            self.conn.execute("UPDATE pages SET updated_at = ? WHERE url = ?", (_ts(when), url))

    async def replace_page(self, url: str, title: str, content_hash: str,
                           chunks: Sequence[Tuple[str, Any]]) -> List[int]:
        """Replace every chunk of ``url`` and upsert the page, all in one transaction.

        Args:
            url: Page url
            title: Extracted title
            content_hash: Digest of the extracted text
            chunks: ``(text, embedding)`` pairs in page order

        Returns:
            Ids of the inserted chunks
        """
        ids: List[int] = []
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO pages (url, title, content_hash, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(url) DO UPDATE SET
                    title = excluded.title,
                    content_hash = excluded.content_hash,
                    updated_at = excluded.updated_at
                """,
                (url, title or "", content_hash, _ts()),
            )
            self.conn.execute("DELETE FROM chunks WHERE url = ?", (url,))
            for idx, (text, embedding) in enumerate(chunks):
                blob = serialize_embedding(embedding) if embedding is not None else None
                cursor = self.conn.execute(
                    "INSERT INTO chunks (url, idx, text, embedding) VALUES (?, ?, ?, ?)",
                    (url, idx, text, blob),
                )
                ids.append(cursor.lastrowid)
        return ids

    async def clear_corpus(self) -> Tuple[int, int]:
        """Delete all pages and chunks. Returns ``(pages, chunks)`` removed."""
        with self.conn:
            chunks = self.conn.execute("DELETE FROM chunks").rowcount
            pages = self.conn.execute("DELETE FROM pages").rowcount
        logger.info(f"Cleared corpus: {pages} pages, {chunks} chunks")
        return pages, chunks

    # ----------------------------------------------------------------- chunks

    @staticmethod
    def _chunk_from_row(row: sqlite3.Row) -> ChunkRecord:
        return ChunkRecord(
            id=row["id"],
            url=row["url"],
            index=row["idx"],
            text=row["text"],
            embedding=deserialize_embedding(row["embedding"]),
        )

    def _chunks(self, sql: str, params: Sequence[Any] = ()) -> List[ChunkRecord]:
        return [self._chunk_from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    async def list_chunks(self, url: str) -> List[ChunkRecord]:
        return self._chunks(
            f"SELECT {CHUNK_COLUMNS} FROM chunks WHERE url = ? ORDER BY idx", (url,)
        )

    async def search_fulltext(self, match_query: str, limit: int) -> List[ChunkRecord]:
        """FTS5 MATCH over chunk text, best rank first."""
        return self._chunks(
            f"""
            SELECT c.id, c.url, c.idx, c.text, c.embedding
            FROM chunks_fts
            JOIN chunks c ON chunks_fts.rowid = c.id
            WHERE chunks_fts MATCH ?
            ORDER BY chunks_fts.rank
            LIMIT ?
            """,
            (match_query, limit),
        )

    async def search_regex(self, patterns: Sequence[str], limit: int) -> List[ChunkRecord]:
        """Chunks whose text matches any of ``patterns`` (case-insensitive)."""
        if not patterns:
            return []
        where = " OR ".join("text REGEXP ?" for _ in patterns)
        return self._chunks(
            f"SELECT {CHUNK_COLUMNS} FROM chunks WHERE {where} ORDER BY id LIMIT ?",
            (*patterns, limit),
        )

    async def find_chunks_by_url_pattern(self, pattern: str, limit: int) -> List[ChunkRecord]:
        return self._chunks(
            f"SELECT {CHUNK_COLUMNS} FROM chunks WHERE url REGEXP ? ORDER BY url, idx LIMIT ?",
            (pattern, limit),
        )

    async def search_chunks_containing(self, terms: Sequence[str], limit: int) -> List[ChunkRecord]:
        """Chunks containing any of ``terms`` as a case-insensitive substring."""
        terms = [t.lower() for t in terms if t]
        if not terms:
            return []
        where = " OR ".join("instr(lower(text), ?) > 0" for _ in terms)
        return self._chunks(
            f"SELECT {CHUNK_COLUMNS} FROM chunks WHERE {where} ORDER BY id LIMIT ?",
            (*terms, limit),
        )

    async def sample_chunks(self, limit: int) -> List[ChunkRecord]:
        return self._chunks(f"SELECT {CHUNK_COLUMNS} FROM chunks ORDER BY id LIMIT ?", (limit,))

    # --------------------------------------------------------------- sessions

    @staticmethod
    def _turn_from_row(row: sqlite3.Row) -> Turn:
        feedback = json.loads(row["feedback"]) if row["feedback"] else None
        return Turn(
            mid=row["mid"],
            role=row["role"],
            content=row["content"],
            sources=json.loads(row["sources"] or "[]"),
            ts=_parse_ts(row["ts"]),
            feedback=Feedback(**feedback) if feedback else None,
            meta=json.loads(row["meta"] or "{}"),
        )

    async def append_turn(self, sid: str, turn: Turn):
        """Create the session if needed and append ``turn`` in one transaction."""
        now = _ts(turn.ts)
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO sessions (sid, created_at, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(sid) DO UPDATE SET updated_at = excluded.updated_at
                """,
                (sid, now, now),
            )
            self.conn.execute(
                """
                INSERT INTO turns (mid, sid, role, content, sources, ts, meta)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    turn.mid,
                    sid,
                    turn.role,
                    turn.content,
                    json.dumps(turn.sources),
                    now,
                    json.dumps(turn.meta, default=str),
                ),
            )

    async def load_history(self, sid: str, limit: Optional[int] = None) -> List[Turn]:
        """Turns of a session in insertion order; ``limit`` keeps only the newest."""
        if limit is not None:
            rows = self.conn.execute(
                "SELECT * FROM (SELECT * FROM turns WHERE sid = ? ORDER BY seq DESC LIMIT ?) ORDER BY seq",
                (sid, limit),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM turns WHERE sid = ? ORDER BY seq", (sid,)
            ).fetchall()
        return [self._turn_from_row(row) for row in rows]

    async def load_session(self, sid: str) -> Optional[Session]:
        row = self.conn.execute("SELECT * FROM sessions WHERE sid = ?", (sid,)).fetchone()
        if not row:
            return None
        return Session(
            sid=row["sid"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            history=await self.load_history(sid),
        )

    async def set_turn_feedback(self, mid: str, feedback: Feedback,
                                sid: Optional[str] = None) -> Optional[Turn]:
        """Attach feedback to one turn. Returns the updated turn, or None if unknown."""
        params: List[Any] = [mid]
        where = "mid = ?"
        if sid:
            where += " AND sid = ?"
            params.append(sid)

        with self.conn:
            row = self.conn.execute(f"SELECT sid FROM turns WHERE {where}", params).fetchone()
            if not row:
                return None
            payload = feedback.model_dump(mode="json", by_alias=True)
            self.conn.execute(
                "UPDATE turns SET feedback = ?, correct = ? WHERE mid = ?",
                (json.dumps(payload), int(feedback.correct), mid),
            )
            self.conn.execute(
                "UPDATE sessions SET updated_at = ? WHERE sid = ?", (_ts(feedback.ts), row["sid"])
            )

        updated = self.conn.execute("SELECT * FROM turns WHERE mid = ?", (mid,)).fetchone()
        return self._turn_from_row(updated)

    async def delete_session(self, sid: str) -> bool:
        with self.conn:
            deleted = self.conn.execute("DELETE FROM sessions WHERE sid = ?", (sid,)).rowcount
        return deleted > 0

    async def list_sessions(self, q: Optional[str] = None,
                            date_from: Optional[datetime] = None,
                            date_to: Optional[datetime] = None,
                            limit: int = 25, skip: int = 0) -> SessionPage:
        """Page through sessions, newest first, with feedback counts."""
        conditions = []
        params: List[Any] = []
        if q:
            conditions.append(
                "EXISTS (SELECT 1 FROM turns tq WHERE tq.sid = s.sid AND instr(lower(tq.content), ?) > 0)"
            )
            params.append(q.lower())
        if date_from:
            conditions.append("s.updated_at >= ?")
            params.append(_ts(date_from))
        if date_to:
            conditions.append("s.updated_at <= ?")
            params.append(_ts(date_to))
        where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

        total = self.conn.execute(
            f"SELECT COUNT(*) FROM sessions s {where_clause}", params
        ).fetchone()[0]

        rows = self.conn.execute(
            f"""
            SELECT s.sid, s.created_at, s.updated_at,
                   COUNT(t.seq) AS count,
                   COALESCE(SUM(CASE WHEN t.correct = 1 THEN 1 ELSE 0 END), 0) AS correct,
                   COALESCE(SUM(CASE WHEN t.correct = 0 THEN 1 ELSE 0 END), 0) AS incorrect
            FROM sessions s
            LEFT JOIN turns t ON t.sid = s.sid
            {where_clause}
            GROUP BY s.sid
            ORDER BY s.updated_at DESC
            LIMIT ? OFFSET ?
            """,
            (*params, limit, skip),
        ).fetchall()

        return SessionPage(
            total=total,
            limit=limit,
            skip=skip,
            rows=[
                SessionSummary(
                    sid=row["sid"],
                    created_at=_parse_ts(row["created_at"]),
                    updated_at=_parse_ts(row["updated_at"]),
                    count=row["count"],
                    correct=row["correct"],
                    incorrect=row["incorrect"],
                )
                for row in rows
            ],
        )

    async def list_session_ids(self) -> List[str]:
        """Every session id, most recently updated first."""
        rows = self.conn.execute("SELECT sid FROM sessions ORDER BY updated_at DESC").fetchall()
        return [row["sid"] for row in rows]

    # -------------------------------------------------------------- overrides

    @staticmethod
    def _override_from_row(row: sqlite3.Row) -> Override:
        embedding = deserialize_embedding(row["question_embedding"])
        return Override(
            id=row["id"],
            question=row["question"],
            norm_question=row["norm_question"],
            answer=row["answer"],
            question_embedding=embedding.tolist() if embedding is not None else None,
            force=bool(row["force"]),
            reviewer=row["reviewer"],
            sid=row["sid"],
            assistant_mid=row["assistant_mid"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    async def find_override_by_question(self, norm_question: str) -> Optional[Override]:
        """Exact match on norm_question, falling back to the case-folded question."""
        row = self.conn.execute(
            """
            SELECT * FROM faq_overrides
            WHERE norm_question = ? OR lower(trim(question)) = ?
            ORDER BY CASE WHEN norm_question = ? THEN 0 ELSE 1 END, id
            LIMIT 1
            """,
            (norm_question, norm_question, norm_question),
        ).fetchone()
        return self._override_from_row(row) if row else None

    async def list_overrides_with_embeddings(self) -> List[Override]:
        rows = self.conn.execute(
            "SELECT * FROM faq_overrides WHERE question_embedding IS NOT NULL ORDER BY id"
        ).fetchall()
        return [self._override_from_row(row) for row in rows]

    async def upsert_override(self, override: Override) -> Override:
        """Insert or update keyed by norm_question. A missing embedding keeps the stored one."""
        now = _ts()
        blob = (
            serialize_embedding(override.question_embedding)
            if override.question_embedding else None
        )
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO faq_overrides (question, norm_question, answer, question_embedding, force,
                                           reviewer, sid, assistant_mid, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(norm_question) DO UPDATE SET
                    question = excluded.question,
                    answer = excluded.answer,
                    question_embedding = COALESCE(excluded.question_embedding, faq_overrides.question_embedding),
                    force = excluded.force,
                    reviewer = excluded.reviewer,
                    sid = COALESCE(excluded.sid, faq_overrides.sid),
                    assistant_mid = COALESCE(excluded.assistant_mid, faq_overrides.assistant_mid),
                    updated_at = excluded.updated_at
                """,
                (
                    override.question,
                    override.norm_question,
                    override.answer,
                    blob,
                    int(override.force),
                    override.reviewer,
                    override.sid,
                    override.assistant_mid,
                    now,
                    now,
                ),
            )
        row = self.conn.execute(
            "SELECT * FROM faq_overrides WHERE norm_question = ?", (override.norm_question,)
        ).fetchone()
        return self._override_from_row(row)

    async def update_override_key(self, override_id: int, norm_question: str,
                                  question_embedding: Optional[List[float]] = None):
        """Rewrite the lookup key (and optionally the embedding) of one override."""
        blob = serialize_embedding(question_embedding) if question_embedding else None
        with self.conn:
            self.conn.execute(
                """
                UPDATE faq_overrides
                SET norm_question = ?,
                    question_embedding = COALESCE(?, question_embedding),
                    updated_at = ?
                WHERE id = ?
                """,
                (norm_question, blob, _ts(), override_id),
            )

    async def list_overrides(self, q: Optional[str] = None, force: Optional[bool] = None,
                             limit: int = 50, skip: int = 0) -> Tuple[int, List[Override]]:
        conditions = []
        params: List[Any] = []
        if q:
            conditions.append("(instr(lower(question), ?) > 0 OR instr(lower(answer), ?) > 0)")
            params.extend([q.lower(), q.lower()])
        if force is not None:
            conditions.append("force = ?")
            params.append(int(force))
        where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

        total = self.conn.execute(
            f"SELECT COUNT(*) FROM faq_overrides {where_clause}", params
        ).fetchone()[0]
        rows = self.conn.execute(
            f"SELECT * FROM faq_overrides {where_clause} ORDER BY updated_at DESC LIMIT ? OFFSET ?",
            (*params, limit, skip),
        ).fetchall()
        return total, [self._override_from_row(row) for row in rows]

    async def get_override(self, override_id: int) -> Optional[Override]:
        row = self.conn.execute("SELECT * FROM faq_overrides WHERE id = ?", (override_id,)).fetchone()
        return self._override_from_row(row) if row else None

    async def delete_override(self, override_id: int) -> bool:
        with self.conn:
            deleted = self.conn.execute("DELETE FROM faq_overrides WHERE id = ?", (override_id,)).rowcount
        return deleted > 0

    # ------------------------------------------------------------------ stats

    async def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics for monitoring."""
        cursor = self.conn.cursor()

        def count(sql: str) -> int:
            return cursor.execute(sql).fetchone()[0]

        return {
            'page_count': count("SELECT COUNT(*) FROM pages"),
            'chunk_count': count("SELECT COUNT(*) FROM chunks"),
            'embedded_chunk_count': count("SELECT COUNT(*) FROM chunks WHERE embedding IS NOT NULL"),
            'session_count': count("SELECT COUNT(*) FROM sessions"),
            'turn_count': count("SELECT COUNT(*) FROM turns"),
            'override_count': count("SELECT COUNT(*) FROM faq_overrides"),
            'fulltext': self.supports_fulltext,
        }

