"""
SQLite-backed document store for the search index.

One row per documented item, keyed by (crate, version, member, item_id).
Token lists are stored pre-split so queries never re-tokenize the corpus.
"""

import sqlite3
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, Optional

from .tokenize import preprocess_text

ROOT_MEMBER = ""


@dataclass
class SearchDocument:
    """Indexed form of one documentation item."""

    item_id: str
    name: str
    docs: str
    path: str             # joined with "::"
    kind: str
    crate: str
    version: str
    visibility: str
    member: str = ROOT_MEMBER

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return asdict(self)


@dataclass
class StoredDocument:
    """A SearchDocument with its per-field tokens."""

    document: SearchDocument
    name_tokens: list[str]
    docs_tokens: list[str]
    path_tokens: list[str]

    def field_tokens(self, field: str) -> list[str]:
        return {
            "name": self.name_tokens,
            "docs": self.docs_tokens,
            "path": self.path_tokens,
        }[field]

    @property
    def all_tokens(self) -> list[str]:
        return self.name_tokens + self.docs_tokens + self.path_tokens


class DocumentStore:
    """
    File-backed SQLite document table.

    Thread-safe with WAL mode; every statement on the shared connection
    runs under one lock, so readers never see a half-applied replace.
    """

    def __init__(self, db_path: Path):
        """
        Initialize store at given path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,  # Accessed from worker threads
            timeout=10.0,
        )

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create the documents table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                crate TEXT NOT NULL,
                version TEXT NOT NULL,
                member TEXT NOT NULL,
                item_id TEXT NOT NULL,
                name TEXT NOT NULL,
                docs TEXT NOT NULL,
                path TEXT NOT NULL,
                kind TEXT NOT NULL,
                visibility TEXT NOT NULL,
                name_tokens TEXT NOT NULL,
                docs_tokens TEXT NOT NULL,
                path_tokens TEXT NOT NULL,
                ts INTEGER NOT NULL,
                PRIMARY KEY (crate, version, member, item_id)
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_crate
            ON documents(crate, version)
        """)
        self._conn.commit()

    def replace_documents(
        self,
        crate: str,
        version: str,
        member: str,
        documents: Iterable[SearchDocument],
    ) -> int:
        """
        Atomically replace every document for one crate/version/member.

        Returns:
            Number of documents written
        """
        ts = int(time.time())
        rows = [
            (
                d.crate, d.version, d.member, d.item_id, d.name, d.docs, d.path,
                d.kind, d.visibility,
                " ".join(preprocess_text(d.name)),
                " ".join(preprocess_text(d.docs)),
                " ".join(preprocess_text(d.path)),
                ts,
            )
            for d in documents
        ]

        with self._lock:
            with self._conn:
                self._conn.execute(
                    "DELETE FROM documents WHERE crate = ? AND version = ? AND member = ?",
                    (crate, version, member),
                )
                self._conn.executemany(
                    """
                    INSERT OR REPLACE INTO documents
                    (crate, version, member, item_id, name, docs, path, kind,
                     visibility, name_tokens, docs_tokens, path_tokens, ts)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        return len(rows)

    def count(self, crate: str, version: str, member: Optional[str] = None) -> int:
        """Number of documents for a crate/version (optionally one member)."""
        sql = "SELECT COUNT(*) FROM documents WHERE crate = ? AND version = ?"
        params: list = [crate, version]
        if member is not None:
            sql += " AND member = ?"
            params.append(member)
        with self._lock:
            return self._conn.execute(sql, params).fetchone()[0]

    def delete(self, crate: str, version: str) -> int:
        """
        Delete every document for a crate/version, members included.

        Returns:
            Number of rows deleted
        """
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM documents WHERE crate = ? AND version = ?",
                    (crate, version),
                )
        return cursor.rowcount

    def fetch(
        self,
        crate: str,
        version: Optional[str] = None,
        member: Optional[str] = None,
    ) -> list[StoredDocument]:
        """
        Load documents for a crate, optionally narrowed by version and member.

        Returns:
            StoredDocument rows ordered by path then name
        """
        sql = """
            SELECT item_id, name, docs, path, kind, crate, version, visibility,
                   member, name_tokens, docs_tokens, path_tokens
            FROM documents WHERE crate = ?
        """
        params: list = [crate]
        if version is not None:
            sql += " AND version = ?"
            params.append(version)
        if member is not None:
            sql += " AND member = ?"
            params.append(member)
        sql += " ORDER BY path, name"

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()

        results = []
        for row in rows:
            document = SearchDocument(*row[:9])
            results.append(
                StoredDocument(
                    document=document,
                    name_tokens=row[9].split(),
                    docs_tokens=row[10].split(),
                    path_tokens=row[11].split(),
                )
            )
        return results

    def stats(self) -> dict:
        """
        Get statistics for the document table.

        Returns:
            Dict with count, crates, oldest_ts, newest_ts
        """
        with self._lock:
            row = self._conn.execute("""
                SELECT
                    COUNT(*),
                    COUNT(DISTINCT crate || '@' || version),
                    MIN(ts),
                    MAX(ts)
                FROM documents
            """).fetchone()

        return {
            "count": row[0] or 0,
            "crates": row[1] or 0,
            "oldest_ts": row[2] or 0,
            "newest_ts": row[3] or 0,
        }

    def close(self) -> None:
        """Close database connection."""
        self._conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
