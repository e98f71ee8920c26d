"""
SQLite-backed paper store.

Holds processed papers, their embedding vectors and assembled reports.
The store is a best-effort cache: callers treat write failures as stale
data, never as a failed search.
DB path: ~/.cache/scholarcast/papers.db
"""

import atexit
import json
import logging
import os
import sqlite3
import threading
import time
from collections import Counter
from pathlib import Path
from typing import List, Optional

import numpy as np

from scholarcast.errors import PersistenceFailure
from scholarcast.models import EmbeddingVector, ProcessedPaper, ReportArtifact, SearchResult

logger = logging.getLogger(__name__)

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS papers "
    "(id TEXT PRIMARY KEY, data TEXT, title TEXT, abstract TEXT, summary TEXT, "
    "venue TEXT, importance INTEGER, has_audio INTEGER, processed_at TEXT, updated_at REAL)",
    "CREATE TABLE IF NOT EXISTS vectors "
    "(paper_id TEXT PRIMARY KEY, provenance TEXT, dim INTEGER, data BLOB)",
    "CREATE TABLE IF NOT EXISTS reports "
    "(id TEXT PRIMARY KEY, data TEXT, created_at REAL)",
    "CREATE TABLE IF NOT EXISTS searches "
    "(id INTEGER PRIMARY KEY AUTOINCREMENT, query TEXT, attempted INTEGER, succeeded INTEGER, "
    "report_id TEXT, searched_at TEXT)",
)


class PaperStore:
    def __init__(self, db_path: str = None):
        if db_path is None:
            db_path = os.path.expanduser("~/.cache/scholarcast/papers.db")
        self.db_path = str(db_path)
        self._closed = False
        self._lock = threading.Lock()

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        # Used from asyncio.to_thread workers; writes are serialized by _lock
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        for stmt in _SCHEMA:
            self.conn.execute(stmt)
        self.conn.commit()

        atexit.register(self.close)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        if not self._closed:
            self._closed = True
            self.conn.close()

    # --- papers ---

    def persist(self, paper: ProcessedPaper, vector: Optional[EmbeddingVector] = None) -> None:
        data = paper.to_dict()
        data["persisted"] = True
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT OR REPLACE INTO papers "
                    "(id, data, title, abstract, summary, venue, importance, has_audio, processed_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        paper.id, json.dumps(data), paper.record.title, paper.record.abstract,
                        paper.summary.summary, paper.record.venue, paper.summary.importance,
                        1 if paper.audio else 0, paper.processed_at, time.time(),
                    ),
                )
                if vector is not None:
                    blob = np.asarray(vector.values, dtype=np.float32).tobytes()
                    self.conn.execute(
                        "INSERT OR REPLACE INTO vectors (paper_id, provenance, dim, data) VALUES (?, ?, ?, ?)",
                        (paper.id, vector.provenance, vector.dimension, blob),
                    )
                self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(paper.id, e) from e

    @staticmethod
    def _row_to_paper(row) -> Optional[ProcessedPaper]:
        try:
            return ProcessedPaper.from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            logger.warning(f"PaperStore: skipping unreadable row: {e}")
            return None

    def load(self, paper_id: str) -> Optional[ProcessedPaper]:
        with self._lock:
            row = self.conn.execute("SELECT data FROM papers WHERE id = ?", (paper_id,)).fetchone()
        return self._row_to_paper(row) if row else None

    def load_all(self, limit: Optional[int] = None) -> List[ProcessedPaper]:
        sql = "SELECT data FROM papers ORDER BY updated_at DESC"
        params = ()
        if limit:
            sql += " LIMIT ?"
            params = (int(limit),)
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [p for p in (self._row_to_paper(r) for r in rows) if p is not None]

    def load_vectors(self) -> List[EmbeddingVector]:
        with self._lock:
            rows = self.conn.execute("SELECT paper_id, provenance, data FROM vectors").fetchall()
        return [
            EmbeddingVector(paper_id=pid, values=np.frombuffer(blob, dtype=np.float32).tolist(), provenance=prov)
            for pid, prov, blob in rows
        ]

    def delete(self, paper_id: str) -> bool:
        with self._lock:
            deleted = self.conn.execute("DELETE FROM papers WHERE id = ?", (paper_id,)).rowcount
            self.conn.execute("DELETE FROM vectors WHERE paper_id = ?", (paper_id,))
            self.conn.commit()
        return deleted > 0

    def search(self, text: str, limit: int = 10) -> List[ProcessedPaper]:
        """Case-insensitive substring match over title, abstract and summary."""
        pattern = f"%{text.strip().lower()}%"
        with self._lock:
            rows = self.conn.execute(
                "SELECT data FROM papers WHERE lower(title) LIKE ? OR lower(abstract) LIKE ? "
                "OR lower(summary) LIKE ? ORDER BY importance DESC, updated_at DESC LIMIT ?",
                (pattern, pattern, pattern, int(limit)),
            ).fetchall()
        return [p for p in (self._row_to_paper(r) for r in rows) if p is not None]

    def stats(self) -> dict:
        with self._lock:
            total, with_audio, avg = self.conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(has_audio), 0), AVG(importance) FROM papers"
            ).fetchone()
            venues = [v for (v,) in self.conn.execute("SELECT venue FROM papers").fetchall() if v]
            recent = self.conn.execute(
                "SELECT id, title FROM papers ORDER BY updated_at DESC LIMIT 5"
            ).fetchall()
            reports = self.conn.execute("SELECT COUNT(*) FROM reports").fetchone()[0]
            searches = self.conn.execute("SELECT COUNT(*) FROM searches").fetchone()[0]
        return {
            "total_papers": total,
            "papers_with_audio": with_audio,
            "average_importance": round(avg, 2) if avg is not None else 0.0,
            "top_venues": [{"venue": v, "count": c} for v, c in Counter(venues).most_common(5)],
            "recent_papers": [{"id": pid, "title": title} for pid, title in recent],
            "total_reports": reports,
            "total_searches": searches,
        }

    def clear(self) -> None:
        with self._lock:
            for table in ("papers", "vectors", "reports", "searches"):
                self.conn.execute(f"DELETE FROM {table}")
            self.conn.commit()

    # --- reports ---

    def save_report(self, report: ReportArtifact) -> None:
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT OR REPLACE INTO reports (id, data, created_at) VALUES (?, ?, ?)",
                    (report.id, json.dumps(report.to_dict()), time.time()),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(report.id, e) from e

    def load_report(self, report_id: str) -> Optional[ReportArtifact]:
        with self._lock:
            row = self.conn.execute("SELECT data FROM reports WHERE id = ?", (report_id,)).fetchone()
        if not row:
            return None
        try:
            return ReportArtifact.from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            logger.warning(f"PaperStore: unreadable report {report_id}: {e}")
            return None

    # --- search history ---

    def record_search(self, result: SearchResult) -> None:
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO searches (query, attempted, succeeded, report_id, searched_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        result.query, result.attempted, result.succeeded,
                        result.report.id if result.report else None, result.search_time,
                    ),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"search '{result.query[:40]}'", e) from e

    def recent_searches(self, limit: int = 20) -> List[dict]:
        """Newest first."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT query, attempted, succeeded, report_id, searched_at FROM searches "
                "ORDER BY id DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
        return [
            {"query": q, "attempted": a, "paper_count": s, "report_id": rid, "timestamp": ts}
            for q, a, s, rid, ts in rows
        ]
