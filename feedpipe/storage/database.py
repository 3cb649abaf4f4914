from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from feedpipe.errors import StoreError
from feedpipe.models.types import (
    ContentItem,
    IngestionRecord,
    MetricsSnapshot,
    RecordStatus,
)

logger = logging.getLogger(__name__)

_JSON_COLUMNS = {"raw_data", "digest_result", "tags", "author_info", "social_metadata"}
_DATETIME_COLUMNS = {"crawled_at", "published_at", "updated_at"}

_RECORD_COLUMNS = (
    "id", "platform", "platform_id", "status", "url", "title", "content_text",
    "description", "author_name", "author_url", "author_avatar", "thumbnail_url",
    "raw_data", "screenshot_url", "transcript_source_id", "digest_result",
    "translated_title", "translated_content", "error_note", "crawled_at",
    "published_at", "updated_at",
)
_UPDATABLE_RECORD_COLUMNS = frozenset(_RECORD_COLUMNS) - {"id", "platform", "platform_id"}

_CONTENT_COLUMNS = (
    "id", "slug", "title", "title_en", "description", "description_en", "body",
    "body_en", "type", "category", "tags", "platform", "platform_id",
    "external_url", "thumbnail_url", "author_info", "social_metadata", "status",
    "published_at",
)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _encode(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in _JSON_COLUMNS:
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _decode(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in _JSON_COLUMNS:
        return json.loads(value)
    if column in _DATETIME_COLUMNS:
        return datetime.fromisoformat(value)
    return value


class Database:
    def __init__(self, db_path: str = "feedpipe.db") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open store at {db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ingestion_records (
                    id TEXT PRIMARY KEY,
                    platform TEXT NOT NULL,
                    platform_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    url TEXT,
                    title TEXT,
                    content_text TEXT,
                    description TEXT,
                    author_name TEXT,
                    author_url TEXT,
                    author_avatar TEXT,
                    thumbnail_url TEXT,
                    raw_data TEXT,
                    screenshot_url TEXT,
                    transcript_source_id TEXT,
                    digest_result TEXT,
                    translated_title TEXT,
                    translated_content TEXT,
                    error_note TEXT,
                    crawled_at TEXT,
                    published_at TEXT,
                    updated_at TEXT,
                    UNIQUE (platform, platform_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS content_items (
                    id TEXT PRIMARY KEY,
                    slug TEXT UNIQUE,
                    title TEXT,
                    title_en TEXT,
                    description TEXT,
                    description_en TEXT,
                    body TEXT,
                    body_en TEXT,
                    type TEXT,
                    category TEXT,
                    tags TEXT,
                    platform TEXT,
                    platform_id TEXT,
                    external_url TEXT,
                    thumbnail_url TEXT,
                    author_info TEXT,
                    social_metadata TEXT,
                    status TEXT,
                    published_at TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS rankings (
                    content_id TEXT PRIMARY KEY,
                    ranking_json TEXT,
                    updated_at TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS metrics_history (
                    id TEXT PRIMARY KEY,
                    content_id TEXT,
                    recorded_at TEXT,
                    metrics TEXT
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_metrics_content "
                "ON metrics_history (content_id, recorded_at)"
            )
            self._conn.commit()

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, tuple(params))
                self._conn.commit()
                return cursor
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(str(exc)) from exc

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    # -- ingestion records -------------------------------------------------

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> IngestionRecord:
        values = {col: _decode(col, row[col]) for col in _RECORD_COLUMNS}
        values["status"] = RecordStatus(values["status"])
        values["raw_data"] = values["raw_data"] or {}
        for col in ("url", "title", "content_text", "description", "author_name",
                    "author_url", "author_avatar", "thumbnail_url"):
            values[col] = values[col] or ""
        return IngestionRecord(**values)

    def insert_ingestion_record(self, record: IngestionRecord) -> bool:
        """Insert *record* unless its ``(platform, platform_id)`` already exists.

        Returns ``True`` when a new row was created.
        """
        record.crawled_at = record.crawled_at or utcnow()
        record.updated_at = record.updated_at or record.crawled_at
        placeholders = ", ".join("?" for _ in _RECORD_COLUMNS)
        cursor = self._execute(
            f"INSERT OR IGNORE INTO ingestion_records ({', '.join(_RECORD_COLUMNS)}) "
            f"VALUES ({placeholders})",
            (_encode(col, getattr(record, col)) for col in _RECORD_COLUMNS),
        )
        return cursor.rowcount > 0

    def get_ingestion_record(self, record_id: str) -> IngestionRecord | None:
        rows = self._fetchall("SELECT * FROM ingestion_records WHERE id = ?", (record_id,))
        return self._row_to_record(rows[0]) if rows else None

    def get_ingestion_records(self, record_ids: list[str]) -> list[IngestionRecord]:
        if not record_ids:
            return []
        placeholders = ", ".join("?" for _ in record_ids)
        rows = self._fetchall(
            f"SELECT * FROM ingestion_records WHERE id IN ({placeholders}) "
            "ORDER BY crawled_at DESC",
            record_ids,
        )
        return [self._row_to_record(row) for row in rows]

    def find_ingestion_record(self, platform: str, platform_id: str) -> IngestionRecord | None:
        rows = self._fetchall(
            "SELECT * FROM ingestion_records WHERE platform = ? AND platform_id = ?",
            (platform, platform_id),
        )
        return self._row_to_record(rows[0]) if rows else None

    def select_ingestion_records(
        self,
        status: RecordStatus | None = None,
        platform: str | None = None,
        limit: int | None = None,
        updated_before: datetime | None = None,
    ) -> list[IngestionRecord]:
        """Return records matching the filters, most recently crawled first."""
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(RecordStatus(status).value)
        if platform is not None:
            clauses.append("platform = ?")
            params.append(platform)
        if updated_before is not None:
            clauses.append("updated_at < ?")
            params.append(updated_before.isoformat())
        sql = "SELECT * FROM ingestion_records"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY crawled_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [self._row_to_record(row) for row in self._fetchall(sql, params)]

    def update_ingestion_record(
        self,
        record_id: str,
        fields: dict[str, Any],
        expected_status: RecordStatus | None = None,
    ) -> bool:
        """Apply a partial update as one statement.

        When *expected_status* is given the row is only touched if it is
        still in that status. Returns ``True`` when a row changed.
        """
        unknown = set(fields) - _UPDATABLE_RECORD_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        fields = {**fields, "updated_at": fields.get("updated_at") or utcnow()}
        assignments = ", ".join(f"{col} = ?" for col in fields)
        params = [_encode(col, value) for col, value in fields.items()]
        sql = f"UPDATE ingestion_records SET {assignments} WHERE id = ?"
        params.append(record_id)
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(RecordStatus(expected_status).value)
        cursor = self._execute(sql, params)
        return cursor.rowcount > 0

    def delete_ingestion_record(self, record_id: str) -> bool:
        cursor = self._execute("DELETE FROM ingestion_records WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def count_by_status(self) -> dict[str, int]:
        rows = self._fetchall(
            "SELECT status, COUNT(*) AS total FROM ingestion_records GROUP BY status"
        )
        counts = {status.value: 0 for status in RecordStatus}
        counts.update({row["status"]: row["total"] for row in rows})
        return counts

    # -- published content -------------------------------------------------

    @staticmethod
    def _row_to_content(row: sqlite3.Row) -> ContentItem:
        values = {col: _decode(col, row[col]) for col in _CONTENT_COLUMNS}
        values["tags"] = values["tags"] or []
        values["author_info"] = values["author_info"] or {}
        values["social_metadata"] = values["social_metadata"] or {}
        return ContentItem(**values)

    def insert_content_item(self, item: ContentItem) -> None:
        placeholders = ", ".join("?" for _ in _CONTENT_COLUMNS)
        self._execute(
            f"INSERT INTO content_items ({', '.join(_CONTENT_COLUMNS)}) VALUES ({placeholders})",
            (_encode(col, getattr(item, col)) for col in _CONTENT_COLUMNS),
        )

    def get_content_item(self, content_id: str) -> ContentItem | None:
        rows = self._fetchall("SELECT * FROM content_items WHERE id = ?", (content_id,))
        return self._row_to_content(rows[0]) if rows else None

    def find_content_item(self, platform: str, platform_id: str) -> ContentItem | None:
        rows = self._fetchall(
            "SELECT * FROM content_items WHERE platform = ? AND platform_id = ? "
            "ORDER BY published_at ASC",
            (platform, platform_id),
        )
        return self._row_to_content(rows[0]) if rows else None

    def list_published_content(
        self, platforms: list[str], since: datetime
    ) -> list[ContentItem]:
        if not platforms:
            return []
        placeholders = ", ".join("?" for _ in platforms)
        rows = self._fetchall(
            f"SELECT * FROM content_items WHERE platform IN ({placeholders}) "
            "AND published_at >= ? ORDER BY published_at DESC",
            [*platforms, since.isoformat()],
        )
        return [self._row_to_content(row) for row in rows]

    # -- rankings ----------------------------------------------------------

    def get_ranking(self, content_id: str) -> dict[str, Any] | None:
        rows = self._fetchall(
            "SELECT ranking_json FROM rankings WHERE content_id = ?", (content_id,)
        )
        return json.loads(rows[0]["ranking_json"]) if rows else None

    def save_ranking(self, content_id: str, ranking: dict[str, Any]) -> None:
        self._execute(
            "INSERT INTO rankings (content_id, ranking_json, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(content_id) DO UPDATE SET "
            "ranking_json = excluded.ranking_json, updated_at = excluded.updated_at",
            (content_id, json.dumps(ranking), utcnow().isoformat()),
        )

    # -- metrics history ---------------------------------------------------

    def insert_metrics_snapshot(self, snapshot: MetricsSnapshot) -> str:
        snapshot_id = snapshot.id or str(uuid.uuid4())
        self._execute(
            "INSERT INTO metrics_history (id, content_id, recorded_at, metrics) "
            "VALUES (?, ?, ?, ?)",
            (
                snapshot_id,
                snapshot.content_id,
                snapshot.recorded_at.isoformat(),
                json.dumps(snapshot.metrics),
            ),
        )
        return snapshot_id

    def get_metrics_history(
        self, content_id: str, since: datetime, limit: int = 100
    ) -> list[MetricsSnapshot]:
        rows = self._fetchall(
            "SELECT id, content_id, recorded_at, metrics FROM metrics_history "
            "WHERE content_id = ? AND recorded_at >= ? "
            "ORDER BY recorded_at ASC LIMIT ?",
            (content_id, since.isoformat(), int(limit)),
        )
        return [
            MetricsSnapshot(
                id=row["id"],
                content_id=row["content_id"],
                recorded_at=datetime.fromisoformat(row["recorded_at"]),
                metrics=json.loads(row["metrics"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.commit()
                self._conn.close()
                logger.info("Database connection closed")
            except sqlite3.Error as exc:
                logger.error("Error closing database: %s", exc)
