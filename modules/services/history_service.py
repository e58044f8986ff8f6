"""Generation history tracking."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from modules.pipelines.errors import PersistenceError, ValidationError
from modules.services.storage_service import StorageService

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS generations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    image_url TEXT,
    secondary_image_url TEXT,
    video_blob BLOB,
    text TEXT,
    original_filename TEXT,
    timestamp INTEGER NOT NULL
)
"""


@dataclass(slots=True)
class GenerationRecord:
    """One persisted generation event.

    ``id`` and ``timestamp`` are assigned by the store. ``video_url`` is a
    transient handle created when the record is read back and is never
    written.
    """

    image_url: Optional[str] = None
    secondary_image_url: Optional[str] = None
    text: Optional[str] = None
    video_blob: Optional[bytes] = None
    original_filename: Optional[str] = None
    id: Optional[int] = None
    timestamp: Optional[int] = None
    video_url: Optional[str] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class GenerationHistoryService:
    """SQLite-backed append-only history store."""

    def __init__(
        self,
        history_path: Path,
        storage: Optional[StorageService] = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.history_path = Path(history_path)
        self.storage = storage
        self._clock = clock
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    def open(self) -> sqlite3.Connection:
        """Open the database and create the schema on first use."""
        with self._lock:
            if self._conn is not None:
                return self._conn
            try:
                self.history_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.history_path), check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute(_SCHEMA)
                conn.commit()
            except (OSError, sqlite3.Error) as exc:
                logger.error("Failed to open history database %s: %s", self.history_path, exc)
                raise PersistenceError("Error opening history database.") from exc
            self._conn = conn
            return conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def append(self, record: GenerationRecord) -> int:
        """Persist a record and return its store-assigned id."""
        if not record.image_url and not record.video_blob:
            raise ValidationError("A history record needs an image or a video.")

        with self._lock:
            conn = self.open()
            try:
                with conn:
                    cursor = conn.execute(
                        "INSERT INTO generations "
                        "(image_url, secondary_image_url, video_blob, text, original_filename, timestamp) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (
                            record.image_url,
                            record.secondary_image_url,
                            sqlite3.Binary(record.video_blob) if record.video_blob else None,
                            record.text,
                            record.original_filename,
                            self._clock(),
                        ),
                    )
            except sqlite3.Error as exc:
                logger.error("Failed to add item to history: %s", exc)
                raise PersistenceError("Error adding item to history.") from exc
            return int(cursor.lastrowid)

    def list_all(self) -> List[GenerationRecord]:
        """Return every record, most recent first."""
        with self._lock:
            conn = self.open()
            try:
                rows = conn.execute(
                    "SELECT * FROM generations ORDER BY timestamp DESC, id DESC"
                ).fetchall()
            except sqlite3.Error as exc:
                logger.error("Failed to read history: %s", exc)
                raise PersistenceError("Error fetching items from history.") from exc

        records: List[GenerationRecord] = []
        for row in rows:
            video_blob = bytes(row["video_blob"]) if row["video_blob"] is not None else None
            video_url = None
            if video_blob and self.storage is not None:
                video_url = self.storage.materialize(video_blob, suffix=".mp4")
            records.append(
                GenerationRecord(
                    id=row["id"],
                    image_url=row["image_url"],
                    secondary_image_url=row["secondary_image_url"],
                    text=row["text"],
                    video_blob=video_blob,
                    original_filename=row["original_filename"],
                    timestamp=row["timestamp"],
                    video_url=video_url,
                )
            )
        return records

    def clear(self) -> None:
        """Delete every record. Irreversible."""
        with self._lock:
            conn = self.open()
            try:
                with conn:
                    conn.execute("DELETE FROM generations")
            except sqlite3.Error as exc:
                logger.error("Failed to clear history: %s", exc)
                raise PersistenceError("Error clearing history.") from exc
