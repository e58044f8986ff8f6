"""File storage helpers."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Set

from modules.utils.image_utils import ImagePayload

if TYPE_CHECKING:
    from modules.services.history_service import GenerationRecord

logger = logging.getLogger(__name__)

DOWNLOAD_PARTS = ("primary", "secondary", "video")


class StorageService:
    """Materialize stored blobs as revocable file handles and save downloads."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)
        self._handles: Set[Path] = set()
        self._lock = threading.Lock()

    def materialize(self, data: bytes, suffix: str = ".bin") -> str:
        """Write ``data`` to a fresh handle file and return its path."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{uuid.uuid4().hex}{suffix}"
        path.write_bytes(data)
        with self._lock:
            self._handles.add(path)
        return str(path)

    def revoke(self, handle: Optional[str]) -> None:
        """Release a handle created by :meth:`materialize`."""
        if not handle:
            return
        path = Path(handle)
        with self._lock:
            if path not in self._handles:
                return
            self._handles.discard(path)
        path.unlink(missing_ok=True)

    def revoke_all(self) -> None:
        with self._lock:
            handles = list(self._handles)
            self._handles.clear()
        for path in handles:
            path.unlink(missing_ok=True)

    def active_handles(self) -> list[str]:
        with self._lock:
            return sorted(str(path) for path in self._handles)

    @staticmethod
    def download_name(record: "GenerationRecord", part: str) -> str:
        """Return the file name offered when downloading ``part`` of a record."""
        if part not in DOWNLOAD_PARTS:
            raise ValueError(f"Unknown download part '{part}'.")
        name = record.original_filename
        if part == "video":
            if name:
                return f"generated_{name.split('.')[0]}.mp4"
            return f"video-result-{int(time.time() * 1000)}.mp4"
        if not name:
            return f"{part}-result-{int(time.time() * 1000)}.png"
        return f"generated_{name}" if part == "primary" else f"line-art_{name}"

    def save_download(self, record: "GenerationRecord", part: str, target_dir: Path) -> Optional[Path]:
        """Write one artifact of ``record`` to ``target_dir``; None if it is absent."""
        data: Optional[bytes] = None
        if part == "primary" and record.image_url:
            data = ImagePayload.from_data_url(record.image_url).raw_bytes()
        elif part == "secondary" and record.secondary_image_url:
            data = ImagePayload.from_data_url(record.secondary_image_url).raw_bytes()
        elif part == "video":
            if record.video_blob:
                data = record.video_blob
            elif record.video_url:
                data = Path(record.video_url).read_bytes()
        if data is None:
            return None

        target = Path(target_dir)
        target.mkdir(parents=True, exist_ok=True)
        path = target / self.download_name(record, part)
        path.write_bytes(data)
        logger.info("Saved %s artifact to %s", part, path)
        return path

    def save_selected(self, records: Iterable["GenerationRecord"], target_dir: Path) -> List[Path]:
        """Save every artifact each selected record carries, in record order."""
        saved: List[Path] = []
        for record in records:
            for part in DOWNLOAD_PARTS:
                path = self.save_download(record, part, target_dir)
                if path is not None:
                    saved.append(path)
        return saved
