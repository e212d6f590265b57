# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Durable state for the metadata cache.

Two files live in the cache directory:
- photolist.json: the pending work list of one run, a JSON array written once.
- metadata.json: the metadata log, JSON Lines, only ever appended to.
"""

import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, IO, Iterator, List, Optional

from .nextcloud_client import WorkItem

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the metadata log cannot be opened for writing."""


@dataclass
class MetadataRecord:
    """Extraction result for one WorkItem, one line of the metadata log."""
    path: str
    media_type: str = "image"  # "image" or "video"
    fields: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        exif_data = {"error": self.error} if self.error is not None else self.fields
        return {
            "path": self.path,
            "mediaType": self.media_type,
            "exifData": exif_data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MetadataRecord":
        exif_data = data.get("exifData") or {}
        if not isinstance(exif_data, dict):
            exif_data = {}
        error = exif_data.get("error")
        return cls(
            path=data.get("path", ""),
            media_type=data.get("mediaType", "image"),
            fields={} if error is not None else exif_data,
            error=error,
        )


class CacheStateStore:
    """Reads and writes the pending list and metadata log of the cache."""

    PENDING_FILE = "photolist.json"
    LOG_FILE = "metadata.json"

    def __init__(self, cache_dir: str):
        self.cache_dir = Path(cache_dir)
        self.pending_path = self.cache_dir / self.PENDING_FILE
        self.log_path = self.cache_dir / self.LOG_FILE

        self.cache_dir.mkdir(parents=True, exist_ok=True)

    # Pending list

    def pending_exists(self) -> bool:
        return self.pending_path.exists()

    def write_pending(self, items: List[WorkItem]) -> None:
        """Write the pending list atomically.

        Writes to a temp file first, then renames so a reader never sees a
        half-written list.
        """
        temp_path = str(self.pending_path) + '.tmp'
        with open(temp_path, 'w') as f:
            json.dump([item.to_dict() for item in items], f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, self.pending_path)

    def read_pending(self) -> Optional[list]:
        """
        Load the raw pending list.

        Returns:
            The decoded JSON array (possibly in a legacy layout), an empty
            list if the file is unreadable, or None if there is no run.
        """
        if not self.pending_path.exists():
            return None
        try:
            with open(self.pending_path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable pending list: {e}")
            return []
        return data if isinstance(data, list) else []

    def delete_pending(self) -> bool:
        """Delete the pending list. Returns False if there was none."""
        try:
            self.pending_path.unlink()
            return True
        except FileNotFoundError:
            return False

    # Metadata log

    def log_exists(self) -> bool:
        return self.log_path.exists()

    def create_log(self) -> None:
        """Create an empty metadata log, truncating any existing one."""
        with open(self.log_path, 'w'):
            pass

    def delete_log(self) -> bool:
        try:
            self.log_path.unlink()
            return True
        except FileNotFoundError:
            return False

    def reset(self) -> None:
        """Discard both the pending list and the metadata log."""
        self.delete_log()
        self.delete_pending()

    @contextmanager
    def open_log(self) -> Iterator[IO[str]]:
        """
        Open the metadata log for appending for the span of one batch.

        Raises:
            StorageError: If the log cannot be opened.
        """
        try:
            handle = open(self.log_path, 'a', encoding='utf-8')
        except OSError as e:
            raise StorageError("Could not open metadata cache file for writing.") from e
        try:
            yield handle
        finally:
            handle.close()

    def append_record(self, handle: IO[str], record: MetadataRecord) -> None:
        """Append one record and sync it to disk before the next item starts."""
        handle.write(json.dumps(record.to_dict()) + "\n")
        handle.flush()
        os.fsync(handle.fileno())

    def count_records(self) -> int:
        """Count log lines by scanning for newlines, without parsing."""
        if not self.log_path.exists():
            return 0
        count = 0
        try:
            with open(self.log_path, 'rb') as f:
                for chunk in iter(lambda: f.read(8192), b''):
                    count += chunk.count(b"\n")
        except OSError as e:
            logger.warning(f"Could not count metadata records: {e}")
            return 0
        return count

    def iter_records(self) -> Iterator[MetadataRecord]:
        """
        Yield the usable records of the metadata log in write order.

        Skips lines that do not parse, have no path, carry an error, or have
        no metadata for non-video media.
        """
        if not self.log_path.exists():
            return

        with open(self.log_path, 'r', encoding='utf-8') as f:
            for line in f:
                try:
                    data = json.loads(line)
                except ValueError:
                    continue

                if not isinstance(data, dict):
                    continue

                media_type = data.get("mediaType", "image")
                exif_data = data.get("exifData")

                if not data.get("path"):
                    continue
                if not exif_data and media_type != "video":
                    continue
                if isinstance(exif_data, dict) and exif_data.get("error") is not None:
                    continue

                yield MetadataRecord.from_dict(data)
