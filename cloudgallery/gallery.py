# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Gallery-side views of the metadata cache.
Photo records for display, the proxied image file cache, and cache pruning.
"""

import hashlib
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

# EXIF date format
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

# Content types the image proxy will serve, by extension
PROXY_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
}


@dataclass
class GalleryPhoto:
    """One browsable item of the gallery."""
    path: str
    media_type: str = "image"
    exif_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record) -> "GalleryPhoto":
        return cls(path=record.path, media_type=record.media_type, exif_data=dict(record.fields))

    @property
    def filename(self) -> str:
        return os.path.basename(self.path)

    @property
    def description(self) -> str:
        return self.exif_data.get("ImageDescription") or ""

    @property
    def creation_date(self) -> Optional[datetime]:
        """When the photo was taken, from DateTimeOriginal."""
        value = self.exif_data.get("DateTimeOriginal")
        if not value or not isinstance(value, str):
            return None
        try:
            return datetime.strptime(value.strip()[:19], EXIF_DATE_FORMAT)
        except ValueError:
            logger.debug(f"Failed to parse date '{value}' for {self.path}")
            return None

    def to_dict(self) -> dict:
        created = self.creation_date
        return {
            "path": self.path,
            "filename": self.filename,
            "mediaType": self.media_type,
            "description": self.description,
            "creationDate": created.isoformat() if created else None,
            "exifData": self.exif_data,
        }


class ImageFileCache:
    """
    Local copies of proxied image files, keyed by remote path.

    Entries expire after max_age_seconds and are then fetched again.
    """

    def __init__(self, directory: str, max_age_seconds: int):
        self.directory = Path(directory)
        self.max_age_seconds = max_age_seconds
        self.directory.mkdir(parents=True, exist_ok=True)

    def _entry_path(self, remote_path: str) -> Path:
        return self.directory / hashlib.md5(remote_path.encode("utf-8")).hexdigest()

    def get(self, remote_path: str) -> Optional[bytes]:
        """Cached content if present and fresh."""
        entry = self._entry_path(remote_path)
        try:
            if time.time() - entry.stat().st_mtime >= self.max_age_seconds:
                return None
            return entry.read_bytes()
        except FileNotFoundError:
            return None

    def put(self, remote_path: str, content: bytes) -> None:
        try:
            self._entry_path(remote_path).write_bytes(content)
        except OSError as e:
            logger.warning(f"Could not cache image {remote_path}: {e}")

    def fetch(self, remote_path: str, loader: Callable[[str], Optional[bytes]]) -> Optional[bytes]:
        """Serve from cache, falling back to loader and storing its result."""
        content = self.get(remote_path)
        if content is not None:
            return content

        content = loader(remote_path)
        if content:
            self.put(remote_path, content)
        return content


def prune_cache(directory: str, max_age_seconds: int) -> int:
    """
    Delete files in directory older than max_age_seconds.

    Subdirectories are left alone.

    Returns:
        Number of files removed.
    """
    removed = 0
    now = time.time()
    try:
        entries = list(os.scandir(directory))
    except FileNotFoundError:
        return 0

    for entry in entries:
        try:
            if entry.is_file() and now - entry.stat().st_mtime > max_age_seconds:
                os.remove(entry.path)
                removed += 1
        except OSError as e:
            logger.warning(f"Could not prune {entry.path}: {e}")

    if removed:
        logger.info(f"Pruned {removed} stale files from {directory}")
    return removed
