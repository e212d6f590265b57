# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Cache manager for CloudGallery.
Builds the gallery metadata cache from a Nextcloud folder in small,
resumable batches.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .cache_state import CacheStateStore, MetadataRecord
from .config import GalleryConfig
from .gallery import GalleryPhoto
from .metadata import MetadataExtractor, set_image_description
from .nextcloud_client import NextcloudClient, WorkItem

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

VIDEO_EXTENSIONS = {"mp4", "mov", "avi", "webm"}

MSG_NOT_STARTED = "Cache process not started."
MSG_OUTDATED = "Cache format was outdated. Please re-initialize."
MSG_CANCELLED = "Cache process cancelled."
MSG_NOTHING_TO_CANCEL = "No active cache process to cancel."
ERR_TOO_LARGE = "File skipped, too large."
ERR_DOWNLOAD = "File is not a supported image or could not be downloaded."


@dataclass
class CacheStatus:
    """Progress of the metadata cache, derived from the state files."""
    status: str = "idle"  # "idle", "caching", "finishing"
    processed: int = 0
    total: int = 0

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "processed": self.processed,
            "total": self.total,
        }


def file_extension(path: str) -> str:
    """Lower-case extension without the dot."""
    return os.path.splitext(path)[1][1:].lower()


def is_video(item: WorkItem) -> bool:
    """Classify by extension first, then by declared content type."""
    return (
        file_extension(item.path) in VIDEO_EXTENSIONS
        or item.content_type.startswith("video/")
    )


class CacheManager:
    """
    Drives the two-phase metadata cache build.

    init_cache() lists the remote folder once and stores the pending list;
    process_batch() is then called repeatedly with the offset returned by the
    previous call. No cursor is kept in memory: every call works only from
    the pending list, the metadata log and the offset it is given, so each
    can run in its own short-lived request.
    """

    def __init__(
        self,
        config: GalleryConfig,
        client: Optional[NextcloudClient] = None,
        extractor: Optional[MetadataExtractor] = None
    ):
        """
        Initialize the cache manager.

        Args:
            config: Gallery configuration.
            client: Remote client. Built from config if not given.
            extractor: Metadata extractor. A default one if not given.
        """
        self.config = config
        self.client = client or NextcloudClient.from_config(config.nextcloud)
        self.extractor = extractor or MetadataExtractor()
        self.store = CacheStateStore(config.cache.directory)

        self.batch_size = config.cache.batch_size
        self.image_limit = config.cache.image_max_mb * MIB
        self.video_limit = config.cache.video_max_mb * MIB

    def init_cache(self, folder_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Start a new run, discarding any previous pending list and log.

        Args:
            folder_path: Remote folder to scan. Defaults to the configured one.

        Returns:
            {"status": "initialized", "total": n}

        Raises:
            ListingError: If the remote folder cannot be listed. The previous
                state has been discarded and nothing new is written.
        """
        folder_path = folder_path or self.config.nextcloud.photo_dir

        self.store.reset()
        logger.info(f"Photo list cache initialized for {folder_path}")

        items = self.client.list_files(folder_path)

        # Last-discovered items are processed first
        self.store.write_pending(list(reversed(items)))
        self.store.create_log()

        return {"status": "initialized", "total": len(items)}

    def process_batch(self, offset: int = 0) -> Dict[str, Any]:
        """
        Process the next batch of pending items.

        Args:
            offset: Number of items already processed, as returned by the
                previous call.

        Returns:
            {"status", "processed", "total"} plus "message" for idle results.

        Raises:
            StorageError: If the metadata log cannot be opened for writing.
        """
        pending = self.store.read_pending()
        if pending is None:
            return {"status": "idle", "processed": 0, "total": 0, "message": MSG_NOT_STARTED}

        if pending and isinstance(pending[0], str):
            logger.warning("Old cache format detected. Deleting cache files.")
            self.store.reset()
            return {"status": "idle", "processed": 0, "total": 0, "message": MSG_OUTDATED}

        total = len(pending)
        offset = max(0, offset)

        if offset >= total > 0:
            self.store.delete_pending()
            logger.info("Cache processing complete.")
            return {"status": "complete", "processed": total, "total": total}

        batch = pending[offset:offset + self.batch_size]

        with self.store.open_log() as log:
            for raw_item in batch:
                record = self._process_item(raw_item)
                self.store.append_record(log, record)

        processed = offset + len(batch)

        if processed >= total > 0:
            self.store.delete_pending()
            logger.info("Cache processing complete.")
            return {"status": "complete", "processed": processed, "total": total}

        return {"status": "caching", "processed": processed, "total": total}

    def _process_item(self, raw_item: Any) -> MetadataRecord:
        """Build the record for one pending entry. Never raises."""
        path = raw_item.get("path", "") if isinstance(raw_item, dict) else ""
        try:
            item = WorkItem.from_dict(raw_item)
            return self._extract_item(item)
        except Exception as e:
            logger.error(f"Error processing {path}: {e}")
            return MetadataRecord(path=path, media_type="image", error=str(e))

    def _extract_item(self, item: WorkItem) -> MetadataRecord:
        """
        Download one item and extract its metadata.

        The downloaded bytes and decoded image only live for this call.
        """
        video = is_video(item)
        media_type = "video" if video else "image"

        limit = self.video_limit if video else self.image_limit
        if item.size > limit:
            logger.info(f"Skipping {item.path}: {item.size} bytes exceeds limit")
            return MetadataRecord(path=item.path, media_type=media_type, error=ERR_TOO_LARGE)

        content = self.client.get_file(item.path)
        if not content:
            return MetadataRecord(path=item.path, media_type="image", error=ERR_DOWNLOAD)

        if video:
            # No metadata extraction for videos
            return MetadataRecord(path=item.path, media_type="video")

        fields = self.extractor.extract(content, file_extension(item.path))
        return MetadataRecord(path=item.path, media_type="image", fields=fields)

    def get_status(self) -> CacheStatus:
        """Derive the cache status from the state files. Never writes."""
        if self.store.pending_exists():
            pending = self.store.read_pending() or []
            total = len(pending)
            processed = self.store.count_records()
            status = "finishing" if processed >= total > 0 else "caching"
            return CacheStatus(status, processed, total)

        if self.store.log_exists():
            # Finished or cancelled run: the log is the gallery index
            processed = self.store.count_records()
            return CacheStatus("idle", processed, processed)

        return CacheStatus()

    def cancel(self) -> Dict[str, str]:
        """Stop the current run, keeping the records written so far."""
        if self.store.delete_pending():
            logger.info("Cache process cancelled.")
            return {"status": "cancelled", "message": MSG_CANCELLED}
        return {"status": "idle", "message": MSG_NOTHING_TO_CANCEL}

    def get_photos(self) -> List[GalleryPhoto]:
        """All browsable media from the metadata log, in log order."""
        return [GalleryPhoto.from_record(record) for record in self.store.iter_records()]

    def find_photo(self, path: str) -> Optional[GalleryPhoto]:
        """Look up one cached photo by its remote path."""
        for record in self.store.iter_records():
            if record.path == path:
                return GalleryPhoto.from_record(record)
        return None

    def update_description(self, path: str, description: str) -> bool:
        """
        Rewrite a photo's EXIF ImageDescription on the server.

        The metadata log is not touched; the change shows up after the next
        full cache rebuild.

        Returns:
            True if the updated file was uploaded.
        """
        try:
            content = self.client.get_file(path)
            if not content:
                return False
            updated = set_image_description(content, description)
            return self.client.put_file(path, updated)
        except Exception as e:
            logger.error(f"Error updating description for {path}: {e}")
            return False
