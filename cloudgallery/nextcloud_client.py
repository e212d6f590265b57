# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Nextcloud WebDAV client.
Lists, downloads and uploads files under a user's Nextcloud file root.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

import requests

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"

PROPFIND_BODY = (
    '<?xml version="1.0"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    '<d:getcontenttype/><d:getcontentlength/>'
    '</d:prop></d:propfind>'
)


class ListingError(Exception):
    """Raised when the remote folder tree cannot be enumerated."""


@dataclass(frozen=True)
class WorkItem:
    """A remote media file waiting for metadata extraction."""
    path: str          # Path relative to the user's file root
    size: int          # Content length in bytes
    content_type: str  # e.g. "image/jpeg", "video/mp4"

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "size": self.size,
            "contentType": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkItem":
        return cls(
            path=data["path"],
            size=int(data.get("size") or 0),
            content_type=data.get("contentType") or "",
        )


class NextcloudClient:
    """
    Talks to a Nextcloud instance over WebDAV.

    All paths are relative to ``/remote.php/dav/files/<user>/``.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: int = 60,
        verify_ssl: bool = False
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the Nextcloud instance.
            username: Account name.
            password: App-specific password.
            timeout: Per-request timeout in seconds.
            verify_ssl: Verify TLS certificates.
        """
        self.username = username
        self.dav_root = f"/remote.php/dav/files/{username}/"
        self.base_uri = base_url.rstrip("/") + self.dav_root
        self.timeout = timeout

        self._session = requests.Session()
        self._session.auth = (username, password)
        self._session.verify = verify_ssl

    @classmethod
    def from_config(cls, config) -> "NextcloudClient":
        """Build a client from a NextcloudConfig section."""
        return cls(
            config.url,
            config.username,
            config.password,
            timeout=config.timeout_seconds,
            verify_ssl=config.verify_ssl,
        )

    def _url_for(self, path: str) -> str:
        """Encode each path segment and join onto the DAV root."""
        return self.base_uri + "/".join(quote(part, safe="") for part in path.split("/"))

    def list_files(self, folder_path: str) -> List[WorkItem]:
        """
        Recursively list every image and video below a folder.

        Args:
            folder_path: Folder relative to the user's file root.

        Returns:
            WorkItems in the order the server reported them.

        Raises:
            ListingError: If the server cannot be reached or replies with
                something other than a multistatus document.
        """
        try:
            response = self._session.request(
                "PROPFIND",
                self._url_for(folder_path),
                data=PROPFIND_BODY.encode("utf-8"),
                headers={"Depth": "infinity", "Content-Type": "application/xml"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ListingError(f"Could not list {folder_path}: {e}") from e

        if response.status_code != 207:
            raise ListingError(
                f"Could not list {folder_path}: HTTP {response.status_code}"
            )

        return self._parse_multistatus(response.content, folder_path)

    def _parse_multistatus(self, content: bytes, folder_path: str) -> List[WorkItem]:
        """Turn a PROPFIND multistatus body into WorkItems."""
        # Some servers emit noise before the XML declaration
        start = content.find(b"<?xml")
        if start > 0:
            content = content[start:]

        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise ListingError(f"Malformed listing for {folder_path}: {e}") from e

        items: List[WorkItem] = []
        folder = folder_path.rstrip("/")

        for response in root.iter(f"{DAV_NS}response"):
            href = response.findtext(f"{DAV_NS}href")
            content_type = None
            content_length = None
            for prop in response.iter(f"{DAV_NS}prop"):
                if not content_type:
                    content_type = prop.findtext(f"{DAV_NS}getcontenttype")
                if not content_length:
                    content_length = prop.findtext(f"{DAV_NS}getcontentlength")

            # Collections have no content type
            if not href or not content_type:
                continue

            relative_path = unquote(href)
            if relative_path.startswith(self.dav_root):
                relative_path = relative_path[len(self.dav_root):]
            if relative_path.rstrip("/") == folder:
                continue

            lowered = content_type.lower()
            if lowered.startswith("image/") or lowered.startswith("video/"):
                try:
                    size = int(content_length) if content_length else 0
                except ValueError:
                    size = 0
                items.append(WorkItem(relative_path, size, content_type))

        logger.info(f"Listed {len(items)} media files under {folder_path}")
        return items

    def get_file(self, path: str) -> Optional[bytes]:
        """
        Download a single file.

        Args:
            path: File path relative to the user's file root.

        Returns:
            File content, or None if missing or the request failed.
        """
        try:
            response = self._session.get(self._url_for(path), timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Failed to download {path}: {e}")
            return None

        if response.status_code != 200:
            logger.debug(f"Download of {path} returned HTTP {response.status_code}")
            return None

        return response.content

    def put_file(self, path: str, content: bytes) -> bool:
        """Upload content to path, replacing any existing file."""
        try:
            response = self._session.put(
                self._url_for(path),
                data=content,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Failed to upload {path}: {e}")
            return False

        return 200 <= response.status_code < 300
