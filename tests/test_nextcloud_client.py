# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Tests for the Nextcloud WebDAV client.
"""

import pytest
import requests
from unittest.mock import MagicMock

from cloudgallery.nextcloud_client import ListingError, NextcloudClient, WorkItem


MULTISTATUS = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:" xmlns:s="http://sabredav.org/ns" xmlns:oc="http://owncloud.org/ns">
 <d:response>
  <d:href>/remote.php/dav/files/alice/Photos/</d:href>
  <d:propstat><d:prop></d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat>
  <d:propstat><d:prop><d:getcontenttype/><d:getcontentlength/></d:prop>
   <d:status>HTTP/1.1 404 Not Found</d:status></d:propstat>
 </d:response>
 <d:response>
  <d:href>/remote.php/dav/files/alice/Photos/Summer%202024/beach.jpg</d:href>
  <d:propstat><d:prop>
   <d:getcontenttype>image/jpeg</d:getcontenttype>
   <d:getcontentlength>2048</d:getcontentlength>
  </d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat>
 </d:response>
 <d:response>
  <d:href>/remote.php/dav/files/alice/Photos/Summer%202024/</d:href>
  <d:propstat><d:prop></d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat>
 </d:response>
 <d:response>
  <d:href>/remote.php/dav/files/alice/Photos/notes.txt</d:href>
  <d:propstat><d:prop>
   <d:getcontenttype>text/plain</d:getcontenttype>
   <d:getcontentlength>12</d:getcontentlength>
  </d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat>
 </d:response>
 <d:response>
  <d:href>/remote.php/dav/files/alice/Photos/clip.mp4</d:href>
  <d:propstat><d:prop>
   <d:getcontenttype>video/mp4</d:getcontenttype>
   <d:getcontentlength>900000</d:getcontentlength>
  </d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat>
 </d:response>
</d:multistatus>
"""


def make_response(status_code=200, content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    return response


@pytest.fixture
def client():
    client = NextcloudClient("https://cloud.example.com/", "alice", "secret")
    client._session = MagicMock()
    return client


class TestUrls:
    """Test URL construction."""

    def test_base_uri(self, client):
        assert client.base_uri == "https://cloud.example.com/remote.php/dav/files/alice/"

    def test_segments_encoded(self, client):
        url = client._url_for("Photos/Summer 2024/a#1.jpg")
        assert url.endswith("/files/alice/Photos/Summer%202024/a%231.jpg")


class TestListFiles:
    """Test recursive listing."""

    def test_parses_media_entries(self, client):
        client._session.request.return_value = make_response(207, MULTISTATUS)

        items = client.list_files("Photos")

        assert items == [
            WorkItem("Photos/Summer 2024/beach.jpg", 2048, "image/jpeg"),
            WorkItem("Photos/clip.mp4", 900000, "video/mp4"),
        ]
        args, kwargs = client._session.request.call_args
        assert args[0] == "PROPFIND"
        assert kwargs["headers"]["Depth"] == "infinity"

    def test_leading_noise_ignored(self, client):
        client._session.request.return_value = make_response(207, b"HTTP/1.1 207\r\n\r\n" + MULTISTATUS)
        assert len(client.list_files("Photos")) == 2

    def test_connection_error(self, client):
        client._session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ListingError):
            client.list_files("Photos")

    def test_http_error(self, client):
        client._session.request.return_value = make_response(401, b"")
        with pytest.raises(ListingError):
            client.list_files("Photos")

    def test_malformed_xml(self, client):
        client._session.request.return_value = make_response(207, b"<?xml version='1.0'?><oops")
        with pytest.raises(ListingError):
            client.list_files("Photos")


class TestGetAndPut:
    """Test single file transfer."""

    def test_get_file(self, client):
        client._session.get.return_value = make_response(200, b"data")
        assert client.get_file("Photos/a.jpg") == b"data"

    def test_get_file_not_found(self, client):
        client._session.get.return_value = make_response(404, b"missing")
        assert client.get_file("Photos/a.jpg") is None

    def test_get_file_transport_error(self, client):
        client._session.get.side_effect = requests.Timeout("slow")
        assert client.get_file("Photos/a.jpg") is None

    def test_put_file(self, client):
        client._session.put.return_value = make_response(204)
        assert client.put_file("Photos/a.jpg", b"data") is True

    def test_put_file_rejected(self, client):
        client._session.put.return_value = make_response(403)
        assert client.put_file("Photos/a.jpg", b"data") is False


class TestWorkItem:
    """Test WorkItem serialization."""

    def test_round_trip_keys(self):
        item = WorkItem("a.jpg", 10, "image/jpeg")
        assert item.to_dict() == {"path": "a.jpg", "size": 10, "contentType": "image/jpeg"}
        assert WorkItem.from_dict(item.to_dict()) == item

    def test_missing_optional_keys(self):
        assert WorkItem.from_dict({"path": "a.jpg"}) == WorkItem("a.jpg", 0, "")
