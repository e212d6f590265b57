# Copyright (c) 2025-2026 Luc Vincent. All Rights Reserved.
"""
Pytest configuration and shared fixtures for CloudGallery tests.
"""

import io
import struct
import tempfile
import zlib
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from PIL import ExifTags, Image
from PIL.TiffImagePlugin import IFDRational


def make_jpeg(primary=None, capture=None, gps=None, size=(64, 48), **save_kwargs) -> bytes:
    """Build a small JPEG with the given EXIF directories."""
    img = Image.new("RGB", size, (200, 120, 40))
    exif = Image.Exif()
    for tag, value in (primary or {}).items():
        exif[tag] = value
    if capture:
        exif[ExifTags.IFD.Exif] = dict(capture)
    if gps:
        exif[ExifTags.IFD.GPSInfo] = dict(gps)

    buf = io.BytesIO()
    if len(exif):
        img.save(buf, format="JPEG", exif=exif, **save_kwargs)
    else:
        img.save(buf, format="JPEG", **save_kwargs)
    return buf.getvalue()


def make_png(size=(320, 200)) -> bytes:
    img = Image.new("RGB", size, (10, 20, 30))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def dms(degrees, minutes, seconds):
    """GPS coordinate as three rationals."""
    return (IFDRational(degrees, 1), IFDRational(minutes, 1), IFDRational(seconds, 1))


def with_png_size(data: bytes, width: int, height: int) -> bytes:
    """Rewrite the IHDR dimensions of a PNG, keeping its checksum valid."""
    ihdr = bytearray(data[16:29])
    ihdr[0:8] = struct.pack(">II", width, height)
    crc = struct.pack(">I", zlib.crc32(b"IHDR" + bytes(ihdr)) & 0xFFFFFFFF)
    return data[:16] + bytes(ihdr) + crc + data[33:]


def with_jpeg_size(data: bytes, width: int, height: int) -> bytes:
    """Rewrite the frame header dimensions of a baseline JPEG."""
    out = bytearray(data)
    pos = 2
    while pos < len(out):
        marker = out[pos + 1]
        length = struct.unpack(">H", out[pos + 2:pos + 4])[0]
        if marker == 0xC0:
            out[pos + 5:pos + 9] = struct.pack(">HH", height, width)
            return bytes(out)
        pos += 2 + length
    raise ValueError("no SOF0 segment")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config_dict(temp_dir):
    """Return a minimal valid config dictionary."""
    return {
        "nextcloud": {
            "url": "https://cloud.example.com",
            "username": "alice",
            "password": "app-password",
            "photo_dir": "Photos",
            "timeout_seconds": 30,
            "verify_ssl": False
        },
        "cache": {
            "directory": str(temp_dir / "cache"),
            "batch_size": 5,
            "image_max_mb": 50,
            "video_max_mb": 500,
            "image_cache_hours": 24,
            "prune_days": 7
        },
        "web": {
            "enabled": False,
            "port": 8080,
            "host": "127.0.0.1"
        }
    }


@pytest.fixture
def sample_config_yaml(temp_dir, sample_config_dict):
    """Create a temporary config.yaml file."""
    import yaml
    config_path = temp_dir / "config.yaml"
    with open(config_path, 'w') as f:
        yaml.dump(sample_config_dict, f)
    return config_path


@pytest.fixture
def gallery_config(sample_config_yaml):
    """Loaded GalleryConfig pointing at a temporary cache directory."""
    from cloudgallery.config import load_config
    return load_config(str(sample_config_yaml))


@pytest.fixture
def sample_jpeg():
    """JPEG with camera, capture and GPS metadata."""
    return make_jpeg(
        primary={
            ExifTags.Base.Make: "Canon",
            ExifTags.Base.Model: "EOS R5",
            ExifTags.Base.ImageDescription: "Eiffel Tower at dusk",
            ExifTags.Base.Orientation: 1,
            ExifTags.Base.DateTime: "2024:06:15 20:31:00",
        },
        capture={
            ExifTags.Base.DateTimeOriginal: "2024:06:15 20:30:00",
            ExifTags.Base.ExposureTime: IFDRational(1, 250),
            ExifTags.Base.FNumber: IFDRational(28, 10),
            ExifTags.Base.FocalLength: IFDRational(35, 1),
            ExifTags.Base.ISOSpeedRatings: 200,
            ExifTags.Base.Flash: 16,
            ExifTags.Base.ExifImageWidth: 4000,
            ExifTags.Base.ExifImageHeight: 3000,
        },
        gps={
            ExifTags.GPS.GPSLatitudeRef: "N",
            ExifTags.GPS.GPSLatitude: dms(48, 51, 24),
            ExifTags.GPS.GPSLongitudeRef: "E",
            ExifTags.GPS.GPSLongitude: dms(2, 17, 40),
        },
    )


@pytest.fixture
def mock_client():
    """Remote client double with an empty folder."""
    client = MagicMock()
    client.list_files.return_value = []
    client.get_file.return_value = None
    client.put_file.return_value = True
    return client
