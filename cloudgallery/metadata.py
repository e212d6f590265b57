# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Metadata extraction for gallery media.
Reads EXIF capture data and GPS from JPEGs and pixel dimensions from PNGs,
and formats the values for display.
"""

import io
import logging
import struct
import threading
from contextlib import contextmanager
from decimal import Decimal, ROUND_HALF_UP
from numbers import Rational
from typing import Any, Dict, Iterator, Optional, Tuple

from PIL import ExifTags, Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

Base = ExifTags.Base

# Primary directory (IFD0) fields, in output order
PRIMARY_TAGS = [
    ("ImageDescription", Base.ImageDescription),
    ("Make", Base.Make),
    ("Model", Base.Model),
    ("Software", Base.Software),
    ("Orientation", Base.Orientation),
    ("DateTime", Base.DateTime),
    ("Width", Base.ImageWidth),
    ("Height", Base.ImageLength),
]

# Prefixes of the 8-byte character code header on UserComment
USER_COMMENT_CODES = (b"ASCII\x00\x00\x00", b"UNICODE\x00", b"JIS\x00\x00\x00\x00\x00", b"\x00" * 8)

# JPEG markers
SOI = b"\xff\xd8"
APP0 = 0xE0
APP1 = 0xE1
SOS = 0xDA
EOI = 0xD9
EXIF_HEADER = b"Exif\x00\x00"

# Guards the process-wide Pillow pixel limit while it is lifted
_pixel_limit_lock = threading.Lock()


@contextmanager
def _open_header(data: bytes) -> Iterator[Image.Image]:
    """
    Open image content for reading its header and metadata only.

    Pillow's decompression bomb limit is lifted for the open call: nothing
    here decodes pixel data, and very large panoramas must still yield
    their metadata.
    """
    with _pixel_limit_lock:
        limit = Image.MAX_IMAGE_PIXELS
        Image.MAX_IMAGE_PIXELS = None
        try:
            img = Image.open(io.BytesIO(data))
        finally:
            Image.MAX_IMAGE_PIXELS = limit
    with img:
        yield img


def _round_half_up(value: float, places: int = 0) -> Decimal:
    """Round to the given decimal places, halves away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP)


def _format_number(value: Decimal) -> str:
    """Render a rounded value without a trailing '.0'."""
    if value == value.to_integral_value():
        return str(int(value))
    return str(value)


def _as_rational(value: Any) -> Optional[Tuple[int, int]]:
    """
    Return (numerator, denominator) for a two-part rational, else None.

    Accepts PIL's IFDRational (and other non-integer Rationals) or a plain
    two-element sequence of integers.
    """
    if isinstance(value, Rational) and not isinstance(value, int):
        return value.numerator, value.denominator
    if isinstance(value, (tuple, list)) and len(value) == 2:
        if all(isinstance(part, int) and not isinstance(part, bool) for part in value):
            return value[0], value[1]
    return None


def to_json_value(value: Any) -> Any:
    """Coerce a raw EXIF value into something json.dumps accepts."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if value == value else None  # NaN
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace").rstrip("\x00").strip()
    rational = _as_rational(value)
    if rational is not None and not isinstance(value, (tuple, list)):
        return [rational[0], rational[1]]
    if isinstance(value, (tuple, list)):
        return [to_json_value(v) for v in value]
    return str(value)


def format_exposure_time(value: Any) -> Any:
    """Format an exposure time rational as '1/250 s' or '2.5 s'."""
    rational = _as_rational(value)
    if rational is None or rational[1] == 0 or rational[0] == 0:
        return to_json_value(value)

    decimal = rational[0] / rational[1]
    if decimal < 1:
        return f"1/{_format_number(_round_half_up(1 / decimal))} s"
    return f"{_format_number(_round_half_up(decimal, 1))} s"


def format_aperture(value: Any) -> Any:
    """Format an F-number rational as 'f/2.8'."""
    rational = _as_rational(value)
    if rational is None or rational[1] == 0:
        return to_json_value(value)
    return f"f/{_format_number(_round_half_up(rational[0] / rational[1], 1))}"


def format_focal_length(value: Any) -> Any:
    """Format a focal length rational as '35 mm'."""
    rational = _as_rational(value)
    if rational is None or rational[1] == 0:
        return to_json_value(value)
    return f"{_format_number(_round_half_up(rational[0] / rational[1], 1))} mm"


def format_iso(value: Any) -> Any:
    """ISO may be stored as a sequence; the first entry is the rating."""
    if isinstance(value, (tuple, list)):
        return to_json_value(value[0]) if value else None
    return to_json_value(value)


def decode_user_comment(value: Any) -> Any:
    """Strip the character code header from an EXIF UserComment."""
    if isinstance(value, bytes):
        for code in USER_COMMENT_CODES:
            if value.startswith(code):
                encoding = "utf-16" if code.startswith(b"UNICODE") else "utf-8"
                return value[8:].decode(encoding, errors="replace").rstrip("\x00").strip()
    return to_json_value(value)


def convert_gps_to_decimal(coord: Any, ref: Any) -> Optional[float]:
    """
    Convert a degrees/minutes/seconds GPS coordinate to decimal degrees.

    Args:
        coord: Three rationals (degrees, minutes, seconds).
        ref: Hemisphere reference ('N', 'S', 'E' or 'W').

    Returns:
        Signed decimal degrees, or None if any part is missing or unusable.
    """
    if not coord or not ref:
        return None

    if not isinstance(coord, (tuple, list)) or len(coord) != 3:
        return None

    parts = [_as_rational(component) for component in coord]
    if any(part is None or part[1] == 0 for part in parts):
        return None

    degrees, minutes, seconds = (num / den for num, den in parts)
    decimal = degrees + (minutes / 60) + (seconds / 3600)

    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if str(ref).strip("\x00 ").upper() in ("S", "W"):
        decimal = -decimal

    return decimal


class MetadataExtractor:
    """Extracts gallery metadata from downloaded file content."""

    def extract(self, data: bytes, extension: str) -> Dict[str, Any]:
        """
        Extract metadata for an image file.

        Args:
            data: Raw file content.
            extension: Lower-case file extension without the dot.

        Returns:
            Field map. Empty for formats that carry nothing we read.
        """
        if extension == "png":
            return self.png_dimensions(data)
        if extension in ("jpg", "jpeg"):
            return self.extract_jpeg(data)
        return {}

    def png_dimensions(self, data: bytes) -> Dict[str, Any]:
        """Read width and height from a PNG header without decoding pixels."""
        try:
            with _open_header(data) as img:
                width, height = img.size
        except (UnidentifiedImageError, OSError) as e:
            logger.debug(f"Could not read PNG header: {e}")
            return {}
        return {"Width": width, "Height": height}

    def extract_jpeg(self, data: bytes) -> Dict[str, Any]:
        """
        Extract EXIF fields and GPS position from a JPEG.

        Every field is read independently; a missing directory or tag only
        leaves that field absent or None.

        Raises:
            UnidentifiedImageError: If the content is not an image at all.
        """
        with _open_header(data) as img:
            try:
                exif = img.getexif()
            except Exception as e:
                logger.debug(f"Error reading EXIF: {e}")
                return {}

            if not exif:
                return {}

            fields: Dict[str, Any] = {}
            for name, tag in PRIMARY_TAGS:
                fields[name] = self._read(exif, tag)

            capture = self._get_ifd(exif, ExifTags.IFD.Exif)
            if capture:
                self._add_capture_fields(fields, capture)

            gps = self._get_ifd(exif, ExifTags.IFD.GPSInfo)
            if gps:
                position = self._extract_gps(gps)
                if position:
                    fields["GPS"] = position

        return fields

    def _read(self, directory, tag: int, formatter=to_json_value) -> Any:
        """Read and format one tag, None if missing or unreadable."""
        try:
            value = directory.get(tag)
            if value is None:
                return None
            return formatter(value)
        except Exception as e:
            logger.debug(f"Error reading EXIF tag {tag}: {e}")
            return None

    def _get_ifd(self, exif: Image.Exif, ifd: int) -> Dict[int, Any]:
        try:
            return exif.get_ifd(ifd)
        except Exception as e:
            logger.debug(f"Error reading EXIF directory {ifd:#x}: {e}")
            return {}

    def _add_capture_fields(self, fields: Dict[str, Any], capture: Dict[int, Any]) -> None:
        """Add fields from the Exif sub-directory."""
        fields["UserComment"] = self._read(capture, Base.UserComment, decode_user_comment)
        fields["DateTimeOriginal"] = self._read(capture, Base.DateTimeOriginal)
        fields["ExposureTime"] = self._read(capture, Base.ExposureTime, format_exposure_time)
        fields["Aperture"] = self._read(capture, Base.FNumber, format_aperture)
        fields["FocalLength"] = self._read(capture, Base.FocalLength, format_focal_length)
        fields["ISO"] = self._read(capture, Base.ISOSpeedRatings, format_iso)
        fields["Flash"] = self._read(capture, Base.Flash)

        # Pixel dimensions here are more reliable than IFD0's
        width = self._read(capture, Base.ExifImageWidth)
        height = self._read(capture, Base.ExifImageHeight)
        if width:
            fields["Width"] = width
        if height:
            fields["Height"] = height

    def _extract_gps(self, gps: Dict[int, Any]) -> Optional[Dict[str, float]]:
        """
        Extract GPS coordinates from the GPS sub-directory.

        Returns:
            {"Latitude", "Longitude"} or None unless both are usable.
        """
        try:
            latitude = convert_gps_to_decimal(
                gps.get(ExifTags.GPS.GPSLatitude),
                gps.get(ExifTags.GPS.GPSLatitudeRef)
            )
            longitude = convert_gps_to_decimal(
                gps.get(ExifTags.GPS.GPSLongitude),
                gps.get(ExifTags.GPS.GPSLongitudeRef)
            )
        except Exception as e:
            logger.debug(f"Error extracting GPS: {e}")
            return None

        if latitude is None or longitude is None:
            return None

        return {"Latitude": latitude, "Longitude": longitude}


def iter_jpeg_segments(data: bytes) -> Iterator[Tuple[int, int, int]]:
    """
    Walk the header segments of a JPEG.

    Yields (marker, start, end) byte ranges, each including its marker.
    The last one yielded is the start of scan, whose range runs to the end
    of the data so the entropy-coded image is never split.

    Raises:
        ValueError: If the data is not a well-formed JPEG header.
    """
    if not data.startswith(SOI):
        raise ValueError("Not a JPEG file")

    pos = len(SOI)
    while pos + 1 < len(data):
        if data[pos] != 0xFF:
            raise ValueError(f"Invalid JPEG marker at offset {pos}")
        marker = data[pos + 1]
        if marker == 0xFF:
            # Fill byte
            pos += 1
            continue
        if marker in (SOS, EOI):
            yield marker, pos, len(data)
            return
        if 0xD0 <= marker <= 0xD7 or marker == 0x01:
            yield marker, pos, pos + 2
            pos += 2
            continue

        if pos + 4 > len(data):
            break
        length = struct.unpack(">H", data[pos + 2:pos + 4])[0]
        end = pos + 2 + length
        if length < 2 or end > len(data):
            raise ValueError(f"Truncated JPEG segment at offset {pos}")
        yield marker, pos, end
        pos = end

    raise ValueError("JPEG ends before the image data")


def replace_exif_segment(data: bytes, exif_block: bytes) -> bytes:
    """
    Return a JPEG with its EXIF APP1 segment replaced by exif_block.

    Every other segment and the compressed image data are copied byte for
    byte. Without an existing EXIF segment, the new one goes right after
    SOI, or after a leading JFIF APP0 segment.
    """
    if not exif_block.startswith(EXIF_HEADER):
        exif_block = EXIF_HEADER + exif_block
    if len(exif_block) + 2 > 0xFFFF:
        raise ValueError("EXIF block does not fit in one APP1 segment")
    new_segment = bytes([0xFF, APP1]) + struct.pack(">H", len(exif_block) + 2) + exif_block

    parts = [SOI]
    written = False
    for marker, start, end in iter_jpeg_segments(data):
        segment = data[start:end]
        if marker == APP1 and segment[4:4 + len(EXIF_HEADER)] == EXIF_HEADER:
            # First EXIF segment is replaced, any others dropped
            if not written:
                parts.append(new_segment)
                written = True
            continue
        if not written and not (marker == APP0 and len(parts) == 1):
            parts.append(new_segment)
            written = True
        parts.append(segment)

    return b"".join(parts)


def set_image_description(data: bytes, description: str) -> bytes:
    """
    Return a copy of a JPEG with its EXIF ImageDescription replaced.

    Only the EXIF segment is rewritten; the compressed image is left
    untouched. Creates the EXIF block if the file has none.

    Raises:
        ValueError: If data is not a JPEG.
    """
    with _open_header(data) as img:
        if img.format not in ("JPEG", "MPO"):
            raise ValueError(f"Cannot write a description into {img.format} data")
        exif = img.getexif()
        exif[Base.ImageDescription] = description
        exif_block = exif.tobytes()

    return replace_exif_segment(data, exif_block)
