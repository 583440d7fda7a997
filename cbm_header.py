"""
CBM Header Module

This module handles parsing and packing of the fixed-size headers found in a
CBM image container: the 36-byte container header and the 36-byte header that
precedes every image record.

All integers are stored in little-endian format.
"""

import struct
from dataclasses import dataclass
from typing import BinaryIO, Self

# Container header:
# count, current index, 4 area ints (16 reserved bytes when read back),
# image id, group id, 4 reserved bytes
CONTAINER_HEADER_FORMAT = "<8i4x"
CONTAINER_HEADER_SIZE = struct.calcsize(CONTAINER_HEADER_FORMAT)

# Image header:
# width, height, compressed flag, payload length, 4 area ints, 4 reserved bytes
IMAGE_HEADER_FORMAT = "<8i4x"
IMAGE_HEADER_SIZE = struct.calcsize(IMAGE_HEADER_FORMAT)

PALETTE_SIZE = 256

# Both palettes are stored as 256 unsigned 32-bit slots
PALETTE_FORMAT = f"<{PALETTE_SIZE}I"
PALETTE_BYTES = struct.calcsize(PALETTE_FORMAT)


class CBMError(Exception):
    """Base exception for CBM-related errors"""

    pass


class MalformedContainerError(CBMError):
    """Raised when a CBM stream is truncated or structurally invalid"""

    pass


class InvalidArgumentError(CBMError, ValueError):
    """Raised when a caller supplies inconsistent palettes, sizes or data"""

    pass


class UnsupportedFormatError(CBMError):
    """Raised when a file extension is not handled by the load/save helpers"""

    pass


def read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    """
    Read exactly `size` bytes from a stream.

    Raises:
        MalformedContainerError: If the stream ends early
    """
    data = stream.read(size)

    if len(data) != size:
        raise MalformedContainerError(
            f"Unexpected end of data while reading {what}: "
            f"got {len(data)} bytes, expected {size}"
        )

    return data


@dataclass
class CBMHeader:
    """
    CBM container header structure (36 bytes total)

    Should be constructed using `CBMHeader.parse_cbm_header(stream)`.
    """

    count: int  # Offset 0-3: Number of image records
    current_index: int  # Offset 4-7: Cursor into the image list
    area_left: int  # Offset 8-11: Container bounds, written on save
    area_top: int  # Offset 12-15
    area_right: int  # Offset 16-19
    area_bottom: int  # Offset 20-23
    image_id: int  # Offset 24-27: Opaque identifier
    group_id: int  # Offset 28-31: Opaque identifier
    # Offset 32-35: Reserved

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate the container header

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        if self.count < 0:
            errors.append(f"Invalid image count: {self.count}")

        return (len(errors) == 0, errors)

    def pack(self) -> bytes:
        return struct.pack(
            CONTAINER_HEADER_FORMAT,
            self.count,
            self.current_index,
            self.area_left,
            self.area_top,
            self.area_right,
            self.area_bottom,
            self.image_id,
            self.group_id,
        )

    def __str__(self) -> str:
        """String representation of header information"""
        lines = [
            "CBM Container Information",
            "=" * 50,
            f"Images:           {self.count}",
            f"Current Index:    {self.current_index}",
            f"Image Id:         {self.image_id}",
            f"Group Id:         {self.group_id}",
            f"Area:             ({self.area_left}, {self.area_top}) - "
            f"({self.area_right}, {self.area_bottom})",
        ]

        return "\n".join(lines)

    @classmethod
    def parse_cbm_header(cls, stream: BinaryIO) -> Self:
        """
        Parse the container header from a binary stream.

        The area rectangle stored on disk is read but callers should treat it
        as reserved, since the container recomputes its bounds from its images.

        Raises:
            MalformedContainerError: If the header is truncated or invalid
        """
        header_bytes = read_exact(stream, CONTAINER_HEADER_SIZE, "container header")

        try:
            header = cls(*struct.unpack(CONTAINER_HEADER_FORMAT, header_bytes))
        except struct.error as e:
            raise MalformedContainerError(f"Failed to parse header structure: {e}")

        is_valid, errors = header.validate()
        if not is_valid:
            error_msg = "Invalid CBM header:\n" + "\n".join(f"  - {e}" for e in errors)
            raise MalformedContainerError(error_msg)

        return header


@dataclass
class CBMImageHeader:
    """
    CBM image record header structure (36 bytes total)

    The header is followed by the 16-bit palette, the 24-bit palette and
    `data_length` bytes of pixel data.
    """

    width: int  # Offset 0-3
    height: int  # Offset 4-7
    is_compressed: int  # Offset 8-11: nonzero = RLE compressed
    data_length: int  # Offset 12-15: Payload length in bytes
    area_left: int  # Offset 16-19: Placement in the shared canvas
    area_top: int  # Offset 20-23
    area_right: int  # Offset 24-27
    area_bottom: int  # Offset 28-31
    # Offset 32-35: Reserved

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate the image header

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        if self.width < 0 or self.height < 0:
            errors.append(f"Invalid image size: {self.width}x{self.height}")

        if self.data_length < 0:
            errors.append(f"Invalid payload length: {self.data_length}")

        return (len(errors) == 0, errors)

    def pack(self) -> bytes:
        return struct.pack(
            IMAGE_HEADER_FORMAT,
            self.width,
            self.height,
            1 if self.is_compressed else 0,
            self.data_length,
            self.area_left,
            self.area_top,
            self.area_right,
            self.area_bottom,
        )

    def __str__(self) -> str:
        encoding = "RLE" if self.is_compressed else "Uncompressed"

        lines = [
            "CBM Image Information",
            "=" * 50,
            f"Dimensions:       {self.width} x {self.height} pixels",
            f"Encoding:         {encoding}",
            f"Data Length:      {self.data_length} bytes",
            f"Area:             ({self.area_left}, {self.area_top}) - "
            f"({self.area_right}, {self.area_bottom})",
        ]

        return "\n".join(lines)

    @classmethod
    def parse_image_header(cls, stream: BinaryIO) -> Self:
        """
        Parse an image record header from a binary stream.

        Raises:
            MalformedContainerError: If the header is truncated or invalid
        """
        header_bytes = read_exact(stream, IMAGE_HEADER_SIZE, "image header")

        try:
            header = cls(*struct.unpack(IMAGE_HEADER_FORMAT, header_bytes))
        except struct.error as e:
            raise MalformedContainerError(f"Failed to parse image header: {e}")

        is_valid, errors = header.validate()
        if not is_valid:
            error_msg = "Invalid CBM image header:\n" + "\n".join(
                f"  - {e}" for e in errors
            )
            raise MalformedContainerError(error_msg)

        return header


def read_palette(stream: BinaryIO, what: str) -> tuple[int, ...]:
    """Read 256 little-endian uint32 palette slots"""
    return struct.unpack(PALETTE_FORMAT, read_exact(stream, PALETTE_BYTES, what))


def pack_palette(palette) -> bytes:
    """Pack 256 palette slots as little-endian uint32 values"""
    return struct.pack(PALETTE_FORMAT, *(int(c) for c in palette))
