"""
CBM RLE Compression Module

This module handles the per-scanline Run-Length Encoding used by CBM image
records. Every scanline is stored as a 32-bit little-endian length followed by
that many bytes of opcodes, the last of which is the 0x80 terminator.

Opcodes:
- 0x80: end of scanline
- 0x81-0xFF: literal run, the low 7 bits count the palette indices that follow
- 0x41-0x7F: transparent run, the low 6 bits count fully transparent pixels
- 0x00-0x3F: repeat run, the byte is the count and one palette index follows
"""

import struct

import numpy as np

from cbm_header import InvalidArgumentError, MalformedContainerError
from cbm_palette import palette24_to_bgra

ROW_TERMINATOR = 0x80
LITERAL_FLAG = 0x80
TRANSPARENT_FLAG = 0x40

MAX_LITERAL_RUN = 0x7F
MAX_TRANSPARENT_RUN = 0x3F
MAX_REPEAT_RUN = 0x3F

LITERAL = 0
TRANSPARENT = 1
REPEAT = 2

ROW_LENGTH_FORMAT = "<i"
ROW_LENGTH_SIZE = struct.calcsize(ROW_LENGTH_FORMAT)


def decode_cbm_rle_planes(
    compressed_data: bytes, width: int, height: int
) -> tuple[np.ndarray, np.ndarray]:
    """
    Decode an RLE stream into a palette index plane and an opacity plane.

    Pixels a scanline does not cover stay transparent with index 0.

    Raises:
        MalformedContainerError: If the stream is truncated or a scanline
            overruns its declared length or the image width
    """
    indices = np.zeros((height, width), dtype=np.uint8)
    opaque = np.zeros((height, width), dtype=bool)
    data_length = len(compressed_data)
    p = 0

    for y in range(height):
        if p + ROW_LENGTH_SIZE > data_length:
            raise MalformedContainerError(
                f"Unexpected end of RLE data (missing length of row {y})"
            )

        (row_length,) = struct.unpack_from(ROW_LENGTH_FORMAT, compressed_data, p)
        p += ROW_LENGTH_SIZE
        row_end = min(p + row_length, data_length)
        x = 0

        while True:
            if p >= row_end:
                raise MalformedContainerError(
                    f"RLE data corrupted: row {y} has no terminator"
                )

            op = compressed_data[p]
            p += 1

            if op == ROW_TERMINATOR:
                break

            if p >= row_end:
                raise MalformedContainerError(
                    f"RLE data corrupted: row {y} overruns its length"
                )

            if op & LITERAL_FLAG:
                count = op & MAX_LITERAL_RUN
                if p + count > row_end:
                    raise MalformedContainerError(
                        f"RLE data corrupted: literal run overruns row {y}"
                    )
                values = np.frombuffer(compressed_data, np.uint8, count, p)
                p += count
                kind = LITERAL
            elif op & TRANSPARENT_FLAG:
                count = op & MAX_TRANSPARENT_RUN
                kind = TRANSPARENT
            else:
                count = op
                values = compressed_data[p]
                p += 1
                kind = REPEAT

            if x + count > width:
                raise MalformedContainerError(
                    f"RLE data corrupted: row {y} exceeds width {width}"
                )

            if kind != TRANSPARENT:
                indices[y, x : x + count] = values
                opaque[y, x : x + count] = True

            x += count

    return indices, opaque


def decompress_cbm_rle(
    compressed_data: bytes, width: int, height: int, palette24
) -> np.ndarray:
    """
    Decompress CBM RLE-encoded image data into pixels

    Args:
        compressed_data: The RLE stream of one image record
        width: Image width in pixels
        height: Image height in pixels
        palette24: 256 packed 24-bit colors

    Returns:
        uint8 array of shape (height, width, 4) in blue, green, red, alpha order

    Raises:
        MalformedContainerError: If RLE data is corrupted or incomplete
    """
    indices, opaque = decode_cbm_rle_planes(compressed_data, width, height)

    pixels = palette24_to_bgra(palette24)[indices]
    pixels[~opaque] = 0

    return pixels


def expand_cbm_rle(compressed_data: bytes, width: int, height: int) -> tuple[bytes, bool]:
    """
    Decompress CBM RLE-encoded image data into palette indices

    Returns:
        Tuple of (one index byte per pixel, whether any pixel is transparent).
        Transparent pixels are given index 0.
    """
    indices, opaque = decode_cbm_rle_planes(compressed_data, width, height)

    return indices.tobytes(), not bool(opaque.all())


def _add_segments(runs: list, kind: int, start: int, count: int, max_count: int):
    """Append a run, split into pieces of at most `max_count`"""
    while count > 0:
        n = min(count, max_count)
        runs.append((kind, start, n))
        start += n
        count -= n


def parse_line(line: bytes, alpha: bytes | None = None) -> list[tuple[int, int, int]]:
    """
    Classify one scanline into runs with a single greedy left to right scan.

    At each position a literal run is tried first. It stops before the first
    byte that repeats its predecessor, leaving that pair to a repeat run. When
    an alpha plane is given, transparent pixels (alpha 0) end literal and
    repeat runs and are collected into transparent runs.

    Args:
        line: Palette indices of one scanline
        alpha: Optional alpha value per pixel of the scanline

    Returns:
        List of (kind, start, count) tuples covering the whole scanline
    """
    runs = []
    length = len(line)
    i = 0

    while i < length:
        # Literal run
        start = i
        count = 0
        value = 0

        while i < length:
            if (count > 0 and line[i] == value) or (alpha is not None and alpha[i] == 0):
                break

            value = line[i]
            count += 1
            i += 1

        # Give the repeated byte back to the following repeat run
        if count > 0 and i < length and line[i] == value:
            i -= 1
            count -= 1

        _add_segments(runs, LITERAL, start, count, MAX_LITERAL_RUN)

        # Transparent run
        if alpha is not None:
            start = i
            count = 0

            while i < length and alpha[i] == 0:
                count += 1
                i += 1

            _add_segments(runs, TRANSPARENT, start, count, MAX_TRANSPARENT_RUN)

        # Repeat run
        start = i
        count = 0
        value = line[i] if i < length else 0

        while i < length:
            if line[i] != value or (alpha is not None and alpha[i] == 0):
                break

            count += 1
            i += 1

        _add_segments(runs, REPEAT, start, count, MAX_REPEAT_RUN)

    return runs


def write_line(line: bytes, runs: list[tuple[int, int, int]]) -> bytes:
    """Serialize the runs of one scanline, length prefix and terminator included"""
    data = bytearray()

    for kind, start, count in runs:
        if kind == LITERAL:
            data.append(LITERAL_FLAG | count)
            data.extend(line[start : start + count])
        elif kind == TRANSPARENT:
            data.append(TRANSPARENT_FLAG | count)
        else:
            data.append(count)
            data.append(line[start])

    data.append(ROW_TERMINATOR)

    return struct.pack(ROW_LENGTH_FORMAT, len(data)) + bytes(data)


def compress_cbm_rle(
    index_data: bytes, width: int, height: int, alpha: bytes | None = None
) -> bytes:
    """
    Compress palette indices with the CBM scanline RLE scheme

    Args:
        index_data: One palette index byte per pixel, row-major
        width: Image width in pixels
        height: Image height in pixels
        alpha: Optional alpha value per pixel; when given, pixels with alpha 0
            are stored as transparent runs

    Returns:
        The RLE stream, one length-prefixed scanline after another

    Raises:
        InvalidArgumentError: If data lengths do not match width * height
    """
    if width < 0 or height < 0:
        raise InvalidArgumentError(f"Invalid image size: {width}x{height}")

    if len(index_data) != width * height:
        raise InvalidArgumentError(
            f"Index data has {len(index_data)} bytes, expected {width * height}"
        )

    if alpha is not None and len(alpha) != width * height:
        raise InvalidArgumentError(
            f"Alpha data has {len(alpha)} bytes, expected {width * height}"
        )

    index_data = bytes(index_data)
    lines = []

    for y in range(height):
        line = index_data[y * width : (y + 1) * width]
        line_alpha = None if alpha is None else alpha[y * width : (y + 1) * width]
        lines.append(write_line(line, parse_line(line, line_alpha)))

    return b"".join(lines)
