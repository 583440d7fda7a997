"""
Palette derivation for CBM images.

Implements:
1. Alpha normalization of BGRA pixel buffers
2. Exact palette mapping for images with at most 256 colors
3. Median cut quantization for images with more colors
4. 24-bit to 5-6-5 16-bit palette conversion

Palette slots are packed as (blue << 16) | (green << 8) | red.
"""

import cv2
import numpy as np
from PIL import Image

from cbm_header import PALETTE_SIZE, InvalidArgumentError


def as_palette24(palette) -> np.ndarray:
    """Validate a 256 entry palette and return it as a masked uint32 array"""
    arr = np.asarray(palette, dtype=np.int64).reshape(-1)

    if arr.shape[0] != PALETTE_SIZE:
        raise InvalidArgumentError(
            f"Palette must have {PALETTE_SIZE} entries, got {arr.shape[0]}"
        )

    return (arr & 0xFFFFFF).astype(np.uint32)


def palette24_to_palette16(palette24) -> np.ndarray:
    """Convert packed 24-bit colors to 5-6-5 packed 16-bit colors."""
    palette = as_palette24(palette24)

    b = (palette >> 16) & 0xFF
    g = (palette >> 8) & 0xFF
    r = palette & 0xFF

    # rounding scale-down to 5, 6 and 5 bits
    b = (b * (0x1F * 2) + 0xFF) // (0xFF * 2)
    g = (g * (0x3F * 2) + 0xFF) // (0xFF * 2)
    r = (r * (0x1F * 2) + 0xFF) // (0xFF * 2)

    return ((b << 11) | (g << 5) | r).astype(np.uint16)


def palette24_to_bgra(palette24) -> np.ndarray:
    """Expand packed 24-bit colors to a (256, 4) table of opaque BGRA pixels."""
    palette = as_palette24(palette24)

    table = np.empty((PALETTE_SIZE, 4), dtype=np.uint8)
    table[:, 0] = (palette >> 16) & 0xFF
    table[:, 1] = (palette >> 8) & 0xFF
    table[:, 2] = palette & 0xFF
    table[:, 3] = 0xFF

    return table


def palette24_to_rgb(palette24) -> np.ndarray:
    """Expand packed 24-bit colors to a (256, 3) table of R, G, B rows."""
    return palette24_to_bgra(palette24)[:, 2::-1].copy()


def as_pixel_buffer(width: int, height: int, data) -> np.ndarray:
    """
    Validate a BGRA pixel buffer and return it as a (height, width, 4) array.

    Args:
        width: Image width in pixels
        height: Image height in pixels
        data: bytes-like object or numpy array holding width * height * 4 bytes

    Raises:
        InvalidArgumentError: If the size is negative or does not match the data
    """
    if width < 0 or height < 0:
        raise InvalidArgumentError(f"Invalid image size: {width}x{height}")

    if data is None:
        raise InvalidArgumentError("Pixel data is required")

    if isinstance(data, np.ndarray):
        arr = np.ascontiguousarray(data, dtype=np.uint8).reshape(-1)
    else:
        arr = np.frombuffer(bytes(data), dtype=np.uint8)

    if arr.shape[0] != width * height * 4:
        raise InvalidArgumentError(
            f"Pixel data has {arr.shape[0]} bytes, expected {width * height * 4}"
        )

    return arr.reshape((height, width, 4)).copy()


def normalize_alpha(pixels: np.ndarray) -> np.ndarray:
    """
    Collapse alpha to fully opaque or fully transparent black.

    Pixels with alpha >= 0x80 become opaque; the others have all four channels
    set to zero.
    """
    if pixels.ndim != 3 or pixels.shape[2] != 4:
        raise InvalidArgumentError(f"Unsupported array shape: {pixels.shape}")

    result = pixels.astype(np.uint8, copy=True)
    transparent = result[..., 3] < 0x80

    result[..., 3] = 0xFF
    result[transparent] = 0

    return result


def pack_colors(pixels: np.ndarray) -> np.ndarray:
    """Pack the B, G, R channels of every pixel into 24-bit palette slots."""
    b = pixels[..., 0].astype(np.uint32)
    g = pixels[..., 1].astype(np.uint32)
    r = pixels[..., 2].astype(np.uint32)

    return ((b << 16) | (g << 8) | r).reshape(-1)


def _exact_palette(colors: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Palette in first-occurrence order and the slot of every pixel."""
    unique, first, inverse = np.unique(colors, return_index=True, return_inverse=True)

    order = np.argsort(first)
    slots = np.empty_like(order)
    slots[order] = np.arange(order.shape[0])

    palette = np.zeros(PALETTE_SIZE, dtype=np.uint32)
    palette[: unique.shape[0]] = unique[order]

    return palette, slots[inverse.reshape(-1)].astype(np.uint8)


def _median_cut_palette(pixels: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Reduce an image with more than 256 colors using median cut."""
    rgb = cv2.cvtColor(np.ascontiguousarray(pixels), cv2.COLOR_BGRA2RGB)

    quantized = Image.fromarray(rgb).quantize(
        colors=PALETTE_SIZE,
        method=Image.Quantize.MEDIANCUT,
        dither=Image.Dither.NONE,
    )

    flat = np.zeros(PALETTE_SIZE * 3, dtype=np.uint32)
    entries = np.asarray(quantized.getpalette() or [], dtype=np.uint32)[: PALETTE_SIZE * 3]
    flat[: entries.shape[0]] = entries

    rows = flat.reshape((PALETTE_SIZE, 3))
    palette = (rows[:, 2] << 16) | (rows[:, 1] << 8) | rows[:, 0]

    return palette, np.asarray(quantized, dtype=np.uint8).reshape(-1)


def quantize_pixels(pixels: np.ndarray) -> tuple[np.ndarray, bytes]:
    """
    Map a BGRA pixel buffer to a 256 entry palette and one index per pixel.

    Args:
        pixels: uint8 array of shape (height, width, 4)

    Returns:
        Tuple of (palette24 as 256 uint32, index bytes of length width * height)
    """
    normalized = normalize_alpha(pixels)
    colors = pack_colors(normalized)

    if colors.shape[0] == 0:
        return np.zeros(PALETTE_SIZE, dtype=np.uint32), b""

    if np.unique(colors).shape[0] <= PALETTE_SIZE:
        palette, indices = _exact_palette(colors)
    else:
        palette, indices = _median_cut_palette(normalized)

    return palette, indices.tobytes()
