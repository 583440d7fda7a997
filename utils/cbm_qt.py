"""
CBM Utilities for PyQt6 GUI

This module provides functions to convert CBM images to QImage objects
and create palette visualizations.
"""

import numpy as np
from PyQt6.QtGui import QColor, QImage

from cbm_image import CBMImage
from cbm_palette import palette24_to_rgb


def bgra_to_qimage(pixels: np.ndarray) -> QImage:
    """
    Convert a (height, width, 4) BGRA array to QImage.

    Format_ARGB32 stores each pixel as B, G, R, A bytes on little-endian
    machines, which matches the array layout.
    """
    if pixels.ndim != 3 or pixels.shape[2] != 4:
        raise ValueError(f"Unsupported array shape: {pixels.shape}")

    arr = np.ascontiguousarray(pixels, dtype=np.uint8)
    h, w, _ = arr.shape

    qimg = QImage(
        arr.data,  # pyright: ignore
        w,
        h,
        w * 4,
        QImage.Format.Format_ARGB32,
    )

    return qimg.copy()  # return deep copy to avoid referencing numpy buffer


def cbm_image_to_qimage(image: CBMImage) -> QImage | None:
    """
    Convert a CBM image record to QImage.

    Returns:
        QImage object, or None if the record holds no pixel data
    """
    pixels = image.get_image_data()

    if pixels is None:
        return None

    return bgra_to_qimage(pixels)


def create_palette_image(palette24, square_size: int = 16) -> QImage:
    """
    Create a visual representation of a 256 color palette.

    Creates a 16x16 grid of squares showing all colors in the palette.
    """
    rgb = palette24_to_rgb(palette24)

    width = 16 * square_size
    height = 16 * square_size

    palette_image = QImage(width, height, QImage.Format.Format_RGB32)

    for color_idx in range(256):
        r, g, b = (int(c) for c in rgb[color_idx])

        # Calculate position in 16x16 grid
        row = color_idx // 16
        col = color_idx % 16

        color = QColor(r, g, b).rgb()

        # Fill the square
        for dy in range(square_size):
            for dx in range(square_size):
                x = col * square_size + dx
                y = row * square_size + dy
                palette_image.setPixel(x, y, color)

    return palette_image
