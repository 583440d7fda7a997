"""
Raster file helpers for CBM images.

Standard image files are exchanged as uint8 arrays of shape (height, width, 4)
in blue, green, red, alpha order, which is also OpenCV's native channel order.
"""

import os

import cv2
import numpy as np
from PIL import Image

from cbm_header import CBMError, UnsupportedFormatError

READABLE_EXTENSIONS = (".bmp", ".png", ".jpg", ".jpeg", ".gif")
WRITABLE_EXTENSIONS = (".bmp", ".png")


def _extension(file_path: str) -> str:
    return os.path.splitext(str(file_path))[1].lower()


def readable_format(file_path: str) -> str:
    ext = _extension(file_path)

    if ext not in READABLE_EXTENSIONS:
        raise UnsupportedFormatError(f"Unsupported image file extension: '{ext}'")

    return ext


def writable_format(file_path: str) -> str:
    ext = _extension(file_path)

    if ext not in WRITABLE_EXTENSIONS:
        raise UnsupportedFormatError(f"Unsupported image file extension: '{ext}'")

    return ext


def to_bgra(arr: np.ndarray) -> np.ndarray:
    """Expand a grayscale, BGR or BGRA array to BGRA."""
    if arr.ndim == 2:
        return cv2.cvtColor(arr, cv2.COLOR_GRAY2BGRA)
    elif arr.ndim == 3 and arr.shape[2] == 3:
        return cv2.cvtColor(arr, cv2.COLOR_BGR2BGRA)
    elif arr.ndim == 3 and arr.shape[2] == 4:
        return arr
    else:
        raise ValueError(f"Unsupported array shape: {arr.shape}")


def read_bgra(file_path: str) -> np.ndarray:
    """
    Read a BMP, PNG, JPG or GIF file as BGRA pixels.

    Raises:
        UnsupportedFormatError: If the extension is not supported
        FileNotFoundError: If the file does not exist
        CBMError: If the file cannot be decoded
    """
    ext = readable_format(file_path)

    if not os.path.exists(file_path):
        raise FileNotFoundError(file_path)

    if ext == ".gif":
        with Image.open(file_path) as gif:
            rgba = np.asarray(gif.convert("RGBA"))
        return cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA)

    arr = cv2.imread(str(file_path), cv2.IMREAD_UNCHANGED)
    if arr is None:
        raise CBMError(f"Failed to read image file: {file_path}")

    if arr.dtype != np.uint8:
        # 16-bit PNG
        arr = (arr >> 8).astype(np.uint8)

    return np.ascontiguousarray(to_bgra(arr))


def write_bgra(file_path: str, pixels: np.ndarray):
    """
    Write BGRA pixels to a BMP or PNG file.

    Raises:
        UnsupportedFormatError: If the extension is not .bmp or .png
        CBMError: If the file cannot be written
    """
    writable_format(file_path)

    if not cv2.imwrite(str(file_path), pixels):
        raise CBMError(f"Failed to write image file: {file_path}")
