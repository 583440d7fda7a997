"""
CBM Image Module

This module defines a single image record of a CBM container: its size, its
placement in the shared canvas, its 24-bit and 16-bit palettes and its pixel
data, stored either as one palette index per pixel or RLE compressed.
"""

from typing import Self

import numpy as np

from cbm_header import (
    PALETTE_SIZE,
    CBMImageHeader,
    InvalidArgumentError,
    MalformedContainerError,
)
from cbm_palette import (
    as_palette24,
    as_pixel_buffer,
    palette24_to_bgra,
    palette24_to_palette16,
    quantize_pixels,
)
from cbm_rle import (
    compress_cbm_rle,
    decode_cbm_rle_planes,
    decompress_cbm_rle,
    expand_cbm_rle,
)
from utils.raster import read_bgra, write_bgra, writable_format


class CBMImage:
    """
    One palette-indexed image of a CBM container.

    Should be constructed using `CBMImage.from_memory(...)`,
    `CBMImage.from_file(...)` or by reading a `CBMFile`.
    """

    def __init__(self):
        self.width = 0
        self.height = 0
        self.is_compressed = False

        self.area_left = 0
        self.area_top = 0
        self.area_right = 0
        self.area_bottom = 0

        self._palette16: np.ndarray | None = None
        self._palette24: np.ndarray | None = None
        self._raw_data: bytes | None = None

    @classmethod
    def from_file(cls, file_path: str) -> Self:
        image = cls()
        image.replace_with_file(file_path)
        return image

    @classmethod
    def from_memory(cls, width: int, height: int, data) -> Self:
        image = cls()
        image.replace_with_memory(width, height, data)
        return image

    @classmethod
    def from_record(
        cls, header: CBMImageHeader, palette16, palette24, data: bytes
    ) -> Self:
        """Build an image from the fields of a decoded image record"""
        image = cls()
        image.width = header.width
        image.height = header.height
        image.is_compressed = header.is_compressed != 0
        image.area_left = header.area_left
        image.area_top = header.area_top
        image.area_right = header.area_right
        image.area_bottom = header.area_bottom

        # 16-bit colors are stored in 32-bit slots
        image._palette16 = (np.asarray(palette16, dtype=np.uint32) & 0xFFFF).astype(
            np.uint16
        )
        image._palette24 = np.asarray(palette24, dtype=np.uint32)
        image._raw_data = bytes(data)

        return image

    def to_header(self) -> CBMImageHeader:
        return CBMImageHeader(
            width=self.width,
            height=self.height,
            is_compressed=1 if self.is_compressed else 0,
            data_length=0 if self._raw_data is None else len(self._raw_data),
            area_left=self.area_left,
            area_top=self.area_top,
            area_right=self.area_right,
            area_bottom=self.area_bottom,
        )

    @property
    def offset_x(self) -> int:
        return self.area_left

    @offset_x.setter
    def offset_x(self, value: int):
        self.area_left = value
        self.area_right = value + self.width

    @property
    def offset_y(self) -> int:
        return self.area_top

    @offset_y.setter
    def offset_y(self, value: int):
        self.area_top = value
        self.area_bottom = value + self.height

    def get_palette16(self) -> np.ndarray | None:
        return None if self._palette16 is None else self._palette16.copy()

    def get_palette24(self) -> np.ndarray | None:
        return None if self._palette24 is None else self._palette24.copy()

    def get_raw_data(self) -> bytes | None:
        return self._raw_data

    def set_palette(self, palette):
        """
        Replace the 24-bit palette and derive the 16-bit palette from it.

        Raises:
            InvalidArgumentError: If the palette does not have 256 entries
        """
        if palette is None:
            raise InvalidArgumentError("Palette is required")

        palette24 = as_palette24(palette)

        self._palette24 = palette24
        self._palette16 = palette24_to_palette16(palette24)

    def set_raw_data(self, width: int, height: int, data):
        """
        Store uncompressed palette indices and reset the area rectangle.

        Raises:
            InvalidArgumentError: If the size is negative or does not match the data
        """
        if width < 0 or height < 0:
            raise InvalidArgumentError(f"Invalid image size: {width}x{height}")

        if data is None:
            raise InvalidArgumentError("Raw data is required")

        if len(data) != width * height:
            raise InvalidArgumentError(
                f"Raw data has {len(data)} bytes, expected {width * height}"
            )

        self.width = width
        self.height = height
        self.is_compressed = False
        self._raw_data = bytes(data)

        self.area_left = 0
        self.area_top = 0
        self.area_right = width
        self.area_bottom = height

    def get_image_data(self) -> np.ndarray | None:
        """
        Decode the image into pixels.

        Returns:
            uint8 array of shape (height, width, 4) in blue, green, red, alpha
            order, or None when the record has no pixel data or palette

        Raises:
            MalformedContainerError: If the pixel data is corrupted
        """
        if self._raw_data is None or self._palette24 is None:
            return None

        if self.is_compressed:
            return decompress_cbm_rle(
                self._raw_data, self.width, self.height, self._palette24
            )

        if len(self._raw_data) != self.width * self.height:
            raise MalformedContainerError(
                f"Raw data has {len(self._raw_data)} bytes, "
                f"expected {self.width * self.height}"
            )

        indices = np.frombuffer(self._raw_data, dtype=np.uint8)
        pixels = palette24_to_bgra(self._palette24)[indices]

        return pixels.reshape((self.height, self.width, 4))

    def get_index_histogram(self) -> np.ndarray | None:
        """Count how many pixels use each palette slot, transparent pixels excluded."""
        if self._raw_data is None:
            return None

        if not self.is_compressed:
            indices = np.frombuffer(self._raw_data, dtype=np.uint8)
            return np.bincount(indices, minlength=PALETTE_SIZE)

        indices, opaque = decode_cbm_rle_planes(self._raw_data, self.width, self.height)
        return np.bincount(indices[opaque], minlength=PALETTE_SIZE)

    def compress(self):
        """RLE compress the palette indices in place."""
        if self.is_compressed:
            return

        if self._raw_data is None or self._palette24 is None:
            return

        self._raw_data = compress_cbm_rle(self._raw_data, self.width, self.height)
        self.is_compressed = True

    def decompress(self):
        """
        Expand RLE data back into one palette index per pixel.

        The palette is kept as is unless the data holds transparent runs, in
        which case the pixels are quantized again like a freshly loaded image.
        """
        if not self.is_compressed:
            return

        if self._raw_data is None or self._palette24 is None:
            return

        indices, has_transparency = expand_cbm_rle(
            self._raw_data, self.width, self.height
        )

        if has_transparency:
            self._replace_pixels(self.get_image_data())
        else:
            self._raw_data = indices
            self.is_compressed = False

    def save(self, file_path: str):
        """
        Write the image to a BMP or PNG file.

        Nothing is written when the record has no pixel data or palette.

        Raises:
            UnsupportedFormatError: If the extension is not .bmp or .png
        """
        writable_format(file_path)

        pixels = self.get_image_data()
        if pixels is None:
            return

        write_bgra(file_path, pixels)

    def replace_with_file(self, file_path: str):
        """
        Load a BMP, PNG, JPG or GIF file into this record.

        Raises:
            UnsupportedFormatError: If the extension is not supported
            FileNotFoundError: If the file does not exist
        """
        pixels = read_bgra(file_path)
        height, width = pixels.shape[:2]

        self._init_data(width, height, pixels)

    def replace_with_memory(self, width: int, height: int, data):
        """
        Load a BGRA pixel buffer of width * height * 4 bytes into this record.

        Raises:
            InvalidArgumentError: If the size does not match the data
        """
        self._init_data(width, height, as_pixel_buffer(width, height, data))

    def make_color_transparent(self, red: int, green: int, blue: int):
        self.make_color_range_transparent((red, green, blue), (red, green, blue))

    def make_color_range_transparent(
        self, lower: tuple[int, int, int], upper: tuple[int, int, int]
    ):
        """
        Make every pixel whose color lies between two RGB bounds transparent.

        Both bounds are inclusive and given as (red, green, blue). The record
        is quantized again and ends up uncompressed.
        """
        pixels = self.get_image_data()
        if pixels is None:
            return

        pixels = pixels.copy()

        # pixel channels are stored as blue, green, red
        lower_bgr = np.array(lower[::-1], dtype=np.int16)
        upper_bgr = np.array(upper[::-1], dtype=np.int16)
        bgr = pixels[..., :3].astype(np.int16)

        mask = np.all((bgr >= lower_bgr) & (bgr <= upper_bgr), axis=-1)
        pixels[mask, 3] = 0

        self._replace_pixels(pixels)

    def _replace_pixels(self, pixels: np.ndarray):
        """Quantize decoded pixels again while keeping the area rectangle"""
        area = (self.area_left, self.area_top, self.area_right, self.area_bottom)

        self._init_data(self.width, self.height, pixels)

        self.area_left, self.area_top, self.area_right, self.area_bottom = area

    def _init_data(self, width: int, height: int, pixels: np.ndarray):
        palette, indices = quantize_pixels(pixels)

        self.set_palette(palette)
        self.set_raw_data(width, height, indices)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CBMImage):
            return NotImplemented

        return (
            self.to_header() == other.to_header()
            and _arrays_equal(self._palette16, other._palette16)
            and _arrays_equal(self._palette24, other._palette24)
            and self._raw_data == other._raw_data
        )

    def __repr__(self) -> str:
        encoding = "RLE" if self.is_compressed else "raw"
        return (
            f"CBMImage({self.width}x{self.height}, {encoding}, "
            f"area=({self.area_left}, {self.area_top}, "
            f"{self.area_right}, {self.area_bottom}))"
        )


def _arrays_equal(a: np.ndarray | None, b: np.ndarray | None) -> bool:
    if a is None or b is None:
        return a is None and b is None

    return a.shape == (PALETTE_SIZE,) and np.array_equal(a, b)
