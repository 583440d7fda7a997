"""
CBM Container Module

This module reads and writes CBM containers: an ordered list of image records
preceded by a 36-byte header holding the image count, a cursor into the list
and two opaque identifiers.
"""

import io
import os
from concurrent.futures import ThreadPoolExecutor
from typing import BinaryIO, Self

import numpy as np

from cbm_header import (
    PALETTE_SIZE,
    CBMError,
    CBMHeader,
    CBMImageHeader,
    pack_palette,
    read_exact,
    read_palette,
)
from cbm_image import CBMImage


class CBMFile:
    """
    CBM image container

    Should be constructed empty or using `CBMFile.from_file(file_name)`.
    """

    def __init__(self):
        self.file_name: str | None = None
        self.image_id = 0
        self.group_id = 0
        self.images: list[CBMImage] = []
        self._current_index = 0

    @property
    def current_index(self) -> int:
        if 0 <= self._current_index < len(self.images):
            return self._current_index
        return 0

    @current_index.setter
    def current_index(self, value: int):
        if 0 <= value < len(self.images):
            self._current_index = value
        else:
            self._current_index = 0

    @property
    def current_image(self) -> CBMImage | None:
        if not self.images:
            return None
        return self.images[self.current_index]

    @property
    def area_left(self) -> int:
        return min((image.area_left for image in self.images), default=0)

    @property
    def area_top(self) -> int:
        return min((image.area_top for image in self.images), default=0)

    @property
    def area_right(self) -> int:
        return max((image.area_right for image in self.images), default=0)

    @property
    def area_bottom(self) -> int:
        return max((image.area_bottom for image in self.images), default=0)

    @property
    def width(self) -> int:
        return self.area_right - self.area_left

    @property
    def height(self) -> int:
        return self.area_bottom - self.area_top

    @property
    def is_compressed(self) -> bool:
        return any(image.is_compressed for image in self.images)

    def to_header(self) -> CBMHeader:
        return CBMHeader(
            count=len(self.images),
            current_index=self.current_index,
            area_left=self.area_left,
            area_top=self.area_top,
            area_right=self.area_right,
            area_bottom=self.area_bottom,
            image_id=self.image_id,
            group_id=self.group_id,
        )

    @classmethod
    def from_file(cls, file_path: str) -> Self:
        """
        Read a CBM container from a file.

        Raises:
            MalformedContainerError: If the file is truncated or invalid
            CBMError: If the file cannot be read
        """
        try:
            with open(file_path, "rb") as f:
                cbm = cls.from_stream(f)
        except OSError as e:
            raise CBMError(f"Failed to read file: {e}")

        cbm.file_name = str(file_path)
        return cbm

    @classmethod
    def from_bytes(cls, data: bytes) -> Self:
        return cls.from_stream(io.BytesIO(data))

    @classmethod
    def from_stream(cls, stream: BinaryIO) -> Self:
        """
        Read a CBM container from a binary stream.

        The container area stored in the header is ignored: it is derived from
        the images. An out of range cursor is reset to the first image.

        Raises:
            MalformedContainerError: If the stream is truncated or invalid
        """
        header = CBMHeader.parse_cbm_header(stream)

        cbm = cls()
        cbm.image_id = header.image_id
        cbm.group_id = header.group_id

        for i in range(header.count):
            image_header = CBMImageHeader.parse_image_header(stream)
            palette16 = read_palette(stream, f"16-bit palette of image {i}")
            palette24 = read_palette(stream, f"24-bit palette of image {i}")
            data = read_exact(stream, image_header.data_length, f"pixel data of image {i}")

            cbm.images.append(
                CBMImage.from_record(image_header, palette16, palette24, data)
            )

        cbm.current_index = header.current_index
        return cbm

    def save(self, target: str | os.PathLike | BinaryIO):
        """
        Write the container to a file path or a binary stream.

        Raises:
            CBMError: If the file cannot be written
        """
        if isinstance(target, (str, os.PathLike)):
            try:
                with open(target, "wb") as f:
                    self.save(f)
            except OSError as e:
                raise CBMError(f"Failed to write file: {e}")

            self.file_name = str(target)
            return

        target.write(self.to_header().pack())

        for image in self.images:
            target.write(image.to_header().pack())
            target.write(_pack_optional_palette(image.get_palette16()))
            target.write(_pack_optional_palette(image.get_palette24()))

            raw_data = image.get_raw_data()
            if raw_data is not None:
                target.write(raw_data)

    def to_bytes(self) -> bytes:
        stream = io.BytesIO()
        self.save(stream)
        return stream.getvalue()

    def compress(self):
        """RLE compress every image, one worker per image."""
        with ThreadPoolExecutor() as executor:
            list(executor.map(CBMImage.compress, self.images))

    def decompress(self):
        """Expand every compressed image, one worker per image."""
        with ThreadPoolExecutor() as executor:
            list(executor.map(CBMImage.decompress, self.images))

    def move_first(self):
        self._current_index = 0

    def move_previous(self):
        if not self.images:
            self._current_index = 0
            return

        self._current_index = (self.current_index - 1) % len(self.images)

    def move_next(self):
        if not self.images:
            self._current_index = 0
            return

        self._current_index = (self.current_index + 1) % len(self.images)

    def move_last(self):
        self._current_index = max(len(self.images) - 1, 0)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CBMFile):
            return NotImplemented

        return (
            self.current_index == other.current_index
            and self.image_id == other.image_id
            and self.group_id == other.group_id
            and self.images == other.images
        )

    def __str__(self) -> str:
        return str(self.to_header())


def _pack_optional_palette(palette: np.ndarray | None) -> bytes:
    if palette is None:
        palette = np.zeros(PALETTE_SIZE, dtype=np.uint32)

    return pack_palette(palette)
