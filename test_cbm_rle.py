"""
Pytest tests for CBM RLE compression module
"""

import struct

import numpy as np
import pytest

from cbm_header import InvalidArgumentError, MalformedContainerError
from cbm_rle import (
    LITERAL,
    REPEAT,
    TRANSPARENT,
    compress_cbm_rle,
    decode_cbm_rle_planes,
    decompress_cbm_rle,
    expand_cbm_rle,
    parse_line,
    write_line,
)


def row(*opcodes):
    """Helper function to build one length-prefixed scanline"""
    return struct.pack("<i", len(opcodes)) + bytes(opcodes)


def make_palette(*colors):
    """Helper function to build a 256 entry palette from leading colors"""
    palette = np.zeros(256, dtype=np.uint32)
    palette[: len(colors)] = colors
    return palette


class TestLineParsing:
    """Test the greedy run classification of a single scanline"""

    def test_empty_line(self):
        assert parse_line(b"") == []

    def test_single_byte(self):
        assert parse_line(b"\x07") == [(LITERAL, 0, 1)]

    def test_distinct_bytes_form_one_literal_run(self):
        assert parse_line(b"\x01\x02\x03") == [(LITERAL, 0, 3)]

    def test_leading_repeat(self):
        """Test that a literal run backtracks when its second byte repeats"""
        assert parse_line(b"\x01\x01\x02") == [(REPEAT, 0, 2), (LITERAL, 2, 1)]

    def test_literal_run_gives_back_repeated_byte(self):
        assert parse_line(b"\x01\x02\x02") == [(LITERAL, 0, 1), (REPEAT, 1, 2)]

    def test_literal_between_repeats(self):
        line = b"\x05\x05\x05\x01\x02\x09\x09"

        assert parse_line(line) == [
            (REPEAT, 0, 3),
            (LITERAL, 3, 2),
            (REPEAT, 5, 2),
        ]

    def test_long_literal_run_is_split(self):
        line = bytes(range(130))

        assert parse_line(line) == [(LITERAL, 0, 127), (LITERAL, 127, 3)]

    def test_long_repeat_run_is_split(self):
        line = b"\x03" * 100

        assert parse_line(line) == [(REPEAT, 0, 63), (REPEAT, 63, 37)]

    @pytest.mark.parametrize(
        "length,expected_counts",
        [
            (63, [63]),
            (64, [63, 1]),
            (126, [63, 63]),
            (127, [63, 63, 1]),
        ],
    )
    def test_repeat_run_boundaries(self, length, expected_counts):
        runs = parse_line(b"\xaa" * length)

        assert [count for _, _, count in runs] == expected_counts
        assert all(kind == REPEAT for kind, _, _ in runs)

    def test_transparent_runs_with_alpha(self):
        line = b"\x01\x02\x03\x04"
        alpha = b"\xff\x00\x00\xff"

        assert parse_line(line, alpha) == [
            (LITERAL, 0, 1),
            (TRANSPARENT, 1, 2),
            (REPEAT, 3, 1),
        ]

    def test_transparent_run_is_split(self):
        line = b"\x00" * 70
        alpha = b"\x00" * 70

        assert parse_line(line, alpha) == [(TRANSPARENT, 0, 63), (TRANSPARENT, 63, 7)]

    def test_write_line(self):
        line = b"\x01\x02\x03\x04"
        runs = [(LITERAL, 0, 1), (TRANSPARENT, 1, 2), (REPEAT, 3, 1)]

        assert write_line(line, runs) == row(0x81, 0x01, 0x42, 0x01, 0x04, 0x80)


class TestRLECompression:
    """Test CBM RLE compression of whole images"""

    def test_two_distinct_pixels(self):
        """Test that two distinct pixels make a single literal run"""
        compressed = compress_cbm_rle(b"\x00\x01", width=2, height=1)

        assert compressed == struct.pack("<i", 4) + bytes([0x82, 0x00, 0x01, 0x80])

    def test_four_identical_pixels(self):
        """Test that identical pixels make a single repeat run"""
        compressed = compress_cbm_rle(b"\x05" * 4, width=4, height=1)

        assert compressed == struct.pack("<i", 3) + bytes([0x04, 0x05, 0x80])

    def test_each_row_is_encoded_separately(self):
        compressed = compress_cbm_rle(b"\x01\x01\x02\x03", width=2, height=2)

        assert compressed == row(0x02, 0x01, 0x80) + row(0x82, 0x02, 0x03, 0x80)

    def test_empty_image(self):
        assert compress_cbm_rle(b"", width=0, height=0) == b""

    def test_zero_width_rows_have_only_terminators(self):
        assert compress_cbm_rle(b"", width=0, height=2) == row(0x80) * 2

    def test_alpha_plane(self):
        compressed = compress_cbm_rle(
            b"\x01\x02\x03\x04", width=4, height=1, alpha=b"\xff\x00\x00\xff"
        )

        assert compressed == row(0x81, 0x01, 0x42, 0x01, 0x04, 0x80)

    def test_length_mismatch(self):
        with pytest.raises(InvalidArgumentError, match="expected 6"):
            compress_cbm_rle(b"\x00" * 5, width=3, height=2)

    def test_alpha_length_mismatch(self):
        with pytest.raises(InvalidArgumentError, match="Alpha data"):
            compress_cbm_rle(b"\x00" * 4, width=2, height=2, alpha=b"\xff")

    def test_negative_size(self):
        with pytest.raises(InvalidArgumentError, match="Invalid image size"):
            compress_cbm_rle(b"", width=-1, height=0)

    def test_compression_is_lossless(self):
        rng = np.random.default_rng(1234)
        # few distinct values so that every run type shows up
        indices = rng.choice([0, 1, 2, 200], size=37 * 11, p=[0.7, 0.1, 0.1, 0.1])
        data = indices.astype(np.uint8).tobytes()

        compressed = compress_cbm_rle(data, width=37, height=11)
        expanded, has_transparency = expand_cbm_rle(compressed, width=37, height=11)

        assert expanded == data
        assert not has_transparency


class TestRLEDecompression:
    """Test CBM RLE decompression"""

    def test_literal_run(self):
        palette = make_palette(0x112233, 0x445566)
        compressed = row(0x82, 0x00, 0x01, 0x80)

        pixels = decompress_cbm_rle(compressed, width=2, height=1, palette24=palette)

        assert pixels.shape == (1, 2, 4)
        assert pixels[0, 0].tolist() == [0x11, 0x22, 0x33, 0xFF]
        assert pixels[0, 1].tolist() == [0x44, 0x55, 0x66, 0xFF]

    def test_repeat_run(self):
        palette = make_palette(0, 0x0000FF)
        compressed = row(0x03, 0x01, 0x80)

        pixels = decompress_cbm_rle(compressed, width=3, height=1, palette24=palette)

        assert pixels.reshape(-1, 4).tolist() == [[0x00, 0x00, 0xFF, 0xFF]] * 3

    def test_transparent_run(self):
        palette = make_palette(0xFFFFFF)
        compressed = row(0x43, 0x80)

        pixels = decompress_cbm_rle(compressed, width=3, height=1, palette24=palette)

        assert not pixels.any()

    def test_multiple_rows(self):
        palette = make_palette(0x000001, 0x000002)
        compressed = row(0x02, 0x00, 0x80) + row(0x81, 0x01, 0x41, 0x80)

        indices, opaque = decode_cbm_rle_planes(compressed, width=2, height=2)

        assert indices.tolist() == [[0, 0], [1, 0]]
        assert opaque.tolist() == [[True, True], [True, False]]

        pixels = decompress_cbm_rle(compressed, width=2, height=2, palette24=palette)
        assert pixels[1, 0].tolist() == [0, 0, 2, 0xFF]
        assert pixels[1, 1].tolist() == [0, 0, 0, 0]

    def test_short_row_leaves_pixels_transparent(self):
        palette = make_palette(0, 0, 0, 0, 0, 0, 0, 0x00FF00)
        compressed = row(0x02, 0x07, 0x80)

        pixels = decompress_cbm_rle(compressed, width=4, height=1, palette24=palette)

        assert pixels[0, :2, 3].tolist() == [0xFF, 0xFF]
        assert not pixels[0, 2:].any()

    def test_zero_count_repeat_run(self):
        compressed = row(0x00, 0x09, 0x81, 0x04, 0x80)

        indices, opaque = decode_cbm_rle_planes(compressed, width=1, height=1)

        assert indices.tolist() == [[4]]
        assert opaque.all()

    def test_empty_image(self):
        pixels = decompress_cbm_rle(b"", width=0, height=0, palette24=make_palette())

        assert pixels.shape == (0, 0, 4)

    def test_zero_width_image(self):
        pixels = decompress_cbm_rle(
            row(0x80) * 2, width=0, height=2, palette24=make_palette()
        )

        assert pixels.shape == (2, 0, 4)

    def test_expand_reports_transparency(self):
        indices, has_transparency = expand_cbm_rle(
            row(0x81, 0x05, 0x41, 0x80), width=2, height=1
        )

        assert indices == b"\x05\x00"
        assert has_transparency

    def test_missing_terminator(self):
        """Test error when a row ends before its terminator byte"""
        compressed = row(0x82, 0x00, 0x01)

        with pytest.raises(MalformedContainerError, match="no terminator"):
            decompress_cbm_rle(compressed, width=2, height=1, palette24=make_palette())

    def test_opcode_at_end_of_row(self):
        compressed = struct.pack("<i", 1) + bytes([0x41, 0x80])

        with pytest.raises(MalformedContainerError, match="overruns its length"):
            decode_cbm_rle_planes(compressed, width=1, height=1)

    def test_literal_run_overruns_declared_length(self):
        compressed = struct.pack("<i", 2) + bytes([0x82, 0x00, 0x01, 0x80])

        with pytest.raises(MalformedContainerError, match="literal run overruns"):
            decode_cbm_rle_planes(compressed, width=2, height=1)

    def test_truncated_stream(self):
        compressed = struct.pack("<i", 10) + bytes([0x82, 0x00])

        with pytest.raises(MalformedContainerError):
            decode_cbm_rle_planes(compressed, width=2, height=1)

    def test_missing_row(self):
        compressed = row(0x01, 0x00, 0x80)

        with pytest.raises(MalformedContainerError, match="missing length of row 1"):
            decode_cbm_rle_planes(compressed, width=1, height=2)

    def test_row_wider_than_image(self):
        compressed = row(0x05, 0x07, 0x80)

        with pytest.raises(MalformedContainerError, match="exceeds width"):
            decode_cbm_rle_planes(compressed, width=4, height=1)

    def test_negative_row_length(self):
        compressed = struct.pack("<i", -1) + bytes([0x80])

        with pytest.raises(MalformedContainerError, match="no terminator"):
            decode_cbm_rle_planes(compressed, width=0, height=1)
