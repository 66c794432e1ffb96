import pytest

from mp4probe.utils.hex_utils import format_byte_range, format_hex


def test_format_hex_rows_and_offsets():
    text = format_hex(bytes(range(20)), indent="  ")
    lines = text.splitlines()

    assert lines[0] == "  0000:: 00 01 02 03 04 05 06 07 08 09 0a 0b 0c 0d 0e 0f"
    assert lines[1] == "  0010:: 10 11 12 13"


def test_format_hex_empty_input_renders_single_row():
    assert format_hex(b"") == "0000::"


def test_format_hex_custom_columns():
    assert format_hex(b"\xde\xad\xbe\xef", columns=2) == "0000:: de ad\n0002:: be ef"


def test_format_hex_rejects_non_positive_columns():
    with pytest.raises(ValueError):
        format_hex(b"\x00", columns=0)


def test_format_byte_range():
    assert format_byte_range(4096, 16) == "[0x1000, 0x1010)"
