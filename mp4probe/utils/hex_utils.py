"""Hex dump formatting for diagnostic output."""


def format_hex(data: bytes, indent: str = "", columns: int = 16) -> str:
    """
    Render ``data`` as rows of ``columns`` hex bytes.

    Each row is prefixed with ``indent`` and the 4-digit hex offset of its
    first byte, e.g. ``0000:: 00 00 00 18 66 74 79 70``. Empty input renders
    a single empty row.
    """
    if columns <= 0:
        raise ValueError(f"columns must be positive, got {columns}")

    rows = []
    for start in range(0, max(len(data), 1), columns):
        chunk = data[start : start + columns]
        cells = "".join(f" {b:02x}" for b in chunk)
        rows.append(f"{indent}{start:04x}::{cells}")
    return "\n".join(rows)


def format_byte_range(offset: int, size: int) -> str:
    """Render an absolute byte range as ``[start, end)`` with hex bounds."""
    return f"[0x{offset:x}, 0x{offset + size:x})"
