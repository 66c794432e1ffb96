"""
ISO-BMFF box header reading.

Two entry points share the same header rules:

- read_box_header: reads one header from a seekable binary stream
- unpack_box_header: reads one header from an in-memory buffer (moov body)

A box header is ``size(4) + type(4)``; ``size == 1`` means a 64-bit
``largesize(8)`` follows, ``size == 0`` means the box runs to the end of its
parent. The zero sentinel is surfaced to the caller unchanged.
"""

import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO

from mp4probe.isobmff.errors import MalformedBoxError, ProbeIOError

logger = logging.getLogger(__name__)

# Minimum bytes needed to read a standard box header
BOX_HEADER_SIZE = 8
# Header size when the 64-bit largesize field is present
LARGE_BOX_HEADER_SIZE = 16

# Containers the diagnostic walker descends into (metadata chain of one track)
CONTAINER_BOX_TYPES = frozenset({b"moov", b"trak", b"mdia", b"minf", b"stbl"})


@dataclass(frozen=True)
class BoxHeader:
    """One parsed box header."""

    size: int  # Total box size including the header; 0 = extends to end of parent
    box_type: bytes  # 4-byte type tag, e.g. b"moov"
    header_size: int  # 8, or 16 with a largesize field
    offset: int = 0  # Absolute offset of the first header byte

    @property
    def body_size(self) -> int:
        return self.size - self.header_size

    @property
    def body_offset(self) -> int:
        return self.offset + self.header_size

    @property
    def end(self) -> int:
        return self.offset + self.size

    @property
    def type_name(self) -> str:
        return self.box_type.decode("latin-1")

    @property
    def is_container(self) -> bool:
        return self.box_type in CONTAINER_BOX_TYPES

    def __str__(self) -> str:
        return f"BoxHeader {{ name: {self.type_name!r}, size: {self.size}, header: {self.header_size} }}"


def _read_exact(stream: BinaryIO, length: int, offset: int, what: str) -> bytes:
    data = stream.read(length)
    if len(data) < length:
        raise ProbeIOError(f"Truncated {what}: needed {length} bytes at offset {offset}, got {len(data)}", offset)
    return data


def _check_size(size: int, header_size: int, box_type: bytes, offset: int) -> None:
    if size != 0 and size < header_size:
        raise MalformedBoxError(f"Box size {size} smaller than its {header_size}-byte header", box_type, offset)


def read_box_header(stream: BinaryIO, end: int | None = None) -> BoxHeader:
    """
    Read one box header at the current stream position.

    Advances the stream exactly past the header bytes and leaves the body
    untouched. When ``end`` is given, no byte at or beyond it is read.

    Raises:
        ProbeIOError: the stream ends inside the header.
        MalformedBoxError: a non-zero size is smaller than the header itself,
            or the header would cross ``end``.
    """
    offset = stream.tell()
    if end is not None and offset + BOX_HEADER_SIZE > end:
        raise MalformedBoxError(f"{end - offset} trailing bytes too short for a box header", offset=offset)
    raw = _read_exact(stream, BOX_HEADER_SIZE, offset, "box header")
    size, box_type = struct.unpack(">I4s", raw)
    header_size = BOX_HEADER_SIZE

    if size == 1:  # Extended size (64-bit)
        if end is not None and offset + LARGE_BOX_HEADER_SIZE > end:
            raise MalformedBoxError("largesize field crosses the end of its container", box_type, offset)
        raw = _read_exact(stream, 8, offset + BOX_HEADER_SIZE, f"largesize of {box_type!r}")
        size = struct.unpack(">Q", raw)[0]
        header_size = LARGE_BOX_HEADER_SIZE

    _check_size(size, header_size, box_type, offset)
    return BoxHeader(size=size, box_type=box_type, header_size=header_size, offset=offset)


def unpack_box_header(data: bytes, offset: int, base_offset: int = 0) -> BoxHeader | None:
    """
    Read a box header from ``data`` at ``offset``.

    ``size == 0`` is resolved to the remaining length of ``data`` since an
    in-memory buffer always has a known end. ``base_offset`` is added to the
    reported offset so headers keep their absolute file position.

    Returns:
        The header, or None if fewer than a full header's bytes remain.
    """
    if offset + BOX_HEADER_SIZE > len(data):
        return None

    size, box_type = struct.unpack_from(">I4s", data, offset)
    header_size = BOX_HEADER_SIZE

    if size == 1:
        if offset + LARGE_BOX_HEADER_SIZE > len(data):
            return None
        size = struct.unpack_from(">Q", data, offset + BOX_HEADER_SIZE)[0]
        header_size = LARGE_BOX_HEADER_SIZE
    elif size == 0:  # Box extends to end of data
        size = len(data) - offset

    _check_size(size, header_size, box_type, base_offset + offset)
    if offset + size > len(data):
        raise MalformedBoxError(
            f"Box of size {size} overruns its parent by {offset + size - len(data)} bytes",
            box_type,
            base_offset + offset,
        )
    return BoxHeader(size=size, box_type=box_type, header_size=header_size, offset=base_offset + offset)


def iter_boxes(data: bytes, base_offset: int = 0):
    """
    Iterate over sibling boxes in ``data``.

    Yields:
        (header, body_bytes)
    """
    offset = 0
    while offset < len(data):
        header = unpack_box_header(data, offset, base_offset)
        if header is None:
            logger.debug("[box_reader] %d trailing bytes after last box", len(data) - offset)
            break
        start = offset + header.header_size
        end = offset + header.size
        yield header, data[start:end]
        offset = end


def find_box(data: bytes, target: bytes, base_offset: int = 0) -> tuple[BoxHeader, bytes] | None:
    """Find the first child box of type ``target`` and return (header, body)."""
    for header, body in iter_boxes(data, base_offset):
        if header.box_type == target:
            return header, body
    return None


def find_nested_box(data: bytes, *path: bytes, base_offset: int = 0) -> tuple[BoxHeader, bytes] | None:
    """Walk a box hierarchy: find_nested_box(data, b"mdia", b"minf") etc."""
    found = None
    current = data
    current_base = base_offset
    for box_name in path:
        found = find_box(current, box_name, current_base)
        if found is None:
            return None
        header, current = found
        current_base = header.body_offset
    return found
