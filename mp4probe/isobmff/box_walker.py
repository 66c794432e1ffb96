"""
Diagnostic box tree walker.

Walks the ISO-BMFF box tree of a seekable stream and reports every box to a
sink: the header, a bounded preview of the header bytes and, for leaf
boxes, a bounded preview of the body. Containment is tracked with an
explicit stack of frames so that nesting depth driven by the file is bounded
by ``max_depth`` instead of the interpreter's recursion limit.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Protocol, runtime_checkable

from mp4probe.isobmff.box_reader import BoxHeader, read_box_header
from mp4probe.isobmff.errors import MalformedBoxError, ProbeIOError
from mp4probe.utils.hex_utils import format_hex

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_SIZE = 128
DEFAULT_MAX_DEPTH = 32


@runtime_checkable
class BoxSink(Protocol):
    """Receives the walker's diagnostic events in file order."""

    def box_started(self, header: BoxHeader, depth: int, header_bytes: bytes, truncated: bool) -> None:
        """Called for every box right after its header is read, with up to ``preview_size`` header bytes."""
        ...

    def box_body(self, header: BoxHeader, depth: int, preview: bytes, truncated: bool) -> None:
        """Called for leaf boxes with up to ``preview_size`` body bytes; the full size is ``header.body_size``."""
        ...

    def container_finished(self, header: BoxHeader | None, depth: int) -> None:
        """Called when a container (or the walk root, header None) has no more children."""
        ...


class HexDumpSink:
    """Prints the walk as an indented, line-oriented hex trace."""

    def __init__(self, indent: str = "    ", columns: int = 16, out=None):
        self.indent = indent
        self.columns = columns
        self.out = out

    def _print(self, text: str = "") -> None:
        print(text, file=self.out)

    def box_started(self, header: BoxHeader, depth: int, header_bytes: bytes, truncated: bool) -> None:
        prefix = self.indent * depth
        self._print(f"{prefix}{header}")
        self._print(format_hex(header_bytes, indent=prefix, columns=self.columns))
        if truncated:
            self._print(f"{prefix}...")

    def box_body(self, header: BoxHeader, depth: int, preview: bytes, truncated: bool) -> None:
        prefix = self.indent * depth
        self._print(f"{prefix}BODY ({header.body_size})")
        self._print(format_hex(preview, indent=prefix, columns=self.columns))
        if truncated:
            self._print(f"{prefix}...")
        self._print()

    def container_finished(self, header: BoxHeader | None, depth: int) -> None:
        self._print()


@dataclass
class _Frame:
    """One level of containment: the container's header and where its body ends."""

    header: BoxHeader | None  # None for the walk root
    body_end: int


def _read_preview(stream: BinaryIO, size: int, preview_size: int) -> tuple[bytes, bool]:
    """Read at most ``preview_size`` of the next ``size`` bytes. Returns (bytes, truncated)."""
    truncated = size > preview_size
    length = preview_size if truncated else size
    offset = stream.tell()
    data = stream.read(length)
    if len(data) < length:
        raise ProbeIOError(f"Truncated box body: needed {length} bytes at offset {offset}, got {len(data)}", offset)
    return data, truncated


def walk_boxes(
    stream: BinaryIO,
    container_end: int,
    sink: BoxSink,
    *,
    preview_size: int = DEFAULT_PREVIEW_SIZE,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> int:
    """
    Walk every box between the current stream position and ``container_end``.

    After each box the stream is positioned at the box's end, whatever the
    sink consumed. A header with ``size == 0`` ends its container's sibling
    iteration without an error.

    Returns:
        Number of boxes visited.

    Raises:
        MalformedBoxError: a box overruns its parent, the position fails to
            advance, or nesting exceeds ``max_depth``.
        ProbeIOError: the stream ends before a box that the structure promised.
    """
    stack = [_Frame(header=None, body_end=container_end)]
    last_position = -1
    visited = 0

    while stack:
        frame = stack[-1]
        position = stream.tell()

        if position >= frame.body_end:
            _close_frame(stream, stack, sink)
            continue

        if position <= last_position:
            raise MalformedBoxError("Box walk failed to advance", offset=position)
        last_position = position

        header = read_box_header(stream, end=frame.body_end)
        header_end = stream.tell()
        depth = len(stack) - 1

        if header.size == 0:
            logger.debug("[box_walker] Zero-size %r at %d ends sibling iteration", header.box_type, header.offset)
            _close_frame(stream, stack, sink)
            continue

        if header.end > frame.body_end:
            raise MalformedBoxError(
                f"Box of size {header.size} overruns its container ending at {frame.body_end}",
                header.box_type,
                header.offset,
            )

        visited += 1
        stream.seek(header.offset)
        header_bytes, header_truncated = _read_preview(stream, header.header_size, preview_size)
        stream.seek(header_end)
        sink.box_started(header, depth, header_bytes, header_truncated)

        if header.is_container:
            if len(stack) > max_depth:
                raise MalformedBoxError(f"Box nesting deeper than {max_depth} levels", header.box_type, header.offset)
            stack.append(_Frame(header=header, body_end=header_end + header.body_size))
            continue

        preview, truncated = _read_preview(stream, header.body_size, preview_size)
        sink.box_body(header, depth, preview, truncated)
        stream.seek(header_end + header.body_size)

    logger.debug("[box_walker] Visited %d boxes", visited)
    return visited


def _close_frame(stream: BinaryIO, stack: list[_Frame], sink: BoxSink) -> None:
    frame = stack.pop()
    depth = len(stack) - 1 if frame.header is not None else 0
    sink.container_finished(frame.header, depth)
    stream.seek(frame.body_end)
