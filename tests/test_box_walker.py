import io
import struct

import pytest

from mp4_builders import build_box, build_ftyp, build_h264_mp4, build_large_box
from mp4probe.isobmff.box_walker import BoxSink, HexDumpSink, walk_boxes
from mp4probe.isobmff.errors import MalformedBoxError


class RecordingSink:
    """Collects walker events; optionally moves the stream around to test position restoring."""

    def __init__(self, stream=None):
        self.stream = stream
        self.events = []

    def box_started(self, header, depth, header_bytes, truncated):
        self.events.append(("start", header.box_type, depth, header_bytes, truncated))

    def box_body(self, header, depth, preview, truncated):
        self.events.append(("body", header.box_type, depth, preview, truncated))
        if self.stream is not None:
            self.stream.seek(0)
            self.stream.read(3)

    def container_finished(self, header, depth):
        self.events.append(("end", header.box_type if header else None, depth))

    def started(self):
        return [(e[1], e[2]) for e in self.events if e[0] == "start"]


class BoundedStream(io.BytesIO):
    """BytesIO that records the furthest byte any read touched."""

    def __init__(self, data):
        super().__init__(data)
        self.max_read_end = 0

    def read(self, size=-1):
        data = super().read(size)
        self.max_read_end = max(self.max_read_end, self.tell())
        return data


def test_sink_protocol_is_satisfied():
    assert isinstance(RecordingSink(), BoxSink)
    assert isinstance(HexDumpSink(), BoxSink)


def test_walks_container_chain_with_depths(video_samples):
    data = build_h264_mp4(video_samples)
    sink = RecordingSink()
    visited = walk_boxes(io.BytesIO(data), len(data), sink)

    started = sink.started()
    assert started[:3] == [(b"ftyp", 0), (b"moov", 0), (b"mvhd", 1)]
    assert (b"trak", 1) in started
    assert (b"stbl", 4) in started
    assert (b"stsz", 5) in started
    assert (b"stco", 5) in started
    assert started[-1] == (b"mdat", 0)
    assert visited == len(started)


def test_leaf_preview_is_bounded_and_flagged():
    data = build_box(b"free", bytes(range(200))) + build_box(b"skip", b"\x01\x02")
    sink = RecordingSink()
    walk_boxes(io.BytesIO(data), len(data), sink, preview_size=16)

    bodies = [e for e in sink.events if e[0] == "body"]
    assert bodies[0][3] == bytes(range(16))
    assert bodies[0][4] is True
    assert bodies[1][3] == b"\x01\x02"
    assert bodies[1][4] is False


def test_header_bytes_include_largesize():
    data = build_large_box(b"mdat", b"\xff" * 4)
    sink = RecordingSink()
    walk_boxes(io.BytesIO(data), len(data), sink)

    assert sink.events[0][3] == data[:16]
    assert sink.events[0][4] is False


def test_header_preview_is_bounded_and_flagged(capsys):
    data = build_large_box(b"mdat", b"\xff" * 4)
    sink = RecordingSink()
    walk_boxes(io.BytesIO(data), len(data), sink, preview_size=8)

    assert sink.events[0][3] == data[:8]
    assert sink.events[0][4] is True

    walk_boxes(io.BytesIO(data), len(data), HexDumpSink(), preview_size=8)
    lines = capsys.readouterr().out.splitlines()
    assert lines[:3] == [
        "BoxHeader { name: 'mdat', size: 20, header: 16 }",
        "0000:: 00 00 00 01 6d 64 61 74",
        "...",
    ]


def test_position_restored_regardless_of_sink_reads():
    data = build_box(b"moov", build_box(b"udta", b"\x00" * 40) + build_box(b"mvhd", b"\x01" * 8)) + build_ftyp()
    stream = io.BytesIO(data)
    sink = RecordingSink(stream)
    walk_boxes(stream, len(data), sink, preview_size=4)

    assert sink.started() == [(b"moov", 0), (b"udta", 1), (b"mvhd", 1), (b"ftyp", 0)]


def test_zero_size_terminates_siblings_without_error():
    data = build_ftyp() + struct.pack(">I4s", 0, b"mdat") + b"\x00" * 64
    sink = RecordingSink()
    visited = walk_boxes(io.BytesIO(data), len(data), sink)

    assert visited == 1
    assert sink.started() == [(b"ftyp", 0)]


def test_zero_size_inside_container_resumes_parent_siblings():
    moov = build_box(b"moov", build_box(b"mvhd", b"\x00" * 4) + struct.pack(">I4s", 0, b"free") + b"\x00" * 4)
    data = moov + build_ftyp()
    sink = RecordingSink()
    walk_boxes(io.BytesIO(data), len(data), sink)

    assert sink.started() == [(b"moov", 0), (b"mvhd", 1), (b"ftyp", 0)]


def test_never_reads_past_container_end():
    inner = build_ftyp() + build_box(b"free", b"\x00" * 8)
    stream = BoundedStream(inner + b"\xee" * 64)
    walk_boxes(stream, len(inner), RecordingSink())

    assert stream.max_read_end <= len(inner)


def test_child_overrunning_parent_is_malformed():
    moov = struct.pack(">I4s", 20, b"moov") + build_box(b"mvhd", b"\x00" * 16)
    with pytest.raises(MalformedBoxError) as exc_info:
        walk_boxes(io.BytesIO(moov), len(moov), RecordingSink())
    assert exc_info.value.box_type == b"mvhd"
    assert exc_info.value.offset == 8


def test_pathological_nesting_is_reported():
    data = b"\x00" * 8
    for _ in range(40):
        data = build_box(b"moov", data)
    with pytest.raises(MalformedBoxError, match="nesting"):
        walk_boxes(io.BytesIO(data), len(data), RecordingSink(), max_depth=8)


def test_hex_dump_sink_prints_indented_trace(capsys):
    data = build_box(b"moov", build_box(b"mvhd", b"\xab\xcd"))
    walk_boxes(io.BytesIO(data), len(data), HexDumpSink())

    out = capsys.readouterr().out
    assert "BoxHeader { name: 'moov', size: 18, header: 8 }" in out
    assert "    BoxHeader { name: 'mvhd', size: 10, header: 8 }" in out
    assert "    BODY (2)" in out
    assert "    0000:: ab cd" in out
