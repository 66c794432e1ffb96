"""
Two-pass inspection of an H.264 MP4 file.

Pass 1 dumps the box tree (headers and bounded hex previews).
Pass 2 loads the video track's sample tables from moov, walks the resolved
samples in decode order, reads each one with an explicit seek and a bounded
read, and classifies its leading NAL unit.

Box-tree and sample-table errors abort the inspection. NAL errors are
recorded per sample and the scan continues.
"""

import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import BinaryIO

from mp4probe.isobmff.box_walker import DEFAULT_MAX_DEPTH, DEFAULT_PREVIEW_SIZE, HexDumpSink, walk_boxes
from mp4probe.isobmff.errors import NalError, ProbeIOError
from mp4probe.isobmff.mp4_parser import VideoTrack, load_video_track
from mp4probe.isobmff.nal_extractor import NalExtractor, NalUnit
from mp4probe.isobmff.sample_table import ResolvedSample
from mp4probe.utils.hex_utils import format_byte_range

logger = logging.getLogger(__name__)


@dataclass
class SampleFailure:
    """A sample whose NAL units could not be extracted."""

    sample_index: int
    chunk_index: int
    byte_offset: int
    size: int
    reason: str


@dataclass
class InspectionReport:
    """Counters and per-sample failures collected during an inspection."""

    boxes_visited: int = 0
    samples_resolved: int = 0
    samples_reported: int = 0
    sei_units_suppressed: int = 0
    unit_types: Counter = field(default_factory=Counter)
    failures: list[SampleFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        types = ", ".join(f"{name}={count}" for name, count in sorted(self.unit_types.items()))
        return (
            f"{self.samples_resolved} samples, {self.samples_reported} reported, "
            f"{self.sei_units_suppressed} SEI suppressed, {len(self.failures)} failed"
            + (f" [{types}]" if types else "")
        )


def read_sample(stream: BinaryIO, sample: ResolvedSample) -> bytes:
    """Seek to a resolved sample and read exactly its bytes."""
    stream.seek(sample.byte_offset)
    data = stream.read(sample.size)
    if len(data) < sample.size:
        raise ProbeIOError(
            f"Sample {sample.index} (chunk {sample.chunk_index}) truncated: "
            f"needed {sample.size} bytes at {sample.byte_offset}, got {len(data)}",
            sample.byte_offset,
        )
    return data


def dump_boxes(
    stream: BinaryIO,
    file_size: int,
    *,
    preview_size: int = DEFAULT_PREVIEW_SIZE,
    max_depth: int = DEFAULT_MAX_DEPTH,
    hex_columns: int = 16,
    out=None,
) -> int:
    """Print the box tree of the whole file. Returns the number of boxes visited."""
    stream.seek(0)
    sink = HexDumpSink(columns=hex_columns, out=out)
    return walk_boxes(stream, file_size, sink, preview_size=preview_size, max_depth=max_depth)


def _format_sample_line(sample: ResolvedSample, unit: NalUnit, unit_number: int | None) -> str:
    line = f"Sample {sample.index:03}: {sample.byte_offset} + {sample.size}: {unit.unit_type.label}"
    if unit_number is not None:
        line += f" (unit {unit_number})"
    return line


def inspect_samples(
    stream: BinaryIO,
    track: VideoTrack,
    *,
    inspect_all: bool = False,
    report_sei: bool = False,
    out=None,
    report: InspectionReport | None = None,
) -> InspectionReport:
    """
    Classify the NAL units of every sample of ``track``, one sample at a time.

    By default only the leading NAL unit of each sample is inspected; with
    ``inspect_all`` every length-prefixed unit is. SEI units are counted but
    left out of the printed report unless ``report_sei`` is set.
    """
    report = report if report is not None else InspectionReport()
    extractor = NalExtractor(track.nal_length_size)

    for sample in track.sample_table():
        report.samples_resolved += 1
        data = read_sample(stream, sample)

        try:
            units = list(extractor.iter_units(data)) if inspect_all else [extractor.extract(data)]
        except NalError as e:
            e.locate(sample.index, sample.byte_offset, sample.size)
            logger.warning(
                "[inspector] Sample %d (chunk %d) %s: %s",
                sample.index,
                sample.chunk_index,
                format_byte_range(sample.byte_offset, sample.size),
                e,
            )
            report.failures.append(
                SampleFailure(
                    sample_index=sample.index,
                    chunk_index=sample.chunk_index,
                    byte_offset=sample.byte_offset,
                    size=sample.size,
                    reason=str(e),
                )
            )
            continue

        printed = False
        for number, unit in enumerate(units, start=1):
            report.unit_types[unit.unit_type.label] += 1
            if unit.is_sei and not report_sei:
                report.sei_units_suppressed += 1
                continue
            print(_format_sample_line(sample, unit, number if inspect_all else None), file=out)
            printed = True
        if printed:
            report.samples_reported += 1

    return report


def inspect_file(
    path: str | os.PathLike,
    *,
    preview_size: int = DEFAULT_PREVIEW_SIZE,
    max_depth: int = DEFAULT_MAX_DEPTH,
    hex_columns: int = 16,
    inspect_all: bool = False,
    report_sei: bool = False,
    skip_box_dump: bool = False,
    out=None,
) -> InspectionReport:
    """
    Run both inspection passes over the file at ``path``.

    Each pass opens its own buffered handle and owns it for its duration.
    """
    file_size = os.path.getsize(path)
    report = InspectionReport()

    if not skip_box_dump:
        with open(path, "rb") as f:
            report.boxes_visited = dump_boxes(
                f, file_size, preview_size=preview_size, max_depth=max_depth, hex_columns=hex_columns, out=out
            )

    with open(path, "rb") as f:
        track = load_video_track(f, file_size)
        inspect_samples(f, track, inspect_all=inspect_all, report_sei=report_sei, out=out, report=report)

    logger.info("[inspector] %s: %s", path, report.summary())
    return report
