"""
MP4 movie box reader for video sample inspection.

Provides:
- read_moov: locate the moov atom among the top-level boxes and read it
- Sample table parsers (stsc, stsz, stco, co64) into typed tables
- avcC parsing for the NAL length-prefix width
- parse_video_track / load_video_track: typed view of the first video trak

Only moov (metadata) is held in memory; media data stays on disk and is
read one sample at a time by the caller.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import BinaryIO

from mp4probe.isobmff.box_reader import BoxHeader, find_box, find_nested_box, iter_boxes, read_box_header
from mp4probe.isobmff.errors import (
    InconsistentSampleTableError,
    MalformedBoxError,
    ProbeIOError,
    UnsupportedMediaError,
)
from mp4probe.isobmff.sample_table import (
    ChunkOffsetTable,
    ChunkRun,
    SampleSizeTable,
    SampleTableResolver,
    build_sample_table,
)

logger = logging.getLogger(__name__)

# H.264 visual sample entries; avc3 allows in-band parameter sets
_AVC_SAMPLE_ENTRIES = frozenset({b"avc1", b"avc3"})

# VisualSampleEntry fixed fields after the 8-byte entry header
_VISUAL_SAMPLE_ENTRY_SIZE = 78


# =============================================================================
# Sample Table Parsers
# =============================================================================


def parse_full_box_header(data: bytes) -> tuple[int, int, int]:
    """
    Parse a full box header (version + flags).

    Returns:
        (version, flags, header_size) where header_size is 4 bytes.
    """
    if len(data) < 4:
        return 0, 0, 0
    version = data[0]
    flags = (data[1] << 16) | (data[2] << 8) | data[3]
    return version, flags, 4


def _require(data: bytes, length: int, box_type: bytes, offset: int | None) -> None:
    if len(data) < length:
        raise MalformedBoxError(f"Box body has {len(data)} bytes, needs {length}", box_type, offset)


def _parse_offsets(data: bytes, box_type: bytes, fmt: str, offset: int | None) -> list[int]:
    _require(data, 8, box_type, offset)
    _, _, hdr = parse_full_box_header(data)
    entry_count = struct.unpack_from(">I", data, hdr)[0]
    entry_size = struct.calcsize(fmt)
    _require(data, hdr + 4 + entry_count * entry_size, box_type, offset)
    return list(struct.unpack_from(f">{entry_count}{fmt}", data, hdr + 4))


def parse_stco(data: bytes, offset: int | None = None) -> list[int]:
    """
    Parse Chunk Offset box (stco) - 32-bit offsets.

    Layout: version(1) + flags(3) + entry_count(4) + [offset(4)]...
    """
    return _parse_offsets(data, b"stco", "I", offset)


def parse_co64(data: bytes, offset: int | None = None) -> list[int]:
    """
    Parse Chunk Offset box (co64) - 64-bit offsets.

    Layout: version(1) + flags(3) + entry_count(4) + [offset(8)]...
    """
    return _parse_offsets(data, b"co64", "Q", offset)


def parse_stsz(data: bytes, offset: int | None = None) -> SampleSizeTable:
    """
    Parse Sample Size box (stsz).

    Layout: version(1) + flags(3) + sample_size(4) + sample_count(4) + [size(4)]...

    A nonzero sample_size applies to every sample and no per-sample list
    follows; otherwise sample_count sizes follow.
    """
    _require(data, 12, b"stsz", offset)
    _, _, hdr = parse_full_box_header(data)
    sample_size, sample_count = struct.unpack_from(">II", data, hdr)

    if sample_size > 0:
        return SampleSizeTable(constant_size=sample_size)

    pos = hdr + 8
    _require(data, pos + sample_count * 4, b"stsz", offset)
    return SampleSizeTable(sizes=list(struct.unpack_from(f">{sample_count}I", data, pos)))


def parse_stsc(data: bytes, offset: int | None = None) -> list[ChunkRun]:
    """
    Parse Sample-to-Chunk box (stsc).

    Layout: version(1) + flags(3) + entry_count(4) +
            [first_chunk(4) + samples_per_chunk(4) + sample_desc_index(4)]...
    """
    _require(data, 8, b"stsc", offset)
    _, _, hdr = parse_full_box_header(data)
    pos = hdr
    entry_count = struct.unpack_from(">I", data, pos)[0]
    pos += 4
    _require(data, pos + entry_count * 12, b"stsc", offset)

    entries = []
    for _ in range(entry_count):
        first_chunk, spc, sdi = struct.unpack_from(">III", data, pos)
        entries.append(ChunkRun(first_chunk=first_chunk, samples_per_chunk=spc, sample_description_index=sdi))
        pos += 12
    return entries


def select_chunk_offsets(
    stco: tuple[BoxHeader, bytes] | None,
    co64: tuple[BoxHeader, bytes] | None,
    stbl_offset: int | None = None,
) -> ChunkOffsetTable:
    """
    Build the chunk offset table from exactly one of stco/co64.

    Raises:
        MalformedBoxError: both or neither box is present.
    """
    if stco is not None and co64 is not None:
        raise MalformedBoxError("Both stco and co64 chunk offset boxes present", b"stbl", stbl_offset)
    if stco is not None:
        header, body = stco
        return ChunkOffsetTable(offsets=parse_stco(body, header.offset), is_64bit=False)
    if co64 is not None:
        header, body = co64
        return ChunkOffsetTable(offsets=parse_co64(body, header.offset), is_64bit=True)
    raise MalformedBoxError("No stco or co64 chunk offset box", b"stbl", stbl_offset)


# =============================================================================
# Codec configuration
# =============================================================================


@dataclass
class AvcConfiguration:
    """AVCDecoderConfigurationRecord (avcC) contents."""

    configuration_version: int = 1
    profile: int = 0
    profile_compatibility: int = 0
    level: int = 0
    length_size_minus_one: int = 3
    sps: list[bytes] = field(default_factory=list)
    pps: list[bytes] = field(default_factory=list)

    @property
    def nal_length_size(self) -> int:
        return self.length_size_minus_one + 1


def parse_avcc(data: bytes, offset: int | None = None) -> AvcConfiguration:
    """
    Parse an avcC box body.

    Layout: configurationVersion(1) + AVCProfileIndication(1) +
            profile_compatibility(1) + AVCLevelIndication(1) +
            0b111111 + lengthSizeMinusOne(2 bits) + 0b111 + numSPS(5 bits) +
            [spsLength(2) + sps]... + numPPS(1) + [ppsLength(2) + pps]...
    """
    _require(data, 7, b"avcC", offset)
    config = AvcConfiguration(
        configuration_version=data[0],
        profile=data[1],
        profile_compatibility=data[2],
        level=data[3],
        length_size_minus_one=data[4] & 0x03,
    )

    pos = 5
    num_sps = data[pos] & 0x1F
    pos += 1
    for _ in range(num_sps):
        _require(data, pos + 2, b"avcC", offset)
        length = struct.unpack_from(">H", data, pos)[0]
        pos += 2
        _require(data, pos + length, b"avcC", offset)
        config.sps.append(bytes(data[pos : pos + length]))
        pos += length

    _require(data, pos + 1, b"avcC", offset)
    num_pps = data[pos]
    pos += 1
    for _ in range(num_pps):
        _require(data, pos + 2, b"avcC", offset)
        length = struct.unpack_from(">H", data, pos)[0]
        pos += 2
        _require(data, pos + length, b"avcC", offset)
        config.pps.append(bytes(data[pos : pos + length]))
        pos += length

    return config


def parse_stsd_video(data: bytes, base_offset: int = 0) -> tuple[str, int, int, AvcConfiguration | None]:
    """
    Parse the first sample entry of a video Sample Description box (stsd).

    Returns:
        (codec_fourcc, width, height, avc_configuration). The configuration
        is None for non-H.264 entries or an avc entry missing its avcC.
    """
    _require(data, 16, b"stsd", base_offset)
    # version(1)+flags(3)+entry_count(4)
    entry_start = 8
    entry_data = data[entry_start:]
    entries = iter_boxes(entry_data, base_offset + entry_start)
    first = next(entries, None)
    if first is None:
        raise MalformedBoxError("Sample description has no entries", b"stsd", base_offset)

    entry_header, entry_body = first
    codec = entry_header.type_name.strip()

    width = height = 0
    # Visual sample entry: 6 reserved + 2 data_ref_idx + 16 pre_defined/reserved + width(2) + height(2)
    if len(entry_body) >= 28:
        width, height = struct.unpack_from(">HH", entry_body, 24)

    if entry_header.box_type not in _AVC_SAMPLE_ENTRIES:
        return codec, width, height, None

    nested = entry_body[_VISUAL_SAMPLE_ENTRY_SIZE:]
    found = find_box(nested, b"avcC", entry_header.body_offset + _VISUAL_SAMPLE_ENTRY_SIZE)
    if found is None:
        logger.warning("[mp4_parser] %s sample entry at %d has no avcC box", codec, entry_header.offset)
        return codec, width, height, None

    avcc_header, avcc_body = found
    return codec, width, height, parse_avcc(avcc_body, avcc_header.offset)


def parse_tkhd_track_id(data: bytes) -> int:
    """Track ID from a Track Header box (tkhd), 0 when the box is too short."""
    version, _, hdr = parse_full_box_header(data)
    # creation + modification times are 8 bytes each in version 1, 4 in version 0
    pos = hdr + (16 if version == 1 else 8)
    if len(data) < pos + 4:
        return 0
    return struct.unpack_from(">I", data, pos)[0]


# =============================================================================
# Video track
# =============================================================================


@dataclass
class VideoTrack:
    """Typed sample tables and codec configuration of one video trak."""

    track_id: int = 0
    codec: str = ""  # e.g. "avc1", "avc3"
    width: int = 0
    height: int = 0
    avc_config: AvcConfiguration | None = None
    runs: list[ChunkRun] = field(default_factory=list)
    chunk_offsets: ChunkOffsetTable = field(default_factory=ChunkOffsetTable)
    sample_sizes: SampleSizeTable = field(default_factory=SampleSizeTable)

    @property
    def nal_length_size(self) -> int:
        if self.avc_config is None:
            raise UnsupportedMediaError(f"Track {self.track_id} is not H.264 (codec {self.codec!r})")
        return self.avc_config.nal_length_size

    def sample_table(self) -> SampleTableResolver:
        """Fresh lazy resolver over this track's samples in decode order."""
        return build_sample_table(self.runs, self.chunk_offsets, self.sample_sizes)


def read_moov(stream: BinaryIO, file_size: int) -> tuple[BoxHeader, bytes]:
    """
    Scan top-level boxes for moov and read its body.

    Other top-level boxes (including mdat) are skipped with a seek.

    Raises:
        UnsupportedMediaError: no moov box in the file.
        ProbeIOError: moov is truncated.
    """
    stream.seek(0)
    while stream.tell() < file_size:
        header = read_box_header(stream, end=file_size)
        if header.size == 0:
            header = BoxHeader(
                size=file_size - header.offset,
                box_type=header.box_type,
                header_size=header.header_size,
                offset=header.offset,
            )

        if header.box_type == b"moov":
            body = stream.read(header.body_size)
            if len(body) < header.body_size:
                raise ProbeIOError(
                    f"Truncated moov: needed {header.body_size} bytes, got {len(body)}", header.body_offset
                )
            logger.debug("[mp4_parser] Found moov at %d (%d bytes)", header.offset, header.size)
            return header, body

        stream.seek(header.end)

    raise UnsupportedMediaError("No moov box found")


def _handler_type(trak_body: bytes) -> bytes:
    hdlr = find_nested_box(trak_body, b"mdia", b"hdlr")
    # hdlr: version(1)+flags(3)+pre_defined(4)+handler_type(4)
    if hdlr is None or len(hdlr[1]) < 12:
        return b""
    return hdlr[1][8:12]


def parse_video_track(moov_body: bytes, base_offset: int = 0) -> VideoTrack:
    """
    Build a VideoTrack from the first ``vide`` trak in a moov body.

    Raises:
        UnsupportedMediaError: no video trak.
        MalformedBoxError: missing or malformed stbl tables, including both
            or neither chunk offset box.
        InconsistentSampleTableError: chunk runs do not match the chunk offset
            table, or both sample size modes are set; carries the stbl offset.
    """
    video_traks = [
        (header, body)
        for header, body in iter_boxes(moov_body, base_offset)
        if header.box_type == b"trak" and _handler_type(body) == b"vide"
    ]
    if not video_traks:
        raise UnsupportedMediaError("No video track found in moov")
    if len(video_traks) > 1:
        logger.warning("[mp4_parser] %d video tracks found, inspecting the first", len(video_traks))

    trak_header, trak_body = video_traks[0]
    track = VideoTrack()

    tkhd = find_box(trak_body, b"tkhd", trak_header.body_offset)
    if tkhd is not None:
        track.track_id = parse_tkhd_track_id(tkhd[1])

    stbl = find_nested_box(trak_body, b"mdia", b"minf", b"stbl", base_offset=trak_header.body_offset)
    if stbl is None:
        raise MalformedBoxError("Video track has no mdia/minf/stbl", b"trak", trak_header.offset)
    stbl_header, stbl_body = stbl

    def required(box_type: bytes) -> tuple[BoxHeader, bytes]:
        found = find_box(stbl_body, box_type, stbl_header.body_offset)
        if found is None:
            raise MalformedBoxError(f"Sample table has no {box_type.decode()} box", b"stbl", stbl_header.offset)
        return found

    stsd_header, stsd_body = required(b"stsd")
    track.codec, track.width, track.height, track.avc_config = parse_stsd_video(stsd_body, stsd_header.body_offset)

    stsc_header, stsc_body = required(b"stsc")
    track.runs = parse_stsc(stsc_body, stsc_header.offset)

    stsz_header, stsz_body = required(b"stsz")
    track.sample_sizes = parse_stsz(stsz_body, stsz_header.offset)

    track.chunk_offsets = select_chunk_offsets(
        find_box(stbl_body, b"stco", stbl_header.body_offset),
        find_box(stbl_body, b"co64", stbl_header.body_offset),
        stbl_header.offset,
    )

    try:
        track.sample_table()
    except InconsistentSampleTableError as e:
        e.offset = stbl_header.offset
        raise

    logger.info(
        "[mp4_parser] Video track %d: codec=%s %dx%d, %d chunks (%s), %d chunk runs, %s sample sizes",
        track.track_id,
        track.codec,
        track.width,
        track.height,
        len(track.chunk_offsets),
        "co64" if track.chunk_offsets.is_64bit else "stco",
        len(track.runs),
        f"constant {track.sample_sizes.constant_size}"
        if track.sample_sizes.is_constant
        else f"{len(track.sample_sizes.sizes)} explicit",
    )
    return track


def load_video_track(stream: BinaryIO, file_size: int) -> VideoTrack:
    """Read moov from ``stream`` and return its first video track."""
    moov_header, moov_body = read_moov(stream, file_size)
    return parse_video_track(moov_body, moov_header.body_offset)
