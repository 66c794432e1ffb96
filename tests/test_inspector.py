import io

import pytest

from mp4_builders import avcc_sample
from mp4probe.inspector import InspectionReport, inspect_file, inspect_samples, read_sample
from mp4probe.isobmff.errors import InconsistentSampleTableError, ProbeIOError, UnsupportedMediaError
from mp4probe.isobmff.mp4_parser import AvcConfiguration, VideoTrack
from mp4probe.isobmff.sample_table import ChunkOffsetTable, ChunkRun, ResolvedSample, SampleSizeTable

from conftest import NON_IDR


def _sample_lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.startswith("Sample ")]


def _run(path, **kwargs):
    out = io.StringIO()
    report = inspect_file(path, skip_box_dump=kwargs.pop("skip_box_dump", True), out=out, **kwargs)
    return report, out.getvalue()


def test_reports_leading_unit_of_each_sample(h264_mp4, video_samples):
    report, output = _run(h264_mp4)
    lines = _sample_lines(output)

    assert len(lines) == 4
    assert lines[0].startswith("Sample 000: ")
    assert lines[0].endswith(f" + {len(video_samples[0])}: SPS")
    assert [line.rsplit(": ", 1)[1] for line in lines[1:]] == ["NonIdrSlice"] * 3
    assert not any(line.startswith("Sample 001") for line in lines)


def test_sample_offsets_are_absolute(h264_mp4, video_samples):
    _, output = _run(h264_mp4)
    data = h264_mp4.read_bytes()

    for line in _sample_lines(output):
        index = int(line[len("Sample ") : len("Sample ") + 3])
        offset, size = line.split(": ")[1].split(" + ")
        assert data[int(offset) : int(offset) + int(size)] == video_samples[index]


def test_sei_is_counted_but_suppressed(h264_mp4):
    report, _ = _run(h264_mp4)

    assert report.ok
    assert report.samples_resolved == 5
    assert report.samples_reported == 4
    assert report.sei_units_suppressed == 1
    assert report.unit_types == {"SPS": 1, "SEI": 1, "NonIdrSlice": 3}
    assert report.summary() == "5 samples, 4 reported, 1 SEI suppressed, 0 failed [NonIdrSlice=3, SEI=1, SPS=1]"


def test_report_sei_prints_sei_samples(h264_mp4):
    report, output = _run(h264_mp4, report_sei=True)

    assert _sample_lines(output)[1].endswith(": SEI")
    assert report.sei_units_suppressed == 0
    assert report.samples_reported == 5


def test_inspect_all_units(h264_mp4):
    _, output = _run(h264_mp4, inspect_all=True)
    lines = _sample_lines(output)

    assert [line.rsplit(": ", 1)[1] for line in lines[:4]] == [
        "SPS (unit 1)",
        "PPS (unit 2)",
        "IdrSlice (unit 3)",
        "NonIdrSlice (unit 2)",
    ]
    assert lines[3].startswith("Sample 001: ")


def test_truncated_nal_is_recorded_and_scan_continues(write_mp4):
    broken = bytes.fromhex("00000009 6588")
    samples = [avcc_sample(NON_IDR), broken, avcc_sample(NON_IDR)]
    report, output = _run(write_mp4(samples))

    assert [line[:10] for line in _sample_lines(output)] == ["Sample 000", "Sample 002"]
    assert not report.ok
    assert len(report.failures) == 1
    failure = report.failures[0]
    assert (failure.sample_index, failure.chunk_index, failure.size) == (1, 0, len(broken))
    assert "declares 9 bytes" in failure.reason
    assert report.summary().startswith("3 samples, 2 reported, 0 SEI suppressed, 1 failed")


def test_incomplete_nal_is_recorded(write_mp4):
    samples = [avcc_sample(b"\x65\x00\x00\x01\x80"), avcc_sample(NON_IDR)]
    report, output = _run(write_mp4(samples))

    assert len(_sample_lines(output)) == 1
    assert report.failures[0].sample_index == 0
    assert "start code emulation" in report.failures[0].reason


def test_box_dump_precedes_sample_report(h264_mp4):
    report, output = _run(h264_mp4, skip_box_dump=False, preview_size=16)

    assert output.startswith("BoxHeader { name: 'ftyp', size: 32, header: 8 }\n")
    assert "    BoxHeader { name: 'trak'" in output
    assert "BoxHeader { name: 'mdat'" in output
    assert output.index("BoxHeader { name: 'mdat'") < output.index("Sample 000")
    assert report.boxes_visited > 10


def test_file_without_moov_is_unsupported(tmp_path):
    path = tmp_path / "no_moov.mp4"
    path.write_bytes(b"\x00\x00\x00\x10ftypisom\x00\x00\x02\x00")

    with pytest.raises(UnsupportedMediaError):
        _run(path)


def _track(runs, offsets, sizes):
    return VideoTrack(
        track_id=1,
        codec="avc1",
        avc_config=AvcConfiguration(length_size_minus_one=3),
        runs=runs,
        chunk_offsets=ChunkOffsetTable(offsets=offsets),
        sample_sizes=sizes,
    )


def test_sample_table_errors_abort_after_earlier_samples():
    stream = io.BytesIO(avcc_sample(NON_IDR) + b"\x00" * 16)
    track = _track([ChunkRun(1, 2)], [0], SampleSizeTable(sizes=[len(avcc_sample(NON_IDR))]))
    report = InspectionReport()
    out = io.StringIO()

    with pytest.raises(InconsistentSampleTableError) as exc_info:
        inspect_samples(stream, track, out=out, report=report)

    assert exc_info.value.sample_index == 1
    assert report.samples_resolved == 1
    assert _sample_lines(out.getvalue()) == [f"Sample 000: 0 + {len(avcc_sample(NON_IDR))}: NonIdrSlice"]


def test_sample_beyond_end_of_file_is_fatal():
    stream = io.BytesIO(b"\x00" * 8)
    track = _track([ChunkRun(1, 1)], [4], SampleSizeTable(constant_size=12))

    with pytest.raises(ProbeIOError):
        inspect_samples(stream, track, out=io.StringIO())


def test_read_sample_reads_exact_range():
    stream = io.BytesIO(b"0123456789")
    sample = ResolvedSample(index=0, chunk_index=0, byte_offset=3, size=4)

    assert read_sample(stream, sample) == b"3456"
