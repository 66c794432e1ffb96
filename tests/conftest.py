"""
Shared fixtures: synthetic H.264 MP4 files written to a temporary directory.
"""

import pytest

from mp4_builders import avcc_sample, build_h264_mp4

SPS = b"\x67\x64\x00\x1f\xac\xd9\x40"
PPS = b"\x68\xee\x3c\x80"
SEI = b"\x06\x05\x02\xaa\xbb\x80"
IDR = b"\x65\x88\x84\x00\x21\xff"
NON_IDR = b"\x41\x9a\x02\x1c\x80"


@pytest.fixture
def video_samples() -> list[bytes]:
    """Five samples: IDR with parameter sets, an SEI-led sample and three non-IDR slices."""
    return [
        avcc_sample(SPS, PPS, IDR),
        avcc_sample(SEI, NON_IDR),
        avcc_sample(NON_IDR),
        avcc_sample(NON_IDR + b"\x11"),
        avcc_sample(NON_IDR + b"\x22\x33"),
    ]


@pytest.fixture
def write_mp4(tmp_path):
    """
    Factory fixture that writes an MP4 built by ``build_h264_mp4`` and returns its path.

    Usage:
        def test_something(write_mp4, video_samples):
            path = write_mp4(video_samples, offsets_box="co64")
    """

    def _write(samples: list[bytes], name: str = "video.mp4", **kwargs):
        path = tmp_path / name
        path.write_bytes(build_h264_mp4(samples, **kwargs))
        return path

    return _write


@pytest.fixture
def h264_mp4(write_mp4, video_samples):
    """Path to a well-formed file with stco offsets and an audio trak before the video trak."""
    return write_mp4(video_samples, with_audio=True)
