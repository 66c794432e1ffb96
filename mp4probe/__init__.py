"""
Diagnostic inspection of H.264 video in ISO-BMFF (MP4) files.

- isobmff.box_reader: box header reading (32/64-bit sizes)
- isobmff.box_walker: bounded hex dump of the box tree
- isobmff.mp4_parser: moov sample tables and avcC configuration
- isobmff.sample_table: lazy per-sample byte range resolution
- isobmff.nal_extractor: length-prefixed NAL unit extraction/classification
- inspector: two-pass orchestration over a file
"""

from importlib import metadata

try:
    __version__ = metadata.version("mp4probe")
except metadata.PackageNotFoundError:
    __version__ = "0.0.0"
