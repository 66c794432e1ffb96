"""
ISO-BMFF parsing package.

- errors: exception hierarchy (fatal structural vs per-sample NAL errors)
- box_reader: BoxHeader and header reading from streams and buffers
- box_walker: explicit-stack diagnostic walk over the box tree
- mp4_parser: moov reader producing a typed VideoTrack
- sample_table: SampleTableResolver over stsc/stco/co64/stsz
- nal_extractor: H.264 AVCC NAL unit extraction and classification
"""
