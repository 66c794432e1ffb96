"""
H.264 NAL unit extraction and classification for AVCC-framed samples.

In an MP4 video track each sample holds one or more NAL units, each
prefixed by a big-endian length of ``nal_length_size`` bytes (1, 2, 3 or 4,
from the avcC ``lengthSizeMinusOne`` field plus one). The extractor reads
the leading unit of a sample, decodes its one-byte header and checks that
the payload is a self-contained RBSP.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum

from mp4probe.isobmff.errors import IncompleteNalError, TruncatedNalError

logger = logging.getLogger(__name__)

VALID_NAL_LENGTH_SIZES = frozenset({1, 2, 3, 4})

# Emulation prevention byte inserted after two zero bytes
_EMULATION_PREVENTION_BYTE = 0x03

# Kept upper-case in report labels
_ACRONYMS = frozenset({"SEI", "SPS", "PPS", "AUD", "NAL"})


class NalUnitType(IntEnum):
    """H.264 ``nal_unit_type`` codes (ITU-T H.264 Table 7-1)."""

    UNSPECIFIED = 0
    NON_IDR_SLICE = 1
    PARTITION_A = 2
    PARTITION_B = 3
    PARTITION_C = 4
    IDR_SLICE = 5
    SEI = 6
    SPS = 7
    PPS = 8
    AUD = 9
    END_OF_SEQUENCE = 10
    END_OF_STREAM = 11
    FILLER = 12
    SPS_EXTENSION = 13
    PREFIX_NAL = 14
    SUBSET_SPS = 15
    DEPTH_PARAMETER_SET = 16
    RESERVED_17 = 17
    RESERVED_18 = 18
    AUX_SLICE = 19
    SLICE_EXTENSION = 20
    SLICE_EXTENSION_DEPTH = 21
    RESERVED_22 = 22
    RESERVED_23 = 23
    UNSPECIFIED_24 = 24
    UNSPECIFIED_25 = 25
    UNSPECIFIED_26 = 26
    UNSPECIFIED_27 = 27
    UNSPECIFIED_28 = 28
    UNSPECIFIED_29 = 29
    UNSPECIFIED_30 = 30
    UNSPECIFIED_31 = 31

    @property
    def label(self) -> str:
        """CamelCase name used in the sample report, e.g. ``IdrSlice``."""
        return "".join(part if part in _ACRONYMS else part.capitalize() for part in self.name.split("_"))

    @property
    def is_vcl(self) -> bool:
        """True for coded slice data (types 1-5)."""
        return 1 <= self.value <= 5


@dataclass(frozen=True)
class NalHeader:
    """The one-byte NAL unit header."""

    forbidden_zero_bit: int
    nal_ref_idc: int
    unit_type: NalUnitType

    @classmethod
    def parse(cls, byte: int) -> "NalHeader":
        return cls(
            forbidden_zero_bit=(byte >> 7) & 0x01,
            nal_ref_idc=(byte >> 5) & 0x03,
            unit_type=NalUnitType(byte & 0x1F),
        )


@dataclass(frozen=True)
class NalUnit:
    """One length-prefixed NAL unit taken from a sample."""

    unit_type: NalUnitType
    length: int  # Declared payload length (header byte included)
    header: NalHeader | None = None  # None for a zero-length payload
    payload: bytes = b""

    @property
    def is_sei(self) -> bool:
        return self.unit_type == NalUnitType.SEI


def rbsp_bytes(payload: bytes) -> bytes:
    """Strip the NAL header byte and every emulation prevention byte."""
    out = bytearray()
    zeros = 0
    for b in payload[1:]:
        if zeros >= 2 and b == _EMULATION_PREVENTION_BYTE:
            zeros = 0
            continue
        out.append(b)
        zeros = zeros + 1 if b == 0 else 0
    return bytes(out)


def find_incomplete_reason(payload: bytes) -> str | None:
    """
    Structural completeness check of a non-empty NAL payload.

    A payload is complete when the forbidden bit is clear, no start code is
    emulated inside it, every emulation prevention byte is followed by a
    byte ``<= 0x03`` (or ends the unit) and the last byte carries the RBSP
    stop bit (is nonzero).

    Returns:
        None if complete, otherwise a short description of the defect.
    """
    if payload[0] & 0x80:
        return "forbidden_zero_bit is set"

    zeros = 0
    for pos in range(1, len(payload)):
        b = payload[pos]
        if zeros >= 2:
            if b <= 0x02:
                return f"start code emulation 00 00 {b:02x} at payload offset {pos - 2}"
            if b == _EMULATION_PREVENTION_BYTE:
                if pos + 1 < len(payload) and payload[pos + 1] > 0x03:
                    return f"emulation prevention byte followed by 0x{payload[pos + 1]:02x} at payload offset {pos}"
                zeros = 0
                continue
        zeros = zeros + 1 if b == 0 else 0

    if payload[-1] == 0:
        return "trailing zero byte, RBSP stop bit missing"
    return None


class NalExtractor:
    """Reads length-prefixed NAL units with a fixed prefix width."""

    def __init__(self, nal_length_size: int = 4):
        if nal_length_size not in VALID_NAL_LENGTH_SIZES:
            raise ValueError(f"Unsupported NAL length size: {nal_length_size}")
        self.nal_length_size = nal_length_size

    def _unit_at(self, sample: bytes, pos: int) -> NalUnit:
        prefix_end = pos + self.nal_length_size
        if len(sample) < prefix_end:
            raise TruncatedNalError(
                f"Sample has {len(sample) - pos} bytes left at offset {pos}, "
                f"shorter than the {self.nal_length_size}-byte length prefix"
            )

        declared = int.from_bytes(sample[pos:prefix_end], "big")
        if len(sample) < prefix_end + declared:
            raise TruncatedNalError(
                f"NAL declares {declared} bytes at offset {pos} but only {len(sample) - prefix_end} follow the prefix"
            )

        payload = bytes(sample[prefix_end : prefix_end + declared])
        if not payload:
            return NalUnit(unit_type=NalUnitType.UNSPECIFIED, length=0)

        header = NalHeader.parse(payload[0])
        reason = find_incomplete_reason(payload)
        if reason is not None:
            raise IncompleteNalError(f"Incomplete {header.unit_type.label} NAL of {declared} bytes: {reason}")
        return NalUnit(unit_type=header.unit_type, length=declared, header=header, payload=payload)

    def extract(self, sample: bytes) -> NalUnit:
        """
        Extract and classify the leading NAL unit of a sample.

        Only the first unit is inspected even though a sample may carry
        several; use ``iter_units`` to classify all of them.

        Raises:
            TruncatedNalError: the sample is shorter than the length prefix,
                or than the prefix plus the declared length.
            IncompleteNalError: the payload fails the completeness check.
        """
        return self._unit_at(sample, 0)

    def iter_units(self, sample: bytes):
        """Yield every length-prefixed NAL unit in the sample, in order."""
        pos = 0
        while pos < len(sample):
            unit = self._unit_at(sample, pos)
            yield unit
            pos += self.nal_length_size + unit.length
