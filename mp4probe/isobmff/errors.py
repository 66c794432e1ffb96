"""
Exception hierarchy for ISO-BMFF traversal and H.264 sample inspection.

Box-tree and sample-table errors mean the file's structural model cannot be
trusted and are fatal. NAL errors are scoped to one sample.
"""


class ProbeError(Exception):
    """Base exception for all mp4probe parsing failures."""

    pass


class ProbeIOError(ProbeError, OSError):
    """A read or seek came up short of the bytes the structure promised."""

    def __init__(self, message: str, offset: int | None = None):
        super().__init__(message)
        self.offset = offset


class MalformedBoxError(ProbeError):
    """Box header/size inconsistency or an invalid box combination."""

    def __init__(self, message: str, box_type: bytes = b"", offset: int | None = None):
        location = []
        if box_type:
            location.append(f"box={box_type.decode('latin-1')!r}")
        if offset is not None:
            location.append(f"offset={offset}")
        if location:
            message = f"{message} ({', '.join(location)})"
        super().__init__(message)
        self.box_type = box_type
        self.offset = offset


class InconsistentSampleTableError(ProbeError):
    """Chunk runs, chunk offsets and sample sizes fail to reconcile."""

    def __init__(
        self,
        message: str,
        sample_index: int | None = None,
        chunk_index: int | None = None,
        offset: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.sample_index = sample_index
        self.chunk_index = chunk_index
        self.offset = offset  # Absolute offset of the stbl box, once known

    def __str__(self) -> str:
        location = []
        if self.sample_index is not None:
            location.append(f"sample={self.sample_index}")
        if self.chunk_index is not None:
            location.append(f"chunk={self.chunk_index}")
        if self.offset is not None:
            location.append(f"stbl offset={self.offset}")
        if location:
            return f"{self.message} ({', '.join(location)})"
        return self.message


class NalError(ProbeError):
    """Base exception for a sample whose leading NAL unit cannot be read."""

    sample_index: int | None = None
    byte_range: tuple[int, int] | None = None

    def locate(self, sample_index: int, byte_offset: int, size: int) -> "NalError":
        """Attach the sample index and absolute byte range of the offending sample."""
        self.sample_index = sample_index
        self.byte_range = (byte_offset, byte_offset + size)
        return self


class TruncatedNalError(NalError):
    """Sample is shorter than its length prefix or its declared NAL length."""

    pass


class IncompleteNalError(NalError):
    """NAL payload does not decode as a self-contained RBSP."""

    pass


class UnsupportedMediaError(ProbeError):
    """The file parses but carries no H.264 video track to inspect."""

    pass
