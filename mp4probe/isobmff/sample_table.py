"""
Sample table resolution.

Combines the three interdependent stbl tables of one track into per-sample
byte ranges:

- stsc: run-length encoded samples-per-chunk (ChunkRun)
- stco/co64: absolute byte offset of each chunk (ChunkOffsetTable)
- stsz: constant or per-sample sizes (SampleSizeTable)

Samples are produced lazily in decode order. Each step depends on the
running offset inside the current chunk, so a resolver can be restarted
from scratch (build a new one) but not resumed mid-stream.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from mp4probe.isobmff.errors import InconsistentSampleTableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkRun:
    """One stsc entry. ``first_chunk`` is 1-based."""

    first_chunk: int
    samples_per_chunk: int
    sample_description_index: int = 1


@dataclass(frozen=True)
class ChunkOffsetTable:
    """Absolute chunk offsets from either stco (32-bit) or co64 (64-bit)."""

    offsets: Sequence[int] = field(default_factory=list)
    is_64bit: bool = False

    def __len__(self) -> int:
        return len(self.offsets)

    def __getitem__(self, index: int) -> int:
        return self.offsets[index]


@dataclass(frozen=True)
class SampleSizeTable:
    """
    stsz contents. ``constant_size > 0`` applies to every sample and leaves
    ``sizes`` empty; ``constant_size == 0`` means ``sizes`` lists every sample.
    """

    constant_size: int = 0
    sizes: Sequence[int] = field(default_factory=list)

    @property
    def is_constant(self) -> bool:
        return self.constant_size > 0


@dataclass(frozen=True)
class ResolvedSample:
    """Byte range of one sample in decode order."""

    index: int  # 0-based sample index
    chunk_index: int  # 0-based chunk index
    byte_offset: int
    size: int

    @property
    def end(self) -> int:
        return self.byte_offset + self.size


class SampleTableResolver:
    """
    Iterator over ``ResolvedSample`` values for one track.

    State is the current run, the current chunk, the samples left in that
    chunk and the running byte offset inside it.

    Raises (on construction):
        InconsistentSampleTableError: runs out of order, runs that do not
            cover exactly the chunk offset table, or both size modes set.

    Raises (while iterating):
        InconsistentSampleTableError: explicit sizes run out before the
            chunks do, or sizes are left over once every chunk is consumed.
    """

    def __init__(
        self,
        runs: Sequence[ChunkRun],
        chunk_offsets: ChunkOffsetTable | Sequence[int],
        sample_sizes: SampleSizeTable,
    ):
        self._runs = list(runs)
        self._offsets = chunk_offsets
        self._sizes = sample_sizes
        self._chunk_count = len(chunk_offsets)
        self._validate()

        self._run_index = -1
        self._run_end = 0  # Exclusive chunk index where the current run stops
        self._samples_per_chunk = 0
        self._chunk_index = -1
        self._remaining_in_chunk = 0
        self._offset = 0
        self._sample_index = 0
        self._done = False

    def _validate(self) -> None:
        if self._sizes.constant_size and self._sizes.sizes:
            raise InconsistentSampleTableError(
                f"Constant sample size {self._sizes.constant_size} set together with "
                f"{len(self._sizes.sizes)} explicit sample sizes",
                sample_index=0,
                chunk_index=0,
            )

        previous = 0
        for i, run in enumerate(self._runs):
            chunk = max(run.first_chunk - 1, 0)
            if run.first_chunk < 1:
                raise InconsistentSampleTableError(
                    f"Chunk run starts at chunk {run.first_chunk}, chunks are 1-based",
                    sample_index=self._samples_before(chunk, self._runs[:i]),
                    chunk_index=chunk,
                )
            if run.first_chunk <= previous:
                raise InconsistentSampleTableError(
                    f"Chunk runs not ascending: {run.first_chunk} after {previous}",
                    sample_index=self._samples_before(chunk, self._runs[:i]),
                    chunk_index=chunk,
                )
            previous = run.first_chunk

        covered = self._covered_chunk_count()
        if covered != self._chunk_count:
            # First chunk no run describes, or the chunk a run points past
            if not self._runs or self._runs[0].first_chunk > 1:
                chunk = 0
            else:
                chunk = self._chunk_count
            raise InconsistentSampleTableError(
                f"Chunk runs cover {covered} chunks but the offset table has {self._chunk_count}",
                sample_index=self._samples_before(chunk, self._runs),
                chunk_index=chunk,
            )

    @staticmethod
    def _samples_before(chunk: int, runs: Sequence[ChunkRun]) -> int:
        """Samples the given runs place in chunks ``[0, chunk)``."""
        total = 0
        for i, run in enumerate(runs):
            start = run.first_chunk - 1
            end = runs[i + 1].first_chunk - 1 if i + 1 < len(runs) else chunk
            total += max(0, min(end, chunk) - start) * run.samples_per_chunk
        return total

    def _covered_chunk_count(self) -> int:
        if not self._runs:
            return 0
        # Chunks before the first run are not covered by any run
        last_start = self._runs[-1].first_chunk - 1
        if last_start >= self._chunk_count:
            return last_start
        return self._chunk_count - (self._runs[0].first_chunk - 1)

    def _run_bounds(self, run_index: int) -> tuple[int, int]:
        start = self._runs[run_index].first_chunk - 1
        if run_index + 1 < len(self._runs):
            end = self._runs[run_index + 1].first_chunk - 1
        else:
            end = self._chunk_count
        return start, end

    @property
    def chunk_count(self) -> int:
        return self._chunk_count

    @property
    def sample_count(self) -> int:
        """Number of samples the runs describe, computed without resolving them."""
        total = 0
        for i, run in enumerate(self._runs):
            start, end = self._run_bounds(i)
            total += (end - start) * run.samples_per_chunk
        return total

    def __iter__(self) -> "SampleTableResolver":
        return self

    def __next__(self) -> ResolvedSample:
        if self._done:
            raise StopIteration

        while self._remaining_in_chunk == 0:
            if not self._advance_chunk():
                self._finish()
                raise StopIteration

        size = self._size_of(self._sample_index)
        sample = ResolvedSample(
            index=self._sample_index,
            chunk_index=self._chunk_index,
            byte_offset=self._offset,
            size=size,
        )
        self._offset += size
        self._sample_index += 1
        self._remaining_in_chunk -= 1
        return sample

    def _advance_chunk(self) -> bool:
        self._chunk_index += 1
        while self._chunk_index >= self._run_end:
            self._run_index += 1
            if self._run_index >= len(self._runs):
                return False
            _, self._run_end = self._run_bounds(self._run_index)
            self._samples_per_chunk = self._runs[self._run_index].samples_per_chunk

        self._offset = self._offsets[self._chunk_index]
        self._remaining_in_chunk = self._samples_per_chunk
        return True

    def _size_of(self, sample_index: int) -> int:
        if self._sizes.is_constant:
            return self._sizes.constant_size
        if sample_index >= len(self._sizes.sizes):
            self._done = True
            raise InconsistentSampleTableError(
                f"Sample size table exhausted after {len(self._sizes.sizes)} samples",
                sample_index=sample_index,
                chunk_index=self._chunk_index,
            )
        return self._sizes.sizes[sample_index]

    def _finish(self) -> None:
        self._done = True
        if not self._sizes.is_constant and self._sample_index < len(self._sizes.sizes):
            raise InconsistentSampleTableError(
                f"{len(self._sizes.sizes) - self._sample_index} sample sizes left over after the last chunk",
                sample_index=self._sample_index,
                chunk_index=self._chunk_count - 1,
            )
        logger.debug("[sample_table] Resolved %d samples over %d chunks", self._sample_index, self._chunk_count)


def build_sample_table(
    runs: Sequence[ChunkRun],
    chunk_offsets: ChunkOffsetTable | Sequence[int],
    sample_sizes: SampleSizeTable,
) -> SampleTableResolver:
    """Return a fresh lazy resolver over the given tables, starting at sample 0."""
    return SampleTableResolver(runs, chunk_offsets, sample_sizes)
