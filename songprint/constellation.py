"""
Constellation map: the sparse set of spectrogram peaks, held in a 2-D
spatial index keyed by (time chunk, frequency bin).
"""

from __future__ import annotations

import bisect
import functools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

# upper bound for "any frequency bin" queries
_MAX_BIN = 2**62


@functools.total_ordering
@dataclass(frozen=True)
class Peak:
    """A locally dominant spectrogram cell.

    Peaks are totally ordered loudest-first: by descending amplitude, then
    ascending time chunk, then ascending frequency bin. Sorting a list of
    peaks therefore puts the strongest one first.
    """

    amplitude: int
    frequency_bin: int
    time_chunk: int

    def sort_key(self) -> tuple[int, int, int]:
        return (-self.amplitude, self.time_chunk, self.frequency_bin)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Peak):
            return NotImplemented
        return self.sort_key() < other.sort_key()


class SpatialIndex(ABC):
    """Interface for a 2-D point index supporting rectangular range queries."""

    @abstractmethod
    def insert(self, peak: Peak) -> None:
        """Add a peak to the index."""

    @abstractmethod
    def range_query(
        self, time_min: int, time_max: int, freq_min: int, freq_max: int
    ) -> list[Peak]:
        """Return every peak with time_min <= t <= time_max and
        freq_min <= f <= freq_max (bounds inclusive)."""

    @abstractmethod
    def __len__(self) -> int: ...

    @abstractmethod
    def __iter__(self) -> Iterator[Peak]:
        """Iterate peaks by ascending time chunk, then frequency bin."""


class GridSpatialIndex(SpatialIndex):
    """Time-bucketed grid index.

    Occupied time chunks are kept in a sorted list; each chunk holds its
    peaks sorted by frequency bin. Insertion and both ends of a range query
    are binary searches, so a query costs O(log n + k) for k results.
    """

    def __init__(self) -> None:
        self._times: list[int] = []
        self._freqs: dict[int, list[int]] = {}
        self._peaks: dict[int, list[Peak]] = {}
        self._size = 0

    def insert(self, peak: Peak) -> None:
        t = peak.time_chunk
        freqs = self._freqs.get(t)
        if freqs is None:
            bisect.insort(self._times, t)
            freqs = self._freqs[t] = []
            self._peaks[t] = []

        pos = bisect.bisect_right(freqs, peak.frequency_bin)
        freqs.insert(pos, peak.frequency_bin)
        self._peaks[t].insert(pos, peak)
        self._size += 1

    def range_query(
        self, time_min: int, time_max: int, freq_min: int, freq_max: int
    ) -> list[Peak]:
        if time_max < time_min or freq_max < freq_min:
            return []

        lo = bisect.bisect_left(self._times, time_min)
        hi = bisect.bisect_right(self._times, time_max)

        found = []
        for t in self._times[lo:hi]:
            freqs = self._freqs[t]
            start = bisect.bisect_left(freqs, freq_min)
            stop = bisect.bisect_right(freqs, freq_max)
            found.extend(self._peaks[t][start:stop])
        return found

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[Peak]:
        for t in self._times:
            yield from self._peaks[t]


class ConstellationMap:
    """Read-only view of the peaks retained for one signal.

    Peaks are inserted once at construction; afterwards the map is frozen
    and only answers range queries.
    """

    def __init__(
        self,
        peaks: Iterable[Peak] = (),
        index_factory: Callable[[], SpatialIndex] = GridSpatialIndex,
    ) -> None:
        self._index = index_factory()
        self._frozen = False
        for peak in peaks:
            self.insert(peak)
        self._frozen = True

    def insert(self, peak: Peak) -> None:
        if self._frozen:
            raise RuntimeError("ConstellationMap is read-only once built")
        self._index.insert(peak)

    def range_query(
        self, time_min: int, time_max: int, freq_min: int, freq_max: int
    ) -> list[Peak]:
        return self._index.range_query(time_min, time_max, freq_min, freq_max)

    def peaks_in_chunk(self, time_chunk: int) -> list[Peak]:
        """All peaks of one time chunk, loudest first."""
        return sorted(self._index.range_query(time_chunk, time_chunk, 0, _MAX_BIN))

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[Peak]:
        return iter(self._index)

    def __bool__(self) -> bool:
        return len(self._index) > 0

    def __repr__(self) -> str:
        return f"ConstellationMap({len(self)} peaks)"

