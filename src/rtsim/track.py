"""Minimal genomic track used by the simulation.

A :class:`Track` maps each chromosome of a genome to sorted, non-overlapping
windows ``[start, stop)`` with 1-based starts and float32 scores. Every operation
returns a new track; inputs are never modified.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Mapping

import numpy as np
from scipy import signal

from .exceptions import TrackError

SCORE_DTYPE = np.float32
REDUCERS = ("max_coverage", "sum", "average")
OPERATIONS = ("add", "subtract", "multiply", "divide")


def _frozen(values: np.ndarray) -> np.ndarray:
    values.flags.writeable = False
    return values


@dataclass(frozen=True, eq=False)
class Windows:
    starts: np.ndarray
    stops: np.ndarray
    scores: np.ndarray

    def __post_init__(self) -> None:
        starts = np.array(self.starts, dtype=np.int64).reshape(-1)
        stops = np.array(self.stops, dtype=np.int64).reshape(-1)
        scores = np.array(self.scores, dtype=SCORE_DTYPE).reshape(-1)
        if not (starts.size == stops.size == scores.size):
            raise TrackError("Window starts, stops and scores must have the same length.")
        if starts.size:
            if np.any(starts >= stops):
                raise TrackError("Window start must be < stop.")
            if np.any(starts[1:] < stops[:-1]):
                raise TrackError("Windows must be sorted by start and must not overlap.")
        object.__setattr__(self, "starts", _frozen(starts))
        object.__setattr__(self, "stops", _frozen(stops))
        object.__setattr__(self, "scores", _frozen(scores))

    @classmethod
    def empty(cls) -> "Windows":
        return cls(np.empty(0, np.int64), np.empty(0, np.int64), np.empty(0, SCORE_DTYPE))

    def __len__(self) -> int:
        return int(self.starts.size)

    @property
    def lengths(self) -> np.ndarray:
        return self.stops - self.starts

    def with_scores(self, scores: np.ndarray) -> "Windows":
        return Windows(self.starts, self.stops, scores)

    def subset(self, keep: np.ndarray) -> "Windows":
        return Windows(self.starts[keep], self.stops[keep], self.scores[keep])

    def same_shape(self, other: "Windows") -> bool:
        return np.array_equal(self.starts, other.starts) and np.array_equal(self.stops, other.stops)


def _merge_intervals(starts: np.ndarray, stops: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    if starts.size == 0:
        return starts, stops
    order = np.lexsort((stops, starts))
    starts = starts[order]
    stops = stops[order]
    out_starts = [int(starts[0])]
    out_stops = [int(stops[0])]
    for start, stop in zip(starts[1:], stops[1:]):
        if start < out_stops[-1]:
            out_stops[-1] = max(out_stops[-1], int(stop))
        else:
            out_starts.append(int(start))
            out_stops.append(int(stop))
    return np.asarray(out_starts, dtype=np.int64), np.asarray(out_stops, dtype=np.int64)


def _gaussian_kernel(sigma_bins: float) -> np.ndarray:
    radius = int(2.0 * sigma_bins)
    offsets = np.arange(-radius, radius + 1, dtype=float)
    return np.exp(-(offsets**2) / (2.0 * sigma_bins**2))


class Track:
    def __init__(
        self,
        chrom_sizes: Mapping[str, int],
        windows: Mapping[str, Windows] | None = None,
    ) -> None:
        self._chrom_sizes = {str(k): int(v) for k, v in chrom_sizes.items()}
        self._windows: dict[str, Windows] = {}
        for chrom, w in (windows or {}).items():
            if chrom not in self._chrom_sizes:
                raise TrackError(f"Chromosome '{chrom}' is not part of the genome.")
            if len(w) and (int(w.starts[0]) < 1 or int(w.stops[-1]) > self._chrom_sizes[chrom] + 1):
                raise TrackError(f"Window outside of chromosome '{chrom}'.")
            self._windows[chrom] = w

    @classmethod
    def from_records(
        cls,
        records: Iterable[tuple[str, int, int, float]],
        chrom_sizes: Mapping[str, int],
    ) -> "Track":
        """Build a track from (chrom, start, stop, score); identical windows are summed."""
        per_chrom: dict[str, dict[tuple[int, int], float]] = {}
        for chrom, start, stop, score in records:
            bucket = per_chrom.setdefault(str(chrom), {})
            key = (int(start), int(stop))
            bucket[key] = bucket.get(key, 0.0) + float(score)
        windows: dict[str, Windows] = {}
        for chrom, bucket in per_chrom.items():
            keys = sorted(bucket)
            windows[chrom] = Windows(
                np.array([k[0] for k in keys], dtype=np.int64),
                np.array([k[1] for k in keys], dtype=np.int64),
                np.array([bucket[k] for k in keys], dtype=float),
            )
        return cls(chrom_sizes, windows)

    @property
    def chrom_sizes(self) -> dict[str, int]:
        return dict(self._chrom_sizes)

    @property
    def chromosomes(self) -> tuple[str, ...]:
        return tuple(self._chrom_sizes)

    def get(self, chrom: str) -> Windows:
        if chrom not in self._chrom_sizes:
            raise TrackError(f"Unknown chromosome: {chrom}")
        return self._windows.get(chrom, Windows.empty())

    def __iter__(self) -> Iterator[tuple[str, Windows]]:
        for chrom in self._chrom_sizes:
            yield chrom, self.get(chrom)

    def map_windows(self, fn: Callable[[str, Windows], Windows]) -> "Track":
        return Track(self._chrom_sizes, {chrom: fn(chrom, w) for chrom, w in self})

    def with_scores(self, scores: Mapping[str, np.ndarray]) -> "Track":
        return self.map_windows(lambda chrom, w: w.with_scores(scores.get(chrom, w.scores)))

    def same_shape(self, other: "Track") -> bool:
        if self.chromosomes != other.chromosomes:
            return False
        return all(w.same_shape(other.get(chrom)) for chrom, w in self)

    # statistics

    @property
    def window_count(self) -> int:
        return sum(len(w) for _, w in self)

    @property
    def total_length(self) -> int:
        return int(sum(int(np.sum(w.lengths)) for _, w in self))

    def _all_scores(self) -> np.ndarray:
        parts = [w.scores.astype(float) for _, w in self if len(w)]
        return np.concatenate(parts) if parts else np.empty(0, dtype=float)

    def mean(self) -> float:
        values = self._all_scores()
        return float(np.mean(values)) if values.size else 0.0

    def std(self) -> float:
        values = self._all_scores()
        return float(np.std(values, ddof=0)) if values.size else 0.0

    # transforms

    def bin(self, width: int) -> "Track":
        """Fixed-width bins covering each chromosome; a window adds its score to the
        bin holding its start."""
        if width <= 0:
            raise ValueError("bin width must be > 0.")

        def _bin(chrom: str, w: Windows) -> Windows:
            length = self._chrom_sizes[chrom]
            n_bins = -(-length // width)
            starts = 1 + np.arange(n_bins, dtype=np.int64) * width
            stops = np.minimum(starts + width, length + 1)
            idx = (w.starts - 1) // width
            sums = np.bincount(idx, weights=w.scores.astype(float), minlength=n_bins)[:n_bins]
            return Windows(starts, stops, sums)

        return self.map_windows(_bin)

    def bin_width(self) -> int:
        widths: set[int] = set()
        for _, w in self:
            widths.update(int(x) for x in np.unique(w.lengths[:-1]))
        if len(widths) > 1:
            raise TrackError("Track is not a fixed-width bin track.")
        if widths:
            return widths.pop()
        lasts = [int(w.lengths[0]) for _, w in self if len(w)]
        if not lasts:
            raise TrackError("Cannot infer the bin width of an empty track.")
        return max(lasts)

    def gauss(self, sigma: float) -> "Track":
        """Gaussian moving-window smoothing of a bin track (``sigma`` in bp).

        Null bins stay null and do not contribute to their neighbours.
        """
        if sigma <= 0:
            raise ValueError("sigma must be > 0.")
        kernel = _gaussian_kernel(float(sigma) / self.bin_width())

        def _smooth(chrom: str, w: Windows) -> Windows:
            if not len(w):
                return w
            values = w.scores.astype(float)
            present = (values != 0).astype(float)
            numerator = signal.fftconvolve(values, kernel, mode="same")
            denominator = signal.fftconvolve(present, kernel, mode="same")
            out = np.zeros_like(values)
            ok = (present > 0) & (denominator > 1e-9)
            out[ok] = numerator[ok] / denominator[ok]
            return w.with_scores(out)

        return self.map_windows(_smooth)

    def combine(self, other: "Track", op: str) -> "Track":
        """Elementwise operation with a track of identical windows; x / 0 gives 0."""
        if op not in OPERATIONS:
            raise ValueError(f"Unsupported operation: {op}")
        if not self.same_shape(other):
            raise TrackError(f"Cannot {op} tracks with different windows.")

        def _combine(chrom: str, w: Windows) -> Windows:
            a = w.scores.astype(float)
            b = other.get(chrom).scores.astype(float)
            if op == "add":
                out = a + b
            elif op == "subtract":
                out = a - b
            elif op == "multiply":
                out = a * b
            else:
                out = np.divide(a, b, out=np.zeros_like(a), where=b != 0)
            return w.with_scores(out)

        return self.map_windows(_combine)

    def scale(self, factor: float) -> "Track":
        return self.map_windows(lambda chrom, w: w.with_scores(w.scores.astype(float) * factor))

    def unique_score(self, value: float = 1.0) -> "Track":
        """Every non-zero window gets ``value``; zero windows keep 0."""
        return self.map_windows(lambda chrom, w: w.with_scores(np.where(w.scores != 0, value, 0.0)))

    def apply_mask(self, mask: "Track") -> "Track":
        """Multiply each window by the mask indicator at the window midpoint."""

        def _apply(chrom: str, w: Windows) -> Windows:
            m = mask.get(chrom)
            if not len(w):
                return w
            if not len(m):
                return w.with_scores(np.zeros(len(w)))
            mid = w.starts + (w.stops - w.starts) // 2
            idx = np.searchsorted(m.starts, mid, side="right") - 1
            inside = (idx >= 0) & (m.stops[np.clip(idx, 0, None)] > mid)
            return w.with_scores(np.where(inside, w.scores, 0.0))

        return self.map_windows(_apply)

    def threshold(
        self,
        low: float = -np.inf,
        high: float = np.inf,
        *,
        exclude_low: bool = False,
    ) -> "Track":
        """Keep only the windows scoring within ``[low, high]`` (``(low, high]``)."""

        def _filter(chrom: str, w: Windows) -> Windows:
            above = w.scores > low if exclude_low else w.scores >= low
            return w.subset(above & (w.scores <= high))

        return self.map_windows(_filter)

    def to_mask(self) -> "Track":
        """Drop zero windows and set the others to 1."""

        def _mask(chrom: str, w: Windows) -> Windows:
            kept = w.subset(w.scores != 0)
            return kept.with_scores(np.ones(len(kept)))

        return self.map_windows(_mask)

    def union(self, other: "Track") -> "Track":
        """Mask of the union of both window sets with overlapping windows flattened."""
        if self.chromosomes != other.chromosomes:
            raise TrackError("Cannot merge tracks of different genomes.")

        def _union(chrom: str, w: Windows) -> Windows:
            o = other.get(chrom)
            starts, stops = _merge_intervals(
                np.concatenate([w.starts, o.starts]), np.concatenate([w.stops, o.stops])
            )
            return Windows(starts, stops, np.ones(starts.size))

        return self.map_windows(_union)

    def invert_mask(self) -> "Track":
        """Mask of every chromosome position not covered by this track."""

        def _invert(chrom: str, w: Windows) -> Windows:
            end = self._chrom_sizes[chrom] + 1
            bounds_start = np.concatenate([[1], w.stops])
            bounds_stop = np.concatenate([w.starts, [end]])
            keep = bounds_start < bounds_stop
            starts = bounds_start[keep]
            return Windows(starts, bounds_stop[keep], np.ones(starts.size))

        return self.map_windows(_invert)

    def score_regions(self, regions: "Track", reducer: str) -> "Track":
        """Score each window of ``regions`` against this track.

        ``max_coverage`` is the highest overlapping score, ``sum`` adds the scores
        prorated by the overlapping fraction of each window and ``average`` is the
        base-weighted mean over the covered bases. Regions with no overlap score 0.
        """
        if reducer not in REDUCERS:
            raise ValueError(f"Unsupported reducer: {reducer}")

        def _score(chrom: str, r: Windows) -> Windows:
            w = self.get(chrom)
            out = np.zeros(len(r), dtype=float)
            if not len(w) or not len(r):
                return r.with_scores(out)
            lo = np.searchsorted(w.stops, r.starts, side="right")
            hi = np.searchsorted(w.starts, r.stops, side="left")
            values = w.scores.astype(float)
            lengths = w.lengths
            for i in range(len(r)):
                if hi[i] <= lo[i]:
                    continue
                sl = slice(lo[i], hi[i])
                overlap = np.minimum(w.stops[sl], r.stops[i]) - np.maximum(w.starts[sl], r.starts[i])
                if reducer == "max_coverage":
                    out[i] = float(np.max(values[sl]))
                elif reducer == "sum":
                    out[i] = float(np.sum(values[sl] * overlap / lengths[sl]))
                else:
                    out[i] = float(np.sum(values[sl] * overlap) / np.sum(overlap))
            return r.with_scores(out)

        return regions.map_windows(_score)
