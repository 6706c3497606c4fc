"""Binomial resampling of paired S / G1 count tracks.

For every window the counts are scaled by the read-increase factor, then S is
redrawn from a binomial over the window total so that the S + G1 depth is kept.
Reads added to S (``percentage_to_add``) inflate both the successes and the trials
before the draw.
"""

from __future__ import annotations

import numpy as np

from ._logging import get_logger
from .exceptions import ResamplingError, TrackError
from .parallel import CancellationToken, fan_out
from .stage import Stage
from .track import Track, Windows

logger = get_logger(__name__)

CHUNK_SIZE = 1 << 16


def round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(np.asarray(values, dtype=float) + 0.5)


def resample_counts(
    s_counts: np.ndarray,
    g_counts: np.ndarray,
    *,
    percentage_to_add: float,
    read_increase_factor: int,
    rng: np.random.Generator,
) -> tuple[np.ndarray, np.ndarray]:
    s = np.asarray(s_counts, dtype=float) * read_increase_factor
    g = np.asarray(g_counts, dtype=float) * read_increase_factor
    if s.shape != g.shape:
        raise TrackError("S and G1 count arrays must have the same shape.")
    if not (np.all(np.isfinite(s)) and np.all(np.isfinite(g))):
        raise ResamplingError("Read counts must be finite.")
    if np.any(s < 0) or np.any(g < 0):
        raise ResamplingError("Read counts must be non-negative.")

    new_s = np.zeros_like(s)
    new_g = np.zeros_like(g)

    no_s = s == 0
    new_g[no_s] = g[no_s]

    no_g = (~no_s) & (g == 0)
    new_s[no_g] = s[no_g] + round_half_up(s[no_g] * percentage_to_add)

    both = (~no_s) & (~no_g)
    if np.any(both):
        k = np.trunc(s[both])
        n = np.trunc(s[both] + g[both])
        added = round_half_up(k * percentage_to_add)
        k = k + added
        n = n + added
        # fractional inputs can truncate to an empty window
        prob = np.divide(k, n, out=np.zeros_like(k), where=n > 0)
        draws = rng.binomial(n.astype(np.int64), prob)
        new_s[both] = draws
        new_g[both] = n - draws
    return new_s, new_g


def resample_tracks(
    s_track: Track,
    g_track: Track,
    *,
    percentage_to_add: float,
    read_increase_factor: int = 1,
    seed: int | np.random.SeedSequence | None = None,
    n_jobs: int = 1,
    token: CancellationToken | None = None,
) -> tuple[Track, Track]:
    """Resample both tracks chromosome by chromosome; output keeps the input windows."""
    if percentage_to_add < 0:
        raise ValueError("percentage_to_add must be >= 0.")
    if int(read_increase_factor) != read_increase_factor or read_increase_factor < 1:
        raise ValueError("read_increase_factor must be an integer >= 1.")
    if not s_track.same_shape(g_track):
        raise TrackError("S and G1 tracks must have identical windows.")
    if token is None:
        token = CancellationToken()

    chromosomes = s_track.chromosomes
    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    child_seeds = dict(zip(chromosomes, root.spawn(len(chromosomes))))

    def _resample_chromosome(chrom: str) -> tuple[Windows, Windows]:
        s_windows = s_track.get(chrom)
        g_windows = g_track.get(chrom)
        rng = np.random.default_rng(child_seeds[chrom])
        new_s = np.empty(len(s_windows), dtype=float)
        new_g = np.empty(len(s_windows), dtype=float)
        for lo in range(0, len(s_windows), CHUNK_SIZE):
            token.raise_if_cancelled()
            hi = min(lo + CHUNK_SIZE, len(s_windows))
            new_s[lo:hi], new_g[lo:hi] = resample_counts(
                s_windows.scores[lo:hi],
                g_windows.scores[lo:hi],
                percentage_to_add=percentage_to_add,
                read_increase_factor=int(read_increase_factor),
                rng=rng,
            )
        return s_windows.with_scores(new_s), g_windows.with_scores(new_g)

    logger.debug(
        "Resampling %d chromosomes (added=%s, factor=%s)",
        len(chromosomes),
        percentage_to_add,
        read_increase_factor,
    )
    parts = fan_out(chromosomes, _resample_chromosome, n_jobs=n_jobs, token=token)
    chrom_sizes = s_track.chrom_sizes
    s_out = Track(chrom_sizes, {chrom: part[0] for chrom, part in zip(chromosomes, parts)})
    g_out = Track(chrom_sizes, {chrom: part[1] for chrom, part in zip(chromosomes, parts)})
    return s_out, g_out


class ResampleLayers(Stage):
    name = "Resample Layers"
    step_weight = 3

    def __init__(
        self,
        percentage_to_add: float,
        read_increase_factor: int = 1,
        *,
        seed: int | np.random.SeedSequence | None = None,
        n_jobs: int = 1,
    ) -> None:
        self.percentage_to_add = percentage_to_add
        self.read_increase_factor = read_increase_factor
        self.seed = seed
        self.n_jobs = n_jobs

    def run(
        self,
        s_track: Track,
        g_track: Track,
        *,
        token: CancellationToken | None = None,
    ) -> tuple[Track, Track]:
        return resample_tracks(
            s_track,
            g_track,
            percentage_to_add=self.percentage_to_add,
            read_increase_factor=self.read_increase_factor,
            seed=self.seed,
            n_jobs=self.n_jobs,
            token=token,
        )
