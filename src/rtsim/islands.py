from __future__ import annotations

import numpy as np

from ._logging import get_logger
from .parallel import CancellationToken, fan_out
from .stage import Stage
from .track import Track, Windows

logger = get_logger(__name__)


def tile_chromosome(length: int, *, step: int, island_length: int) -> tuple[np.ndarray, np.ndarray]:
    """Starts and stops of ``[start, start + island_length)`` from position 1 by ``step``.

    Tiling stops before an island would reach the chromosome end.
    """
    last_start = length - island_length
    if last_start < 1:
        empty = np.empty(0, dtype=np.int64)
        return empty, empty
    # start + island_length < length  <=>  start <= length - island_length - 1
    starts = np.arange(1, last_start, step, dtype=np.int64)
    return starts, starts + island_length


def generate_islands(
    step: int,
    length: int,
    reference: Track,
    *,
    n_jobs: int = 1,
    token: CancellationToken | None = None,
) -> Track:
    """Ground-truth island mask: tiled intervals whose max reference coverage is > 0."""
    if step <= 0:
        raise ValueError("step must be > 0.")
    if length <= 0:
        raise ValueError("island length must be > 0.")
    if step < length:
        raise ValueError("step must be >= island length so islands do not overlap.")
    if token is None:
        token = CancellationToken()
    chrom_sizes = reference.chrom_sizes

    def _islands(chrom: str) -> Windows:
        token.raise_if_cancelled()
        starts, stops = tile_chromosome(chrom_sizes[chrom], step=step, island_length=length)
        tiles = Track({chrom: chrom_sizes[chrom]}, {chrom: Windows(starts, stops, np.ones(starts.size))})
        ref = Track({chrom: chrom_sizes[chrom]}, {chrom: reference.get(chrom)})
        covered = ref.score_regions(tiles, "max_coverage").get(chrom)
        kept = covered.subset(covered.scores > 0)
        return kept.with_scores(np.ones(len(kept)))

    chromosomes = reference.chromosomes
    parts = fan_out(chromosomes, _islands, n_jobs=n_jobs, token=token)
    islands = Track(chrom_sizes, dict(zip(chromosomes, parts)))
    logger.debug("Generated %d islands of %d bp", islands.window_count, length)
    return islands


class GenerateIslands(Stage):
    name = "Generate Islands"
    step_weight = 1

    def __init__(self, step: int, length: int, *, n_jobs: int = 1) -> None:
        self.step = step
        self.length = length
        self.n_jobs = n_jobs

    def run(self, reference: Track, *, token: CancellationToken | None = None) -> Track:
        return generate_islands(self.step, self.length, reference, n_jobs=self.n_jobs, token=token)
