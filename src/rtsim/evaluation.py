from __future__ import annotations

import math
from bisect import bisect_left
from dataclasses import asdict, dataclass
from typing import Any, Sequence

import numpy as np

from ._logging import get_logger
from .exceptions import EvaluationError
from .parallel import CancellationToken, fan_out
from .stage import Stage
from .stats import mean_and_std_err
from .track import Track

logger = get_logger(__name__)


@dataclass(frozen=True)
class SimulationResult:
    island_size: int
    percentage_reads_added: float
    read_increase_factor: int
    island_created_count: int
    island_found_count: int
    false_positive_count: int
    false_positive_rate: float
    false_negative_count: int
    false_negative_rate: float
    island_average_size: float
    island_size_std_err: float
    sample_ctrl_average_difference: float
    sample_ctrl_difference_std_err: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def has_overlap(start: int, stop: int, starts: Sequence[int], stops: Sequence[int]) -> bool:
    """True when ``[start, stop)`` shares a base with one of the sorted windows.

    The windows are located by binary search on their starts; only the neighbours
    around the insertion point can overlap since the windows do not overlap each other.
    """
    n = len(starts)
    if n == 0:
        return False
    idx = bisect_left(starts, start)
    if idx < n and starts[idx] == start:
        return True
    before = idx - 1
    after = idx
    if before < 0:
        return starts[after] < stop
    if after >= n:
        return stops[before] > start
    return stops[before] > start or starts[after] < stop


def _count_unmatched(
    starts: list[int],
    stops: list[int],
    other_starts: list[int],
    other_stops: list[int],
    token: CancellationToken,
) -> int:
    missed = 0
    for i, (start, stop) in enumerate(zip(starts, stops)):
        if i % 4096 == 0:
            token.raise_if_cancelled()
        if not has_overlap(start, stop, other_starts, other_stops):
            missed += 1
    return missed


def accuracy_counts(
    truth: Track,
    called: Track,
    *,
    n_jobs: int = 1,
    token: CancellationToken | None = None,
) -> tuple[int, int]:
    """(false positives, false negatives) summed over chromosomes."""
    if truth.chromosomes != called.chromosomes:
        raise EvaluationError("Ground-truth and called tracks are on different genomes.")
    if token is None:
        token = CancellationToken()

    def _per_chromosome(chrom: str) -> tuple[int, int]:
        t = truth.get(chrom)
        c = called.get(chrom)
        t_starts, t_stops = t.starts.tolist(), t.stops.tolist()
        c_starts, c_stops = c.starts.tolist(), c.stops.tolist()
        fp = _count_unmatched(c_starts, c_stops, t_starts, t_stops, token)
        fn = _count_unmatched(t_starts, t_stops, c_starts, c_stops, token)
        return fp, fn

    parts = fan_out(truth.chromosomes, _per_chromosome, n_jobs=n_jobs, token=token)
    return sum(p[0] for p in parts), sum(p[1] for p in parts)


def island_size_stats(
    called: Track,
    *,
    n_jobs: int = 1,
    token: CancellationToken | None = None,
) -> tuple[float, float]:
    """Mean called length and its standard error (population std / sqrt(count))."""
    count = called.window_count
    if count == 0:
        return 0.0, 0.0
    average = called.total_length / count

    def _squared_deviation(chrom: str) -> float:
        lengths = called.get(chrom).lengths.astype(float)
        return float(np.sum((lengths - average) ** 2))

    parts = fan_out(called.chromosomes, _squared_deviation, n_jobs=n_jobs, token=token)
    std = math.sqrt(sum(parts) / count)
    return float(average), std / math.sqrt(count)


def sample_ctrl_difference_stats(difference: Track, called: Track) -> tuple[float, float]:
    """Average of the difference track over each called region: (mean, std error)."""
    if called.window_count == 0:
        return 0.0, 0.0
    averages = difference.score_regions(called, "average")
    values = np.concatenate([w.scores.astype(float) for _, w in averages])
    return mean_and_std_err(values)


def compute_simulation_result(
    truth: Track,
    called: Track,
    *,
    island_size: int,
    percentage_reads_added: float,
    read_increase_factor: int = 1,
    difference: Track | None = None,
    n_jobs: int = 1,
    token: CancellationToken | None = None,
) -> SimulationResult:
    """Match called regions against the ground-truth islands.

    Both rates are 0 when their denominator is 0, so a grid cell whose islands fit on
    no chromosome still yields a result.
    """
    if token is None:
        token = CancellationToken()
    created = truth.window_count
    found = called.window_count
    if created == 0:
        logger.warning("No island of %d bp fits on any chromosome; rates set to 0.", island_size)

    fp, fn = accuracy_counts(truth, called, n_jobs=n_jobs, token=token)
    average_size, size_std_err = island_size_stats(called, n_jobs=n_jobs, token=token)
    if difference is not None:
        diff_mean, diff_std_err = sample_ctrl_difference_stats(difference, called)
    else:
        diff_mean, diff_std_err = 0.0, 0.0

    result = SimulationResult(
        island_size=int(island_size),
        percentage_reads_added=float(percentage_reads_added),
        read_increase_factor=int(read_increase_factor),
        island_created_count=created,
        island_found_count=found,
        false_positive_count=fp,
        false_positive_rate=fp / found if found else 0.0,
        false_negative_count=fn,
        false_negative_rate=fn / created if created else 0.0,
        island_average_size=average_size,
        island_size_std_err=size_std_err,
        sample_ctrl_average_difference=diff_mean,
        sample_ctrl_difference_std_err=diff_std_err,
    )
    logger.debug(
        "Islands created=%d found=%d FP=%d FN=%d", created, found, fp, fn
    )
    return result


class ComputeSimulationResult(Stage):
    name = "Compute Simulation Result"
    step_weight = 1

    def __init__(
        self,
        island_size: int,
        percentage_reads_added: float,
        read_increase_factor: int = 1,
        *,
        n_jobs: int = 1,
    ) -> None:
        self.island_size = island_size
        self.percentage_reads_added = percentage_reads_added
        self.read_increase_factor = read_increase_factor
        self.n_jobs = n_jobs

    def run(
        self,
        truth: Track,
        called: Track,
        difference: Track | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> SimulationResult:
        return compute_simulation_result(
            truth,
            called,
            island_size=self.island_size,
            percentage_reads_added=self.percentage_reads_added,
            read_increase_factor=self.read_increase_factor,
            difference=difference,
            n_jobs=self.n_jobs,
            token=token,
        )
