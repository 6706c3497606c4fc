"""One end-to-end simulation run.

Stages run strictly one after the other::

    resample (control, sample + reads, sample)  ->  island mask + inverse
    ->  composite sample tracks  ->  bin  ->  gauss  ->  S / G1 ratios
    ->  null mask  ->  sample - control difference  ->  call regions
    ->  score regions  ->  q-values  ->  q <= cutoff  ->  evaluation
"""

from __future__ import annotations

from pathlib import Path

import numpy as np

from ._logging import get_logger
from .config import SimulationConfig
from .evaluation import SimulationResult, compute_simulation_result
from .io import write_bed
from .islands import generate_islands
from .parallel import CancellationToken
from .resample import resample_tracks
from .significance import SignificanceBackend, compute_q_values, get_backend
from .stage import Stage
from .track import Track, Windows

logger = get_logger(__name__)


def _islands_in(
    w: Windows,
    *,
    min_window: float,
    gap_bp: int,
    min_length_bp: int,
    min_score: float,
) -> Windows:
    eligible = w.subset(w.scores >= min_window)
    if not len(eligible):
        return Windows.empty()
    # a new island starts wherever the distance to the previous eligible window exceeds the gap
    breaks = np.flatnonzero(eligible.starts[1:] - eligible.stops[:-1] > gap_bp) + 1
    first = np.concatenate([[0], breaks])
    last = np.concatenate([breaks, [len(eligible)]]) - 1
    starts = eligible.starts[first]
    stops = eligible.stops[last]
    scores = np.add.reduceat(eligible.scores.astype(float), first)
    keep = (stops - starts >= min_length_bp) & (scores >= min_score)
    return Windows(starts[keep], stops[keep], np.ones(int(np.sum(keep))))


def find_islands(
    track: Track,
    *,
    min_window: float,
    gap: int,
    min_length: int,
    min_score: float = 0.0,
    bin_size: int | None = None,
) -> Track:
    """Island finder over a bin track.

    Windows scoring at least ``min_window`` are eligible. Eligible windows separated
    by at most ``gap`` bins are merged into one island; islands shorter than
    ``min_length`` bins or with a summed score below ``min_score`` are dropped. The
    result is a mask track. ``bin_size`` defaults to the width inferred from the track.
    """
    if gap < 0 or min_length < 0:
        raise ValueError("gap and min_length must be >= 0.")
    if bin_size is None:
        has_windows = any(len(w) for _, w in track)
        bin_size = track.bin_width() if has_windows else 1
    elif bin_size <= 0:
        raise ValueError("bin_size must be > 0.")
    gap_bp = int(gap) * bin_size
    min_length_bp = int(min_length) * bin_size
    return track.map_windows(
        lambda chrom, w: _islands_in(
            w,
            min_window=min_window,
            gap_bp=gap_bp,
            min_length_bp=min_length_bp,
            min_score=min_score,
        )
    )


def call_regions(difference: Track, config: SimulationConfig) -> Track:
    """Candidate regions from both the positive and the negative part of the difference."""
    positive = difference.threshold(0.0, exclude_low=True)
    negative = difference.scale(-1.0).threshold(0.0, exclude_low=True)
    if config.use_island_finder:
        params = dict(
            min_window=config.if_min_window,
            gap=config.if_gap,
            min_length=config.if_min_length,
            min_score=config.if_min_score,
        )
    else:
        # direct thresholding: every run of adjacent non-zero bins is a region
        params = dict(min_window=np.finfo(np.float32).tiny, gap=0, min_length=0, min_score=-np.inf)
    positive_islands = find_islands(positive, bin_size=config.bin_size, **params)
    negative_islands = find_islands(negative, bin_size=config.bin_size, **params)
    return positive_islands.union(negative_islands)


def composite_sample_track(with_reads: Track, without_reads: Track, island_mask: Track) -> Track:
    """Reads-added counts inside the islands, plain resampled counts outside."""
    inside = with_reads.apply_mask(island_mask)
    outside = without_reads.apply_mask(island_mask.invert_mask())
    return inside.combine(outside, "add")


def ratio_track(s_binned: Track, g_binned: Track, gaussian_window: int) -> Track:
    sigma = gaussian_window / 4.0
    return s_binned.gauss(sigma).combine(g_binned.gauss(sigma), "divide")


def _dump(
    track: Track,
    output_dir: Path | None,
    *,
    island_size: int,
    percentage: float,
    factor: int,
    label: str,
) -> None:
    if output_dir is None:
        return
    path = write_bed(track, output_dir / f"{island_size}_{percentage}_{factor}_{label}.bed")
    logger.info("Writing file: %s", path)


def run_single_simulation(
    s_track: Track,
    g_track: Track,
    *,
    island_size: int,
    percentage: float,
    read_increase_factor: int = 1,
    config: SimulationConfig | None = None,
    seed: int | np.random.SeedSequence | None = None,
    backend: SignificanceBackend | None = None,
    output_dir: str | Path | None = None,
    token: CancellationToken | None = None,
) -> SimulationResult:
    """Run one simulation for an (island size, percentage, factor) triple.

    ``seed`` overrides ``config.seed``. Intermediate BED files are written to
    ``output_dir`` only when ``config.print_files`` is set.
    """
    config = config or SimulationConfig()
    if token is None:
        token = CancellationToken()
    if backend is None:
        backend = get_backend(config.backend, timeout_sec=config.backend_timeout_sec)
    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(
        config.seed if seed is None else seed
    )
    control_seed, added_seed, plain_seed = root.spawn(3)
    dump_dir = Path(output_dir) if (config.print_files and output_dir is not None) else None
    if dump_dir is not None:
        dump_dir.mkdir(parents=True, exist_ok=True)
    dump = dict(island_size=island_size, percentage=percentage, factor=read_increase_factor)
    jobs = config.n_jobs

    logger.info("Simulation with %s%% reads added on islands of %d bp", percentage * 100, island_size)

    logger.debug("1 - resample control")
    control_s, control_g = resample_tracks(
        s_track, g_track, percentage_to_add=0.0, read_increase_factor=read_increase_factor,
        seed=control_seed, n_jobs=jobs, token=token,
    )
    logger.debug("2a - resample sample with reads added")
    added_s, added_g = resample_tracks(
        s_track, g_track, percentage_to_add=percentage, read_increase_factor=read_increase_factor,
        seed=added_seed, n_jobs=jobs, token=token,
    )
    logger.debug("2b - resample sample without reads added")
    plain_s, plain_g = resample_tracks(
        s_track, g_track, percentage_to_add=0.0, read_increase_factor=read_increase_factor,
        seed=plain_seed, n_jobs=jobs, token=token,
    )

    logger.debug("2c - generate island mask")
    island_mask = generate_islands(config.island_distance, island_size, g_track, n_jobs=jobs, token=token)

    logger.debug("2d - composite sample tracks")
    sample_s = composite_sample_track(added_s, plain_s, island_mask)
    sample_g = composite_sample_track(added_g, plain_g, island_mask)
    token.raise_if_cancelled()

    logger.debug("3/4/5 - bin, smooth and compute S / G1 ratios")
    control_ratio = ratio_track(
        control_s.bin(config.bin_size), control_g.bin(config.bin_size), config.gaussian_window
    )
    sample_ratio = ratio_track(
        sample_s.bin(config.bin_size), sample_g.bin(config.bin_size), config.gaussian_window
    )
    token.raise_if_cancelled()

    logger.debug("6 - remove windows null in one of the ratios")
    control_ratio, sample_ratio = (
        control_ratio.combine(sample_ratio.unique_score(1.0), "multiply"),
        sample_ratio.combine(control_ratio.unique_score(1.0), "multiply"),
    )
    _dump(control_ratio, dump_dir, label="controlSG1", **dump)
    _dump(sample_ratio, dump_dir, label="sampleSG1", **dump)

    logger.debug("7 - sample - control difference")
    difference = sample_ratio.combine(control_ratio, "subtract")
    _dump(difference, dump_dir, label="difference", **dump)

    logger.debug("8 - call regions")
    regions = call_regions(difference, config)
    token.raise_if_cancelled()

    logger.debug("9 - score %d regions", regions.window_count)
    region_counts = [
        track.score_regions(regions, "sum") for track in (control_s, control_g, sample_s, sample_g)
    ]

    logger.debug("10 - q-values")
    q_values = compute_q_values(*region_counts, backend=backend, n_jobs=jobs, token=token)
    _dump(q_values, dump_dir, label="islands", **dump)

    logger.debug("11 - keep regions with q <= %s", config.q_value_cutoff)
    called = q_values.threshold(0.0, config.q_value_cutoff).to_mask()

    logger.debug("12 - compute false positives and false negatives")
    return compute_simulation_result(
        island_mask,
        called,
        island_size=island_size,
        percentage_reads_added=percentage,
        read_increase_factor=read_increase_factor,
        difference=difference,
        n_jobs=jobs,
        token=token,
    )


class SingleSimulation(Stage):
    name = "Run Simulation"
    step_weight = 12

    def __init__(
        self,
        island_size: int,
        percentage: float,
        read_increase_factor: int = 1,
        *,
        config: SimulationConfig | None = None,
        seed: int | np.random.SeedSequence | None = None,
        backend: SignificanceBackend | None = None,
        output_dir: str | Path | None = None,
    ) -> None:
        self.island_size = island_size
        self.percentage = percentage
        self.read_increase_factor = read_increase_factor
        self.config = config or SimulationConfig()
        self.seed = seed
        self.backend = backend
        self.output_dir = output_dir

    def run(
        self,
        s_track: Track,
        g_track: Track,
        *,
        token: CancellationToken | None = None,
    ) -> SimulationResult:
        return run_single_simulation(
            s_track,
            g_track,
            island_size=self.island_size,
            percentage=self.percentage,
            read_increase_factor=self.read_increase_factor,
            config=self.config,
            seed=self.seed,
            backend=self.backend,
            output_dir=self.output_dir,
            token=token,
        )
