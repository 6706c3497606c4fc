from __future__ import annotations

from pathlib import Path
from typing import Callable

import numpy as np
import pandas as pd

from ._logging import get_logger
from .config import SimulationConfig, SweepGrid
from .evaluation import SimulationResult
from .parallel import CancellationToken
from .pipeline import run_single_simulation
from .significance import SignificanceBackend, get_backend
from .track import Track

logger = get_logger(__name__)

# (block title, SimulationResult field)
SUMMARY_METRICS = (
    ("ISLAND CREATED COUNT", "island_created_count"),
    ("ISLAND FOUND COUNT", "island_found_count"),
    ("FALSE POSITIVES", "false_positive_count"),
    ("FALSE POSITIVE RATE", "false_positive_rate"),
    ("FALSE NEGATIVES", "false_negative_count"),
    ("FALSE NEGATIVE RATE", "false_negative_rate"),
    ("ISLAND AVERAGE SIZE", "island_average_size"),
    ("ISLAND SIZE STD ERR", "island_size_std_err"),
    ("SAMPLE - CTRL AVERAGE DIFFERENCE", "sample_ctrl_average_difference"),
    ("SAMPLE - CTRL DIFFERENCE STD ERR", "sample_ctrl_difference_std_err"),
)


def run_sweep(
    s_track: Track,
    g_track: Track,
    grid: SweepGrid,
    *,
    config: SimulationConfig | None = None,
    backend: SignificanceBackend | None = None,
    output_dir: str | Path | None = None,
    token: CancellationToken | None = None,
    on_result: Callable[[SimulationResult], None] | None = None,
) -> list[SimulationResult]:
    """Run one simulation per grid cell, in grid order.

    Every cell gets its own seed spawned from ``config.seed``. The first failing cell
    aborts the sweep.
    """
    config = config or SimulationConfig()
    if token is None:
        token = CancellationToken()
    if backend is None:
        backend = get_backend(config.backend, timeout_sec=config.backend_timeout_sec)
    cells = list(grid.iter_cells())
    seeds = np.random.SeedSequence(config.seed).spawn(len(cells))

    results: list[SimulationResult] = []
    for idx, ((island_size, percentage, factor), seed) in enumerate(zip(cells, seeds), start=1):
        token.raise_if_cancelled()
        logger.info(
            "*** Simulation %d/%d: %s%% reads added on islands of %s bp (factor %d) ***",
            idx,
            len(cells),
            percentage * 100,
            f"{island_size:,}",
            factor,
        )
        result = run_single_simulation(
            s_track,
            g_track,
            island_size=island_size,
            percentage=percentage,
            read_increase_factor=factor,
            config=config,
            seed=seed,
            backend=backend,
            output_dir=output_dir,
            token=token,
        )
        results.append(result)
        if on_result is not None:
            on_result(result)
    return results


def results_frame(results: list[SimulationResult]) -> pd.DataFrame:
    return pd.DataFrame([r.to_dict() for r in results])


def summary_tables(results: list[SimulationResult], grid: SweepGrid) -> dict[str, pd.DataFrame]:
    """One percentage x island-size table per metric and read-increase factor.

    Titles carry the factor only when the grid sweeps more than one.
    """
    expected = len(grid)
    if len(results) != expected:
        raise ValueError(f"Expected {expected} results for the grid, got {len(results)}.")
    by_cell = {
        (r.read_increase_factor, r.percentage_reads_added, r.island_size): r for r in results
    }
    tables: dict[str, pd.DataFrame] = {}
    for factor in grid.read_increase_factors:
        suffix = f" (READ INCREASE FACTOR {factor})" if len(grid.read_increase_factors) > 1 else ""
        for title, attr in SUMMARY_METRICS:
            matrix = np.zeros((len(grid.percentages), len(grid.island_sizes)), dtype=float)
            for i, pct in enumerate(grid.percentages):
                for j, size in enumerate(grid.island_sizes):
                    cell = by_cell.get((factor, pct, size))
                    if cell is None:
                        raise ValueError(f"Missing result for factor={factor} pct={pct} size={size}.")
                    matrix[i, j] = float(getattr(cell, attr))
            df = pd.DataFrame(matrix, index=list(grid.percentages), columns=list(grid.island_sizes))
            if attr.endswith("_count"):
                df = df.astype(int)
            tables[title + suffix] = df
    return tables


def write_summary(path: str | Path, tables: dict[str, pd.DataFrame]) -> Path:
    """Tab-separated blocks: title, island-size header, one row per percentage, blank line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for title, df in tables.items():
            handle.write(title + "\n")
            handle.write("".join(f"\t{col}" for col in df.columns) + "\n")
            for pct, row in df.iterrows():
                handle.write(str(pct) + "".join(f"\t{value}" for value in row.tolist()) + "\n")
            handle.write("\n")
    return path


def write_results_tsv(path: str | Path, results: list[SimulationResult]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    results_frame(results).to_csv(path, sep="\t", index=False)
    return path
