from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np

from ._plotting_env import configure_plotting_env
from .batch import summary_tables
from .config import SweepGrid
from .evaluation import SimulationResult

RATE_PANELS = (
    ("FALSE POSITIVE RATE", "False positive rate"),
    ("FALSE NEGATIVE RATE", "False negative rate"),
)


def _get_plt() -> Any:
    configure_plotting_env()
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    return plt


def plot_rate_heatmaps(results: list[SimulationResult], grid: SweepGrid, out_pdf: str | Path) -> Path:
    """FP / FN rate heatmaps (percentage x island size), one row per read-increase factor."""
    out_pdf = Path(out_pdf)
    out_pdf.parent.mkdir(parents=True, exist_ok=True)
    tables = summary_tables(results, grid)
    plt = _get_plt()

    factors = grid.read_increase_factors
    fig, axes = plt.subplots(
        len(factors),
        len(RATE_PANELS),
        figsize=(
            0.9 * len(grid.island_sizes) * len(RATE_PANELS) + 3,
            0.5 * len(grid.percentages) * len(factors) + 2,
        ),
        squeeze=False,
    )
    for row, factor in enumerate(factors):
        suffix = f" (READ INCREASE FACTOR {factor})" if len(factors) > 1 else ""
        for col, (key, label) in enumerate(RATE_PANELS):
            ax = axes[row][col]
            df = tables[key + suffix]
            im = ax.imshow(df.to_numpy(dtype=float), aspect="auto", cmap="viridis", vmin=0, vmax=1)
            ax.set_xticks(np.arange(len(df.columns)))
            ax.set_xticklabels([f"{int(c):,}" for c in df.columns], rotation=30, ha="right")
            ax.set_yticks(np.arange(len(df.index)))
            ax.set_yticklabels([f"{float(p):g}" for p in df.index])
            ax.set_xlabel("Island size (bp)")
            ax.set_ylabel("Reads added")
            ax.set_title(label if len(factors) == 1 else f"{label}, factor {factor}")
            fig.colorbar(im, ax=ax)
    fig.tight_layout()
    fig.savefig(out_pdf)
    plt.close(fig)
    return out_pdf
