"""rtsim package."""

from .batch import run_sweep, summary_tables, write_results_tsv, write_summary
from .config import SimulationConfig, SweepGrid, load_config
from .evaluation import SimulationResult, compute_simulation_result, has_overlap
from .islands import generate_islands
from .pipeline import find_islands, run_single_simulation
from .resample import resample_tracks
from .significance import RScriptBackend, ScipyBackend, SignificanceBackend, compute_q_values
from .track import Track, Windows

__all__ = [
    "RScriptBackend",
    "ScipyBackend",
    "SignificanceBackend",
    "SimulationConfig",
    "SimulationResult",
    "SweepGrid",
    "Track",
    "Windows",
    "compute_q_values",
    "compute_simulation_result",
    "find_islands",
    "generate_islands",
    "has_overlap",
    "load_config",
    "resample_tracks",
    "run_single_simulation",
    "run_sweep",
    "summary_tables",
    "write_results_tsv",
    "write_summary",
]

__version__ = "0.3.0"
