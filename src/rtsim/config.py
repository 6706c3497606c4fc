from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Iterator

from .significance import BACKENDS

DEFAULT_ISLAND_SIZES = (125_000, 250_000, 500_000, 1_000_000, 2_000_000)
DEFAULT_PERCENTAGES = (0.0, 0.05, 0.1, 0.15, 0.2, 0.3, 0.4, 0.5)
DEFAULT_READ_INCREASE_FACTORS = (1,)


@dataclass(frozen=True)
class SimulationConfig:
    island_distance: int = 4_000_000
    q_value_cutoff: float = 0.05
    use_island_finder: bool = True
    print_files: bool = False
    bin_size: int = 500
    gaussian_window: int = 400_000
    if_min_window: float = 0.02
    if_gap: int = 500
    if_min_length: int = 50
    if_min_score: float = 0.0
    n_jobs: int = 1
    seed: int | None = None
    backend: str = "scipy"
    backend_timeout_sec: float | None = None

    def __post_init__(self) -> None:
        if self.island_distance <= 0:
            raise ValueError("island_distance must be > 0.")
        if not (0.0 < self.q_value_cutoff <= 1.0):
            raise ValueError("q_value_cutoff must be in (0, 1].")
        if self.bin_size <= 0:
            raise ValueError("bin_size must be > 0.")
        if self.gaussian_window <= 0:
            raise ValueError("gaussian_window must be > 0.")
        if self.if_gap < 0:
            raise ValueError("if_gap must be >= 0.")
        if self.if_min_length < 0:
            raise ValueError("if_min_length must be >= 0.")
        if self.n_jobs <= 0:
            raise ValueError("n_jobs must be > 0.")
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}.")
        if self.backend_timeout_sec is not None and self.backend_timeout_sec <= 0:
            raise ValueError("backend_timeout_sec must be > 0.")

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class SweepGrid:
    island_sizes: tuple[int, ...] = DEFAULT_ISLAND_SIZES
    percentages: tuple[float, ...] = DEFAULT_PERCENTAGES
    read_increase_factors: tuple[int, ...] = field(default=DEFAULT_READ_INCREASE_FACTORS)

    def __post_init__(self) -> None:
        object.__setattr__(self, "island_sizes", tuple(int(x) for x in self.island_sizes))
        object.__setattr__(self, "percentages", tuple(float(x) for x in self.percentages))
        object.__setattr__(
            self, "read_increase_factors", tuple(int(x) for x in self.read_increase_factors)
        )
        if not self.island_sizes or not self.percentages or not self.read_increase_factors:
            raise ValueError("Sweep grid axes must not be empty.")
        if any(x <= 0 for x in self.island_sizes):
            raise ValueError("island sizes must be > 0.")
        if any(x < 0 for x in self.percentages):
            raise ValueError("percentages must be >= 0.")
        if any(x < 1 for x in self.read_increase_factors):
            raise ValueError("read-increase factors must be >= 1.")

    def __len__(self) -> int:
        return len(self.island_sizes) * len(self.percentages) * len(self.read_increase_factors)

    def iter_cells(self) -> Iterator[tuple[int, float, int]]:
        """(island_size, percentage, factor): factor outer, percentage, island size inner."""
        for factor in self.read_increase_factors:
            for percentage in self.percentages:
                for island_size in self.island_sizes:
                    yield island_size, percentage, factor

    def to_dict(self) -> dict[str, Any]:
        return {
            "island_sizes": list(self.island_sizes),
            "percentages": list(self.percentages),
            "read_increase_factors": list(self.read_increase_factors),
        }


GRID_KEYS = {"island_sizes", "percentages", "read_increase_factors"}
SIMULATION_KEYS = {f.name for f in fields(SimulationConfig)}


def _load_yaml_or_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(text)
        if isinstance(payload, dict):
            return payload
    except json.JSONDecodeError:
        pass
    import yaml

    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Could not parse config file: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Config must be a mapping object: {path}")
    return payload


def config_from_mapping(payload: dict[str, Any]) -> tuple[SimulationConfig, SweepGrid]:
    """Split a flat or sectioned (``simulation:`` / ``grid:``) mapping into config objects."""
    sim_part = dict(payload.get("simulation") or {})
    grid_part = dict(payload.get("grid") or {})
    for key, value in payload.items():
        if key in {"simulation", "grid"}:
            continue
        if key in GRID_KEYS:
            grid_part[key] = value
        elif key in SIMULATION_KEYS:
            sim_part[key] = value
        else:
            raise ValueError(f"Unknown config key: {key}")
    unknown = (set(sim_part) - SIMULATION_KEYS) | (set(grid_part) - GRID_KEYS)
    if unknown:
        raise ValueError(f"Unknown config key(s): {', '.join(sorted(unknown))}")
    for key in GRID_KEYS & set(grid_part):
        if not isinstance(grid_part[key], (list, tuple)):
            grid_part[key] = [grid_part[key]]
    try:
        return SimulationConfig(**sim_part), SweepGrid(**grid_part)
    except TypeError as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc


def load_config(path: str | Path) -> tuple[SimulationConfig, SweepGrid]:
    payload = _load_yaml_or_json(Path(path).expanduser().resolve())
    return config_from_mapping(payload)


def with_overrides(config: SimulationConfig, **overrides: Any) -> SimulationConfig:
    """Copy of ``config`` with every non-None override applied."""
    changes = {k: v for k, v in overrides.items() if v is not None}
    return replace(config, **changes) if changes else config
