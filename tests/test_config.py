from __future__ import annotations

import json
from pathlib import Path

import pytest

from rtsim.config import SimulationConfig, SweepGrid, load_config, with_overrides


def test_defaults_follow_the_reference_sweep() -> None:
    config = SimulationConfig()
    assert config.island_distance == 4_000_000
    assert config.q_value_cutoff == 0.05
    assert config.bin_size == 500
    assert config.backend == "scipy"
    grid = SweepGrid()
    assert grid.island_sizes == (125_000, 250_000, 500_000, 1_000_000, 2_000_000)
    assert grid.percentages == (0.0, 0.05, 0.1, 0.15, 0.2, 0.3, 0.4, 0.5)
    assert len(grid) == 40


def test_grid_iterates_factor_then_percentage_then_size() -> None:
    grid = SweepGrid(island_sizes=(1, 2), percentages=(0.1, 0.2), read_increase_factors=(1, 3))
    assert list(grid.iter_cells()) == [
        (1, 0.1, 1),
        (2, 0.1, 1),
        (1, 0.2, 1),
        (2, 0.2, 1),
        (1, 0.1, 3),
        (2, 0.1, 3),
        (1, 0.2, 3),
        (2, 0.2, 3),
    ]


def test_load_yaml_sections(tmp_path: Path) -> None:
    path = tmp_path / "sim.yaml"
    path.write_text(
        "\n".join(
            [
                "simulation:",
                "  bin_size: 1000",
                "  backend: r",
                "  seed: 4",
                "grid:",
                "  island_sizes: [250000]",
                "  percentages: [0, 0.1]",
                "  read_increase_factors: 2",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    config, grid = load_config(path)
    assert config.bin_size == 1000
    assert config.backend == "r"
    assert config.seed == 4
    assert grid.island_sizes == (250_000,)
    assert grid.percentages == (0.0, 0.1)
    assert grid.read_increase_factors == (2,)


def test_load_flat_json(tmp_path: Path) -> None:
    path = tmp_path / "sim.json"
    path.write_text(json.dumps({"q_value_cutoff": 0.01, "island_sizes": [1000, 2000]}), encoding="utf-8")
    config, grid = load_config(path)
    assert config.q_value_cutoff == 0.01
    assert grid.island_sizes == (1000, 2000)
    assert grid.percentages == SweepGrid().percentages


def test_invalid_configs(tmp_path: Path) -> None:
    unknown = tmp_path / "unknown.json"
    unknown.write_text(json.dumps({"islands": 3}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(unknown)
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"simulation": {"backend": "fisher"}}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(bad)
    not_mapping = tmp_path / "list.yaml"
    not_mapping.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(not_mapping)
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")
    with pytest.raises(ValueError):
        SweepGrid(percentages=(-0.1,))
    with pytest.raises(ValueError):
        SimulationConfig(q_value_cutoff=0.0)


def test_overrides_skip_none() -> None:
    config = with_overrides(SimulationConfig(), seed=3, n_jobs=None)
    assert config.seed == 3
    assert config.n_jobs == 1
