from __future__ import annotations

import pytest

from rtsim.exceptions import Cancelled
from rtsim.islands import GenerateIslands, generate_islands, tile_chromosome
from rtsim.parallel import CancellationToken
from rtsim.track import Track


def test_tiling_stops_before_the_chromosome_end() -> None:
    starts, stops = tile_chromosome(10_000, step=2000, island_length=1000)
    assert starts.tolist() == [1, 2001, 4001, 6001, 8001]
    assert (stops - starts).tolist() == [1000] * 5
    starts, _ = tile_chromosome(9001, step=2000, island_length=1000)
    assert starts.tolist() == [1, 2001, 4001, 6001]


def test_islands_keep_only_covered_tiles() -> None:
    reference = Track.from_records(
        [("chr1", 3001, 5001, 2.0), ("chr2", 1, 501, 1.0)],
        {"chr1": 10_000, "chr2": 800},
    )
    islands = generate_islands(2000, 1000, reference)
    w = islands.get("chr1")
    assert w.starts.tolist() == [4001]
    assert w.stops.tolist() == [5001]
    assert w.scores.tolist() == [1.0]
    # chr2 is shorter than one island
    assert len(islands.get("chr2")) == 0


def test_zero_coverage_does_not_count() -> None:
    reference = Track.from_records(
        [("chr1", 1, 1001, 0.0), ("chr1", 2001, 3001, 5.0)], {"chr1": 10_000}
    )
    islands = generate_islands(2000, 1000, reference)
    assert islands.get("chr1").starts.tolist() == [2001]


def test_island_generation_is_deterministic_and_sorted() -> None:
    records = [("chr1", s, s + 100, 1.0) for s in range(1, 50_000, 700)]
    records += [("chr2", s, s + 100, 1.0) for s in range(1, 20_000, 300)]
    reference = Track.from_records(records, {"chr1": 50_000, "chr2": 20_000})
    first = generate_islands(2500, 1000, reference, n_jobs=2)
    second = generate_islands(2500, 1000, reference, n_jobs=1)
    for chrom in reference.chromosomes:
        a = first.get(chrom)
        b = second.get(chrom)
        assert a.same_shape(b)
        assert (a.starts < a.stops).all()
        assert (a.starts[1:] >= a.stops[:-1]).all()


def test_invalid_parameters() -> None:
    reference = Track.from_records([("chr1", 1, 101, 1.0)], {"chr1": 1000})
    with pytest.raises(ValueError):
        generate_islands(0, 100, reference)
    with pytest.raises(ValueError):
        generate_islands(100, 0, reference)
    with pytest.raises(ValueError):
        generate_islands(50, 100, reference)


def test_stage_honours_cancellation() -> None:
    reference = Track.from_records([("chr1", 1, 101, 1.0)], {"chr1": 1000})
    token = CancellationToken()
    token.cancel()
    with pytest.raises(Cancelled):
        GenerateIslands(200, 100).run(reference, token=token)
