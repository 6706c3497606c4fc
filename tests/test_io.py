from __future__ import annotations

from pathlib import Path

import pytest

from rtsim.exceptions import TrackError
from rtsim.io import read_chrom_sizes, read_track, read_tracks, write_bed


def _write(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_read_bedgraph_converts_to_one_based_and_sums_duplicates(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "s.bedgraph",
        [
            "track type=bedGraph",
            "chr1\t100\t200\t3",
            "chr1\t0\t100\t1",
            "chr1\t100\t200\t2",
            "chr2\t0\t50\t7",
        ],
    )
    track = read_track(path)
    assert track.chromosomes == ("chr1", "chr2")
    assert track.chrom_sizes == {"chr1": 200, "chr2": 50}
    w = track.get("chr1")
    assert w.starts.tolist() == [1, 101]
    assert w.stops.tolist() == [101, 201]
    assert w.scores.tolist() == [1.0, 5.0]


def test_read_bed_uses_score_column_and_genome_sizes(tmp_path: Path) -> None:
    sizes = _write(tmp_path / "genome.sizes", ["chr1 1000", "chr2 500"])
    path = _write(tmp_path / "g1.bed", ["chr2\t10\t20\tname\t4"])
    chrom_sizes = read_chrom_sizes(sizes)
    track = read_track(path, chrom_sizes=chrom_sizes)
    assert track.chromosomes == ("chr1", "chr2")
    assert len(track.get("chr1")) == 0
    assert track.get("chr2").scores.tolist() == [4.0]


def test_read_tracks_sizes_chromosomes_from_both_files(tmp_path: Path) -> None:
    s = _write(tmp_path / "s.bedgraph", [f"chr1\t{i * 100}\t{i * 100 + 100}\t5" for i in range(4)])
    g1 = _write(
        tmp_path / "g1.bedgraph",
        [f"chr1\t{i * 100}\t{i * 100 + 100}\t3" for i in range(5)] + ["chr2\t0\t50\t1"],
    )
    s_track, g_track = read_tracks(s, g1)
    assert s_track.chrom_sizes == {"chr1": 500, "chr2": 50}
    assert g_track.chrom_sizes == s_track.chrom_sizes
    assert len(s_track.get("chr1")) == 4
    assert len(s_track.get("chr2")) == 0
    assert g_track.get("chr1").stops.tolist()[-1] == 501

    sizes = {"chr1": 1000, "chr2": 100}
    s_track, g_track = read_tracks(s, g1, chrom_sizes=sizes)
    assert s_track.chrom_sizes == sizes
    assert g_track.chrom_sizes == sizes


def test_read_track_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        read_track(tmp_path / "missing.bedgraph")
    bad_suffix = _write(tmp_path / "x.vcf", ["chr1\t0\t10\t1"])
    with pytest.raises(ValueError):
        read_track(bad_suffix)
    unknown = _write(tmp_path / "u.bedgraph", ["chrZ\t0\t10\t1"])
    with pytest.raises(TrackError):
        read_track(unknown, chrom_sizes={"chr1": 100})
    malformed = _write(tmp_path / "m.bedgraph", ["chr1\t0\tten\t1"])
    with pytest.raises(ValueError):
        read_track(malformed)


def test_write_bed_uses_zero_based_coordinates(tmp_path: Path) -> None:
    path = _write(tmp_path / "in.bedgraph", ["chr1\t0\t100\t1.5", "chr1\t100\t250\t2"])
    out = write_bed(read_track(path), tmp_path / "dump" / "out.bed")
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines == ["chr1\t0\t100\t-\t1.5", "chr1\t100\t250\t-\t2"]
