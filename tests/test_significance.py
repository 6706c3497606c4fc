from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import numpy as np
import pytest

from rtsim.exceptions import BackendError, TrackError
from rtsim.significance import (
    RScriptBackend,
    ScipyBackend,
    compute_q_values,
    get_backend,
    read_contingency_table,
    read_pq_table,
    write_contingency_table,
)
from rtsim.stats import Q_VALUE_FLOOR, benjamini_hochberg, chi_square_2x2
from rtsim.track import Track

FAKE_R = """#!__PYTHON__
import re
import sys
from pathlib import Path

script = Path(sys.argv[-2]).read_text()
table = re.search(r"read\\.table\\('([^']+)'\\)", script).group(1)
output = re.search(r"file='([^']+)'", script).group(1)
Path(__MARKER__).write_text(str(Path(table).parent))
rows = [line.split() for line in Path(table).read_text().splitlines() if line.strip()]
rows = rows[: len(rows) - __DROP__]
with open(output, "w") as handle:
    for i, row in enumerate(rows):
        handle.write("%s %s\\n" % (0.01 * (i + 1), "NA" if row == ["0", "0", "0", "1"] else 0.02 * (i + 1)))
sys.exit(__CODE__)
"""


def _fake_r(tmp_path: Path, *, drop: int = 0, code: int = 0) -> tuple[Path, Path]:
    marker = tmp_path / "workdir.txt"
    script = tmp_path / "fake_R"
    script.write_text(
        FAKE_R.replace("__PYTHON__", sys.executable)
        .replace("__MARKER__", repr(str(marker)))
        .replace("__DROP__", str(drop))
        .replace("__CODE__", str(code)),
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script, marker


def _region_tracks() -> tuple[Track, Track, Track, Track]:
    sizes = {"chr1": 1000, "chr2": 1000}
    regions = [("chr1", 1, 101), ("chr1", 201, 301), ("chr2", 1, 501)]

    def _track(scores: list[float]) -> Track:
        return Track.from_records([(c, s, e, v) for (c, s, e), v in zip(regions, scores)], sizes)

    control_s = _track([100, 0, 60])
    control_g = _track([100, 0, 50])
    sample_s = _track([300, 0, 61.7])
    sample_g = _track([100, 0, 49])
    return control_s, control_g, sample_s, sample_g


def test_scipy_backend_returns_chi_square_and_bh() -> None:
    tables = np.array([[300, 100, 100, 100], [61, 49, 60, 50], [5, 5, 5, 5]])
    p, q = ScipyBackend().test_and_adjust(tables)
    assert np.allclose(p, chi_square_2x2(tables))
    assert np.allclose(q, benjamini_hochberg(p.tolist()))
    assert p[0] < 1e-10
    assert p[2] == pytest.approx(1.0)


def test_compute_q_values_skips_all_zero_regions_and_floors() -> None:
    q_track = compute_q_values(*_region_tracks())
    assert q_track.chromosomes == ("chr1", "chr2")
    chr1 = q_track.get("chr1")
    assert chr1.starts.tolist() == [1]
    assert chr1.stops.tolist() == [101]
    assert q_track.get("chr2").starts.tolist() == [1]
    scores = np.concatenate([w.scores for _, w in q_track])
    assert np.all(scores >= np.float32(Q_VALUE_FLOOR))
    assert scores[0] < 0.05
    assert scores[1] > 0.5


class _TinyBackend(ScipyBackend):
    def test_and_adjust(self, tables):
        return np.zeros(len(tables)), np.zeros(len(tables))


def test_q_values_below_the_floor_are_raised_to_it() -> None:
    q_track = compute_q_values(*_region_tracks(), backend=_TinyBackend())
    scores = np.concatenate([w.scores for _, w in q_track])
    assert scores.tolist() == [np.float32(Q_VALUE_FLOOR)] * 2


def test_compute_q_values_requires_same_regions() -> None:
    control_s, control_g, sample_s, _ = _region_tracks()
    other = Track.from_records([("chr1", 1, 51, 1.0)], control_s.chrom_sizes)
    with pytest.raises(TrackError):
        compute_q_values(control_s, control_g, sample_s, other)


def test_exchange_files_round_trip(tmp_path: Path) -> None:
    tables = np.array([[1, 2, 3, 4], [0, 0, 0, 9]])
    path = write_contingency_table(tables, tmp_path / "in.txt")
    assert path.read_text(encoding="utf-8") == "1\t2\t3\t4\n0\t0\t0\t9\n"
    assert np.array_equal(read_contingency_table(path), tables)
    pq = tmp_path / "out.txt"
    pq.write_text("0.5 0.75\nNA NA\n", encoding="utf-8")
    p, q = read_pq_table(pq)
    assert p.tolist() == [0.5, 1.0]
    assert q.tolist() == [0.75, 1.0]


def test_r_backend_runs_batch_script_and_cleans_up(tmp_path: Path) -> None:
    fake, marker = _fake_r(tmp_path)
    backend = RScriptBackend(str(fake), timeout_sec=60)
    tables = np.array([[1, 2, 3, 4], [0, 0, 0, 1], [5, 6, 7, 8]])
    p, q = backend.test_and_adjust(tables)
    assert p.tolist() == pytest.approx([0.01, 0.02, 0.03])
    assert q.tolist() == pytest.approx([0.02, 1.0, 0.06])
    workdir = Path(marker.read_text(encoding="utf-8"))
    assert not workdir.exists()


def test_r_backend_detects_row_count_mismatch(tmp_path: Path) -> None:
    fake, _ = _fake_r(tmp_path, drop=1)
    with pytest.raises(BackendError, match="rows"):
        RScriptBackend(str(fake)).test_and_adjust(np.array([[1, 2, 3, 4], [5, 6, 7, 8]]))


def test_r_backend_reports_exit_code(tmp_path: Path) -> None:
    fake, _ = _fake_r(tmp_path, code=3)
    with pytest.raises(BackendError) as excinfo:
        RScriptBackend(str(fake)).test_and_adjust(np.array([[1, 2, 3, 4]]))
    assert excinfo.value.returncode == 3
    assert excinfo.value.command[1:4] == ["CMD", "BATCH", "--vanilla"]


def test_r_backend_missing_binary(tmp_path: Path) -> None:
    backend = RScriptBackend(str(tmp_path / "no_such_R"))
    with pytest.raises(BackendError):
        backend.test_and_adjust(np.array([[1, 2, 3, 4]]))


def test_get_backend_and_env_override(tmp_path: Path, monkeypatch) -> None:
    assert isinstance(get_backend("scipy"), ScipyBackend)
    monkeypatch.setenv("RTSIM_R_BIN", os.fspath(tmp_path / "R-custom"))
    backend = get_backend("R", timeout_sec=5)
    assert isinstance(backend, RScriptBackend)
    assert backend.r_bin == os.fspath(tmp_path / "R-custom")
    assert backend.timeout_sec == 5
    with pytest.raises(ValueError):
        get_backend("fisher")
