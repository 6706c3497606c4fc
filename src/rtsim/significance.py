"""Per-region 2x2 independence tests with false-discovery-rate correction.

Each tested region contributes one contingency table ``(a, b, c, d)`` =
(sample S, sample G1, control S, control G1). The statistics themselves are
delegated to a :class:`SignificanceBackend`; the default runs in-process with
scipy, the R backend reproduces the historical ``R CMD BATCH`` exchange.
"""

from __future__ import annotations

import math
import os
import shutil
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from ._logging import get_logger
from .exceptions import BackendError, TrackError
from .parallel import CancellationToken, fan_out
from .stage import Stage
from .stats import Q_VALUE_FLOOR, benjamini_hochberg, chi_square_2x2
from .track import Track, Windows

logger = get_logger(__name__)

R_BIN_ENV = "RTSIM_R_BIN"
BACKENDS = ("scipy", "r")


@dataclass
class CommandOutcome:
    returncode: int
    stdout: str
    stderr: str
    runtime_sec: float
    command: str


def _stderr_tail(stderr: str, n: int = 40) -> str:
    lines = stderr.strip().splitlines()
    if not lines:
        return ""
    return "\n".join(lines[-n:])


def _run_cmd(cmd: list[str], cwd: Path, timeout_sec: float | None = None) -> CommandOutcome:
    started = time.perf_counter()
    proc = subprocess.run(
        cmd,
        cwd=str(cwd),
        capture_output=True,
        text=True,
        timeout=timeout_sec,
    )
    runtime = time.perf_counter() - started
    return CommandOutcome(
        returncode=proc.returncode,
        stdout=proc.stdout,
        stderr=proc.stderr,
        runtime_sec=float(runtime),
        command=" ".join(cmd),
    )


def write_contingency_table(tables: np.ndarray, path: str | Path) -> Path:
    """Write one tab-separated ``a b c d`` row per table."""
    path = Path(path)
    t = np.asarray(tables, dtype=np.int64).reshape(-1, 4)
    with path.open("w", encoding="utf-8") as handle:
        for a, b, c, d in t:
            handle.write(f"{a}\t{b}\t{c}\t{d}\n")
    return path


def read_contingency_table(path: str | Path) -> np.ndarray:
    path = Path(path)
    rows: list[list[int]] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            fields = raw.split()
            if not fields:
                continue
            if len(fields) != 4:
                raise ValueError(f"Expected 4 counts at line {line_no} in {path}")
            rows.append([int(float(x)) for x in fields])
    return np.asarray(rows, dtype=np.int64).reshape(-1, 4)


def _parse_value(token: str) -> float:
    if token.strip().upper() in {"NA", "NAN"}:
        return 1.0
    value = float(token)
    return 1.0 if math.isnan(value) else value


def read_pq_table(path: str | Path) -> tuple[np.ndarray, np.ndarray]:
    """Read whitespace-separated ``p q`` rows; R's NA is read as 1."""
    path = Path(path)
    p_values: list[float] = []
    q_values: list[float] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            fields = raw.split()
            if not fields:
                continue
            if len(fields) < 2:
                raise BackendError(f"Malformed p/q line {line_no} in {path}")
            p_values.append(_parse_value(fields[0]))
            q_values.append(_parse_value(fields[1]))
    return np.asarray(p_values, dtype=float), np.asarray(q_values, dtype=float)


def write_pq_table(p_values: np.ndarray, q_values: np.ndarray, path: str | Path) -> Path:
    path = Path(path)
    with path.open("w", encoding="utf-8") as handle:
        for p, q in zip(p_values, q_values):
            handle.write(f"{float(p):.10g} {float(q):.10g}\n")
    return path


class SignificanceBackend(ABC):
    name = "backend"

    @abstractmethod
    def test_and_adjust(self, tables: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Return (p-values, q-values) for an ``(n, 4)`` array, in row order."""
        raise NotImplementedError


class ScipyBackend(SignificanceBackend):
    name = "scipy"

    def test_and_adjust(self, tables: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        p_values = chi_square_2x2(tables)
        p_values = np.minimum(p_values, 1.0)
        q_values = np.asarray(benjamini_hochberg(p_values.tolist()), dtype=float)
        return p_values, q_values


R_SCRIPT_TEMPLATE = """d = read.table('{table}')
f = apply(d, 1, function(x) {{chisq.test(rbind(c(x[1],x[2]), c(x[3],x[4])))}})
p = as.numeric(lapply(f, function(x) {{ x$p.value }}))
p[p > 1] = 1
q <- p.adjust(p, method="fdr")
write.table(cbind(p, q), file='{output}', col.names=F, row.names=F)
"""


class RScriptBackend(SignificanceBackend):
    """Runs ``chisq.test`` + ``p.adjust(method="fdr")`` through ``R CMD BATCH``.

    Every call works in its own temporary directory, removed afterwards.
    """

    name = "r"

    def __init__(self, r_bin: str | None = None, *, timeout_sec: float | None = None) -> None:
        self.r_bin = r_bin or os.environ.get(R_BIN_ENV) or "R"
        self.timeout_sec = timeout_sec

    def command(self, script: Path, rout: Path) -> list[str]:
        return [self.r_bin, "CMD", "BATCH", "--vanilla", str(script), str(rout)]

    def test_and_adjust(self, tables: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        t = np.asarray(tables).reshape(-1, 4)
        if t.shape[0] == 0:
            return np.empty(0, dtype=float), np.empty(0, dtype=float)

        workdir = Path(tempfile.mkdtemp(prefix="rtsim_qvalues_"))
        try:
            table_path = write_contingency_table(t, workdir / "fish_in.txt")
            output_path = workdir / "fish_out.txt"
            script_path = workdir / "fish.R"
            script_path.write_text(
                R_SCRIPT_TEMPLATE.format(
                    table=table_path.resolve().as_posix(),
                    output=output_path.resolve().as_posix(),
                ),
                encoding="utf-8",
            )
            cmd = self.command(script_path, workdir / "fish_rout.txt")
            logger.debug("Running %s", " ".join(cmd))
            try:
                outcome = _run_cmd(cmd, cwd=workdir, timeout_sec=self.timeout_sec)
            except subprocess.TimeoutExpired as exc:
                raise BackendError(
                    f"R backend timed out after {self.timeout_sec} s.", command=cmd
                ) from exc
            except OSError as exc:
                raise BackendError(f"Cannot run R backend: {exc}", command=cmd) from exc
            if outcome.returncode != 0:
                raise BackendError(
                    f"R backend failed with exit code {outcome.returncode}.",
                    command=cmd,
                    returncode=outcome.returncode,
                    stderr=_stderr_tail(outcome.stderr),
                )
            if not output_path.exists():
                raise BackendError(
                    "R backend produced no output table.",
                    command=cmd,
                    returncode=outcome.returncode,
                    stderr=_stderr_tail(outcome.stderr),
                )
            p_values, q_values = read_pq_table(output_path)
            if p_values.size != t.shape[0]:
                raise BackendError(
                    f"R backend returned {p_values.size} rows for {t.shape[0]} tables.",
                    command=cmd,
                    returncode=outcome.returncode,
                )
            logger.debug("R backend finished in %.2f s", outcome.runtime_sec)
            return p_values, q_values
        finally:
            shutil.rmtree(workdir, ignore_errors=True)


def get_backend(name: str = "scipy", *, timeout_sec: float | None = None) -> SignificanceBackend:
    key = name.strip().lower()
    if key == "scipy":
        return ScipyBackend()
    if key == "r":
        return RScriptBackend(timeout_sec=timeout_sec)
    raise ValueError(f"Unknown significance backend: {name}. Expected one of {BACKENDS}.")


def compute_q_values(
    control_s: Track,
    control_g: Track,
    sample_s: Track,
    sample_g: Track,
    *,
    backend: SignificanceBackend | None = None,
    n_jobs: int = 1,
    token: CancellationToken | None = None,
) -> Track:
    """Q-value track over every region with at least one non-zero count.

    The four tracks score the same regions. Counts are truncated to integers and
    q-values are floored at :data:`Q_VALUE_FLOOR`.
    """
    for other in (control_g, sample_s, sample_g):
        if not control_s.same_shape(other):
            raise TrackError("Region count tracks must share the same windows.")
    if backend is None:
        backend = ScipyBackend()
    if token is None:
        token = CancellationToken()

    chromosomes = control_s.chromosomes

    def _tables(chrom: str) -> tuple[np.ndarray, np.ndarray]:
        token.raise_if_cancelled()
        columns = [
            np.trunc(track.get(chrom).scores.astype(float)).astype(np.int64)
            for track in (sample_s, sample_g, control_s, control_g)
        ]
        table = np.column_stack(columns) if columns[0].size else np.empty((0, 4), dtype=np.int64)
        tested = np.any(table != 0, axis=1)
        return table[tested], tested

    parts = fan_out(chromosomes, _tables, n_jobs=n_jobs, token=token)
    tables = np.concatenate([table for table, _ in parts]) if parts else np.empty((0, 4), np.int64)
    logger.debug("Testing %d regions with the %s backend", tables.shape[0], backend.name)
    if tables.shape[0]:
        _, q_values = backend.test_and_adjust(tables)
    else:
        q_values = np.empty(0, dtype=float)
    token.raise_if_cancelled()
    if q_values.size != tables.shape[0]:
        raise BackendError(f"Backend returned {q_values.size} q-values for {tables.shape[0]} tables.")
    q_values = np.maximum(np.asarray(q_values, dtype=float), Q_VALUE_FLOOR)

    windows: dict[str, Windows] = {}
    offset = 0
    for chrom, (table, tested) in zip(chromosomes, parts):
        n = table.shape[0]
        regions = control_s.get(chrom).subset(tested)
        windows[chrom] = regions.with_scores(q_values[offset:offset + n])
        offset += n
    return Track(control_s.chrom_sizes, windows)


class ComputeQValues(Stage):
    name = "Compute Q-Values"
    step_weight = 1

    def __init__(self, backend: SignificanceBackend | None = None, *, n_jobs: int = 1) -> None:
        self.backend = backend or ScipyBackend()
        self.n_jobs = n_jobs

    def run(
        self,
        control_s: Track,
        control_g: Track,
        sample_s: Track,
        sample_g: Track,
        *,
        token: CancellationToken | None = None,
    ) -> Track:
        return compute_q_values(
            control_s,
            control_g,
            sample_s,
            sample_g,
            backend=self.backend,
            n_jobs=self.n_jobs,
            token=token,
        )
