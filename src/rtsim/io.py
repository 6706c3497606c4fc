from __future__ import annotations

from pathlib import Path
from typing import Mapping

import numpy as np
import pandas as pd

from .exceptions import TrackError
from .track import Track, Windows

TRACK_SUFFIXES = {
    ".bedgraph": "bedgraph",
    ".bg": "bedgraph",
    ".bed": "bed",
    ".tsv": "bedgraph",
    ".txt": "bedgraph",
}


def read_chrom_sizes(path: str | Path) -> dict[str, int]:
    """Read a two-column ``chrom length`` file, keeping file order."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Chromosome sizes file not found: {path}")
    sizes: dict[str, int] = {}
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            fields = line.split()
            if len(fields) < 2:
                raise ValueError(f"Malformed chromosome sizes line {line_no} in {path}")
            length = int(fields[1])
            if length <= 0:
                raise ValueError(f"Chromosome length must be > 0 at line {line_no} in {path}")
            sizes[fields[0]] = length
    if not sizes:
        raise ValueError(f"No chromosomes found in {path}")
    return sizes


def _track_type(path: Path, file_type: str | None) -> str:
    if file_type is not None:
        kind = file_type.lower()
        if kind not in {"bed", "bedgraph"}:
            raise ValueError(f"Unsupported track file type: {file_type}")
        return kind
    suffixes = [s.lower() for s in path.suffixes if s.lower() != ".gz"]
    if not suffixes or suffixes[-1] not in TRACK_SUFFIXES:
        raise ValueError(f"Cannot infer track type from file name: {path}")
    return TRACK_SUFFIXES[suffixes[-1]]


def read_track(
    path: str | Path,
    *,
    chrom_sizes: Mapping[str, int] | None = None,
    file_type: str | None = None,
) -> Track:
    """Read a bedGraph / BED count track into a dense :class:`Track`.

    Coordinates on disk are 0-based half-open. Repeated windows are summed and scores
    are stored with 32-bit precision. Without ``chrom_sizes`` each chromosome ends at
    its last window and chromosomes keep file order.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Track file not found: {path}")
    kind = _track_type(path, file_type)

    rows: list[tuple[str, int, int, float]] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            line = raw.strip()
            if not line or line.startswith(("#", "track", "browser")):
                continue
            fields = line.split()
            if kind == "bed" and len(fields) >= 5:
                score_field = fields[4]
            elif len(fields) >= 4:
                score_field = fields[3]
            else:
                raise ValueError(f"Malformed {kind} line {line_no} in {path}")
            try:
                start = int(fields[1]) + 1
                stop = int(fields[2]) + 1
                score = float(score_field)
            except ValueError as exc:
                raise ValueError(f"Malformed {kind} line {line_no} in {path}: {exc}") from exc
            rows.append((fields[0], start, stop, score))

    if not rows:
        raise ValueError(f"No windows found in {path}")
    df = pd.DataFrame(rows, columns=["chrom", "start", "stop", "score"])
    df = df.groupby(["chrom", "start", "stop"], sort=False, as_index=False)["score"].sum()

    if chrom_sizes is None:
        chrom_sizes = {
            str(chrom): int(stop) - 1
            for chrom, stop in df.groupby("chrom", sort=False)["stop"].max().items()
        }
    unknown = sorted(set(df["chrom"]) - set(chrom_sizes))
    if unknown:
        raise TrackError(f"Chromosomes missing from the genome: {', '.join(unknown)}")

    windows: dict[str, Windows] = {}
    for chrom, part in df.groupby("chrom", sort=False):
        part = part.sort_values(["start", "stop"])
        windows[str(chrom)] = Windows(
            part["start"].to_numpy(dtype=np.int64),
            part["stop"].to_numpy(dtype=np.int64),
            part["score"].to_numpy(dtype=float),
        )
    return Track(chrom_sizes, windows)


def read_tracks(
    s_path: str | Path,
    g1_path: str | Path,
    *,
    chrom_sizes: Mapping[str, int] | None = None,
) -> tuple[Track, Track]:
    """Read the S and G1 tracks onto one genome.

    Without ``chrom_sizes`` each chromosome ends at the last window of either file,
    in S file order followed by chromosomes only found in G1.
    """
    if chrom_sizes is not None:
        return read_track(s_path, chrom_sizes=chrom_sizes), read_track(g1_path, chrom_sizes=chrom_sizes)
    s_track = read_track(s_path)
    g_track = read_track(g1_path)
    sizes = s_track.chrom_sizes
    for chrom, size in g_track.chrom_sizes.items():
        sizes[chrom] = max(sizes.get(chrom, 0), size)
    return Track(sizes, dict(s_track)), Track(sizes, dict(g_track))


def write_bed(track: Track, path: str | Path) -> Path:
    """Dump a track as ``chrom, start-1, stop-1, strand placeholder, score``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for chrom, w in track:
            for start, stop, score in zip(w.starts, w.stops, w.scores):
                handle.write(f"{chrom}\t{int(start) - 1}\t{int(stop) - 1}\t-\t{float(score):.6g}\n")
    return path
