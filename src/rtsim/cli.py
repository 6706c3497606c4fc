from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from . import __version__
from ._logging import get_logger, setup_logging

logger = get_logger(__name__)


def _parse_int_list(raw: str) -> list[int]:
    return [int(x.strip()) for x in raw.split(",") if x.strip()]


def _parse_float_list(raw: str) -> list[float]:
    return [float(x.strip()) for x in raw.split(",") if x.strip()]


def _write_json_file(path: str | Path, payload: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.write("\n")


def _emit_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _add_input_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-s", "--s-file", required=True, metavar="TRACK", help="S phase read counts.")
    parser.add_argument("-g1", "--g1-file", required=True, metavar="TRACK", help="G1 phase read counts.")
    parser.add_argument("--chrom-sizes", default=None, metavar="FILE")
    parser.add_argument("--config", default=None, metavar="YAML|JSON")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--jobs", type=int, default=None, help="Worker threads per stage.")
    parser.add_argument("--backend", choices=["scipy", "r"], default=None)
    parser.add_argument("--backend-timeout", type=float, default=None, metavar="SEC")
    parser.add_argument(
        "--no-island-finder",
        action="store_true",
        help="Call regions by direct thresholding of the difference track.",
    )
    parser.add_argument("--print-intermediate", action="store_true", help="Write intermediate BED files.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rtsim",
        description="rtsim: replication-timing island simulation and detection accuracy sweeps.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages.")
    parser.add_argument("--log-file", default=None, metavar="PATH")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # run
    run = subparsers.add_parser("run", help="Sweep island sizes x percentages x read-increase factors.")
    _add_input_args(run)
    run.add_argument("--out", "-o", required=True, metavar="DIR")
    run.add_argument("--island-sizes", default=None, metavar="N,N,...")
    run.add_argument("--percentages", default=None, metavar="P,P,...")
    run.add_argument("--read-increase-factors", default=None, metavar="F,F,...")
    run.add_argument("--plot", action="store_true", help="Also write FP/FN rate heatmaps.")

    # single
    single = subparsers.add_parser("single", help="Run one simulation and print its result as JSON.")
    _add_input_args(single)
    single.add_argument("--island-size", type=int, required=True)
    single.add_argument("--percentage", type=float, required=True)
    single.add_argument("--read-increase-factor", type=int, default=1)
    single.add_argument("--out", "-o", default=None, metavar="DIR")
    single.add_argument("--output-json", default=None, metavar="PATH")

    # qvalues
    qvalues = subparsers.add_parser("qvalues", help="Test an 'a b c d' contingency file, write 'p q' rows.")
    qvalues.add_argument("--input", required=True, metavar="TABLE")
    qvalues.add_argument("--output", required=True, metavar="PQ")
    qvalues.add_argument("--backend", choices=["scipy", "r"], default="scipy")
    qvalues.add_argument("--backend-timeout", type=float, default=None, metavar="SEC")
    return parser


def _load_inputs(args: argparse.Namespace):
    from .config import SimulationConfig, SweepGrid, load_config, with_overrides
    from .io import read_chrom_sizes, read_tracks

    if args.config:
        config, grid = load_config(args.config)
    else:
        config, grid = SimulationConfig(), SweepGrid()
    config = with_overrides(
        config,
        seed=args.seed,
        n_jobs=args.jobs,
        backend=args.backend,
        backend_timeout_sec=args.backend_timeout,
        print_files=True if args.print_intermediate else None,
        use_island_finder=False if args.no_island_finder else None,
    )

    chrom_sizes = read_chrom_sizes(args.chrom_sizes) if args.chrom_sizes else None
    s_track, g_track = read_tracks(args.s_file, args.g1_file, chrom_sizes=chrom_sizes)
    if not s_track.same_shape(g_track):
        # pad both tracks onto the same windows
        s_track, g_track = _align_tracks(s_track, g_track)
    logger.info(
        "Loaded %d S windows and %d G1 windows on %d chromosomes",
        s_track.window_count,
        g_track.window_count,
        len(s_track.chromosomes),
    )
    return config, grid, s_track, g_track


def _align_tracks(s_track, g_track):
    import numpy as np

    from .track import Track, Windows

    def _aligned(chrom: str) -> tuple[Windows, Windows]:
        s = s_track.get(chrom)
        g = g_track.get(chrom)
        keys = sorted(
            set(zip(s.starts.tolist(), s.stops.tolist())) | set(zip(g.starts.tolist(), g.stops.tolist()))
        )
        starts = np.array([k[0] for k in keys], dtype=np.int64)
        stops = np.array([k[1] for k in keys], dtype=np.int64)

        def _scores(w: Windows) -> np.ndarray:
            lookup = dict(zip(zip(w.starts.tolist(), w.stops.tolist()), w.scores.tolist()))
            return np.array([lookup.get(k, 0.0) for k in keys], dtype=float)

        return Windows(starts, stops, _scores(s)), Windows(starts, stops, _scores(g))

    parts = {chrom: _aligned(chrom) for chrom in s_track.chromosomes}
    sizes = s_track.chrom_sizes
    return (
        Track(sizes, {c: p[0] for c, p in parts.items()}),
        Track(sizes, {c: p[1] for c, p in parts.items()}),
    )


def _cmd_run(args: argparse.Namespace) -> int:
    from dataclasses import replace

    from .batch import run_sweep, summary_tables, write_results_tsv, write_summary

    config, grid, s_track, g_track = _load_inputs(args)
    changes: dict[str, Any] = {}
    if args.island_sizes:
        changes["island_sizes"] = _parse_int_list(args.island_sizes)
    if args.percentages:
        changes["percentages"] = _parse_float_list(args.percentages)
    if args.read_increase_factors:
        changes["read_increase_factors"] = _parse_int_list(args.read_increase_factors)
    if changes:
        grid = replace(grid, **changes)

    outdir = Path(args.out)
    outdir.mkdir(parents=True, exist_ok=True)
    results = run_sweep(s_track, g_track, grid, config=config, output_dir=outdir)

    summary = write_summary(outdir / "simulation_summary.tsv", summary_tables(results, grid))
    flat = write_results_tsv(outdir / "simulation_results.tsv", results)
    _write_json_file(outdir / "run_config.json", {"simulation": config.to_dict(), "grid": grid.to_dict()})
    print(f"Summary: {summary.resolve()}")
    print(f"Results: {flat.resolve()}")
    if args.plot:
        from .plots import plot_rate_heatmaps

        pdf = plot_rate_heatmaps(results, grid, outdir / "rate_heatmaps.pdf")
        print(f"Heatmaps: {pdf.resolve()}")
    return 0


def _cmd_single(args: argparse.Namespace) -> int:
    from .pipeline import run_single_simulation

    config, _, s_track, g_track = _load_inputs(args)
    result = run_single_simulation(
        s_track,
        g_track,
        island_size=args.island_size,
        percentage=args.percentage,
        read_increase_factor=args.read_increase_factor,
        config=config,
        output_dir=args.out,
    )
    payload = result.to_dict()
    if args.output_json:
        _write_json_file(args.output_json, payload)
    _emit_json(payload)
    return 0


def _cmd_qvalues(args: argparse.Namespace) -> int:
    from .significance import get_backend, read_contingency_table, write_pq_table
    from .stats import Q_VALUE_FLOOR

    tables = read_contingency_table(args.input)
    backend = get_backend(args.backend, timeout_sec=args.backend_timeout)
    p_values, q_values = backend.test_and_adjust(tables)
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    write_pq_table(p_values, [max(float(q), Q_VALUE_FLOOR) for q in q_values], out)
    print(f"Q-values: {out.resolve()}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    try:
        if args.command == "run":
            return _cmd_run(args)
        if args.command == "single":
            return _cmd_single(args)
        if args.command == "qvalues":
            return _cmd_qvalues(args)
    except KeyboardInterrupt:
        parser.exit(status=130, message="error: interrupted\n")
    except Exception as exc:
        logger.error("Run failed: %s", exc, exc_info=True)
        parser.exit(status=2, message=f"error: {exc}\n")
    parser.exit(status=2, message="error: unknown command\n")
    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
