from __future__ import annotations

import argparse
import logging
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from tqdm import tqdm

from gpw_ascii import read_grid
from gpw_errors import GpwH3Error, IoError, PathError
from gpw_logging import setup_logging
from gpw_settings import (
    DEFAULT_COMBINE_RESOLUTION,
    DEFAULT_TESSELLATE_RESOLUTION,
    CombineSettings,
    TessellateSettings,
)
from h3_combine import combine_streams, load_index, make_rule, write_index
from h3_export import export_geojson
from h3_tessellate import gen_to_disk
from h3tess_io import H3TESS_SUFFIX, RECORD_SIZE, read_records

logger = logging.getLogger(__name__)


def tess_output_path(outdir: str | Path, src_path: str | Path, resolution: int) -> Path:
    """
    <outdir>/<source name, last extension replaced>.res<R>.h3tess
    """
    name = Path(src_path).name
    if name in ("", ".", ".."):
        raise PathError(f"Not a file: {src_path}")
    return Path(outdir) / f"{Path(name).stem}.res{resolution}{H3TESS_SUFFIX}"


def _open(stack: ExitStack, path: Path, mode: str):
    try:
        return stack.enter_context(open(path, mode))
    except OSError as e:
        raise IoError(f"Cannot open {path}: {e}") from e


def _progress_bar(desc: str, total: int) -> tqdm:
    return tqdm(total=total, desc=desc, unit="cell", disable=None)


def tessellate(sources: list[Path], outdir: Path, settings: TessellateSettings) -> None:
    with ExitStack() as stack:
        # Open every source and create every destination first; fail fast.
        files = []
        for src_path in sources:
            dst_path = tess_output_path(outdir, src_path, settings.resolution)
            src = _open(stack, src_path, "r")
            dst = _open(stack, dst_path, "wb")
            files.append((src_path, src, dst_path, dst))

        for n, (src_path, src, dst_path, dst) in enumerate(files, start=1):
            logger.info(f"[{n}/{len(files)}] Reading grid {src_path}")
            grid = read_grid(src)
            with _progress_bar(f"({n}/{len(files)}) {src_path.name}", len(grid)) as bar:
                summary = gen_to_disk(
                    grid,
                    dst,
                    settings,
                    report_progress=lambda current, total: bar.update(current - bar.n),
                )
            logger.info(f"[{n}/{len(files)}] {summary.records:,} records -> {dst_path}")


def combine(sources: list[Path], output: Path, settings: CombineSettings) -> None:
    with ExitStack() as stack:
        # Open every source first; fail fast.
        streams = [_open(stack, path, "rb") for path in sources]
        out = _open(stack, output, "wb")

        total = sum(path.stat().st_size for path in sources) // RECORD_SIZE
        rule = make_rule(settings.reducer, settings.resolution)
        logger.info(
            f"Combining {len(sources)} sources ({total:,} records) at resolution "
            f"{settings.resolution} with {settings.reducer} reducer"
        )
        with _progress_bar("combine", total) as bar:
            index = combine_streams(
                streams,
                rule,
                report_progress=lambda current, _total: bar.update(current - bar.n),
                total=total,
            )

        count = write_index(index, out)
        logger.info(f"Wrote {count:,} cells at resolutions {index.resolutions()} -> {output}")


def export(source: Path, output: Path, simplify: float) -> None:
    with ExitStack() as stack:
        src = _open(stack, source, "rb")
        export_geojson(read_records(src, validate=True), output, simplify_tolerance=simplify)


def lookup(source: Path, lat: float, lng: float) -> Optional[tuple[int, float]]:
    with ExitStack() as stack:
        index = load_index(_open(stack, source, "rb"))
    hit = index.lookup(lat, lng)
    if hit is None:
        print(f"No cell covers ({lat}, {lng})")
    else:
        cell, value = hit
        print(f"{cell:x}\t{value}")
    return hit


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpwh3",
        description="Tessellate gridded population (GPW ASCII) into H3 cells and combine them.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    tess = sub.add_parser(
        "tessellate",
        help="Tessellate GPW ASCII grids into h3tess (cell, value) files",
    )
    tess.add_argument("-r", "--resolution", type=int, default=DEFAULT_TESSELLATE_RESOLUTION,
                      help=f"Intermediate H3 resolution (default: {DEFAULT_TESSELLATE_RESOLUTION})")
    tess.add_argument("sources", nargs="+", type=Path, help="Input GPW ASCII files")
    tess.add_argument("-o", "--outdir", type=Path, required=True, help="Output directory")
    tess.add_argument("-w", "--workers", type=int, default=None, help="Worker count (default: all CPUs)")
    tess.add_argument("--executor", choices=["process", "thread"], default="process")

    comb = sub.add_parser(
        "combine",
        help="Combine h3tess files into one compacted file at a target resolution",
    )
    comb.add_argument("-r", "--resolution", type=int, default=DEFAULT_COMBINE_RESOLUTION,
                      help=f"Target H3 resolution (default: {DEFAULT_COMBINE_RESOLUTION})")
    comb.add_argument("sources", nargs="+", type=Path, help="h3tess source files")
    comb.add_argument("-o", "--output", type=Path, required=True, help="Output file")
    comb.add_argument("--reducer", choices=["sum", "mean", "max"], default="sum",
                      help="How a complete group of children is merged (default: sum)")

    exp = sub.add_parser("export", help="Write an h3tess file as GeoJSON hexagons")
    exp.add_argument("source", type=Path)
    exp.add_argument("-o", "--output", type=Path, required=True)
    exp.add_argument("--simplify", type=float, default=0.0, help="Simplify tolerance in degrees")

    look = sub.add_parser("lookup", help="Print the cell and value covering a point")
    look.add_argument("source", type=Path)
    look.add_argument("lat", type=float)
    look.add_argument("lng", type=float)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.command == "tessellate":
            options = {"resolution": args.resolution, "executor": args.executor}
            if args.workers is not None:
                options["workers"] = args.workers
            tessellate(args.sources, args.outdir, TessellateSettings(**options))
        elif args.command == "combine":
            settings = CombineSettings(resolution=args.resolution, reducer=args.reducer)
            combine(args.sources, args.output, settings)
        elif args.command == "export":
            export(args.source, args.output, args.simplify)
        elif args.command == "lookup":
            lookup(args.source, args.lat, args.lng)
    except ValidationError as e:
        logger.error(f"Invalid options: {e}")
        return 2
    except GpwH3Error as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(f"I/O error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
