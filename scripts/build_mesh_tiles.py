from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

PACKAGE_SRC = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(PACKAGE_SRC))

from terrain_mesh.config import (  # noqa: E402
    DEFAULT_MESH_TILER_CONFIG_ENV,
    MeshTilerConfig,
    get_mesh_tiler_config,
)
from terrain_mesh.dem_source import DemMosaic  # noqa: E402
from terrain_mesh.mesh_tiler import MeshTiler  # noqa: E402
from terrain_mesh.scheduler import MeshTileScheduler, build_jobs  # noqa: E402
from terrain_mesh.tile_pyramid import GeoRect  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build simplified terrain tile meshes (EPSG:4326/TMS) from DEM GeoTIFFs."
    )
    parser.add_argument(
        "--dem-path",
        type=Path,
        action="append",
        required=True,
        help="EPSG:4326 DEM GeoTIFF (repeat for a mosaic of 1-degree tiles)",
    )
    parser.add_argument(
        "--bbox",
        type=float,
        nargs=4,
        metavar=("WEST", "SOUTH", "EAST", "NORTH"),
        default=None,
        help="Region to build (default: the DEM bounds)",
    )
    parser.add_argument("--min-zoom", type=int, default=None, help="Override config min_zoom")
    parser.add_argument("--max-zoom", type=int, default=None, help="Override config max_zoom")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="mesh-tiler.yaml (default: $TERRAIN_MESH_CONFIG, else built-in defaults)",
    )
    parser.add_argument(
        "--dry-run",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Print planned tile counts without building meshes",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser


def _load_config(args: argparse.Namespace) -> MeshTilerConfig:
    if args.config:
        config = get_mesh_tiler_config(args.config)
    elif os.environ.get(DEFAULT_MESH_TILER_CONFIG_ENV):
        config = get_mesh_tiler_config()
    else:
        config = MeshTilerConfig()
    overrides = {}
    if args.min_zoom is not None:
        overrides["min_zoom"] = int(args.min_zoom)
    if args.max_zoom is not None:
        overrides["max_zoom"] = int(args.max_zoom)
    if overrides:
        config = MeshTilerConfig.model_validate({**config.model_dump(), **overrides})
    return config


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=str(args.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        config = _load_config(args)
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc

    dem = DemMosaic.from_geotiffs(args.dem_path, method=config.sampling)
    rect = dem.bounds
    if args.bbox is not None:
        rect = GeoRect(
            west=float(args.bbox[0]),
            south=float(args.bbox[1]),
            east=float(args.bbox[2]),
            north=float(args.bbox[3]),
        )

    jobs = build_jobs(rect, min_zoom=config.min_zoom, max_zoom=config.max_zoom)
    if args.dry_run:
        print(
            json.dumps(
                {
                    "bbox": [rect.west, rect.south, rect.east, rect.north],
                    "min_zoom": config.min_zoom,
                    "max_zoom": config.max_zoom,
                    "tile_size": config.tile_size,
                    "tile_count": len(jobs),
                },
                ensure_ascii=False,
                indent=2,
                sort_keys=True,
            )
        )
        return 0

    tiler = MeshTiler.for_dataset(dem, config=config)
    scheduler = MeshTileScheduler.from_config(config.scheduler, tiler=tiler, dataset=dem)
    summary = scheduler.run(jobs)

    print(
        json.dumps(
            {
                "bbox": [rect.west, rect.south, rect.east, rect.north],
                "min_zoom": config.min_zoom,
                "max_zoom": config.max_zoom,
                "tile_size": config.tile_size,
                "total_jobs": summary.total_jobs,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "duration_s": summary.duration_s,
                "total_vertices": summary.total_vertices,
                "total_triangles": summary.total_triangles,
                "heights_cache": tiler.cache.stats(),
                "failures": [
                    {"tile": r.job.key(), "error": r.error}
                    for r in summary.results
                    if r.status != "success"
                ],
            },
            ensure_ascii=False,
            indent=2,
            sort_keys=True,
        )
    )
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
