from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import geopandas as gpd
import h3.api.basic_int as h3int
from shapely.geometry import Polygon

logger = logging.getLogger(__name__)

PROJECT_CRS = "EPSG:4326"


def _cell_polygon(cell: int) -> Polygon:
    boundary = h3int.cell_to_boundary(cell)  # list of (lat, lon)
    return Polygon([(lon, lat) for lat, lon in boundary])


def index_to_gdf(records: Iterable[tuple[int, float]]) -> gpd.GeoDataFrame:
    """
    Converts (cell, value) pairs to hexagon polygons in WGS84.
    """
    cells, values = [], []
    for cell, value in records:
        cells.append(cell)
        values.append(value)

    return gpd.GeoDataFrame(
        {
            "h3": [h3int.int_to_str(c) for c in cells],
            "resolution": [h3int.get_resolution(c) for c in cells],
            "value": values,
            "geometry": [_cell_polygon(c) for c in cells],
        },
        geometry="geometry",
        crs=PROJECT_CRS,
    )


def export_geojson(
    records: Iterable[tuple[int, float]],
    out_path: str | Path,
    simplify_tolerance: float = 0.0,
) -> int:
    """
    Writes the pairs as a GeoJSON FeatureCollection; returns the hexagon count.
    A positive tolerance simplifies the hexagons for lighter web maps.
    """
    out_path = Path(out_path)
    gdf = index_to_gdf(records)
    if simplify_tolerance > 0 and len(gdf):
        gdf["geometry"] = gdf.geometry.simplify(tolerance=simplify_tolerance, preserve_topology=True)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    if len(gdf):
        gdf.to_file(out_path, driver="GeoJSON")
    else:
        # OGR drivers refuse to write a frame without features
        out_path.write_text('{"type": "FeatureCollection", "features": []}')
    logger.info(f"Saved {len(gdf):,} hexagons to {out_path}")
    return len(gdf)
