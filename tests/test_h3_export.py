import json

import h3.api.basic_int as h3int

from h3_export import PROJECT_CRS, export_geojson, index_to_gdf

PARENT = h3int.latlng_to_cell(45.0, 10.0, 8)
CHILD = h3int.cell_to_children(h3int.latlng_to_cell(40.0, -3.7, 8))[0]


def test_index_to_gdf():
    gdf = index_to_gdf([(PARENT, 7.0), (CHILD, 1.5)])

    assert list(gdf["h3"]) == [h3int.int_to_str(PARENT), h3int.int_to_str(CHILD)]
    assert list(gdf["resolution"]) == [8, 9]
    assert list(gdf["value"]) == [7.0, 1.5]
    assert gdf.crs.to_string() == PROJECT_CRS
    assert gdf.geometry.is_valid.all()
    assert gdf.geometry.iloc[0].contains(gdf.geometry.iloc[0].centroid)


def test_export_geojson(tmp_path):
    out = tmp_path / "web" / "hexes.geojson"
    assert export_geojson([(PARENT, 7.0), (CHILD, 1.5)], out, simplify_tolerance=0.0001) == 2

    features = json.loads(out.read_text())["features"]
    assert len(features) == 2
    assert {f["properties"]["value"] for f in features} == {7.0, 1.5}


def test_export_empty(tmp_path):
    out = tmp_path / "empty.geojson"
    assert export_geojson([], out) == 0
    assert json.loads(out.read_text()) == {"type": "FeatureCollection", "features": []}
