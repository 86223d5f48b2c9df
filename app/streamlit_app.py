from __future__ import annotations

from pathlib import Path

import folium
import geopandas as gpd
import streamlit as st
from streamlit_folium import st_folium

from h3_combine import load_index
from h3_export import index_to_gdf

DEFAULT_PATH = Path("data/processed/gpw.res8.h3")


st.set_page_config(
    page_title="Gridded Population on H3",
    layout="wide",
)

st.title("Gridded Population on H3")
with st.expander("About this view"):
    st.markdown(
        """
        **What this app shows**

        A combined H3 file produced by `gpwh3 combine`. Each hexagon holds the
        population of the grid cells it covers. Dense, fully covered areas are
        compacted to the target resolution; sparse areas keep finer cells.

        **Value per hexagon**

        Grid samples are split evenly across the hexagons whose centres fall
        inside each grid cell, then summed over complete groups of seven
        children. It is a count, not a density.
        """
    )

path = Path(st.sidebar.text_input("Combined H3 file", str(DEFAULT_PATH)))


# -------- Load data --------
@st.cache_data(show_spinner=True)
def load_hexes(path_str: str) -> gpd.GeoDataFrame:
    with open(path_str, "rb") as f:
        index = load_index(f)
    return index_to_gdf(index.items())


if not path.exists():
    st.warning(f"File not found: {path}")
    st.stop()

hexes = load_hexes(str(path))

# -------- Sidebar filters --------
st.sidebar.header("Filters")

resolutions = sorted(hexes["resolution"].unique().tolist())
selected_res = st.sidebar.multiselect("Resolution", options=resolutions, default=resolutions)

max_value = float(max(1.0, hexes["value"].max())) if len(hexes) else 1.0
min_value = st.sidebar.slider("Minimum value", 0.0, max_value, 0.0)

top_n = st.sidebar.slider("Show top N hexagons by value (0 = all)", 0, 5000, 1000, 100)

filtered = hexes[(hexes["resolution"].isin(selected_res)) & (hexes["value"] >= min_value)].copy()

if top_n > 0 and len(filtered) > top_n:
    filtered = filtered.nlargest(top_n, "value").copy()

# -------- Metrics summary --------
col1, col2, col3 = st.columns(3)
col1.metric("Hexagons (filtered)", f"{len(filtered):,}")
col2.metric("Total value", f"{filtered['value'].sum():,.0f}" if len(filtered) else "—")
col3.metric("Max value", f"{filtered['value'].max():,.1f}" if len(filtered) else "—")

st.divider()

# -------- Map --------
if len(filtered) > 0:
    minx, miny, maxx, maxy = filtered.total_bounds
    m = folium.Map(location=[(miny + maxy) / 2, (minx + maxx) / 2], zoom_start=6, tiles="CartoDB positron")

    q = filtered["value"].quantile([0.2, 0.4, 0.6, 0.8]).tolist()

    def style_fn(feat):
        v = feat["properties"].get("value", 0.0) or 0.0
        if v <= q[0]:
            return {"weight": 0.3, "fillOpacity": 0.15}
        if v <= q[1]:
            return {"weight": 0.3, "fillOpacity": 0.30}
        if v <= q[2]:
            return {"weight": 0.4, "fillOpacity": 0.45}
        if v <= q[3]:
            return {"weight": 0.5, "fillOpacity": 0.60}
        return {"weight": 0.6, "fillOpacity": 0.75}

    tooltip = folium.GeoJsonTooltip(
        fields=["h3", "resolution", "value"],
        aliases=["H3", "Resolution", "Value"],
        localize=True,
        sticky=False,
        labels=True,
    )

    folium.GeoJson(
        filtered,
        name="Population (H3)",
        tooltip=tooltip,
        style_function=style_fn,
    ).add_to(m)
    folium.LayerControl(collapsed=True).add_to(m)

    st.subheader("Map")
    st.write("Hover a hexagon to see its value. Use the sidebar to filter.")
    st_folium(m, use_container_width=True, height=650)
else:
    st.info("No hexagons match the filters.")

st.divider()

st.subheader("Sample of filtered data")
st.dataframe(
    filtered[["h3", "resolution", "value"]].head(50),
    use_container_width=True,
)
