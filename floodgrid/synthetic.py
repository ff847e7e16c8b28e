"""
Simulated City Layers
=====================

Creates in-memory source layers for a river city when the real Calgary or
Denver inputs are not available (demonstration runs, smoke tests):
- DEM with a sinuous river valley
- Stream network (main channel + tributaries)
- NIR / red reflectance bands
- Land-use polygons
- Flood-depth raster for one event
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import geopandas as gpd
from scipy import ndimage
from shapely.geometry import LineString, Polygon, box
from rasterio.transform import from_origin

from floodgrid.feature_engineering import CitySources
from floodgrid.utils import FeatureRaster, setup_logging, timer

logger = setup_logging()


@dataclass(frozen=True)
class SimulatedCity:
    name: str
    boundary: Polygon
    sources: CitySources


@timer
def simulate_city(
    name: str,
    bounds: Tuple[float, float, float, float],
    crs: str,
    resolution: float = 30.0,
    seed: int = 42,
    base_elevation: float = 1000.0,
    valley_slope: float = 0.02,
    flood_stage: float = 4.0,
    n_tributaries: int = 6
) -> SimulatedCity:
    """
    Simulate the source layers of a city crossed by one river.

    The terrain rises away from the channel at ``valley_slope`` (m/m), so
    the simulated flood (water ``flood_stage`` meters above the channel)
    covers a band along the river.

    Parameters
    ----------
    name : str
        City name, for logging
    bounds : tuple
        (minx, miny, maxx, maxy) in a projected CRS (meters)
    crs : str
        CRS of ``bounds``
    resolution : float
        Pixel size in meters
    seed : int
        Random seed for the terrain and reflectance noise

    Returns
    -------
    SimulatedCity
    """
    rng = np.random.default_rng(seed)
    minx, miny, maxx, maxy = bounds
    width = int(round((maxx - minx) / resolution))
    height = int(round((maxy - miny) / resolution))
    transform = from_origin(minx, maxy, resolution, resolution)

    logger.info(f"Simulating {name}: {width}x{height} pixels at {resolution:g} m")

    xx, yy = np.meshgrid(np.linspace(0, 1, width), np.linspace(0, 1, height))

    # River valley meanders down the middle of the extent
    valley_x = 0.5 + 0.1 * np.sin(yy * np.pi * 3)
    across = np.abs(xx - valley_x) * (maxx - minx)

    noise = ndimage.gaussian_filter(rng.normal(0, 1.5, (height, width)), sigma=3)
    height_above_channel = np.maximum(valley_slope * across + noise, 0)
    downstream_fall = 40.0 * (1 - yy)
    dem = (base_elevation + downstream_fall + height_above_channel).astype(np.float32)

    depth = np.clip(flood_stage - height_above_channel, 0, None).astype(np.float32)

    # Vegetation greener away from the river corridor
    ndvi = np.clip(0.15 + 0.5 * np.tanh(across / 1500.0) + rng.normal(0, 0.08, (height, width)), -0.9, 0.9)
    red = rng.uniform(0.05, 0.15, (height, width))
    nir = red * (1 + ndvi) / (1 - ndvi)

    # Main channel and tributaries
    n_points = 60
    t = np.linspace(0, 1, n_points)
    channel_x = minx + (0.5 + 0.1 * np.sin(t * np.pi * 3)) * (maxx - minx)
    channel_y = maxy - t * (maxy - miny)
    main_river = LineString(zip(channel_x, channel_y))

    tributaries = []
    for i in range(n_tributaries):
        k = int((i + 1) / (n_tributaries + 1) * (n_points - 1))
        direction = 1 if i % 2 == 0 else -1
        end_x = channel_x[k] + direction * rng.uniform(0.15, 0.35) * (maxx - minx)
        end_y = channel_y[k] + rng.uniform(-0.05, 0.05) * (maxy - miny)
        tributaries.append(LineString([(end_x, end_y), (channel_x[k], channel_y[k])]))

    streams = gpd.GeoDataFrame(
        {
            "name": [f"{name} River"] + [f"Tributary {i + 1}" for i in range(len(tributaries))],
            "order": [1] + [2] * len(tributaries),
        },
        geometry=[main_river] + tributaries,
        crs=crs
    )

    # Riverside parks, farmland on the outskirts, built city in between
    extent = box(minx, miny, maxx, maxy)
    span = maxx - minx
    land_use = gpd.GeoDataFrame(
        {"landuse": ["park", "agriculture", "agriculture", "residential"]},
        geometry=[
            main_river.buffer(120).intersection(extent),
            box(minx, miny, minx + 0.12 * span, maxy),
            box(maxx - 0.12 * span, miny, maxx, maxy),
            box(minx + 0.12 * span, miny, maxx - 0.12 * span, maxy),
        ],
        crs=crs
    )

    sources = CitySources(
        dem=FeatureRaster(dem, transform, crs),
        streams=streams,
        nir=FeatureRaster(nir, transform, crs),
        red=FeatureRaster(red, transform, crs),
        land_use=land_use,
        flood_extent=FeatureRaster(depth, transform, crs)
    )

    flooded = np.count_nonzero(depth > 0) / depth.size * 100
    logger.info(f"  Elevation: {dem.min():.0f} - {dem.max():.0f} m, flooded pixels: {flooded:.1f}%")

    return SimulatedCity(name, extent, sources)
