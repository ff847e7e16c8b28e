"""
Shared fixtures: a 100 m x 100 m test area split into four 50 m cells,
with 10 m rasters covering it exactly.
"""

import numpy as np
import pandas as pd
import geopandas as gpd
import pytest
from rasterio.transform import from_origin
from shapely.geometry import LineString, box

from floodgrid.grid import create_fishnet
from floodgrid.utils import FeatureRaster

CRS = "EPSG:3776"


@pytest.fixture
def crs():
    return CRS


@pytest.fixture
def transform():
    """10 m pixels, north-west corner at (0, 100)."""
    return from_origin(0, 100, 10, 10)


@pytest.fixture
def make_raster(transform):
    """Factory building a FeatureRaster on the 10 x 10 test grid."""
    def _make(values, nodata=None):
        return FeatureRaster(np.asarray(values, dtype=float), transform, CRS, nodata)
    return _make


@pytest.fixture
def cells():
    """Four 50 m cells: 0 top-left, 1 top-right, 2 bottom-left, 3 bottom-right."""
    return create_fishnet(box(0, 0, 100, 100), cell_size=50, crs=CRS)


@pytest.fixture
def quadrant_values():
    """10 x 10 array whose value is the id of the 50 m quadrant each pixel is in."""
    values = np.zeros((10, 10))
    values[:5, 5:] = 1
    values[5:, :5] = 2
    values[5:, 5:] = 3
    return values


@pytest.fixture
def streams():
    """One vertical stream along x = 25."""
    return gpd.GeoDataFrame({"name": ["creek"]}, geometry=[LineString([(25, 0), (25, 100)])], crs=CRS)


@pytest.fixture
def land_use():
    """A park inside the top-right cell and a residential block on the bottom-left cell."""
    return gpd.GeoDataFrame(
        {"landuse": ["park", "residential"]},
        geometry=[box(60, 60, 90, 90), box(0, 0, 50, 50)],
        crs=CRS
    )


def simulate_cells(n, coefficients, intercept=0.0, seed=0):
    """
    Labelled cell table drawn from a logistic model.

    ``coefficients`` maps feature name -> (coefficient, feature scale);
    features are standard normal times their scale.
    """
    rng = np.random.default_rng(seed)
    data = {"cell_id": np.arange(n)}
    logit = np.full(n, intercept)
    for name, (coef, scale) in coefficients.items():
        z = rng.standard_normal(n)
        data[name] = z * scale
        logit += coef * z
    probability = 1 / (1 + np.exp(-logit))
    data["flood_label"] = pd.array(rng.random(n) < probability, dtype="boolean")
    return pd.DataFrame(data)


@pytest.fixture
def logistic_cells():
    """Factory for labelled cell tables drawn from a logistic model."""
    return simulate_cells
