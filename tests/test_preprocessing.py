"""
Unit tests for preprocessing module.
"""

import numpy as np
import pandas as pd
import geopandas as gpd
import pytest
import rasterio
from shapely.geometry import box

from floodgrid.exceptions import FeatureMismatchError, InsufficientDataError
from floodgrid.preprocessing import DataPreprocessor, drop_incomplete, split_dataset


@pytest.fixture
def labelled_cells():
    """1,000 cells, 20% flooded, plus a few unlabelled ones."""
    n = 1000
    labels = np.zeros(n, dtype=bool)
    labels[::5] = True
    table = pd.DataFrame({
        "cell_id": np.arange(n + 5),
        "mean_elevation": np.linspace(1000, 1100, n + 5),
        "flood_label": pd.array(list(labels) + [None] * 5, dtype="boolean")
    })
    return table


# =============================================================================
# SPLIT
# =============================================================================

def test_split_is_a_partition_of_labelled_cells(labelled_cells):
    split = split_dataset(labelled_cells, train_fraction=0.70, seed=1)

    train_ids = set(split.train["cell_id"])
    test_ids = set(split.test["cell_id"])
    labelled_ids = set(labelled_cells.loc[labelled_cells["flood_label"].notna(), "cell_id"])

    assert train_ids.isdisjoint(test_ids)
    assert train_ids | test_ids == labelled_ids


def test_split_size(labelled_cells):
    split = split_dataset(labelled_cells, train_fraction=0.70, seed=1)

    assert len(split.train) == 700
    assert len(split.test) == 300


def test_split_is_stratified(labelled_cells):
    split = split_dataset(labelled_cells, train_fraction=0.70, seed=3)

    overall = 0.20
    for part in (split.train, split.test):
        share = part["flood_label"].astype(bool).mean()
        assert abs(share - overall) <= 0.02


def test_split_is_deterministic(labelled_cells):
    first = split_dataset(labelled_cells, seed=42)
    second = split_dataset(labelled_cells, seed=42)
    other = split_dataset(labelled_cells, seed=43)

    assert list(first.train["cell_id"]) == list(second.train["cell_id"])
    assert list(first.test["cell_id"]) == list(second.test["cell_id"])
    assert set(first.train["cell_id"]) != set(other.train["cell_id"])


def test_split_insufficient_minority():
    cells = pd.DataFrame({
        "cell_id": np.arange(50),
        "flood_label": pd.array([True] + [False] * 49, dtype="boolean")
    })
    with pytest.raises(InsufficientDataError):
        split_dataset(cells)


def test_split_single_class():
    cells = pd.DataFrame({
        "cell_id": np.arange(20),
        "flood_label": pd.array([False] * 20, dtype="boolean")
    })
    with pytest.raises(InsufficientDataError):
        split_dataset(cells)


@pytest.mark.parametrize("fraction", [0.0, 1.0, 1.5])
def test_split_rejects_bad_fraction(labelled_cells, fraction):
    with pytest.raises(ValueError):
        split_dataset(labelled_cells, train_fraction=fraction)


# =============================================================================
# INCOMPLETE CELLS
# =============================================================================

def test_drop_incomplete():
    cells = pd.DataFrame({
        "cell_id": [0, 1, 2, 3],
        "mean_elevation": [1.0, np.nan, 3.0, 4.0],
        "stream_distance": [10.0, 20.0, np.nan, 40.0]
    })

    complete, dropped = drop_incomplete(cells, ["mean_elevation", "stream_distance"])

    assert dropped == [1, 2]
    assert list(complete["cell_id"]) == [0, 3]
    assert len(cells) == 4


def test_drop_incomplete_missing_column():
    cells = pd.DataFrame({"cell_id": [0], "mean_elevation": [1.0]})
    with pytest.raises(FeatureMismatchError) as excinfo:
        drop_incomplete(cells, ["mean_elevation", "vegetation_index"])
    assert excinfo.value.feature == "vegetation_index"


# =============================================================================
# LOADING
# =============================================================================

@pytest.fixture
def geotiff(tmp_path, transform, crs):
    """Constant 10 x 10 GeoTIFF with one nodata pixel."""
    data = np.full((10, 10), 7.0, dtype=np.float32)
    data[0, 0] = -9999
    path = tmp_path / "dem.tif"
    with rasterio.open(
        path, "w", driver="GTiff", height=10, width=10, count=1,
        dtype="float32", crs=crs, transform=transform, nodata=-9999
    ) as dst:
        dst.write(data, 1)
    return path


def test_load_raster_same_crs(geotiff, crs):
    raster = DataPreprocessor(target_crs=crs).load_raster(geotiff)

    assert raster.shape == (10, 10)
    assert np.isnan(raster.values[0, 0])
    assert np.nanmean(raster.values) == 7.0
    assert raster.res == (10.0, 10.0)


def test_load_raster_resampled(geotiff, crs):
    raster = DataPreprocessor(target_crs=crs, target_resolution=20).load_raster(geotiff, resampling="nearest")

    assert raster.shape == (5, 5)
    assert raster.res == (20.0, 20.0)
    assert np.nanmax(raster.values) == 7.0


def test_load_raster_unknown_resampling(geotiff, crs):
    with pytest.raises(ValueError):
        DataPreprocessor(target_crs=crs).load_raster(geotiff, resampling="spline")


def test_load_vector_reprojects(tmp_path):
    path = tmp_path / "streams.gpkg"
    gpd.GeoDataFrame({"name": ["a"]}, geometry=[box(500000, 4400000, 500100, 4400100)],
                     crs="EPSG:26913").to_file(path, driver="GPKG")

    layer = DataPreprocessor(target_crs="EPSG:4326").load_vector(path)

    assert layer.crs == "EPSG:4326"
    assert len(layer) == 1
