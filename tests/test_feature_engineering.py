"""
Unit tests for feature_engineering module.
"""

import numpy as np
import pandas as pd
import geopandas as gpd
import pytest
from rasterio.transform import from_origin

from floodgrid.exceptions import NoCoverageError
from floodgrid.feature_engineering import (
    FEATURE_NAMES,
    CitySources,
    compute_flow_accumulation,
    compute_ndvi,
    distance_to_nearest_stream,
    extract_features,
    is_built_up,
    max_flow_accumulation,
    mean_elevation,
    vegetation_index
)
from floodgrid.utils import FeatureRaster


# =============================================================================
# PIXEL OVERLAP
# =============================================================================

def test_pixels_touching_edge_are_excluded():
    """A box aligned with one 30 m pixel picks that pixel only."""
    raster = FeatureRaster(np.arange(16, dtype=float).reshape(4, 4), from_origin(0, 120, 30, 30))

    assert list(raster.values_within((30, 90, 60, 120))) == [1.0]
    assert sorted(raster.values_within((0, 70, 50, 120))) == [0.0, 1.0, 4.0, 5.0]


def test_rotated_raster_rejected():
    from affine import Affine
    with pytest.raises(ValueError):
        FeatureRaster(np.zeros((2, 2)), Affine(10, 1, 0, 0, -10, 100))


# =============================================================================
# RASTER FEATURES
# =============================================================================

def test_mean_elevation_per_quadrant(cells, make_raster, quadrant_values):
    values = mean_elevation(cells, make_raster(quadrant_values * 10 + 1000))

    assert values.name == "mean_elevation"
    assert list(values.index) == [0, 1, 2, 3]
    assert list(values) == [1000.0, 1010.0, 1020.0, 1030.0]


def test_mean_elevation_ignores_nodata(cells, make_raster, quadrant_values):
    dem = quadrant_values.copy()
    dem[0, 0] = -9999
    dem[0, 1] = 50

    values = mean_elevation(cells, make_raster(dem, nodata=-9999))

    assert values[0] == pytest.approx(50 / 24)


def test_mean_elevation_uncovered_cell(cells, make_raster, quadrant_values):
    """Uncovered cells are NaN by default and an error when strict."""
    dem = quadrant_values.copy()
    dem[:5, :5] = np.nan
    raster = make_raster(dem)

    values = mean_elevation(cells, raster)
    assert np.isnan(values[0])
    assert values[1:].notna().all()

    with pytest.raises(NoCoverageError) as excinfo:
        mean_elevation(cells, raster, strict=True)
    assert excinfo.value.feature == "mean_elevation"
    assert excinfo.value.cell_ids == [0]


def test_raster_crs_must_match_grid(cells, transform, quadrant_values):
    raster = FeatureRaster(quadrant_values, transform, "EPSG:26913")
    with pytest.raises(ValueError):
        mean_elevation(cells, raster)


def test_max_flow_accumulation(cells, make_raster, quadrant_values):
    flow = quadrant_values.copy()
    flow[2, 3] = 250

    values = max_flow_accumulation(cells, make_raster(flow))

    assert list(values) == [250.0, 1.0, 2.0, 3.0]


def test_compute_flow_accumulation_on_plane(transform):
    """On a plane tilted east every pixel drains east; counts grow along rows."""
    dem = FeatureRaster(np.tile(100.0 - np.arange(10), (10, 1)), transform)

    flow = compute_flow_accumulation(dem, fill_sinks=False)

    np.testing.assert_array_equal(flow.values, np.tile(np.arange(10, dtype=float), (10, 1)))
    assert flow.transform == dem.transform


def test_compute_flow_accumulation_keeps_nodata(transform):
    values = np.tile(100.0 - np.arange(10), (10, 1))
    values[0, 0] = np.nan

    flow = compute_flow_accumulation(FeatureRaster(values, transform), fill_sinks=False)

    assert np.isnan(flow.values[0, 0])
    assert flow.values[0, 9] == 8
    assert np.all(flow.values[~np.isnan(flow.values)] >= 0)


# =============================================================================
# VEGETATION INDEX
# =============================================================================

def test_ndvi_clamped_and_zero_denominator(make_raster):
    nir = np.full((10, 10), 0.6)
    red = np.full((10, 10), 0.2)
    nir[0, 0], red[0, 0] = -1.0, 0.5
    nir[0, 1], red[0, 1] = 0.0, 0.0

    ndvi = compute_ndvi(make_raster(nir), make_raster(red))

    assert ndvi.values[0, 0] == 1.0
    assert np.isnan(ndvi.values[0, 1])
    assert ndvi.values[5, 5] == pytest.approx(0.5)
    finite = ndvi.values[np.isfinite(ndvi.values)]
    assert finite.min() >= -1 and finite.max() <= 1


def test_ndvi_requires_same_grid(make_raster):
    other = FeatureRaster(np.ones((5, 5)), from_origin(0, 100, 20, 20))
    with pytest.raises(ValueError):
        compute_ndvi(make_raster(np.ones((10, 10))), other)


def test_vegetation_index_imputes_uncovered_cell(cells, make_raster):
    """Cell 3 has only zero-denominator pixels and gets the mean of the others."""
    nir = np.full((10, 10), 0.6)
    red = np.full((10, 10), 0.2)
    nir[:5, 5:] = red[:5, 5:] = 0.3
    nir[5:, 5:] = red[5:, 5:] = 0.0

    values = vegetation_index(cells, make_raster(nir), make_raster(red))

    assert values[0] == pytest.approx(0.5)
    assert values[1] == pytest.approx(0.0)
    assert values[2] == pytest.approx(0.5)
    assert values[3] == pytest.approx(1 / 3)


def test_vegetation_index_without_any_coverage(cells, make_raster):
    zeros = make_raster(np.zeros((10, 10)))
    with pytest.raises(NoCoverageError):
        vegetation_index(cells, zeros, zeros)


# =============================================================================
# VECTOR FEATURES
# =============================================================================

def test_distance_to_nearest_stream(cells, streams):
    values = distance_to_nearest_stream(cells, streams)

    assert values.name == "stream_distance"
    assert list(values) == [0.0, 50.0, 0.0, 50.0]


def test_distance_with_empty_stream_layer(cells, crs):
    empty = gpd.GeoDataFrame(geometry=[], crs=crs)

    values = distance_to_nearest_stream(cells, empty)
    assert values.isna().all()

    with pytest.raises(NoCoverageError):
        distance_to_nearest_stream(cells, empty, strict=True)


def test_is_built_up(cells, land_use):
    values = is_built_up(cells, land_use, ["park", "open_space"])

    assert values.dtype == bool
    assert list(values) == [True, False, True, True]


def test_is_built_up_no_matching_class(cells, land_use):
    assert is_built_up(cells, land_use, ["agriculture"]).all()


def test_is_built_up_missing_class_column(cells, land_use):
    with pytest.raises(KeyError):
        is_built_up(cells, land_use, ["park"], class_column="zoning")


# =============================================================================
# ALL FEATURES
# =============================================================================

@pytest.fixture
def sources(make_raster, quadrant_values, streams, land_use):
    return CitySources(
        dem=make_raster(quadrant_values + 1000),
        streams=streams,
        nir=make_raster(np.full((10, 10), 0.6)),
        red=make_raster(np.full((10, 10), 0.2)),
        land_use=land_use,
        flow_accumulation=make_raster(quadrant_values * 100)
    )


@pytest.mark.parametrize("n_jobs", [1, 2])
def test_extract_features(cells, sources, n_jobs):
    result = extract_features(cells, sources, ["park"], n_jobs=n_jobs)
    table = result.cells

    assert list(table["cell_id"]) == [0, 1, 2, 3]
    for name in FEATURE_NAMES:
        assert name in table.columns
    assert list(table["mean_elevation"]) == [1000.0, 1001.0, 1002.0, 1003.0]
    assert list(table["flow_accumulation"]) == [0.0, 100.0, 200.0, 300.0]
    assert list(table["is_built_up"]) == [True, False, True, True]
    assert result.failures == {}
    assert result.failed_cell_ids == []


def test_extract_features_does_not_mutate_input(cells, sources):
    before = list(cells.columns)
    extract_features(cells, sources, ["park"])
    assert list(cells.columns) == before


def test_extract_features_reports_failures(cells, sources, make_raster, quadrant_values):
    dem = quadrant_values + 1000
    dem[5:, 5:] = np.nan
    sources = CitySources(
        dem=make_raster(dem),
        streams=sources.streams,
        nir=sources.nir,
        red=sources.red,
        land_use=sources.land_use,
        flow_accumulation=sources.flow_accumulation
    )

    result = extract_features(cells, sources, ["park"])

    assert result.failures == {"mean_elevation": [3]}
    assert result.failed_cell_ids == [3]
    assert pd.isna(result.cells.loc[result.cells["cell_id"] == 3, "mean_elevation"]).all()

    with pytest.raises(NoCoverageError):
        extract_features(cells, sources, ["park"], strict=True)


def test_extract_features_derives_flow_from_dem(cells, sources):
    sources = CitySources(
        dem=sources.dem,
        streams=sources.streams,
        nir=sources.nir,
        red=sources.red,
        land_use=sources.land_use
    )

    result = extract_features(cells, sources, ["park"])

    flow = result.cells["flow_accumulation"]
    assert flow.notna().all()
    assert (flow >= 0).all()


def test_config_shares_feature_contract():
    import config

    assert config.FEATURE_NAMES is FEATURE_NAMES
    assert list(config.FEATURES) == list(FEATURE_NAMES)
