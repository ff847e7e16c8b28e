"""
Feature Engineering Module for Flood Inundation Modelling
=========================================================

Aggregates raster and vector source layers onto the fishnet:
- Mean elevation (DEM)
- Distance to nearest stream (stream network)
- Maximum flow accumulation (D8 accumulation raster)
- Vegetation index (NDVI from NIR / red bands)
- Built-up flag (land-use polygons)

Every operation is a pure function of its inputs and returns a Series
indexed by ``cell_id``; ``extract_features`` runs them together and merges
the results into a new cell table.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
from scipy import ndimage
from joblib import Parallel, delayed

from floodgrid.exceptions import NoCoverageError
from floodgrid.utils import FeatureRaster, setup_logging, timer, calculate_statistics

logger = setup_logging()

# Ordered feature contract shared by fit and predict
FEATURE_NAMES = (
    "mean_elevation",
    "stream_distance",
    "flow_accumulation",
    "vegetation_index",
    "is_built_up",
)

# D8 neighbours: 0=E, 1=SE, 2=S, 3=SW, 4=W, 5=NW, 6=N, 7=NE
D8_OFFSETS = [
    (0, 1), (1, 1), (1, 0), (1, -1),
    (0, -1), (-1, -1), (-1, 0), (-1, 1)
]


@dataclass(frozen=True)
class CitySources:
    """
    Source layers for one city, already in the fishnet's CRS.

    ``flow_accumulation`` may be omitted; it is then derived from the DEM.
    ``flood_extent`` is only needed for the city the model is trained on.
    """
    dem: FeatureRaster
    streams: gpd.GeoDataFrame
    nir: FeatureRaster
    red: FeatureRaster
    land_use: gpd.GeoDataFrame
    flow_accumulation: Optional[FeatureRaster] = None
    flood_extent: Optional[FeatureRaster] = None


@dataclass
class ExtractionResult:
    """Feature table plus the cells each feature could not cover."""
    cells: gpd.GeoDataFrame
    failures: Dict[str, List[int]] = field(default_factory=dict)
    imputed: Dict[str, List[int]] = field(default_factory=dict)

    @property
    def failed_cell_ids(self) -> List[int]:
        ids = set()
        for cell_ids in self.failures.values():
            ids.update(cell_ids)
        return sorted(ids)


# =============================================================================
# HELPERS
# =============================================================================

def _check_crs(cells: gpd.GeoDataFrame, layer_crs, name: str):
    if cells.crs is not None and layer_crs is not None and cells.crs != layer_crs:
        raise ValueError(f"{name} CRS {layer_crs} does not match grid CRS {cells.crs}")


def _cell_pixels(cells: gpd.GeoDataFrame, raster: FeatureRaster) -> Dict[int, np.ndarray]:
    """Valid pixel values overlapping each cell, keyed by cell_id."""
    bounds = cells.geometry.bounds
    return {
        int(cell_id): raster.values_within(tuple(box))
        for cell_id, box in zip(cells["cell_id"], bounds.itertuples(index=False))
    }


def _report_uncovered(values: pd.Series, feature: str, strict: bool) -> pd.Series:
    uncovered = values.index[values.isna()]
    if len(uncovered):
        if strict:
            raise NoCoverageError(feature, uncovered)
        logger.warning(f"  {feature}: {len(uncovered)} cell(s) without coverage")
    return values


def aggregate_raster(
    cells: gpd.GeoDataFrame,
    raster: FeatureRaster,
    reducer: Callable[[np.ndarray], float],
    feature: str
) -> pd.Series:
    """Reduce the pixels overlapping each cell to one value (NaN when none)."""
    _check_crs(cells, raster.crs, feature)
    pixels = _cell_pixels(cells, raster)
    values = pd.Series(
        {cell_id: float(reducer(px)) if px.size else np.nan for cell_id, px in pixels.items()},
        name=feature,
        dtype=float
    )
    values.index.name = "cell_id"
    return values


def impute_with_mean(values: pd.Series) -> Tuple[pd.Series, List[int]]:
    """
    Replace missing values with the mean of the non-missing ones.

    Returns the imputed series and the ids that were filled in.
    """
    missing = values.index[values.isna()]
    if len(missing) == 0:
        return values, []
    if values.notna().sum() == 0:
        raise NoCoverageError(values.name or "feature", missing)
    fill = values.mean()
    logger.warning(
        f"  {values.name}: imputed {len(missing)} cell(s) with mean {fill:.4f} "
        f"(cell ids: {list(missing[:10])}{' ...' if len(missing) > 10 else ''})"
    )
    return values.fillna(fill), [int(c) for c in missing]


# =============================================================================
# TERRAIN / HYDROLOGY
# =============================================================================

@timer
def compute_flow_accumulation(dem: FeatureRaster, fill_sinks: bool = True) -> FeatureRaster:
    """
    Compute D8 flow accumulation from a DEM.

    Each pixel drains to its steepest downslope neighbour; the output counts
    the upstream pixels draining through each pixel (the pixel itself is not
    counted). Pixels with no lower neighbour are treated as outlets.

    Parameters
    ----------
    dem : FeatureRaster
        Elevation raster
    fill_sinks : bool
        Smooth single-pixel pits with a 3x3 grey closing first

    Returns
    -------
    FeatureRaster
        Flow accumulation on the DEM's grid
    """
    logger.info("Computing flow accumulation (D8)...")

    elevation = np.array(dem.values, dtype=float)
    valid = np.isfinite(elevation)
    if fill_sinks and valid.all():
        elevation = ndimage.grey_closing(elevation, size=3)

    height, width = elevation.shape
    cell_x, cell_y = dem.res
    padded = np.pad(elevation, 1, constant_values=np.nan)

    drops = np.full((len(D8_OFFSETS), height, width), -np.inf)
    for d, (di, dj) in enumerate(D8_OFFSETS):
        neighbour = padded[1 + di:1 + di + height, 1 + dj:1 + dj + width]
        distance = np.hypot(di * cell_y, dj * cell_x)
        drop = (elevation - neighbour) / distance
        drops[d] = np.where(np.isfinite(drop), drop, -np.inf)

    direction = np.argmax(drops, axis=0)
    has_outflow = (np.max(drops, axis=0) > 0) & valid

    rows, cols = np.indices((height, width))
    offsets = np.array(D8_OFFSETS)
    target_rows = rows + offsets[direction, 0]
    target_cols = cols + offsets[direction, 1]
    target = np.where(has_outflow, target_rows * width + target_cols, -1).ravel()

    # Flow only goes downhill, so visiting pixels from high to low is a topological order
    flat_elevation = np.where(valid, elevation, -np.inf).ravel()
    order = np.argsort(-flat_elevation, kind="stable")

    accumulation = np.zeros(height * width, dtype=np.float64)
    for idx in order:
        downstream = target[idx]
        if downstream >= 0:
            accumulation[downstream] += accumulation[idx] + 1

    accumulation = accumulation.reshape(height, width)
    accumulation[~valid] = np.nan

    logger.info(f"  Max accumulation: {np.nanmax(accumulation):.0f} cells")

    return FeatureRaster(accumulation, dem.transform, dem.crs)


def compute_ndvi(nir: FeatureRaster, red: FeatureRaster) -> FeatureRaster:
    """
    Per-pixel NDVI = (NIR - Red) / (NIR + Red), clamped to [-1, 1].

    Pixels with a zero denominator become nodata.
    """
    if not nir.same_grid(red):
        raise ValueError("NIR and red bands must share shape and transform")

    with np.errstate(divide="ignore", invalid="ignore"):
        denominator = nir.values + red.values
        ndvi = (nir.values - red.values) / denominator
    ndvi[denominator == 0] = np.nan
    ndvi = np.clip(ndvi, -1.0, 1.0)

    return FeatureRaster(ndvi, nir.transform, nir.crs)


# =============================================================================
# PER-CELL FEATURES
# =============================================================================

def mean_elevation(
    cells: gpd.GeoDataFrame,
    dem: FeatureRaster,
    strict: bool = False
) -> pd.Series:
    """
    Mean of DEM pixels overlapping each cell.

    Cells without any valid pixel are NaN (logged), or raise
    ``NoCoverageError`` when ``strict``.
    """
    values = aggregate_raster(cells, dem, np.mean, "mean_elevation")
    return _report_uncovered(values, "mean_elevation", strict)


def distance_to_nearest_stream(
    cells: gpd.GeoDataFrame,
    streams: gpd.GeoDataFrame,
    strict: bool = False
) -> pd.Series:
    """Euclidean distance from each cell centroid to the nearest stream feature."""
    _check_crs(cells, streams.crs, "stream_distance")

    geoms = [g for g in streams.geometry if g is not None and not g.is_empty]
    if not geoms:
        values = pd.Series(np.nan, index=pd.Index(cells["cell_id"], name="cell_id"),
                           name="stream_distance", dtype=float)
        return _report_uncovered(values, "stream_distance", strict)

    network = shapely.union_all(geoms)
    distances = cells.geometry.centroid.distance(network)

    values = pd.Series(distances.to_numpy(dtype=float), index=pd.Index(cells["cell_id"], name="cell_id"),
                       name="stream_distance")
    return values


def max_flow_accumulation(
    cells: gpd.GeoDataFrame,
    flow: FeatureRaster,
    strict: bool = False
) -> pd.Series:
    """Maximum flow accumulation among pixels overlapping each cell."""
    values = aggregate_raster(cells, flow, np.max, "flow_accumulation")
    return _report_uncovered(values, "flow_accumulation", strict)


def _raw_vegetation_index(
    cells: gpd.GeoDataFrame,
    nir: FeatureRaster,
    red: FeatureRaster
) -> pd.Series:
    return aggregate_raster(cells, compute_ndvi(nir, red), np.mean, "vegetation_index")


def vegetation_index(
    cells: gpd.GeoDataFrame,
    nir: FeatureRaster,
    red: FeatureRaster
) -> pd.Series:
    """
    Mean NDVI per cell.

    Cells with no valid pixel are imputed with the mean over covered cells;
    the imputation is logged together with the affected cell ids.
    """
    values, _ = impute_with_mean(_raw_vegetation_index(cells, nir, red))
    return values


def is_built_up(
    cells: gpd.GeoDataFrame,
    land_use: gpd.GeoDataFrame,
    non_built_classes: Iterable,
    class_column: str = "landuse"
) -> pd.Series:
    """
    Built-up flag per cell.

    A cell is built up unless it intersects a land-use polygon whose class
    is one of ``non_built_classes`` (parks, open space, agriculture, ...).
    """
    _check_crs(cells, land_use.crs, "is_built_up")
    if class_column not in land_use.columns:
        raise KeyError(f"Land-use layer has no '{class_column}' column")

    non_built = land_use[land_use[class_column].isin(list(non_built_classes))]
    index = pd.Index(cells["cell_id"], name="cell_id")

    if non_built.empty:
        return pd.Series(True, index=index, name="is_built_up")

    joined = gpd.sjoin(
        cells[["cell_id", "geometry"]],
        non_built[[class_column, "geometry"]],
        how="inner",
        predicate="intersects"
    )
    open_cells = set(joined["cell_id"])

    return pd.Series(~index.isin(open_cells), index=index, name="is_built_up")


# =============================================================================
# ALL FEATURES
# =============================================================================

@timer
def extract_features(
    cells: gpd.GeoDataFrame,
    sources: CitySources,
    non_built_classes: Iterable,
    class_column: str = "landuse",
    strict: bool = False,
    n_jobs: int = 1
) -> ExtractionResult:
    """
    Compute all five covariates and merge them onto a copy of ``cells``.

    Parameters
    ----------
    cells : gpd.GeoDataFrame
        Fishnet with ``cell_id``
    sources : CitySources
        Source layers in the fishnet's CRS
    non_built_classes : iterable
        Land-use classes that mark a cell as not built up
    class_column : str
        Land-use class column
    strict : bool
        Abort on the first uncovered cell instead of reporting it
    n_jobs : int
        joblib workers for the independent feature computations

    Returns
    -------
    ExtractionResult
        Enriched cell table, uncovered cells and imputed cells per feature
    """
    logger.info("=" * 60)
    logger.info("EXTRACTING CELL FEATURES")
    logger.info("=" * 60)

    flow = sources.flow_accumulation
    if flow is None:
        flow = compute_flow_accumulation(sources.dem)

    tasks = [
        (mean_elevation, (cells, sources.dem, strict)),
        (distance_to_nearest_stream, (cells, sources.streams, strict)),
        (max_flow_accumulation, (cells, flow, strict)),
        (_raw_vegetation_index, (cells, sources.nir, sources.red)),
        (is_built_up, (cells, sources.land_use, list(non_built_classes), class_column)),
    ]
    results = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(func)(*args) for func, args in tasks
    )

    enriched = cells.copy()
    failures: Dict[str, List[int]] = {}
    imputed: Dict[str, List[int]] = {}

    for values in results:
        name = values.name
        if name == "vegetation_index":
            values, filled = impute_with_mean(values)
            if filled:
                imputed[name] = filled
        missing = values.index[values.isna()]
        if len(missing):
            failures[name] = [int(c) for c in missing]

        enriched[name] = enriched["cell_id"].map(values)

        if name != "is_built_up":
            stats = calculate_statistics(values.to_numpy())
            logger.info(f"  {name}: min {stats['min']:.3f}, max {stats['max']:.3f}, mean {stats['mean']:.3f}")
        else:
            logger.info(f"  {name}: {int(values.sum())} of {len(values)} cells built up")

    result = ExtractionResult(enriched, failures, imputed)
    if failures:
        logger.warning(f"  Cells with uncovered features: {len(result.failed_cell_ids)}")

    return result
