"""
Data Preprocessing Module for Flood Inundation Modelling
========================================================

Handles loading and alignment of source layers and preparation of the
labelled cell table for modelling:
- CRS reprojection of rasters (in memory) and vectors
- Assembly of a city's source layers
- Removal of cells with uncovered features
- Stratified train/test split
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import geopandas as gpd
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.warp import calculate_default_transform, reproject
from sklearn.model_selection import train_test_split

from floodgrid.exceptions import FeatureMismatchError, InsufficientDataError
from floodgrid.feature_engineering import CitySources
from floodgrid.utils import FeatureRaster, read_vector, setup_logging, timer

logger = setup_logging()


class DataPreprocessor:
    """
    Loads a city's raster and vector sources into the analysis CRS.

    Attributes
    ----------
    target_crs : str
        Target coordinate reference system
    target_resolution : float, optional
        Output pixel size in meters; source resolution when None

    Example
    -------
    >>> preprocessor = DataPreprocessor(target_crs="EPSG:3776")
    >>> sources = preprocessor.load_city({"dem": "dem.tif", ...})
    """

    def __init__(
        self,
        target_crs: str,
        target_resolution: Optional[float] = None
    ):
        self.target_crs = target_crs
        self.target_resolution = target_resolution

        logger.info(f"DataPreprocessor initialized")
        logger.info(f"  Target CRS: {target_crs}")

    # =========================================================================
    # RASTER / VECTOR LOADING
    # =========================================================================

    def load_raster(
        self,
        input_path: Union[str, Path],
        resampling: str = "bilinear",
        band: int = 1
    ) -> FeatureRaster:
        """
        Read a raster band, reprojecting it to the target CRS when needed.

        Parameters
        ----------
        input_path : str or Path
            Input raster path
        resampling : str
            'nearest', 'bilinear', 'cubic', 'average' or 'max'
        band : int
            Band number (1-indexed)

        Returns
        -------
        FeatureRaster
        """
        resampling_map = {
            'nearest': Resampling.nearest,
            'bilinear': Resampling.bilinear,
            'cubic': Resampling.cubic,
            'average': Resampling.average,
            'max': Resampling.max
        }
        if resampling not in resampling_map:
            raise ValueError(f"Unknown resampling method: {resampling}")

        dst_crs = CRS.from_user_input(self.target_crs)

        with rasterio.open(input_path) as src:
            if src.crs == dst_crs and self.target_resolution is None:
                return FeatureRaster(src.read(band), src.transform, dst_crs.to_string(), src.nodata)

            transform, width, height = calculate_default_transform(
                src.crs, dst_crs,
                src.width, src.height,
                *src.bounds,
                resolution=self.target_resolution
            )

            destination = np.full((height, width), np.nan, dtype=np.float64)
            reproject(
                source=rasterio.band(src, band),
                destination=destination,
                src_transform=src.transform,
                src_crs=src.crs,
                src_nodata=src.nodata,
                dst_transform=transform,
                dst_crs=dst_crs,
                dst_nodata=np.nan,
                resampling=resampling_map[resampling]
            )

        logger.info(f"  Reprojected {Path(input_path).name}: {width}x{height}")

        return FeatureRaster(destination, transform, dst_crs.to_string())

    def load_vector(self, input_path: Union[str, Path]) -> gpd.GeoDataFrame:
        """Read a vector layer in the target CRS."""
        gdf = read_vector(input_path, self.target_crs)
        logger.info(f"  {Path(input_path).name}: {len(gdf)} features")
        return gdf

    @timer
    def load_city(self, paths: Dict[str, Union[str, Path]]) -> CitySources:
        """
        Load every source layer of one city.

        Parameters
        ----------
        paths : dict
            Keys ``dem``, ``streams``, ``nir``, ``red``, ``land_use`` and
            optionally ``flow_accumulation`` and ``flood_extent``

        Returns
        -------
        CitySources
        """
        logger.info("Loading city sources...")

        flow = paths.get("flow_accumulation")
        flood = paths.get("flood_extent")

        return CitySources(
            dem=self.load_raster(paths["dem"], resampling="bilinear"),
            streams=self.load_vector(paths["streams"]),
            nir=self.load_raster(paths["nir"], resampling="bilinear"),
            red=self.load_raster(paths["red"], resampling="bilinear"),
            land_use=self.load_vector(paths["land_use"]),
            flow_accumulation=self.load_raster(flow, resampling="max") if flow else None,
            flood_extent=self.load_raster(flood, resampling="nearest") if flood else None
        )


# =============================================================================
# MODELLING TABLE PREPARATION
# =============================================================================

@dataclass
class DatasetSplit:
    """Disjoint train/test partitions of the labelled cells."""
    train: gpd.GeoDataFrame
    test: gpd.GeoDataFrame


def drop_incomplete(
    cells: gpd.GeoDataFrame,
    feature_names: Sequence[str]
) -> Tuple[gpd.GeoDataFrame, List[int]]:
    """
    Remove cells with a missing value in any of ``feature_names``.

    Returns
    -------
    tuple
        (complete cells, dropped cell ids)
    """
    for name in feature_names:
        if name not in cells.columns:
            raise FeatureMismatchError(name, feature_names)

    incomplete = cells[list(feature_names)].isna().any(axis=1)
    dropped = [int(c) for c in cells.loc[incomplete, "cell_id"]]
    if dropped:
        logger.warning(f"Dropping {len(dropped)} cell(s) with missing features")

    return cells[~incomplete].copy(), dropped


@timer
def split_dataset(
    cells: gpd.GeoDataFrame,
    train_fraction: float = 0.70,
    seed: int = 42,
    label_column: str = "flood_label",
    min_class_count: int = 2
) -> DatasetSplit:
    """
    Stratified train/test split of the labelled cells.

    Parameters
    ----------
    cells : gpd.GeoDataFrame
        Cell table; rows with a null label are left out
    train_fraction : float
        Share of labelled cells assigned to training
    seed : int
        Random seed; the same seed always gives the same split
    label_column : str
        Binary label column
    min_class_count : int
        Minimum size of the minority class

    Returns
    -------
    DatasetSplit

    Raises
    ------
    InsufficientDataError
        If a class is absent or smaller than ``min_class_count``
    """
    if not 0 < train_fraction < 1:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")

    labelled = cells[cells[label_column].notna()]
    n_unlabelled = len(cells) - len(labelled)
    if n_unlabelled:
        logger.info(f"  Skipping {n_unlabelled} unlabelled cell(s)")

    y = labelled[label_column].astype(bool).to_numpy()
    n_positive = int(y.sum())
    n_negative = int(len(y) - n_positive)
    minority = min(n_positive, n_negative)

    if minority < max(min_class_count, 1):
        raise InsufficientDataError(
            f"Minority class has {minority} cell(s); at least {max(min_class_count, 1)} "
            f"needed to stratify (flood: {n_positive}, no flood: {n_negative})"
        )

    try:
        train, test = train_test_split(
            labelled,
            train_size=train_fraction,
            random_state=seed,
            stratify=y
        )
    except ValueError as e:
        raise InsufficientDataError(f"Stratified split impossible: {e}") from e

    logger.info(f"  Training cells: {len(train):,} ({train[label_column].astype(bool).mean() * 100:.1f}% flooded)")
    logger.info(f"  Test cells: {len(test):,} ({test[label_column].astype(bool).mean() * 100:.1f}% flooded)")

    return DatasetSplit(train, test)
