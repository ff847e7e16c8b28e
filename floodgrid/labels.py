"""
Label Assignor
==============

Derives the binary flood label of each cell from a historical inundation
raster (flood depth or 0/1 flag for one event).
"""

import numpy as np
import pandas as pd
import geopandas as gpd

from floodgrid.exceptions import NoCoverageError
from floodgrid.feature_engineering import aggregate_raster
from floodgrid.utils import FeatureRaster, setup_logging, timer

logger = setup_logging()

# A cell is flooded only when strictly more than this share of its pixels is wet
MAJORITY_SHARE = 0.5


def _wet_share(pixels: np.ndarray) -> float:
    return float(np.count_nonzero(pixels > 0)) / pixels.size


def flood_fraction(cells: gpd.GeoDataFrame, flood_extent: FeatureRaster) -> pd.Series:
    """
    Share of valid flood-extent pixels marked as flooded in each cell.

    A pixel is flooded when its value is greater than zero, which covers
    both depth rasters and boolean flags. NaN for cells with no valid pixel.
    """
    values = aggregate_raster(cells, flood_extent, _wet_share, "flood_fraction")
    return values


@timer
def assign_flood_labels(
    cells: gpd.GeoDataFrame,
    flood_extent: FeatureRaster,
    strict: bool = False
) -> gpd.GeoDataFrame:
    """
    Assign the majority flood label to every cell.

    ``flood_label`` is True when more than half of the cell's pixels are
    flooded. Exactly half resolves to False. Cells the raster does not cover
    keep a null label so the splitter leaves them out.

    Parameters
    ----------
    cells : gpd.GeoDataFrame
        Cell table with ``cell_id``
    flood_extent : FeatureRaster
        Inundation raster for one event
    strict : bool
        Raise ``NoCoverageError`` for uncovered cells instead of leaving them null

    Returns
    -------
    gpd.GeoDataFrame
        Copy of ``cells`` with ``flood_fraction`` and ``flood_label`` columns
    """
    logger.info("Assigning flood labels (majority of inundated pixels)...")

    fraction = flood_fraction(cells, flood_extent)
    uncovered = fraction.index[fraction.isna()]
    if len(uncovered):
        if strict:
            raise NoCoverageError("flood_label", uncovered)
        logger.warning(f"  {len(uncovered)} cell(s) outside the flood-extent raster left unlabelled")

    labels = pd.Series(pd.NA, index=fraction.index, dtype="boolean")
    covered = fraction.notna()
    labels[covered] = fraction[covered] > MAJORITY_SHARE

    labelled = cells.copy()
    labelled["flood_fraction"] = labelled["cell_id"].map(fraction)
    labelled["flood_label"] = labelled["cell_id"].map(labels).astype("boolean")

    n_flooded = int(labels.sum())
    n_labelled = int(covered.sum())
    logger.info(f"  Labelled cells: {n_labelled:,}")
    if n_labelled:
        logger.info(f"  Flooded: {n_flooded:,} ({n_flooded / n_labelled * 100:.1f}%)")

    return labelled
