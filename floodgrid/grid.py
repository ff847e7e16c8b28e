"""
Spatial Grid Builder
====================

Builds the fishnet of square analysis cells over a city boundary. Every
later stage (features, labels, model) works on the cell table produced
here, keyed by ``cell_id``.
"""

import math
from typing import Optional, Union

import numpy as np
import geopandas as gpd
import shapely
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from floodgrid.exceptions import InvalidGeometryError
from floodgrid.utils import setup_logging, timer

logger = setup_logging()

BoundaryLike = Union[BaseGeometry, gpd.GeoDataFrame, gpd.GeoSeries]


def _as_polygon(boundary: BoundaryLike) -> BaseGeometry:
    """Collapse a boundary layer to one validated (multi)polygon."""
    if isinstance(boundary, (gpd.GeoDataFrame, gpd.GeoSeries)):
        geoms = [g for g in boundary.geometry if g is not None]
        invalid = [g for g in geoms if not g.is_valid]
        if invalid:
            raise InvalidGeometryError(
                f"Boundary layer has invalid geometry: {explain_validity(invalid[0])}"
            )
        boundary = shapely.union_all(geoms) if geoms else None

    if boundary is None or boundary.is_empty:
        raise InvalidGeometryError("Boundary polygon is empty")
    if boundary.geom_type not in ("Polygon", "MultiPolygon"):
        raise InvalidGeometryError(f"Boundary must be polygonal, got {boundary.geom_type}")
    if not boundary.is_valid:
        raise InvalidGeometryError(f"Boundary polygon is invalid: {explain_validity(boundary)}")

    return boundary


@timer
def create_fishnet(
    boundary: BoundaryLike,
    cell_size: float = 200.0,
    crs: Optional[str] = None,
    clip_to_boundary: bool = False
) -> gpd.GeoDataFrame:
    """
    Partition a boundary's bounding extent into square cells.

    Cells are laid out from the north-west corner of the extent and numbered
    row-major (north to south, west to east) starting at 0, so identifiers
    are stable for a given boundary and cell size.

    Parameters
    ----------
    boundary : shapely geometry, GeoSeries or GeoDataFrame
        City limit; layers are dissolved into one polygon first
    cell_size : float
        Cell edge length in CRS units (meters for projected CRSs)
    crs : str, optional
        CRS of the output; defaults to the boundary layer's CRS
    clip_to_boundary : bool
        Keep only cells overlapping the boundary interior. Identifiers are
        assigned before clipping.

    Returns
    -------
    gpd.GeoDataFrame
        Columns ``cell_id`` and ``geometry``

    Raises
    ------
    InvalidGeometryError
        If the boundary is empty, not polygonal, or self-intersecting
    """
    if crs is None and isinstance(boundary, (gpd.GeoDataFrame, gpd.GeoSeries)):
        crs = boundary.crs

    polygon = _as_polygon(boundary)

    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")

    minx, miny, maxx, maxy = polygon.bounds
    n_cols = max(1, math.ceil(round((maxx - minx) / cell_size, 9)))
    n_rows = max(1, math.ceil(round((maxy - miny) / cell_size, 9)))

    logger.info(f"Building fishnet: {n_rows} rows x {n_cols} cols ({cell_size:g} m cells)")

    rows, cols = np.divmod(np.arange(n_rows * n_cols), n_cols)
    left = minx + cols * cell_size
    top = maxy - rows * cell_size
    cells = shapely.box(left, top - cell_size, left + cell_size, top)

    fishnet = gpd.GeoDataFrame(
        {"cell_id": np.arange(n_rows * n_cols, dtype=np.int64)},
        geometry=cells,
        crs=crs
    )

    if clip_to_boundary:
        overlaps = fishnet.intersects(polygon) & ~fishnet.touches(polygon)
        fishnet = fishnet[overlaps].reset_index(drop=True)
        logger.info(f"  Clipped to boundary: {len(fishnet)} of {n_rows * n_cols} cells kept")

    logger.info(f"  Cells: {len(fishnet):,}")

    return fishnet
