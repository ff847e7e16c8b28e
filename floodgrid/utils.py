"""
Utility Functions for Flood Inundation Modelling
================================================
Calgary 2013 flood -> Denver transfer study

Contains helper functions for:
- Logging setup
- Timer decorators
- In-memory raster container (FeatureRaster)
- Raster and vector reading
- File operations
"""

import sys
import time
import logging
import functools
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import geopandas as gpd
import rasterio
import rasterio.windows
from affine import Affine


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(
    log_file: Optional[Path] = None,
    level: str = "INFO",
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Setup logging configuration.

    Parameters
    ----------
    log_file : Path, optional
        Path to log file. If None, logs to console only.
    level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format_string : str, optional
        Custom format string for log messages

    Returns
    -------
    logging.Logger
        Configured logger instance
    """
    if format_string is None:
        format_string = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    logger = logging.getLogger("FloodGrid")
    logger.setLevel(getattr(logging, level.upper()))

    # Clear existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_formatter = logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(console_formatter)
        logger.addHandler(file_handler)

    return logger


# Get default logger
logger = setup_logging()


# =============================================================================
# TIMER DECORATOR
# =============================================================================

def timer(func):
    """
    Decorator to measure and log function execution time.

    Usage
    -----
    @timer
    def my_function():
        pass
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        logger.info(f"Starting: {func.__name__}")

        result = func(*args, **kwargs)

        logger.info(f"Completed: {func.__name__} in {format_duration(time.time() - start_time)}")
        return result

    return wrapper


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.2f} seconds"
    elif seconds < 3600:
        return f"{seconds/60:.2f} minutes"
    else:
        return f"{seconds/3600:.2f} hours"


# =============================================================================
# RASTER CONTAINER
# =============================================================================

@dataclass(frozen=True)
class FeatureRaster:
    """
    Read-only 2-D raster held in memory.

    Values are stored as float64 with nodata converted to NaN, so every
    consumer can rely on ``np.isfinite`` to find valid pixels.

    Attributes
    ----------
    values : np.ndarray
        2-D array of pixel values (rows, cols)
    transform : Affine
        Pixel -> map coordinate transform (north-up, no rotation)
    crs : str, optional
        Coordinate reference system, e.g. "EPSG:3776"
    nodata : float, optional
        NoData value of the source band

    Example
    -------
    >>> raster = FeatureRaster(dem, from_origin(0, 1000, 30, 30), "EPSG:3776")
    >>> raster.values_within((0, 800, 200, 1000))
    """
    values: np.ndarray
    transform: Affine
    crs: Optional[str] = None
    nodata: Optional[float] = None

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float64)
        if values.ndim != 2:
            raise ValueError(f"FeatureRaster expects a 2-D array, got {values.ndim}-D")
        if self.nodata is not None and not np.isnan(self.nodata):
            values[values == self.nodata] = np.nan
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

        transform = self.transform
        if transform.b != 0 or transform.d != 0:
            raise ValueError("Rotated rasters are not supported")
        if transform.a <= 0 or transform.e >= 0:
            raise ValueError("FeatureRaster must be north-up (positive x, negative y resolution)")

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def res(self) -> Tuple[float, float]:
        return (self.transform.a, -self.transform.e)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        height, width = self.shape
        minx, maxy = self.transform * (0, 0)
        maxx, miny = self.transform * (width, height)
        return (minx, miny, maxx, maxy)

    def same_grid(self, other: "FeatureRaster") -> bool:
        """True when both rasters share shape and transform."""
        return self.shape == other.shape and self.transform.almost_equals(other.transform)

    def pixel_slices(
        self,
        bounds: Tuple[float, float, float, float]
    ) -> Tuple[slice, slice]:
        """
        Row/column slices of the pixels whose footprint overlaps ``bounds``.

        A pixel counts only when its interior overlaps the box interior;
        pixels that merely share an edge with the box are left out.
        """
        window = rasterio.windows.from_bounds(*bounds, transform=self.transform)

        # Rounding keeps exact edge hits from leaking into a neighbour pixel
        row_start = int(np.floor(round(window.row_off, 9)))
        row_stop = int(np.ceil(round(window.row_off + window.height, 9)))
        col_start = int(np.floor(round(window.col_off, 9)))
        col_stop = int(np.ceil(round(window.col_off + window.width, 9)))

        height, width = self.shape
        row_start, row_stop = max(row_start, 0), min(row_stop, height)
        col_start, col_stop = max(col_start, 0), min(col_stop, width)

        return slice(row_start, max(row_start, row_stop)), slice(col_start, max(col_start, col_stop))

    def values_within(self, bounds: Tuple[float, float, float, float]) -> np.ndarray:
        """Flattened valid (finite) pixel values overlapping ``bounds``."""
        rows, cols = self.pixel_slices(bounds)
        block = self.values[rows, cols].ravel()
        return block[np.isfinite(block)]


# =============================================================================
# RASTER / VECTOR I/O
# =============================================================================

def read_feature_raster(
    filepath: Union[str, Path],
    band: int = 1
) -> FeatureRaster:
    """
    Read raster band into a FeatureRaster.

    Parameters
    ----------
    filepath : str or Path
        Path to raster file
    band : int
        Band number (1-indexed)

    Returns
    -------
    FeatureRaster
        In-memory raster with nodata as NaN
    """
    with rasterio.open(filepath) as src:
        data = src.read(band)
        crs = src.crs.to_string() if src.crs else None
        return FeatureRaster(data, src.transform, crs, src.nodata)


def read_vector(
    filepath: Union[str, Path],
    target_crs: Optional[str] = None
) -> gpd.GeoDataFrame:
    """
    Read vector layer, reprojecting to ``target_crs`` when given.

    Parameters
    ----------
    filepath : str or Path
        Path to any OGR-readable vector file
    target_crs : str, optional
        CRS the layer should be returned in

    Returns
    -------
    gpd.GeoDataFrame
    """
    gdf = gpd.read_file(filepath)
    if target_crs is not None and gdf.crs is not None and gdf.crs != target_crs:
        gdf = gdf.to_crs(target_crs)
    return gdf


# =============================================================================
# FILE UTILITIES
# =============================================================================

def ensure_dir(path: Union[str, Path]) -> Path:
    """
    Ensure directory exists, create if necessary.

    Parameters
    ----------
    path : str or Path
        Directory path

    Returns
    -------
    Path
        Path object for the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# =============================================================================
# DATA UTILITIES
# =============================================================================

def calculate_statistics(array: np.ndarray) -> Dict[str, float]:
    """
    Calculate basic statistics for array, ignoring NaN values.

    Parameters
    ----------
    array : np.ndarray
        Input array

    Returns
    -------
    dict
        Dictionary with statistics (NaN entries when nothing is valid)
    """
    data = np.asarray(array, dtype=float).ravel()
    data = data[~np.isnan(data)]

    if data.size == 0:
        stats = {key: float("nan") for key in ("min", "max", "mean", "median", "std")}
        stats["count"] = 0
        return stats

    return {
        "count": int(data.size),
        "min": float(np.min(data)),
        "max": float(np.max(data)),
        "mean": float(np.mean(data)),
        "median": float(np.median(data)),
        "std": float(np.std(data))
    }
