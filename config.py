"""
Configuration Parameters for Flood Inundation Modelling
=======================================================
Calgary 2013 flood -> Denver transfer study
"""

from pathlib import Path

from floodgrid.feature_engineering import FEATURE_NAMES

# =============================================================================
# PROJECT PATHS
# =============================================================================

# Base directory
BASE_DIR = Path(__file__).parent.absolute()

# Data directories
DATA_DIR = BASE_DIR / "data"
RAW_DATA_DIR = DATA_DIR / "raw"

# Output directories (created by main.py)
OUTPUT_DIR = BASE_DIR / "outputs"
TABLES_DIR = OUTPUT_DIR / "tables"
FIGURES_DIR = OUTPUT_DIR / "figures"

# =============================================================================
# STUDY AREAS
# =============================================================================

# Source file names are relative to RAW_DATA_DIR / <city key>.
# "demo" parameters drive the simulated layers used when files are missing.
STUDY_AREAS = {
    "calgary": {
        "name": "Calgary",
        "country": "Canada",
        "role": "training",
        "crs": "EPSG:3776",  # NAD83 / Alberta 3TM ref merid 114 W
        "sources": {
            "boundary": "city_boundary.gpkg",
            "dem": "dem.tif",
            "streams": "streams.gpkg",
            "nir": "landsat_b5.tif",
            "red": "landsat_b4.tif",
            "land_use": "land_use.gpkg",
            "flood_extent": "flood_2013.tif"
        },
        "land_use_column": "landuse",
        "non_built_classes": ["park", "open_space", "agriculture", "natural", "water"],
        "demo": {
            "bounds": (0.0, 5650000.0, 15000.0, 5665000.0),
            "seed": 42,
            "base_elevation": 1040.0,
            "flood_stage": 6.0
        }
    },
    "denver": {
        "name": "Denver",
        "country": "United States",
        "role": "transfer",
        "crs": "EPSG:26913",  # NAD83 / UTM zone 13N (meters, not state-plane feet)
        "sources": {
            "boundary": "city_boundary.gpkg",
            "dem": "dem.tif",
            "streams": "streams.gpkg",
            "nir": "landsat_b5.tif",
            "red": "landsat_b4.tif",
            "land_use": "land_use.gpkg",
            "flood_extent": "flood_extent.tif"
        },
        "land_use_column": "landuse",
        "non_built_classes": ["park", "open_space", "agriculture", "natural", "water"],
        "demo": {
            "bounds": (495000.0, 4390000.0, 510000.0, 4405000.0),
            "seed": 7,
            "base_elevation": 1580.0,
            "flood_stage": 5.0
        }
    }
}

# =============================================================================
# GRID
# =============================================================================

GRID = {
    "cell_size": 200,  # meters
    "clip_to_boundary": True,
    "raster_resolution": 30  # meters, simulated layers only
}

# =============================================================================
# FEATURES
# =============================================================================

# FEATURE_NAMES (imported above) is the ordered contract; this describes each entry
FEATURES = {
    "mean_elevation": {"unit": "m", "aggregation": "mean"},
    "stream_distance": {"unit": "m", "aggregation": "cell centroid to nearest stream"},
    "flow_accumulation": {"unit": "upstream cells", "aggregation": "max"},
    "vegetation_index": {"unit": "NDVI [-1, 1]", "aggregation": "mean, imputed"},
    "is_built_up": {"unit": "bool", "aggregation": "no non-built polygon intersects"}
}

EXTRACTION = {
    "strict": False
}

# =============================================================================
# LOGISTIC REGRESSION MODEL CONFIGURATION
# =============================================================================

MODEL_CONFIG = {
    "algorithm": "LogisticRegression (binomial GLM, IRLS)",
    "train_fraction": 0.70,
    "random_state": 42,
    "max_iter": 100,
    "threshold": 0.5,
    "cv_folds": 100,
    "min_class_count": 2,
    "n_jobs": 1
}

# =============================================================================
# VISUALIZATION SETTINGS
# =============================================================================

VISUALIZATION = {
    "figure_dpi": 200,
    "figure_format": "png",
    "colormap": "Blues"
}

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

LOGGING = {
    "level": "INFO",
    "format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    "file": OUTPUT_DIR / "floodgrid.log"
}


def print_config():
    """Print configuration summary."""
    print("=" * 60)
    print("FLOOD INUNDATION MODELLING - CONFIGURATION")
    print("=" * 60)
    for key, area in STUDY_AREAS.items():
        print(f"\n{area['name']}, {area['country']} ({area['role']})")
        print(f"   CRS: {area['crs']}")
        print(f"   Data: {RAW_DATA_DIR / key}")
    print(f"\nGrid: {GRID['cell_size']} m cells")
    print(f"Features: {', '.join(FEATURE_NAMES)}")
    print(f"\nModel: {MODEL_CONFIG['algorithm']}")
    print(f"   Train fraction: {MODEL_CONFIG['train_fraction']}")
    print(f"   CV folds: {MODEL_CONFIG['cv_folds']}")
    print(f"\nOutput: {OUTPUT_DIR}")
    print("=" * 60)


if __name__ == "__main__":
    print_config()
