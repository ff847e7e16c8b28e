"""
Flood Inundation Modelling Package
==================================

Per-cell logistic regression of flood inundation, trained on Calgary's
2013 flood and transferred to Denver.

This package contains modules for:
- Fishnet construction
- Cell feature extraction and flood labelling
- Stratified splitting and logistic regression
- Evaluation (confusion counts, ROC/AUC) and cross-validation
- Cross-city transfer
- Visualization
"""

__version__ = "1.0.0"

from .exceptions import (
    FloodGridError,
    InvalidGeometryError,
    NoCoverageError,
    InsufficientDataError,
    SeparationError,
    FeatureMismatchError
)
from .utils import FeatureRaster, setup_logging, timer, read_feature_raster, read_vector
from .grid import create_fishnet
from .feature_engineering import (
    FEATURE_NAMES,
    CitySources,
    ExtractionResult,
    extract_features,
    mean_elevation,
    distance_to_nearest_stream,
    max_flow_accumulation,
    vegetation_index,
    is_built_up,
    compute_flow_accumulation,
    compute_ndvi
)
from .labels import assign_flood_labels, flood_fraction
from .preprocessing import DataPreprocessor, DatasetSplit, drop_incomplete, split_dataset
from .model import TrainedModel, fit, predict, cross_validate, cv_summary
from .evaluation import (
    Outcome,
    ConfusionCounts,
    RocCurve,
    score,
    classify,
    confusion_counts,
    roc_curve,
    evaluate
)
from .transfer import apply_across_cities, feature_shift_table

__all__ = [
    "FloodGridError",
    "InvalidGeometryError",
    "NoCoverageError",
    "InsufficientDataError",
    "SeparationError",
    "FeatureMismatchError",
    "FeatureRaster",
    "setup_logging",
    "timer",
    "read_feature_raster",
    "read_vector",
    "create_fishnet",
    "FEATURE_NAMES",
    "CitySources",
    "ExtractionResult",
    "extract_features",
    "mean_elevation",
    "distance_to_nearest_stream",
    "max_flow_accumulation",
    "vegetation_index",
    "is_built_up",
    "compute_flow_accumulation",
    "compute_ndvi",
    "assign_flood_labels",
    "flood_fraction",
    "DataPreprocessor",
    "DatasetSplit",
    "drop_incomplete",
    "split_dataset",
    "TrainedModel",
    "fit",
    "predict",
    "cross_validate",
    "cv_summary",
    "Outcome",
    "ConfusionCounts",
    "RocCurve",
    "score",
    "classify",
    "confusion_counts",
    "roc_curve",
    "evaluate",
    "apply_across_cities",
    "feature_shift_table"
]
