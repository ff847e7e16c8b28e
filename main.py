#!/usr/bin/env python3
"""
Flood Inundation Modelling - Calgary 2013 -> Denver
===================================================

End-to-end run:
1. Fishnet of 200 m cells over each city
2. Cell covariates and (where available) flood labels
3. Stratified 70/30 split and logistic regression on Calgary
4. Hold-out evaluation and k-fold cross-validation
5. Unmodified Calgary model applied to Denver

Cities whose source files are missing under data/raw/<city>/ are replaced
by simulated layers.

Usage:
    python main.py
    python main.py --demo --cv-folds 20 --n-jobs 4
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import geopandas as gpd

import config
from floodgrid.evaluation import classify, confusion_counts, evaluate, roc_curve, score
from floodgrid.exceptions import FloodGridError
from floodgrid.feature_engineering import CitySources, extract_features
from floodgrid.grid import create_fishnet
from floodgrid.labels import assign_flood_labels
from floodgrid.model import cross_validate, cv_summary, fit
from floodgrid.preprocessing import DataPreprocessor, drop_incomplete, split_dataset
from floodgrid.synthetic import simulate_city
from floodgrid.transfer import apply_across_cities, feature_shift_table
from floodgrid.utils import ensure_dir, read_vector, setup_logging
from floodgrid.visualization import Visualizer

logger = setup_logging()


# =============================================================================
# CITY PREPARATION
# =============================================================================

def _source_paths(key: str) -> Dict[str, Path]:
    area = config.STUDY_AREAS[key]
    return {name: config.RAW_DATA_DIR / key / filename for name, filename in area["sources"].items()}


def load_study_area(key: str, demo: bool = False) -> Tuple[object, CitySources]:
    """
    Boundary and source layers of one city, simulated when files are missing.

    The flood extent is optional: a city without one is predicted but not
    labelled.
    """
    area = config.STUDY_AREAS[key]
    paths = _source_paths(key)
    required = [name for name in paths if name != "flood_extent"]
    missing = [name for name in required if not paths[name].exists()]

    if demo or missing:
        if missing and not demo:
            logger.warning(f"{area['name']}: missing {', '.join(missing)}; using simulated layers")
        params = area["demo"]
        city = simulate_city(
            area["name"],
            params["bounds"],
            area["crs"],
            resolution=config.GRID["raster_resolution"],
            seed=params["seed"],
            base_elevation=params["base_elevation"],
            flood_stage=params["flood_stage"]
        )
        return city.boundary, city.sources

    logger.info(f"{area['name']}: loading sources from {paths['dem'].parent}")
    boundary = read_vector(paths.pop("boundary"), area["crs"])
    if not paths["flood_extent"].exists():
        paths.pop("flood_extent")

    preprocessor = DataPreprocessor(target_crs=area["crs"])
    return boundary, preprocessor.load_city(paths)


def build_cell_table(
    key: str,
    boundary,
    sources: CitySources,
    n_jobs: int = 1
) -> gpd.GeoDataFrame:
    """Fishnet with covariates and, when a flood extent exists, labels."""
    area = config.STUDY_AREAS[key]

    logger.info("=" * 60)
    logger.info(f"CITY: {area['name'].upper()}")
    logger.info("=" * 60)

    cells = create_fishnet(
        boundary,
        cell_size=config.GRID["cell_size"],
        crs=area["crs"],
        clip_to_boundary=config.GRID["clip_to_boundary"]
    )

    extraction = extract_features(
        cells,
        sources,
        area["non_built_classes"],
        class_column=area["land_use_column"],
        strict=config.EXTRACTION["strict"],
        n_jobs=n_jobs
    )
    cells = extraction.cells

    if sources.flood_extent is not None:
        cells = assign_flood_labels(cells, sources.flood_extent)
    else:
        logger.info(f"  No flood extent for {area['name']}: cells left unlabelled")
        cells = cells.assign(flood_label=pd.array([pd.NA] * len(cells), dtype="boolean"))

    return cells


# =============================================================================
# OUTPUTS
# =============================================================================

def save_cells(cells: gpd.GeoDataFrame, records: pd.DataFrame, filepath: Path) -> Path:
    """Write cells with their predictions to a GeoPackage."""
    out = cells.merge(records[["cell_id", "predicted_probability"]], on="cell_id", how="left")
    out["flood_label"] = out["flood_label"].to_numpy(dtype=float, na_value=np.nan)
    out.to_file(filepath, driver="GPKG")
    logger.info(f"  Saved: {filepath.name}")
    return filepath


def save_json(payload: Dict, filepath: Path) -> Path:
    with open(filepath, "w") as f:
        json.dump(payload, f, indent=2, default=float)
    logger.info(f"  Saved: {filepath.name}")
    return filepath


# =============================================================================
# PIPELINE
# =============================================================================

def run_pipeline(
    demo: bool = False,
    cv_folds: Optional[int] = None,
    n_jobs: int = 1,
    make_figures: bool = True
) -> Dict:
    """
    Train on Calgary, evaluate, cross-validate and transfer to Denver.

    Returns
    -------
    dict
        Model summary, hold-out metrics, CV summary and transfer metrics
    """
    model_cfg = config.MODEL_CONFIG
    feature_names = config.FEATURE_NAMES
    threshold = model_cfg["threshold"]
    k = cv_folds or model_cfg["cv_folds"]

    ensure_dir(config.TABLES_DIR)
    viz = None
    if make_figures:
        viz = Visualizer(
            config.FIGURES_DIR,
            dpi=config.VISUALIZATION["figure_dpi"],
            format=config.VISUALIZATION["figure_format"],
            colormap=config.VISUALIZATION["colormap"]
        )

    # -------------------------------------------------------------------------
    # Calgary: training city
    # -------------------------------------------------------------------------
    boundary, sources = load_study_area("calgary", demo)
    calgary = build_cell_table("calgary", boundary, sources, n_jobs)
    calgary_complete, dropped = drop_incomplete(calgary, feature_names)
    if dropped:
        logger.info(f"  Excluded {len(dropped)} Calgary cell(s) from modelling")

    logger.info("=" * 60)
    logger.info("TRAINING")
    logger.info("=" * 60)

    split = split_dataset(
        calgary_complete,
        train_fraction=model_cfg["train_fraction"],
        seed=model_cfg["random_state"],
        min_class_count=model_cfg["min_class_count"]
    )
    model = fit(split.train, feature_names, max_iter=model_cfg["max_iter"])
    summary = model.summary()
    logger.info(f"Fitted in {model.iterations} IRLS iterations on {model.n_train:,} cells")
    for row in summary.itertuples(index=False):
        logger.info(f"  {row.term:18s} {row.coefficient:+12.6f}  p={row.p_value:.3g}  OR={row.odds_ratio:.4g}")

    holdout = evaluate(model, split.test, threshold)
    holdout_records = score(model, split.test)

    logger.info("=" * 60)
    logger.info("CROSS-VALIDATION")
    logger.info("=" * 60)

    accuracies = cross_validate(
        calgary_complete,
        feature_names,
        k=k,
        seed=model_cfg["random_state"],
        threshold=threshold,
        max_iter=model_cfg["max_iter"],
        n_jobs=n_jobs
    )
    flood_share = float(calgary_complete["flood_label"].dropna().astype(bool).mean())
    baseline = max(flood_share, 1 - flood_share)
    logger.info(f"  Majority-class baseline: {baseline:.3f}")

    # -------------------------------------------------------------------------
    # Denver: transfer city
    # -------------------------------------------------------------------------
    boundary, sources = load_study_area("denver", demo)
    denver = build_cell_table("denver", boundary, sources, n_jobs)
    denver_complete, _ = drop_incomplete(denver, feature_names)

    logger.info("=" * 60)
    logger.info("CROSS-CITY TRANSFER")
    logger.info("=" * 60)

    shift = feature_shift_table(calgary_complete, denver_complete, feature_names)
    transfer_records = apply_across_cities(model, denver_complete)

    transfer = {"n_cells": int(len(transfer_records))}
    if transfer_records["observed_label"].notna().any():
        counts = confusion_counts(classify(transfer_records, threshold))
        transfer_roc = roc_curve(transfer_records)
        transfer.update(counts.as_dict())
        transfer["auc"] = transfer_roc.auc
        logger.info(f"  Denver AUC: {transfer_roc.auc:.3f} (Calgary hold-out {holdout['auc']:.3f})")
        logger.info(f"  Denver sensitivity {counts.sensitivity:.3f}, specificity {counts.specificity:.3f}")
    else:
        transfer_roc = None

    # -------------------------------------------------------------------------
    # Outputs
    # -------------------------------------------------------------------------
    logger.info("=" * 60)
    logger.info("SAVING OUTPUTS")
    logger.info("=" * 60)

    results = {
        "coefficients": summary.to_dict(orient="records"),
        "holdout": holdout,
        "cross_validation": dict(cv_summary(accuracies), baseline=baseline),
        "transfer": transfer
    }

    calgary_records = score(model, calgary_complete)
    save_cells(calgary, calgary_records, config.TABLES_DIR / "calgary_cells.gpkg")
    save_cells(denver, transfer_records, config.TABLES_DIR / "denver_cells.gpkg")
    shift.to_csv(config.TABLES_DIR / "feature_shift.csv", index=False)
    pd.Series(accuracies, name="accuracy").rename_axis("fold").to_csv(config.TABLES_DIR / "cv_accuracy.csv")
    save_json(results, config.TABLES_DIR / "metrics.json")

    if viz is not None:
        curves = {"Calgary hold-out": roc_curve(holdout_records)}
        if transfer_roc is not None:
            curves["Denver (transfer)"] = transfer_roc
        viz.plot_roc_curve(curves)
        viz.plot_confusion_matrix(confusion_counts(classify(holdout_records, threshold)),
                                  title="Calgary Hold-out")
        viz.plot_cv_accuracy(accuracies, baseline=baseline)
        viz.plot_feature_maps(calgary, feature_names, title="Calgary Cell Covariates")
        viz.plot_probability_map(calgary, calgary_records,
                                 title="Calgary Flood Probability", filename="calgary_probability")
        viz.plot_probability_map(denver, transfer_records,
                                 title="Denver Flood Probability (Calgary model)", filename="denver_probability")

    return results


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Flood inundation logistic regression: train on Calgary, transfer to Denver"
    )
    parser.add_argument("--demo", action="store_true",
                        help="Use simulated layers for both cities")
    parser.add_argument("--cv-folds", type=int, default=None,
                        help=f"Cross-validation folds (default {config.MODEL_CONFIG['cv_folds']})")
    parser.add_argument("--n-jobs", type=int, default=config.MODEL_CONFIG["n_jobs"],
                        help="joblib workers for feature extraction and CV")
    parser.add_argument("--no-figures", action="store_true",
                        help="Skip figure rendering")
    parser.add_argument("--log-level", default=config.LOGGING["level"],
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    ensure_dir(config.OUTPUT_DIR)
    setup_logging(config.LOGGING["file"], args.log_level, config.LOGGING["format"])

    logger.info("=" * 60)
    logger.info("FLOOD INUNDATION MODELLING - CALGARY 2013 -> DENVER")
    logger.info("=" * 60)

    try:
        run_pipeline(
            demo=args.demo,
            cv_folds=args.cv_folds,
            n_jobs=args.n_jobs,
            make_figures=not args.no_figures
        )
    except FloodGridError as e:
        logger.error(f"Pipeline aborted: {type(e).__name__}: {e}")
        return 1

    logger.info("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
