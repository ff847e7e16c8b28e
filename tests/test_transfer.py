"""
Unit tests for transfer module.
"""

import numpy as np
import pytest

from floodgrid.evaluation import roc_curve, score
from floodgrid.model import fit
from floodgrid.transfer import apply_across_cities, feature_shift_table

FEATURES = ["mean_elevation", "stream_distance"]
PROCESS = {"mean_elevation": (-2.5, 1.0), "stream_distance": (0.5, 1.0)}


@pytest.fixture
def source_cells(logistic_cells):
    return logistic_cells(2000, PROCESS, seed=21)


@pytest.fixture
def source_model(source_cells):
    return fit(source_cells, FEATURES)


@pytest.fixture
def target_cells(logistic_cells):
    """Same flood process as the source, different cells."""
    return logistic_cells(2000, PROCESS, seed=22)


def test_transfer_same_scale_generalizes(source_model, logistic_cells, target_cells):
    source_auc = roc_curve(score(source_model, logistic_cells(2000, PROCESS, seed=23))).auc

    records = apply_across_cities(source_model, target_cells)

    assert len(records) == len(target_cells)
    assert roc_curve(records).auc == pytest.approx(source_auc, abs=0.05)


def test_transfer_scale_mismatch_degrades_silently(source_model, logistic_cells, target_cells):
    """Distances in the target recorded in different units: no error, worse ranking."""
    source_auc = roc_curve(score(source_model, logistic_cells(2000, PROCESS, seed=23))).auc
    shifted = target_cells.assign(stream_distance=target_cells["stream_distance"] * 1000)

    records = apply_across_cities(source_model, shifted)
    probability = records["predicted_probability"]

    assert ((probability > 0) & (probability < 1)).all()
    assert roc_curve(records).auc <= source_auc - 0.15


def test_transfer_without_target_labels(source_model, target_cells):
    records = apply_across_cities(source_model, target_cells.drop(columns="flood_label"))

    assert records["observed_label"].isna().all()
    assert np.isnan(roc_curve(records).auc)


def test_feature_shift_table(source_cells, target_cells):
    shifted = target_cells.assign(stream_distance=target_cells["stream_distance"] * 1000)

    table = feature_shift_table(source_cells, shifted, FEATURES + ["vegetation_index"])

    assert list(table["feature"]) == FEATURES + ["vegetation_index"]
    ratios = table.set_index("feature")["std_ratio"]
    assert ratios["mean_elevation"] == pytest.approx(1.0, abs=0.1)
    assert ratios["stream_distance"] == pytest.approx(1000, rel=0.1)
    assert np.isnan(ratios["vegetation_index"])
