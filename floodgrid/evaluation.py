"""
Model Evaluation Module for Flood Inundation Modelling
======================================================

Scores cells with a trained model and derives threshold-based metrics:
- Prediction records (cell id, observed label, probability)
- Confusion outcomes at a decision threshold
- Sensitivity, specificity, accuracy, precision
- ROC curve and AUC
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

import numpy as np
import pandas as pd
from sklearn import metrics

from floodgrid.model import TrainedModel, predict
from floodgrid.utils import setup_logging, timer

logger = setup_logging()


class Outcome(str, Enum):
    """Confusion-matrix category of one labelled prediction."""
    TRUE_POSITIVE = "TruePositive"
    TRUE_NEGATIVE = "TrueNegative"
    FALSE_POSITIVE = "FalsePositive"
    FALSE_NEGATIVE = "FalseNegative"


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else float("nan")


@dataclass(frozen=True)
class ConfusionCounts:
    """Counts per confusion category; rates are NaN when undefined."""
    tp: int
    tn: int
    fp: int
    fn: int

    @property
    def total(self) -> int:
        return self.tp + self.tn + self.fp + self.fn

    @property
    def sensitivity(self) -> float:
        return _ratio(self.tp, self.tp + self.fn)

    @property
    def specificity(self) -> float:
        return _ratio(self.tn, self.tn + self.fp)

    @property
    def accuracy(self) -> float:
        return _ratio(self.tp + self.tn, self.total)

    @property
    def precision(self) -> float:
        return _ratio(self.tp, self.tp + self.fp)

    def matrix(self) -> np.ndarray:
        """2x2 matrix, rows observed (no flood, flood), columns predicted."""
        return np.array([[self.tn, self.fp], [self.fn, self.tp]])

    def as_dict(self) -> Dict[str, float]:
        return {
            "tp": self.tp, "tn": self.tn, "fp": self.fp, "fn": self.fn,
            "sensitivity": self.sensitivity,
            "specificity": self.specificity,
            "accuracy": self.accuracy,
            "precision": self.precision
        }


@dataclass(frozen=True)
class RocCurve:
    """ROC points swept over every distinct predicted probability."""
    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray
    auc: float


# =============================================================================
# SCORING
# =============================================================================

def score(
    model: TrainedModel,
    cells: pd.DataFrame,
    threshold: float = 0.5,
    label_column: str = "flood_label"
) -> pd.DataFrame:
    """
    Prediction records for ``cells``.

    Records carry raw probabilities. ``threshold`` is only checked to lie
    in [0, 1] here; cut-offs are applied by ``classify``.

    Returns
    -------
    pd.DataFrame
        Columns ``cell_id``, ``observed_label`` (nullable boolean) and
        ``predicted_probability``
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be in [0, 1], got {threshold}")

    probability = predict(model, cells)

    if label_column in cells.columns:
        observed = cells[label_column].astype("boolean")
    else:
        observed = pd.Series(pd.NA, index=cells.index, dtype="boolean")

    return pd.DataFrame({
        "cell_id": cells["cell_id"].to_numpy(),
        "observed_label": observed.reset_index(drop=True),
        "predicted_probability": probability.to_numpy()
    })


def classify(records: pd.DataFrame, threshold: float = 0.5) -> pd.DataFrame:
    """
    Confusion outcome of every record with an observed label.

    A record is predicted flooded only when its probability is strictly
    greater than ``threshold``; a probability equal to the threshold is
    predicted not flooded.
    """
    labelled = records[records["observed_label"].notna()].copy()

    predicted = labelled["predicted_probability"].to_numpy() > threshold
    observed = labelled["observed_label"].astype(bool).to_numpy()

    labelled["predicted_label"] = predicted
    labelled["outcome"] = np.select(
        [predicted & observed, ~predicted & ~observed, predicted & ~observed],
        [Outcome.TRUE_POSITIVE.value, Outcome.TRUE_NEGATIVE.value, Outcome.FALSE_POSITIVE.value],
        default=Outcome.FALSE_NEGATIVE.value
    )

    return labelled


def confusion_counts(outcomes: pd.DataFrame) -> ConfusionCounts:
    """Tally classified records into a ConfusionCounts."""
    counts = outcomes["outcome"].value_counts()
    return ConfusionCounts(
        tp=int(counts.get(Outcome.TRUE_POSITIVE.value, 0)),
        tn=int(counts.get(Outcome.TRUE_NEGATIVE.value, 0)),
        fp=int(counts.get(Outcome.FALSE_POSITIVE.value, 0)),
        fn=int(counts.get(Outcome.FALSE_NEGATIVE.value, 0))
    )


def roc_curve(records: pd.DataFrame) -> RocCurve:
    """
    ROC curve over all distinct probabilities, with trapezoidal AUC.

    AUC is NaN when the labelled records contain only one class.
    """
    labelled = records[records["observed_label"].notna()]
    y_true = labelled["observed_label"].astype(bool).to_numpy()
    y_score = labelled["predicted_probability"].to_numpy()

    if y_true.all() or not y_true.any():
        logger.warning("ROC undefined: labelled records contain a single class")
        empty = np.array([], dtype=float)
        return RocCurve(empty, empty, empty, float("nan"))

    fpr, tpr, thresholds = metrics.roc_curve(y_true, y_score, drop_intermediate=False)
    return RocCurve(fpr, tpr, thresholds, float(metrics.auc(fpr, tpr)))


# =============================================================================
# SUMMARY
# =============================================================================

@timer
def evaluate(
    model: TrainedModel,
    cells: pd.DataFrame,
    threshold: float = 0.5,
    label_column: str = "flood_label"
) -> Dict[str, float]:
    """
    Score ``cells`` and summarise threshold metrics and AUC.

    Returns
    -------
    dict
        Confusion counts, sensitivity, specificity, accuracy, precision,
        AUC, threshold and number of labelled cells
    """
    logger.info("=" * 60)
    logger.info("MODEL EVALUATION")
    logger.info("=" * 60)

    records = score(model, cells, threshold, label_column=label_column)
    counts = confusion_counts(classify(records, threshold))
    roc = roc_curve(records)

    results = counts.as_dict()
    results.update({"auc": roc.auc, "threshold": threshold, "n": counts.total})

    logger.info(f"  AUC-ROC:     {roc.auc:.3f}")
    logger.info(f"  Sensitivity: {counts.sensitivity:.3f}")
    logger.info(f"  Specificity: {counts.specificity:.3f}")
    logger.info(f"  Accuracy:    {counts.accuracy:.3f}")
    logger.info("\nConfusion Matrix:")
    logger.info(f"  TN: {counts.tn}, FP: {counts.fp}")
    logger.info(f"  FN: {counts.fn}, TP: {counts.tp}")

    return results
