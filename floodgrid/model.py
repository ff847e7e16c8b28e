"""
Logistic Regression Model Module for Flood Inundation Modelling
===============================================================

Binomial GLM (logit link) relating the cell covariates to the probability
of inundation:
- Maximum-likelihood fit by IRLS (statsmodels)
- Prediction under an explicit, ordered feature contract
- Stratified k-fold cross-validation of held-out accuracy
"""

import warnings
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.special import expit
from sklearn.model_selection import StratifiedKFold
from joblib import Parallel, delayed
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning, PerfectSeparationError, PerfectSeparationWarning
)

from floodgrid.exceptions import FeatureMismatchError, InsufficientDataError, SeparationError
from floodgrid.utils import setup_logging, timer

logger = setup_logging()

# Keeps probabilities strictly inside (0, 1) when the logit saturates float64
PROBABILITY_EPS = np.finfo(np.float64).eps


@dataclass(frozen=True)
class TrainedModel:
    """
    Fitted logistic regression with its feature contract.

    Attributes
    ----------
    feature_names : tuple
        Ordered feature names used at fit time
    intercept : float
        Fitted intercept (log-odds at all-zero features)
    coefficient_values : tuple
        One coefficient per feature, in ``feature_names`` order
    std_errors : tuple
        Standard errors, intercept first
    p_values : tuple
        Wald test p-values, intercept first
    iterations : int
        IRLS iterations used
    converged : bool
        IRLS convergence flag (always True for a returned model)
    n_train : int
        Number of training cells
    """
    feature_names: Tuple[str, ...]
    intercept: float
    coefficient_values: Tuple[float, ...]
    std_errors: Tuple[float, ...]
    p_values: Tuple[float, ...]
    iterations: int
    converged: bool
    n_train: int

    @property
    def coefficients(self) -> pd.Series:
        return pd.Series(self.coefficient_values, index=list(self.feature_names), name="coefficient")

    def design_matrix(self, cells: pd.DataFrame) -> np.ndarray:
        """Feature values of ``cells`` in fit-time order."""
        return _design_matrix(cells, self.feature_names).to_numpy()

    def summary(self) -> pd.DataFrame:
        """Coefficient table with odds ratios, intercept first."""
        terms = ["(intercept)"] + list(self.feature_names)
        estimates = np.array((self.intercept,) + self.coefficient_values)
        with np.errstate(over="ignore"):
            odds = np.exp(estimates)
        return pd.DataFrame({
            "term": terms,
            "coefficient": estimates,
            "std_error": self.std_errors,
            "p_value": self.p_values,
            "odds_ratio": odds
        })


def _design_matrix(cells: pd.DataFrame, feature_names: Sequence[str]) -> pd.DataFrame:
    for name in feature_names:
        if name not in cells.columns:
            raise FeatureMismatchError(name, feature_names)

    X = cells[list(feature_names)].astype(float)
    bad = [name for name in feature_names if not np.isfinite(X[name].to_numpy()).all()]
    if bad:
        raise ValueError(f"Non-finite values in feature(s) {bad}; drop or impute those cells first")
    return X


# =============================================================================
# FIT / PREDICT
# =============================================================================

def fit(
    train_cells: pd.DataFrame,
    feature_names: Sequence[str],
    label_column: str = "flood_label",
    max_iter: int = 100
) -> TrainedModel:
    """
    Fit P(flood | x) = sigmoid(b0 + sum(bi * xi)) by maximum likelihood.

    Parameters
    ----------
    train_cells : pd.DataFrame
        Training cells with the features and a non-null label
    feature_names : sequence of str
        Ordered feature contract
    label_column : str
        Binary label column
    max_iter : int
        IRLS iteration budget

    Returns
    -------
    TrainedModel

    Raises
    ------
    SeparationError
        If IRLS does not converge within ``max_iter`` (typically perfect
        separation) or yields non-finite coefficients
    FeatureMismatchError
        If a named feature is missing from ``train_cells``
    """
    feature_names = tuple(feature_names)
    if train_cells[label_column].isna().any():
        raise ValueError(f"Training cells contain null '{label_column}' values")

    X = sm.add_constant(_design_matrix(train_cells, feature_names), has_constant="add")
    y = train_cells[label_column].astype(bool).astype(float)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            result = sm.GLM(y, X, family=sm.families.Binomial()).fit(maxiter=max_iter)
        except PerfectSeparationError as e:
            raise SeparationError(f"Perfect separation in training data: {e}") from e
        except np.linalg.LinAlgError as e:
            raise SeparationError(f"IRLS failed numerically: {e}") from e

    iterations = int(result.fit_history["iteration"])
    params = np.asarray(result.params, dtype=float)

    if not result.converged:
        raise SeparationError("IRLS did not converge", iterations)
    if not np.all(np.isfinite(params)):
        raise SeparationError("Fit produced non-finite coefficients", iterations)

    for warning in caught:
        if issubclass(warning.category, (PerfectSeparationWarning, ConvergenceWarning)):
            logger.warning(f"  GLM: {warning.message}")
        else:
            logger.debug(f"  GLM: {warning.category.__name__}: {warning.message}")

    model = TrainedModel(
        feature_names=feature_names,
        intercept=float(params[0]),
        coefficient_values=tuple(float(v) for v in params[1:]),
        std_errors=tuple(float(v) for v in np.asarray(result.bse)),
        p_values=tuple(float(v) for v in np.asarray(result.pvalues)),
        iterations=iterations,
        converged=bool(result.converged),
        n_train=len(y)
    )

    logger.debug(f"Fitted binomial GLM on {len(y)} cells in {iterations} iterations")
    for name, coef in zip(feature_names, model.coefficient_values):
        logger.debug(f"  {name}: {coef:+.6f}")

    return model


def predict(model: TrainedModel, cells: pd.DataFrame) -> pd.Series:
    """
    Flood probability for each cell, strictly inside (0, 1).

    Raises
    ------
    FeatureMismatchError
        If ``cells`` lacks a feature of the model's contract
    """
    X = model.design_matrix(cells)
    logit = model.intercept + X @ np.asarray(model.coefficient_values)
    probability = np.clip(expit(logit), PROBABILITY_EPS, 1.0 - PROBABILITY_EPS)
    return pd.Series(probability, index=cells.index, name="predicted_probability")


# =============================================================================
# CROSS-VALIDATION
# =============================================================================

def _fold_accuracy(
    cells: pd.DataFrame,
    train_idx: np.ndarray,
    test_idx: np.ndarray,
    feature_names: Sequence[str],
    label_column: str,
    threshold: float,
    max_iter: int
) -> float:
    train, held_out = cells.iloc[train_idx], cells.iloc[test_idx]
    model = fit(train, feature_names, label_column, max_iter)
    predicted = predict(model, held_out).to_numpy() > threshold
    observed = held_out[label_column].astype(bool).to_numpy()
    return float(np.mean(predicted == observed))


@timer
def cross_validate(
    cells: pd.DataFrame,
    feature_names: Sequence[str],
    k: int = 100,
    seed: int = 42,
    threshold: float = 0.5,
    label_column: str = "flood_label",
    max_iter: int = 100,
    n_jobs: int = 1
) -> np.ndarray:
    """
    Stratified k-fold cross-validation of held-out accuracy.

    Each fold is scored by a model refitted on the other k-1 folds, with
    cells classified positive when their probability exceeds ``threshold``.

    Parameters
    ----------
    cells : pd.DataFrame
        Labelled cells (null labels are skipped)
    feature_names : sequence of str
        Ordered feature contract
    k : int
        Number of folds
    seed : int
        Fold shuffling seed
    threshold : float
        Decision threshold
    label_column : str
        Binary label column
    max_iter : int
        IRLS iteration budget per fold
    n_jobs : int
        joblib workers; folds are independent

    Returns
    -------
    np.ndarray
        Accuracy of each of the k folds

    Raises
    ------
    InsufficientDataError
        If no class has k labelled cells, so the folds cannot be built
    """
    if k < 2:
        raise ValueError(f"k must be at least 2, got {k}")

    labelled = cells[cells[label_column].notna()]
    y = labelled[label_column].astype(bool).to_numpy()

    logger.info(f"Performing {k}-fold cross-validation on {len(y):,} cells...")

    folds = StratifiedKFold(n_splits=k, shuffle=True, random_state=seed)
    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", UserWarning)
            splits = list(folds.split(np.zeros(len(y)), y))
    except ValueError as e:
        raise InsufficientDataError(f"Cannot build {k} folds: {e}") from e

    # a class smaller than k leaves some folds without it
    for warning in caught:
        logger.warning(f"  StratifiedKFold: {warning.message}")

    accuracies = Parallel(n_jobs=n_jobs)(
        delayed(_fold_accuracy)(labelled, train_idx, test_idx, feature_names,
                                label_column, threshold, max_iter)
        for train_idx, test_idx in splits
    )
    accuracies = np.asarray(accuracies, dtype=float)

    summary = cv_summary(accuracies)
    logger.info(f"  Accuracy: {summary['mean']:.3f} ± {summary['std']:.3f} "
                f"(min {summary['min']:.3f}, max {summary['max']:.3f})")

    return accuracies


def cv_summary(accuracies: np.ndarray) -> Dict[str, float]:
    """Mean, spread and range of per-fold accuracies."""
    accuracies = np.asarray(accuracies, dtype=float)
    return {
        "k": int(accuracies.size),
        "mean": float(accuracies.mean()),
        "std": float(accuracies.std()),
        "min": float(accuracies.min()),
        "max": float(accuracies.max())
    }
