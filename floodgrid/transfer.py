"""
Cross-City Transfer
===================

Applies a model fitted on one city (Calgary) to another city's cells
(Denver) without refitting.

This is a test of generalization, not an operation guaranteed to be valid.
The caller must make sure the target cells expose the same feature contract
as the model: same names, same units, same scale. The model only checks
names. A unit or scale mismatch between cities (feet vs meters, flow
accumulation counted on a finer DEM, ...) still produces probabilities,
just wrong ones. ``feature_shift_table`` helps spot such shifts but decides
nothing.
"""

from typing import Sequence

import numpy as np
import pandas as pd

from floodgrid.evaluation import score
from floodgrid.model import TrainedModel
from floodgrid.utils import setup_logging, timer

logger = setup_logging()


@timer
def apply_across_cities(
    source_model: TrainedModel,
    target_cells: pd.DataFrame,
    label_column: str = "flood_label"
) -> pd.DataFrame:
    """
    Predict flood probability for another city's cells with an unmodified model.

    Parameters
    ----------
    source_model : TrainedModel
        Model fitted on the source city
    target_cells : pd.DataFrame
        Target city cells carrying the model's features
    label_column : str
        Observed labels, when the target city has any

    Returns
    -------
    pd.DataFrame
        Prediction records (``cell_id``, ``observed_label``,
        ``predicted_probability``)
    """
    logger.info(f"Applying source model to {len(target_cells):,} target cells (no refit)")

    records = score(source_model, target_cells, label_column=label_column)

    probability = records["predicted_probability"]
    logger.info(f"  Probability: mean {probability.mean():.3f}, "
                f"median {probability.median():.3f}, max {probability.max():.3f}")

    return records


def feature_shift_table(
    source_cells: pd.DataFrame,
    target_cells: pd.DataFrame,
    feature_names: Sequence[str]
) -> pd.DataFrame:
    """
    Compare per-feature distributions of two cities.

    Large ``std_ratio`` values or shifted means are a hint that units or
    scale differ. Missing features show up as NaN rows.
    """
    rows = []
    for name in feature_names:
        source = source_cells[name].astype(float) if name in source_cells.columns else pd.Series(dtype=float)
        target = target_cells[name].astype(float) if name in target_cells.columns else pd.Series(dtype=float)
        source_std, target_std = source.std(), target.std()
        rows.append({
            "feature": name,
            "source_mean": source.mean(),
            "source_std": source_std,
            "target_mean": target.mean(),
            "target_std": target_std,
            "std_ratio": target_std / source_std if source_std else np.nan
        })

    table = pd.DataFrame(rows)

    logger.info("Feature distribution shift (target vs source):")
    for row in table.itertuples(index=False):
        logger.info(f"  {row.feature:18s} mean {row.source_mean:12.3f} -> {row.target_mean:12.3f}"
                    f" | std ratio {row.std_ratio:.2f}")

    return table
