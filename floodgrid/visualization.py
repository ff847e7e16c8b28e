"""
Visualization Module for Flood Inundation Modelling
===================================================

Figures built from the tabular outputs of the pipeline:
- ROC curves (single city or source vs target)
- Confusion matrices
- Cross-validation accuracy distribution
- Cell probability maps
- Per-cell feature maps
"""

from pathlib import Path
from typing import Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd
import geopandas as gpd
import matplotlib
import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.ticker import PercentFormatter

from floodgrid.evaluation import ConfusionCounts, RocCurve
from floodgrid.utils import ensure_dir, setup_logging, timer

logger = setup_logging()

plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


class Visualizer:
    """
    Creates and saves the figures of a flood inundation analysis.

    Attributes
    ----------
    output_dir : Path
        Directory for saving figures
    dpi : int
        Figure resolution
    format : str
        Output format (png, pdf, svg)
    colormap : str
        Colormap for probability maps

    Example
    -------
    >>> viz = Visualizer("outputs/figures")
    >>> viz.plot_roc_curve({"Calgary": roc})
    >>> viz.plot_cv_accuracy(accuracies)
    """

    def __init__(
        self,
        output_dir: Union[str, Path] = "outputs/figures",
        dpi: int = 300,
        format: str = "png",
        colormap: str = "Blues"
    ):
        self.output_dir = ensure_dir(output_dir)
        self.dpi = dpi
        self.format = format
        self.colormap = colormap

        self.colors = {
            'primary': '#2E86AB',
            'secondary': '#A23B72',
            'neutral': '#666666'
        }

        logger.info(f"Visualizer initialized: {self.output_dir}")

    def _save_figure(self, fig: plt.Figure, filename: str) -> Path:
        """Save figure to output directory and close it."""
        filepath = self.output_dir / f"{filename}.{self.format}"
        fig.savefig(filepath, dpi=self.dpi, bbox_inches='tight', facecolor='white')
        plt.close(fig)
        logger.info(f"  Saved: {filepath.name}")
        return filepath

    # =========================================================================
    # ROC CURVE
    # =========================================================================

    @timer
    def plot_roc_curve(
        self,
        curves: Dict[str, RocCurve],
        title: str = "ROC Curve",
        filename: str = "roc_curve"
    ) -> Path:
        """
        Plot one ROC curve per labelled city.

        Parameters
        ----------
        curves : dict
            {label: RocCurve}; curves with NaN AUC are skipped
        title : str
            Plot title
        filename : str
            Output file stem

        Returns
        -------
        Path
            Path to saved figure
        """
        logger.info("Plotting ROC curve...")

        fig, ax = plt.subplots(figsize=(8, 8))
        palette = [self.colors['primary'], self.colors['secondary'], self.colors['neutral']]

        for (label, roc), color in zip(curves.items(), palette * len(curves)):
            if np.isnan(roc.auc):
                logger.warning(f"  Skipping '{label}': ROC undefined")
                continue
            ax.plot(roc.fpr, roc.tpr, color=color, lw=2.5, label=f"{label} (AUC = {roc.auc:.3f})")
            ax.fill_between(roc.fpr, roc.tpr, alpha=0.1, color=color)

        ax.plot([0, 1], [0, 1], color='gray', lw=1.5, linestyle='--', label='Random classifier')

        ax.set_xlim([0.0, 1.0])
        ax.set_ylim([0.0, 1.05])
        ax.set_xlabel('False Positive Rate (1 - specificity)', fontsize=12)
        ax.set_ylabel('True Positive Rate (sensitivity)', fontsize=12)
        ax.set_title(title, fontsize=14, fontweight='bold')
        ax.legend(loc='lower right', fontsize=11)
        ax.set_aspect('equal')

        plt.tight_layout()

        return self._save_figure(fig, filename)

    # =========================================================================
    # CONFUSION MATRIX
    # =========================================================================

    @timer
    def plot_confusion_matrix(
        self,
        counts: ConfusionCounts,
        title: str = "Confusion Matrix",
        filename: str = "confusion_matrix"
    ) -> Path:
        """
        Plot confusion counts as an annotated heatmap.

        Rows are observed classes, columns predicted classes; each cell also
        shows its share of all labelled records.
        """
        logger.info("Plotting confusion matrix...")

        cm = counts.matrix()
        classes = ['No flood', 'Flood']

        fig, ax = plt.subplots(figsize=(8, 6))
        sns.heatmap(cm, annot=True, fmt='d', cmap='Blues',
                    xticklabels=classes, yticklabels=classes,
                    annot_kws={'size': 16}, ax=ax)

        total = counts.total
        if total:
            for i in range(2):
                for j in range(2):
                    ax.text(j + 0.5, i + 0.7, f'({cm[i, j] / total * 100:.1f}%)',
                            ha='center', va='center', fontsize=10, color='gray')

        ax.set_xlabel('Predicted', fontsize=12)
        ax.set_ylabel('Observed', fontsize=12)
        ax.set_title(f"{title}\nsensitivity {counts.sensitivity:.3f} | specificity {counts.specificity:.3f}",
                     fontsize=14, fontweight='bold')

        plt.tight_layout()

        return self._save_figure(fig, filename)

    # =========================================================================
    # CROSS-VALIDATION
    # =========================================================================

    @timer
    def plot_cv_accuracy(
        self,
        accuracies: Sequence[float],
        baseline: Optional[float] = None,
        title: str = "Cross-Validation Accuracy",
        filename: str = "cv_accuracy"
    ) -> Path:
        """
        Histogram of per-fold held-out accuracies.

        Parameters
        ----------
        accuracies : sequence of float
            One accuracy per fold
        baseline : float, optional
            Majority-class accuracy, drawn as a reference line
        """
        logger.info("Plotting cross-validation accuracy...")

        accuracies = np.asarray(accuracies, dtype=float)

        fig, ax = plt.subplots(figsize=(10, 6))
        sns.histplot(accuracies, bins=min(20, max(5, accuracies.size // 5)),
                     color=self.colors['primary'], edgecolor='white', ax=ax)

        ax.axvline(accuracies.mean(), color=self.colors['secondary'], lw=2,
                   label=f'Mean = {accuracies.mean():.3f}')
        if baseline is not None:
            ax.axvline(baseline, color='gray', lw=1.5, linestyle='--',
                       label=f'Majority baseline = {baseline:.3f}')

        ax.set_xlabel('Held-out accuracy', fontsize=12)
        ax.set_ylabel('Folds', fontsize=12)
        ax.set_title(f"{title} (k = {accuracies.size})", fontsize=14, fontweight='bold')
        ax.legend(loc='upper left')
        ax.spines['top'].set_visible(False)
        ax.spines['right'].set_visible(False)

        plt.tight_layout()

        return self._save_figure(fig, filename)

    # =========================================================================
    # MAPS
    # =========================================================================

    @timer
    def plot_probability_map(
        self,
        cells: gpd.GeoDataFrame,
        records: pd.DataFrame,
        title: str = "Predicted Flood Probability",
        filename: str = "probability_map"
    ) -> Path:
        """
        Map predicted probability per cell.

        Probabilities are in [0, 1]; the colorbar displays them as percent.
        Cells observed flooded are outlined when labels are available.
        """
        logger.info("Plotting probability map...")

        gdf = cells[["cell_id", "geometry"]].merge(records, on="cell_id", how="inner")

        fig, ax = plt.subplots(figsize=(12, 10))
        gdf.plot(column="predicted_probability", cmap=self.colormap, vmin=0, vmax=1,
                 linewidth=0, ax=ax, legend=True,
                 legend_kwds={'label': 'Flood probability', 'shrink': 0.8,
                              'format': PercentFormatter(xmax=1.0)})

        observed = gdf["observed_label"].fillna(False).astype(bool)
        if observed.any():
            gdf[observed].boundary.plot(ax=ax, color='red', linewidth=0.4)

        ax.set_title(title, fontsize=14, fontweight='bold')
        ax.set_xlabel('Easting (m)', fontsize=11)
        ax.set_ylabel('Northing (m)', fontsize=11)
        ax.annotate('N', xy=(0.95, 0.95), xycoords='axes fraction',
                    fontsize=14, fontweight='bold', ha='center', va='center')

        plt.tight_layout()

        return self._save_figure(fig, filename)

    @timer
    def plot_feature_maps(
        self,
        cells: gpd.GeoDataFrame,
        feature_names: Sequence[str],
        title: str = "Cell Covariates",
        filename: str = "feature_maps"
    ) -> Path:
        """One choropleth panel per feature."""
        logger.info("Plotting feature maps...")

        n = len(feature_names)
        n_cols = min(3, n)
        n_rows = int(np.ceil(n / n_cols))

        fig, axes = plt.subplots(n_rows, n_cols, figsize=(5 * n_cols, 4.5 * n_rows), squeeze=False)

        for ax, name in zip(axes.flat, feature_names):
            cells.assign(**{name: cells[name].astype(float)}).plot(
                column=name, cmap='viridis', linewidth=0, ax=ax, legend=True,
                missing_kwds={'color': 'lightgrey'}
            )
            ax.set_title(name, fontsize=12)
            ax.set_xticks([])
            ax.set_yticks([])

        for ax in list(axes.flat)[n:]:
            ax.axis('off')

        plt.suptitle(title, fontsize=14, fontweight='bold')
        plt.tight_layout()

        return self._save_figure(fig, filename)
