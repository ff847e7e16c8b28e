"""
Integration tests: simulated city through features, labels and figures.
"""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from floodgrid.evaluation import classify, confusion_counts, roc_curve, score
from floodgrid.feature_engineering import FEATURE_NAMES, extract_features
from floodgrid.grid import create_fishnet
from floodgrid.labels import assign_flood_labels
from floodgrid.preprocessing import drop_incomplete
from floodgrid.synthetic import simulate_city
from floodgrid.model import TrainedModel
from floodgrid.visualization import Visualizer


@pytest.fixture(scope="module")
def city():
    return simulate_city("Testville", (0.0, 0.0, 3000.0, 3000.0), "EPSG:3776", resolution=30.0, seed=1)


@pytest.fixture(scope="module")
def city_cells(city):
    cells = create_fishnet(city.boundary, cell_size=200, crs="EPSG:3776")
    extraction = extract_features(cells, city.sources, ["park", "agriculture"])
    return assign_flood_labels(extraction.cells, city.sources.flood_extent)


def test_simulated_layers_share_grid(city):
    sources = city.sources

    assert sources.dem.shape == (100, 100)
    assert sources.nir.same_grid(sources.red)
    assert sources.flood_extent.same_grid(sources.dem)
    assert sources.streams.crs == "EPSG:3776"
    assert "landuse" in sources.land_use.columns


def test_simulation_is_seeded():
    first = simulate_city("A", (0.0, 0.0, 1500.0, 1500.0), "EPSG:3776", seed=4)
    second = simulate_city("A", (0.0, 0.0, 1500.0, 1500.0), "EPSG:3776", seed=4)

    np.testing.assert_array_equal(first.sources.dem.values, second.sources.dem.values)


def test_simulated_city_cell_table(city_cells):
    assert len(city_cells) == 15 * 15
    complete, dropped = drop_incomplete(city_cells, FEATURE_NAMES)
    assert dropped == []

    labels = complete["flood_label"]
    assert labels.notna().all()
    assert 0 < labels.sum() < len(labels)

    vegetation = complete["vegetation_index"]
    assert vegetation.between(-1, 1).all()
    assert (complete["stream_distance"] >= 0).all()

    # flooded cells sit closer to the river than dry ones
    flooded = labels.astype(bool)
    assert complete.loc[flooded, "stream_distance"].mean() < complete.loc[~flooded, "stream_distance"].mean()


def test_figures(tmp_path, city_cells):
    model = TrainedModel(
        feature_names=("stream_distance",),
        intercept=2.0,
        coefficient_values=(-0.02,),
        std_errors=(0.1, 0.001),
        p_values=(0.0, 0.0),
        iterations=5,
        converged=True,
        n_train=len(city_cells)
    )
    records = score(model, city_cells)
    viz = Visualizer(tmp_path, dpi=50)

    paths = [
        viz.plot_roc_curve({"Testville": roc_curve(records)}),
        viz.plot_confusion_matrix(confusion_counts(classify(records))),
        viz.plot_cv_accuracy(np.linspace(0.9, 1.0, 20), baseline=0.93),
        viz.plot_probability_map(city_cells, records),
        viz.plot_feature_maps(city_cells, FEATURE_NAMES)
    ]

    for path in paths:
        assert path.exists()
        assert path.parent == tmp_path
