#!/usr/bin/env python3
"""
Test suite for the navigation model core.

Covers:
- Feature vector layout and encodings
- Gini split search and tree construction
- Decision tree and bagged ensemble training / inference
- Evaluation metrics and the model registry
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ml.evaluation import ModelEvaluator, split_validation
from ml.exceptions import ModelNotLoadedError, TrainingError
from ml.features import FEATURE_NAMES, NavigationFeatures, encode_browser, encode_page_category
from ml.models import (
    BAGGED_ENSEMBLE,
    BaggedEnsembleStrategy,
    ModelFactory,
    ModelTrainer,
    bootstrap_indices,
)
from ml.registry import ModelRegistry
from ml.tree import Leaf, Split, build_tree, depth, find_best_split, gini, weighted_split_impurity


SIMPLE_FEATURES = [[0.0], [1.0], [10.0], [11.0]]
SIMPLE_TARGETS = ["/a", "/a", "/b", "/b"]


def _simple_model(**params):
    trainer = ModelTrainer()
    return trainer, trainer.fit(SIMPLE_FEATURES, SIMPLE_TARGETS, params=params or {"max_depth": 1},
                                feature_names=["x"])


def test_feature_vector_layout():
    """Vector has the fixed length and order."""
    print("Testing feature vector layout...")

    features = NavigationFeatures(session_id="s1", current_page="/dashboard", time_on_page=12.5,
                                  browser="Firefox", has_downloads=True)
    vector = features.to_vector()

    assert len(FEATURE_NAMES) == 26
    assert len(vector) == 26
    assert vector[FEATURE_NAMES.index("time_on_page")] == 12.5
    assert vector[FEATURE_NAMES.index("browser")] == 1.0
    assert vector[FEATURE_NAMES.index("bounce_rate")] == 1.0
    assert vector[-1] == 1.0
    print("  ✓ 26 features in declared order")


def test_categorical_encodings():
    print("Testing categorical encodings...")

    assert encode_browser("Chrome") == 0
    assert encode_browser("opera") == 4
    assert encode_browser(None) == 4
    assert encode_page_category("support") == 4
    assert encode_page_category("unheard_of") == 5

    defaults = NavigationFeatures(session_id="s", current_page="/").to_vector()
    assert defaults[FEATURE_NAMES.index("device_type")] == 0.0
    assert defaults[FEATURE_NAMES.index("traffic_source")] == 0.0
    print("  ✓ Unknown categories map to their fallback codes")


def test_gini_impurity():
    print("Testing Gini impurity...")

    assert gini([4]) == 0.0
    assert gini([2, 2]) == pytest.approx(0.5)
    assert gini([]) == 0.0
    assert weighted_split_impurity([], [3, 1]) == math.inf
    assert weighted_split_impurity([2, 0], [0, 2]) == 0.0
    print("  ✓ Gini and weighted split impurity")


def test_single_split_threshold():
    """Two well separated groups split at the midpoint 5.5."""
    print("Testing single split...")

    trainer, model = _simple_model()
    root = model.trees[0]

    assert isinstance(root, Split)
    assert root.feature_index == 0
    assert root.threshold == 5.5
    assert root.sample_count == 4
    assert [trainer.predict(model, v) for v in SIMPLE_FEATURES] == SIMPLE_TARGETS
    print("  ✓ Threshold 5.5 with 100% training accuracy")


def test_split_tie_keeps_first_feature():
    features = np.array([[0.0, 0.0], [1.0, 1.0], [10.0, 10.0], [11.0, 11.0]])
    codes = np.array([0, 0, 1, 1])

    feature_index, threshold, impurity = find_best_split(features, codes, 2)

    assert feature_index == 0
    assert threshold == 5.5
    assert impurity == 0.0


def test_no_valid_split_yields_leaf():
    features = np.array([[1.0], [1.0], [1.0]])
    codes = np.array([0, 1, 1])

    assert find_best_split(features, codes, 2) is None
    leaf = build_tree(features, codes, ["/a", "/b"], max_depth=5)
    assert isinstance(leaf, Leaf)
    assert leaf.label == "/b"
    assert leaf.class_counts == {"/a": 1, "/b": 2}


def test_leaf_majority_tie_keeps_first_label():
    leaf = build_tree(np.array([[0.0], [1.0]]), np.array([1, 0]), ["/a", "/b"], max_depth=0)

    assert isinstance(leaf, Leaf)
    assert leaf.label == "/b"
    assert leaf.sample_count == 2


def test_tree_depth_bounded():
    print("Testing depth limit...")

    rng = np.random.default_rng(7)
    features = rng.normal(size=(200, 4)).tolist()
    targets = [f"/page{i % 5}" for i in range(200)]

    trainer = ModelTrainer()
    for max_depth in (1, 2, 3):
        model = trainer.fit(features, targets, params={"max_depth": max_depth},
                            feature_names=["a", "b", "c", "d"])
        assert depth(model.trees[0]) <= max_depth
    print("  ✓ Depth never exceeds max_depth")


def test_bootstrap_sample():
    rng = np.random.default_rng(42)
    sample = bootstrap_indices(50, rng)

    assert len(sample) == 50
    assert len(set(sample.tolist())) < 50
    assert sample.min() >= 0 and sample.max() < 50


def test_bagged_ensemble():
    print("Testing bagged ensemble...")

    trainer = ModelTrainer()
    model = trainer.fit(SIMPLE_FEATURES * 5, SIMPLE_TARGETS * 5,
                        params={"kind": BAGGED_ENSEMBLE, "n_estimators": 7, "max_depth": 3},
                        feature_names=["x"])

    assert model.kind == BAGGED_ENSEMBLE
    assert len(model.trees) == 7
    assert model.training_data_size == 20
    assert trainer.predict(model, [0.5]) == "/a"

    probabilities = trainer.predict_probabilities(model, [10.5])
    assert all(0.0 <= p <= 1.0 for p in probabilities.values())
    assert sum(probabilities.values()) == pytest.approx(1.0)
    print(f"  ✓ Ensemble of {len(model.trees)} trees")


def test_ensemble_same_seed_is_reproducible():
    trainer = ModelTrainer()
    params = {"kind": BAGGED_ENSEMBLE, "n_estimators": 5, "random_state": 3}
    rng = np.random.default_rng(11)
    features = rng.normal(size=(40, 2)).tolist()
    targets = [f"/p{i % 3}" for i in range(40)]

    first = trainer.fit(features, targets, params=params, feature_names=["a", "b"])
    second = trainer.fit(features, targets, params=params, feature_names=["a", "b"])

    assert first.trees == second.trees


def test_ensemble_vote_tie_keeps_first_label():
    trees = (Leaf("/b", 1, {"/b": 1}), Leaf("/a", 1, {"/a": 1}))
    assert BaggedEnsembleStrategy().predict(trees, [0.0]) == "/b"


def test_model_factory():
    print("Testing model factory...")

    for kind in ModelFactory.supported_kinds():
        assert ModelFactory.create(kind).kind == kind

    with pytest.raises(ValueError):
        ModelFactory.create("gradient_boosting")
    print("  ✓ Factory rejects unsupported kinds")


@pytest.mark.parametrize("features, targets", [
    ([], []),
    ([[1.0], [2.0]], ["/a"]),
    ([[1.0], [2.0, 3.0]], ["/a", "/b"]),
    ([[1.0], [float("nan")]], ["/a", "/b"]),
    ([[1.0, 2.0], [3.0, 4.0]], ["/a", "/b"]),
])
def test_malformed_training_data(features, targets):
    with pytest.raises(TrainingError):
        ModelTrainer().fit(features, targets, feature_names=["x"])


def test_min_data_points_enforced():
    with pytest.raises(TrainingError) as exc_info:
        ModelTrainer(min_data_points=10).fit(SIMPLE_FEATURES, SIMPLE_TARGETS, feature_names=["x"])
    assert exc_info.value.required == 10


def test_vector_width_mismatch_on_predict():
    trainer, model = _simple_model()
    with pytest.raises(ValueError):
        trainer.predict(model, [1.0, 2.0])


def test_rank_orders_by_probability():
    trainer = ModelTrainer()
    model = trainer.fit([[0.0], [0.0], [0.0]], ["/x", "/y", "/y"], feature_names=["x"])

    ranked = trainer.rank(model, [0.0])
    assert ranked[0][0] == "/y"
    assert ranked[0][1] == pytest.approx(2 / 3)
    assert ranked[1] == ("/x", pytest.approx(1 / 3))


def test_feature_importance():
    trainer, model = _simple_model()
    assert trainer.feature_importance(model) == {"x": 1.0}

    leaf_model = trainer.fit([[1.0], [2.0]], ["/a", "/a"], feature_names=["x"])
    assert trainer.feature_importance(leaf_model) == {"x": 0.0}


def test_model_artifacts(tmp_path):
    print("Testing artifact persistence...")

    trainer, model = _simple_model()
    artifacts = trainer.save_model_artifacts(model, str(tmp_path))

    assert Path(artifacts["model_pickle"]).exists()
    assert Path(artifacts["feature_names"]).exists()

    loaded = ModelTrainer.load_model_artifacts(str(tmp_path))
    assert loaded.version == model.version
    assert loaded.trees == model.trees

    with pytest.raises(ModelNotLoadedError):
        ModelTrainer.load_model_artifacts(str(tmp_path / "missing"))
    print("  ✓ Artifacts saved and reloaded")


def test_split_validation():
    features = list(range(10))
    train_x, train_y, val_x, val_y = split_validation(features, features)
    assert train_x == list(range(8))
    assert val_x == [8, 9]

    train_x, _, val_x, _ = split_validation(list(range(7)), list(range(7)))
    assert len(train_x) == 5
    assert len(val_x) == 2


def test_evaluator_metrics():
    print("Testing evaluation metrics...")

    _, model = _simple_model()
    metrics = ModelEvaluator().evaluate(model, [[0.5], [10.5], [12.0]], ["/a", "/b", "/a"])

    assert metrics["accuracy"] == pytest.approx(2 / 3)
    assert metrics["precision"] == metrics["accuracy"]
    assert metrics["recall"] == metrics["accuracy"]
    assert metrics["f1"] == pytest.approx(2 / 3)
    assert metrics["labels"] == ["/a", "/b"]
    assert metrics["confusion_matrix"] == [[1, 1], [0, 1]]
    assert metrics["macro_precision"] == pytest.approx(0.75)
    assert metrics["macro_recall"] == pytest.approx(0.75)
    assert metrics["validation_size"] == 3
    assert metrics["degenerate"] is False
    print(f"  ✓ Accuracy {metrics['accuracy']:.3f}")


def test_evaluator_degenerate_validation_set():
    _, model = _simple_model()
    evaluator = ModelEvaluator()

    for features, targets in (([], []), ([[0.0], [1.0]], ["/a", "/a"])):
        metrics = evaluator.evaluate(model, features, targets)
        assert metrics["degenerate"] is True
        assert metrics["accuracy"] == 0.0
        assert metrics["f1"] == 0.0
        assert not any(isinstance(v, float) and math.isnan(v) for v in metrics.values())


def test_registry_promote_and_rollback():
    print("Testing model registry...")

    trainer = ModelTrainer()
    registry = ModelRegistry()
    assert registry.active() is None

    first = trainer.fit(SIMPLE_FEATURES, SIMPLE_TARGETS, feature_names=["x"])
    second = trainer.fit(SIMPLE_FEATURES, SIMPLE_TARGETS, feature_names=["x"])
    registry.register(first)
    registry.register(second)
    assert registry.status(first.version) == "candidate"

    registry.promote(first.version)
    registry.promote(second.version)
    assert registry.active().version == second.version
    assert registry.status(first.version) == "retired"

    restored = registry.rollback()
    assert restored.version == first.version
    assert registry.active_version == first.version
    assert registry.status(second.version) == "retired"
    assert registry.rollback() is None
    assert len(registry.list_versions()) == 2

    with pytest.raises(ModelNotLoadedError):
        registry.promote("v0_missing")
    print("  ✓ Promotion retires the previous version; rollback restores it")


def test_registry_attach_metrics_copies_model():
    trainer, model = _simple_model()
    registry = ModelRegistry()
    registry.register(model)

    updated = registry.attach_metrics(model.version, {"accuracy": 0.9})

    assert updated.metrics == {"accuracy": 0.9}
    assert model.metrics == {}
    assert registry.get(model.version) is updated


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
