"""Tests for decision-tree ensembles."""

import numpy as np
import pytest
from sklearn.ensemble import RandomForestRegressor

from winerec.models.decision_tree import (
    Internal,
    Leaf,
    TreeEnsemble,
    predict_tree,
    tree_from_dict,
    tree_to_dict,
)

STUMP = {
    "feature": 0,
    "threshold": 0.5,
    "left": {"value": 1.0},
    "right": {
        "feature": 1,
        "threshold": 10.0,
        "left": {"value": 2.0},
        "right": {"value": 3.0},
    },
}


def _deep_tree(depth: int) -> dict:
    node = {"value": 7.0}
    for _ in range(depth):
        node = {"feature": 0, "threshold": 1.0, "left": node, "right": {"value": -1.0}}
    return node


class TestTreeParsing:
    """Tests for the nested dict tree format."""

    def test_parse_nodes(self) -> None:
        """Dicts become Leaf and Internal nodes."""
        root = tree_from_dict(STUMP)
        assert isinstance(root, Internal)
        assert root.left == Leaf(1.0)
        assert root.right.feature_index == 1

    def test_feature_index_alias(self) -> None:
        """Split nodes may use feature_index instead of feature."""
        root = tree_from_dict(
            {"feature_index": 2, "threshold": 0, "left": {"value": 0}, "right": {"value": 1}}
        )
        assert root.feature_index == 2

    @pytest.mark.parametrize(
        "node",
        [
            {"feature": 0, "threshold": 1.0, "left": {"value": 1.0}},
            {"threshold": 1.0, "left": {"value": 1.0}, "right": {"value": 2.0}},
            {},
        ],
    )
    def test_malformed_node(self, node: dict) -> None:
        """Incomplete nodes are rejected."""
        with pytest.raises(ValueError, match="Malformed tree node"):
            tree_from_dict(node)

    def test_round_trip(self) -> None:
        """Serializing parsed nodes gives back the same structure."""
        assert tree_to_dict(tree_from_dict(STUMP)) == STUMP


class TestPrediction:
    """Tests for walking trees and averaging ensembles."""

    @pytest.mark.parametrize(
        "row,expected", [([0.5, 0.0], 1.0), ([0.6, 10.0], 2.0), ([0.6, 11.0], 3.0)]
    )
    def test_threshold_goes_left_inclusive(self, row: list, expected: float) -> None:
        """Values equal to the threshold go left."""
        assert predict_tree(tree_from_dict(STUMP), row) == expected

    def test_deep_tree_does_not_recurse(self) -> None:
        """Trees deeper than the recursion limit parse and predict."""
        root = tree_from_dict(_deep_tree(5000))
        assert predict_tree(root, [0.0]) == 7.0
        assert predict_tree(root, [2.0]) == -1.0

    def test_ensemble_averages(self) -> None:
        """The ensemble predicts the mean of its trees."""
        ensemble = TreeEnsemble([tree_from_dict(STUMP), Leaf(5.0)])
        np.testing.assert_allclose(ensemble.predict([[0.0, 0.0], [1.0, 20.0]]), [3.0, 4.0])

    def test_empty_ensemble_raises(self) -> None:
        """An ensemble without trees cannot predict."""
        with pytest.raises(RuntimeError, match="no trees"):
            TreeEnsemble([]).predict([[0.0]])

    def test_ensemble_dict_fields(self) -> None:
        """Ensemble metadata survives serialization."""
        data = {
            "algorithm": "random_forest",
            "nTrees": 1,
            "maxDepth": 2,
            "minSamplesSplit": 2,
            "trees": [STUMP],
        }
        ensemble = TreeEnsemble.from_dict(data)
        assert ensemble.parameters == {"nTrees": 1, "maxDepth": 2, "minSamplesSplit": 2}
        assert ensemble.to_dict() == data


class TestFromSklearn:
    """Tests for converting fitted scikit-learn forests."""

    def test_matches_sklearn_predictions(self) -> None:
        """A converted forest predicts what scikit-learn predicts."""
        rng = np.random.RandomState(0)
        X = rng.uniform(0, 10, size=(200, 3)).astype(np.float32)
        y = X[:, 0] * 0.3 + np.sin(X[:, 1]) + rng.normal(0, 0.1, 200)
        forest = RandomForestRegressor(n_estimators=5, max_depth=4, random_state=0)
        forest.fit(X, y)

        ensemble = TreeEnsemble.from_sklearn(forest)
        assert ensemble.parameters == {"n_trees": 5, "max_depth": 4}
        np.testing.assert_allclose(ensemble.predict(X[:20]), forest.predict(X[:20]))
