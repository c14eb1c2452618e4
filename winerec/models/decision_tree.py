"""Decision-tree ensembles used by the pairing models.

Trees are stored as nested dicts ({"value": v} leaves and {"feature",
"threshold", "left", "right"} splits). They are parsed into Leaf and
Internal nodes and walked with explicit loops, so arbitrarily deep trees
never hit the recursion limit.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

import numpy as np

from winerec.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Leaf:
    value: float


@dataclass(frozen=True)
class Internal:
    """Split node: rows with x[feature_index] <= threshold go left."""

    feature_index: int
    threshold: float
    left: "Node"
    right: "Node"


Node = Union[Leaf, Internal]


def predict_tree(node: Node, x: Sequence[float]) -> float:
    """Walk a tree from the root to the leaf that x falls into."""
    while isinstance(node, Internal):
        node = node.left if x[node.feature_index] <= node.threshold else node.right
    return node.value


def tree_from_dict(data: Mapping[str, Any]) -> Node:
    """Parse a nested dict into tree nodes.

    Split nodes may name their feature "feature" or "feature_index".

    Raises:
        ValueError: If a node is neither a leaf nor a complete split.
    """
    built: dict[int, Node] = {}
    stack = [(data, False)]
    while stack:
        raw, children_done = stack.pop()
        if "value" in raw:
            built[id(raw)] = Leaf(value=float(raw["value"]))
            continue
        if not all(key in raw for key in ("threshold", "left", "right")) or (
            "feature" not in raw and "feature_index" not in raw
        ):
            raise ValueError(f"Malformed tree node: {sorted(raw)}")

        if children_done:
            built[id(raw)] = Internal(
                feature_index=int(raw.get("feature_index", raw.get("feature"))),
                threshold=float(raw["threshold"]),
                left=built[id(raw["left"])],
                right=built[id(raw["right"])],
            )
        else:
            stack.append((raw, True))
            stack.append((raw["right"], False))
            stack.append((raw["left"], False))
    return built[id(data)]


def tree_to_dict(root: Node) -> dict[str, Any]:
    """Serialize tree nodes back into the nested dict format."""
    converted: dict[int, dict[str, Any]] = {}
    stack = [(root, False)]
    while stack:
        node, children_done = stack.pop()
        if isinstance(node, Leaf):
            converted[id(node)] = {"value": node.value}
        elif children_done:
            converted[id(node)] = {
                "feature": node.feature_index,
                "threshold": node.threshold,
                "left": converted[id(node.left)],
                "right": converted[id(node.right)],
            }
        else:
            stack.append((node, True))
            stack.append((node.right, False))
            stack.append((node.left, False))
    return converted[id(root)]


class TreeEnsemble:
    """Averaging ensemble of regression trees.

    Attributes:
        trees: Root nodes of the member trees.
        algorithm: Name of the training algorithm.
        parameters: Training parameters, kept for serialization.
    """

    def __init__(
        self,
        trees: list[Node],
        algorithm: str = "random_forest",
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self.trees = trees
        self.algorithm = algorithm
        self.parameters = parameters or {}

    def predict(self, rows: Sequence[Sequence[float]]) -> np.ndarray:
        """Mean prediction of all trees for each row.

        Raises:
            RuntimeError: If the ensemble has no trees.
        """
        if not self.trees:
            raise RuntimeError("Ensemble has no trees")
        return np.array(
            [np.mean([predict_tree(tree, row) for tree in self.trees]) for row in rows]
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TreeEnsemble":
        """Load an ensemble from its serialized form."""
        trees = [tree_from_dict(tree) for tree in data.get("trees", [])]
        parameters = {
            key: value
            for key, value in data.items()
            if key not in ("trees", "algorithm")
        }
        logger.info("Loaded %s ensemble with %d trees", data.get("algorithm"), len(trees))
        return cls(trees, data.get("algorithm", "random_forest"), parameters)

    def to_dict(self) -> dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            **self.parameters,
            "trees": [tree_to_dict(tree) for tree in self.trees],
        }

    @classmethod
    def from_sklearn(cls, forest: Any) -> "TreeEnsemble":
        """Convert a fitted scikit-learn forest regressor.

        Args:
            forest: A fitted estimator with an estimators_ list of trees,
                such as RandomForestRegressor.

        Returns:
            An equivalent TreeEnsemble.
        """
        trees = [_sklearn_tree(estimator.tree_) for estimator in forest.estimators_]
        return cls(
            trees,
            algorithm="random_forest",
            parameters={"n_trees": len(trees), "max_depth": forest.max_depth},
        )


def _sklearn_tree(tree: Any) -> Node:
    """Build nodes from scikit-learn's parallel node arrays, leaves first."""
    left = tree.children_left
    right = tree.children_right
    nodes: dict[int, Node] = {}
    stack = [(0, False)]
    while stack:
        index, children_done = stack.pop()
        if left[index] == -1:
            nodes[index] = Leaf(value=float(tree.value[index].ravel()[0]))
        elif children_done:
            nodes[index] = Internal(
                feature_index=int(tree.feature[index]),
                threshold=float(tree.threshold[index]),
                left=nodes.pop(int(left[index])),
                right=nodes.pop(int(right[index])),
            )
        else:
            stack.append((index, True))
            stack.append((int(right[index]), False))
            stack.append((int(left[index]), False))
    return nodes[0]
