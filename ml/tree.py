#!/usr/bin/env python3
"""
Gini decision tree primitives.

This module contains:
- Immutable tree nodes (Leaf / Split)
- Gini impurity and weighted split scoring
- Exhaustive best-split search over all features and midpoint thresholds
- Recursive tree construction and traversal
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np


@dataclass(frozen=True)
class Leaf:
    """Terminal node holding the majority label of the samples that reached it."""
    label: str
    sample_count: int
    class_counts: Dict[str, int] = field(default_factory=dict)

    def probabilities(self) -> Dict[str, float]:
        total = sum(self.class_counts.values())
        if total == 0:
            return {self.label: 1.0}
        return {label: count / total for label, count in self.class_counts.items()}


@dataclass(frozen=True)
class Split:
    """Internal node: samples with x[feature_index] <= threshold go left."""
    feature_index: int
    threshold: float
    left: "Node"
    right: "Node"
    sample_count: int


Node = Union[Leaf, Split]


def gini(counts: Sequence[int]) -> float:
    """Gini impurity 1 - sum(p_i^2) of a class histogram."""
    total = sum(counts)
    if total == 0:
        return 0.0
    return 1.0 - sum((c / total) ** 2 for c in counts)


def weighted_split_impurity(left_counts: Sequence[int], right_counts: Sequence[int]) -> float:
    """Size-weighted Gini of a two-way partition; +inf when either side is empty."""
    n_left = sum(left_counts)
    n_right = sum(right_counts)
    if n_left == 0 or n_right == 0:
        return math.inf
    total = n_left + n_right
    return (n_left / total) * gini(left_counts) + (n_right / total) * gini(right_counts)


def _gini_rows(counts: np.ndarray, sizes: np.ndarray) -> np.ndarray:
    proportions = counts / sizes[:, None]
    return 1.0 - np.sum(proportions ** 2, axis=1)


def find_best_split(
    features: np.ndarray,
    codes: np.ndarray,
    n_classes: int,
) -> Optional[Tuple[int, float, float]]:
    """
    Search every feature and every midpoint between consecutive distinct values.

    Returns (feature_index, threshold, impurity) of the lowest weighted Gini
    split, or None when no feature has two distinct values. Ties keep the
    first candidate in scan order (feature ascending, threshold ascending).
    """
    n_samples, n_features = features.shape
    if n_samples < 2:
        return None

    one_hot = np.zeros((n_samples, n_classes), dtype=np.int64)
    one_hot[np.arange(n_samples), codes] = 1
    totals = one_hot.sum(axis=0)

    best: Optional[Tuple[int, float, float]] = None

    for feature_index in range(n_features):
        column = features[:, feature_index]
        order = np.argsort(column, kind="stable")
        sorted_values = column[order]

        # Candidate cut after position i when the value changes
        boundaries = np.nonzero(sorted_values[1:] != sorted_values[:-1])[0]
        if boundaries.size == 0:
            continue

        cumulative = np.cumsum(one_hot[order], axis=0)
        left_counts = cumulative[boundaries]
        right_counts = totals - left_counts
        left_sizes = (boundaries + 1).astype(float)
        right_sizes = n_samples - left_sizes

        impurity = (
            left_sizes / n_samples * _gini_rows(left_counts, left_sizes)
            + right_sizes / n_samples * _gini_rows(right_counts, right_sizes)
        )

        position = int(np.argmin(impurity))
        score = float(impurity[position])
        if best is None or score < best[2]:
            cut = boundaries[position]
            threshold = (float(sorted_values[cut]) + float(sorted_values[cut + 1])) / 2.0
            best = (feature_index, threshold, score)

    return best


def _make_leaf(codes: np.ndarray, classes: Sequence[str]) -> Leaf:
    class_counts: Dict[str, int] = {}
    for code in codes:
        label = classes[int(code)]
        class_counts[label] = class_counts.get(label, 0) + 1

    # max() keeps the first label encountered on ties
    label = max(class_counts, key=class_counts.get) if class_counts else ""
    return Leaf(label=label, sample_count=int(codes.size), class_counts=class_counts)


def build_tree(
    features: np.ndarray,
    codes: np.ndarray,
    classes: Sequence[str],
    max_depth: int,
    depth: int = 0,
) -> Node:
    """Grow a tree on integer-coded targets; `classes[code]` gives the label."""
    n_samples = codes.size
    if n_samples == 0 or depth >= max_depth or np.unique(codes).size <= 1:
        return _make_leaf(codes, classes)

    best = find_best_split(features, codes, len(classes))
    if best is None or math.isinf(best[2]):
        return _make_leaf(codes, classes)

    feature_index, threshold, _ = best
    goes_left = features[:, feature_index] <= threshold

    return Split(
        feature_index=feature_index,
        threshold=threshold,
        left=build_tree(features[goes_left], codes[goes_left], classes, max_depth, depth + 1),
        right=build_tree(features[~goes_left], codes[~goes_left], classes, max_depth, depth + 1),
        sample_count=int(n_samples),
    )


def traverse(node: Node, vector: Sequence[float]) -> Leaf:
    """Walk from the root to the leaf the vector falls into."""
    while isinstance(node, Split):
        node = node.left if vector[node.feature_index] <= node.threshold else node.right
    return node


def depth(node: Node) -> int:
    if isinstance(node, Leaf):
        return 0
    return 1 + max(depth(node.left), depth(node.right))


def split_sample_counts(node: Node, n_features: int) -> List[int]:
    """Number of training samples routed through splits on each feature."""
    totals = [0] * n_features
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, Split):
            totals[current.feature_index] += current.sample_count
            stack.append(current.left)
            stack.append(current.right)
    return totals
