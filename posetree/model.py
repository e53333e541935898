"""Flat storage for a grown pose regression tree."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List

import numpy as np

from .core.binary_test import BinaryTest

ROW_WIDTH = 7
INTERNAL = -1


@dataclass(slots=True)
class LeafNode:
    """Label statistics of the training patches that reached a leaf."""

    count: int
    mean: np.ndarray
    covariance: np.ndarray


@dataclass
class FlatTreeStore:
    """Complete binary tree stored as fixed-width integer rows.

    Node ``i`` has children ``2i + 1`` and ``2i + 2``. ``nodes[i, 0]`` is
    ``-1`` for an internal node (test parameters in ``nodes[i, 1:7]``) or the
    index of the node's leaf slot.
    """

    max_depth: int
    nodes: np.ndarray
    leaf_counts: np.ndarray
    leaf_means: np.ndarray
    leaf_covariances: np.ndarray
    num_leaves: int = 0

    @classmethod
    def allocate(cls, max_depth: int) -> "FlatTreeStore":
        if max_depth < 0:
            raise ValueError("max_depth must be non-negative")
        num_nodes = 2 ** (max_depth + 1) - 1
        capacity = 2 ** max_depth
        return cls(
            max_depth=max_depth,
            nodes=np.zeros((num_nodes, ROW_WIDTH), dtype=np.int32),
            leaf_counts=np.zeros(capacity, dtype=np.int64),
            leaf_means=np.zeros((capacity, 2), dtype=np.float32),
            leaf_covariances=np.zeros((capacity, 2, 2), dtype=np.float32),
        )

    @property
    def num_nodes(self) -> int:
        return int(self.nodes.shape[0])

    @property
    def leaf_capacity(self) -> int:
        return int(self.leaf_counts.shape[0])

    @staticmethod
    def children(node: int) -> tuple[int, int]:
        return 2 * node + 1, 2 * node + 2

    def _check_node(self, node: int) -> None:
        if not 0 <= node < self.num_nodes:
            raise IndexError(f"node {node} out of range [0, {self.num_nodes})")

    # Writers ------------------------------------------------------------

    def set_test(self, node: int, test: BinaryTest) -> None:
        """Mark ``node`` internal and store ``test`` in its row."""
        self._check_node(node)
        row = self.nodes[node]
        row[0] = INTERNAL
        row[1:] = test.as_row()

    def add_leaf(self, node: int, count: int, mean: np.ndarray, covariance: np.ndarray) -> int:
        """Assign the next leaf slot to ``node`` and return its index."""
        self._check_node(node)
        leaf_idx = self.num_leaves
        if leaf_idx >= self.leaf_capacity:
            raise IndexError(f"leaf capacity {self.leaf_capacity} exhausted")
        self.nodes[node, 0] = leaf_idx
        self.leaf_counts[leaf_idx] = int(count)
        self.leaf_means[leaf_idx] = np.asarray(mean, dtype=np.float32)
        self.leaf_covariances[leaf_idx] = np.asarray(covariance, dtype=np.float32)
        self.num_leaves += 1
        return leaf_idx

    # Readers ------------------------------------------------------------

    def is_leaf(self, node: int) -> bool:
        self._check_node(node)
        return int(self.nodes[node, 0]) != INTERNAL

    def test_at(self, node: int) -> BinaryTest:
        """Return the binary test stored at internal ``node``."""
        if self.is_leaf(node):
            raise ValueError(f"node {node} is a leaf")
        x1, y1, x2, y2, reserved, threshold = (int(v) for v in self.nodes[node, 1:])
        return BinaryTest(x1, y1, x2, y2, reserved, threshold)

    def leaf(self, leaf_idx: int) -> LeafNode:
        if not 0 <= leaf_idx < self.num_leaves:
            raise IndexError(f"leaf {leaf_idx} out of range [0, {self.num_leaves})")
        return LeafNode(
            count=int(self.leaf_counts[leaf_idx]),
            mean=self.leaf_means[leaf_idx].copy(),
            covariance=self.leaf_covariances[leaf_idx].copy(),
        )

    def iter_reachable(self) -> Iterator[int]:
        """Yield node indices reachable from the root in depth-first order."""
        stack: List[int] = [0]
        while stack:
            node = stack.pop()
            yield node
            if not self.is_leaf(node):
                left, right = self.children(node)
                stack.append(right)
                stack.append(left)

    def route(self, pixels: np.ndarray) -> int:
        """Walk one patch from the root and return the leaf index it reaches."""
        patch = np.asarray(pixels)
        node = 0
        while not self.is_leaf(node):
            test = self.test_at(node)
            diff = int(patch[test.y1, test.x1]) - int(patch[test.y2, test.x2])
            left, right = self.children(node)
            node = left if diff <= test.threshold else right
        return int(self.nodes[node, 0])
