"""Randomized regression-tree growth for head-pose patches."""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from time import perf_counter
from typing import List

import numpy as np
import torch

from .config import PoseTreeConfig
from .core.binary_test import (
    BinaryTest,
    draw_threshold,
    evaluate_test,
    generate_test,
    split_rows,
)
from .core.gain import information_gain, label_statistics, log_det_covariance
from .data import TrainingSet
from .model import FlatTreeStore


# ------------------------------
# Decisions / metrics
# ------------------------------

@dataclass(slots=True)
class SplitDecision:
    test: BinaryTest
    score: float
    part_a: torch.Tensor  # rows with difference <= threshold
    part_b: torch.Tensor


@dataclass(slots=True)
class DepthInstrumentation:
    nodes_split: int = 0
    leaves: int = 0
    failed_searches: int = 0
    rows_total: int = 0
    tests_evaluated: int = 0
    degenerate_tests: int = 0
    thresholds_scored: int = 0
    empty_splits: int = 0
    singular_splits: int = 0
    singular_parents: int = 0
    search_ms: float = 0.0

    def to_dict(self) -> dict[str, int | float]:
        return {
            "nodes_split": self.nodes_split,
            "leaves": self.leaves,
            "failed_searches": self.failed_searches,
            "rows_total": self.rows_total,
            "tests_evaluated": self.tests_evaluated,
            "degenerate_tests": self.degenerate_tests,
            "thresholds_scored": self.thresholds_scored,
            "empty_splits": self.empty_splits,
            "singular_splits": self.singular_splits,
            "singular_parents": self.singular_parents,
            "search_ms": self.search_ms,
        }


# ------------------------------
# TreeGrower
# ------------------------------

class TreeGrower:
    """Grows one pose regression tree into a :class:`FlatTreeStore`."""

    def __init__(self, config: PoseTreeConfig) -> None:
        if config.max_depth < 0:
            raise ValueError("max_depth must be non-negative")
        if config.min_samples <= 0:
            raise ValueError("min_samples must be positive")
        if config.n_threshold_iterations <= 0:
            raise ValueError("n_threshold_iterations must be positive")
        if config.test_iterations is not None and config.test_iterations <= 0:
            raise ValueError("test_iterations must be positive when given")
        self.config = config
        self._device = torch.device(config.device)
        self._rng = torch.Generator(device="cpu")
        self._logger = logging.getLogger(__name__)

        self._tree = FlatTreeStore.allocate(config.max_depth)
        self._grown = False
        self._seed: int | None = None
        self._depth_logs: list[dict[str, object]] = []

        # Bound by _prepare()
        self._pixels: torch.Tensor | None = None
        self._labels: torch.Tensor | None = None
        self._width = 0
        self._height = 0

    # Public -------------------------------------------------------------

    @property
    def tree(self) -> FlatTreeStore:
        return self._tree

    @property
    def seed(self) -> int | None:
        return self._seed

    @property
    def depth_logs(self) -> List[dict[str, object]]:
        return self._depth_logs

    def grow_tree(self, training_set: TrainingSet) -> FlatTreeStore:
        """Grow the tree over ``training_set`` and return the filled store."""
        if self._grown:
            raise RuntimeError("grow_tree() may only be called once per TreeGrower")
        n = len(training_set)
        if n == 0:
            raise ValueError("training set must contain at least one patch")
        self._prepare(training_set)
        self._grown = True

        iterations = self.config.test_iterations
        if iterations is None:
            iterations = n
        stats: dict[int, DepthInstrumentation] = {}

        with torch.no_grad():
            # Depth-first: left child is pushed last so it is grown first.
            stack: List[tuple[int, int, torch.Tensor]] = [
                (0, 0, torch.arange(n, dtype=torch.int64, device=self._device))
            ]
            while stack:
                node, depth, rows = stack.pop()
                depth_stats = stats.setdefault(depth, DepthInstrumentation())
                depth_stats.rows_total += int(rows.numel())

                if depth >= self.config.max_depth or rows.numel() <= self.config.min_samples:
                    self._make_leaf(rows, node)
                    depth_stats.leaves += 1
                    continue

                t0 = perf_counter()
                decision = self.optimize_test(rows, iterations, depth_stats)
                depth_stats.search_ms += (perf_counter() - t0) * 1000.0

                if decision is None:
                    self._make_leaf(rows, node)
                    depth_stats.failed_searches += 1
                    depth_stats.leaves += 1
                    continue

                self._tree.set_test(node, decision.test)
                depth_stats.nodes_split += 1
                left, right = self._tree.children(node)
                stack.append((right, depth + 1, decision.part_b))
                stack.append((left, depth + 1, decision.part_a))

        self._depth_logs = []
        for depth in sorted(stats):
            depth_log: dict[str, object] = stats[depth].to_dict()
            depth_log.update({"depth": depth, "seed": self._seed})
            self._depth_logs.append(depth_log)
            if self._logger.isEnabledFor(logging.INFO):
                self._logger.info(json.dumps(depth_log))
        return self._tree

    def optimize_test(
        self,
        rows: torch.Tensor,
        iterations: int,
        stats: DepthInstrumentation | None = None,
    ) -> SplitDecision | None:
        """Search ``iterations`` random tests for the best split of ``rows``.

        Returns ``None`` when no candidate produced two non-empty partitions
        with a finite information gain, and without drawing any candidate
        when the labels of ``rows`` already have a singular covariance.
        """
        if self._pixels is None or self._labels is None:
            raise RuntimeError("optimize_test() requires a bound training set")
        if stats is None:
            stats = DepthInstrumentation()

        parent_labels = self._labels[rows]
        parent_log_det = log_det_covariance(parent_labels)
        if not math.isfinite(parent_log_det):
            stats.singular_parents += 1
            return None

        best: SplitDecision | None = None
        best_score = float("-inf")

        for _ in range(iterations):
            test = generate_test(self._width, self._height, self._rng)
            evaluated = evaluate_test(self._pixels, rows, test)
            stats.tests_evaluated += 1
            if not evaluated.has_range:
                stats.degenerate_tests += 1
                continue

            for _ in range(self.config.n_threshold_iterations):
                threshold = draw_threshold(evaluated, self._rng)
                part_a, part_b = split_rows(rows, evaluated, threshold)
                if part_a.numel() == 0 or part_b.numel() == 0:
                    stats.empty_splits += 1
                    continue

                score = information_gain(
                    parent_labels,
                    self._labels[part_a],
                    self._labels[part_b],
                    parent_log_det=parent_log_det,
                )
                stats.thresholds_scored += 1
                if score == float("-inf"):
                    stats.singular_splits += 1
                    continue
                # strict: ties keep the earliest candidate
                if score > best_score:
                    best_score = score
                    best = SplitDecision(
                        test=test.with_threshold(threshold),
                        score=score,
                        part_a=part_a,
                        part_b=part_b,
                    )
        return best

    # Internals ----------------------------------------------------------

    def _prepare(self, training_set: TrainingSet) -> None:
        seed = self.config.random_state
        if seed is None:
            seed = int(time.time())
        self._seed = int(seed)
        self._rng.manual_seed(self._seed)

        pixels_np = np.ascontiguousarray(training_set.pixels, dtype=np.uint8)
        labels_np = np.ascontiguousarray(training_set.labels, dtype=np.float32)
        self._pixels = torch.from_numpy(pixels_np).to(device=self._device)
        self._labels = torch.from_numpy(labels_np).to(device=self._device)
        self._width, self._height = training_set.patch_size
        self._logger.debug(
            "growing tree over %d patches of %dx%d (seed=%d)",
            len(training_set), self._width, self._height, self._seed,
        )

    def _make_leaf(self, rows: torch.Tensor, node: int) -> int:
        mean, cov = label_statistics(self._labels[rows])
        return self._tree.add_leaf(
            node,
            count=int(rows.numel()),
            mean=mean.cpu().numpy(),
            covariance=cov.cpu().numpy(),
        )
