"""Configuration objects for posetree."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PoseTreeConfig:
    """Hyper-parameters steering single-tree growth.

    Parameters
    ----------
    min_samples:
        A partition is split further only while it holds more than this many
        patches; smaller partitions become leaves.
    max_depth:
        Maximum depth of the tree (root at depth 0). Fixes the table size to
        ``2 ** (max_depth + 1) - 1`` node rows and ``2 ** max_depth`` leaves.
    n_threshold_iterations:
        Number of random thresholds drawn per candidate binary test.
    test_iterations:
        Number of candidate binary tests generated per node. ``None`` uses
        the size of the full training set passed to
        :meth:`TreeGrower.grow_tree`.
    random_state:
        Optional seed for the test/threshold generator. When ``None`` the
        generator is seeded from wall-clock time.
    device:
        Torch device identifier used for patch evaluation.
    """

    min_samples: int = 20
    max_depth: int = 15
    n_threshold_iterations: int = 10
    test_iterations: int | None = None
    random_state: int | None = None
    device: str = "cpu"
