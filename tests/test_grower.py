import json
import logging

import numpy as np
import pytest
import torch

from posetree.config import PoseTreeConfig
from posetree.core.binary_test import draw_threshold, evaluate_test, generate_test
from posetree.data import TrainingSet
from posetree.grower import TreeGrower


def make_dataset(n_patches: int = 120, size: int = 8, seed: int = 42) -> TrainingSet:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(n_patches, size, size), dtype=np.uint8)
    signal = pixels.astype(np.float32)
    pitch = 0.2 * (signal[:, 2, 3] - signal[:, 5, 1]) + rng.normal(0.0, 2.0, n_patches)
    yaw = 0.3 * (signal[:, 0, 7] - signal[:, 6, 6]) + rng.normal(0.0, 2.0, n_patches)
    return TrainingSet.from_arrays(pixels, pitch, yaw)


def grow(dataset: TrainingSet, **overrides) -> TreeGrower:
    params = dict(min_samples=5, max_depth=4, n_threshold_iterations=5, test_iterations=20, random_state=7)
    params.update(overrides)
    grower = TreeGrower(PoseTreeConfig(**params))
    grower.grow_tree(dataset)
    return grower


@pytest.mark.parametrize("max_depth", [0, 1, 3, 5])
def test_table_sizes_depend_only_on_depth(max_depth: int) -> None:
    grower = grow(make_dataset(n_patches=40), max_depth=max_depth)
    tree = grower.tree
    assert tree.nodes.shape == (2 ** (max_depth + 1) - 1, 7)
    assert tree.leaf_capacity == 2 ** max_depth
    assert 1 <= tree.num_leaves <= tree.leaf_capacity


def test_zero_depth_makes_root_leaf() -> None:
    dataset = make_dataset(n_patches=60)
    grower = grow(dataset, max_depth=0, min_samples=1)
    tree = grower.tree
    assert tree.num_nodes == 1
    assert tree.num_leaves == 1
    assert tree.nodes[0, 0] == 0
    leaf = tree.leaf(0)
    assert leaf.count == len(dataset)
    np.testing.assert_allclose(leaf.mean, dataset.labels.mean(axis=0), rtol=1e-5)
    np.testing.assert_allclose(
        leaf.covariance, np.cov(dataset.labels.astype(np.float64), rowvar=False, bias=True), rtol=1e-4
    )


def test_leaf_indices_follow_depth_first_order() -> None:
    grower = grow(make_dataset())
    tree = grower.tree
    assert tree.num_leaves > 1
    leaf_order = [int(tree.nodes[node, 0]) for node in tree.iter_reachable() if tree.is_leaf(node)]
    assert leaf_order == list(range(tree.num_leaves))


def test_routing_reproduces_leaf_partitions() -> None:
    dataset = make_dataset()
    tree = grow(dataset).tree

    routed = np.array([tree.route(dataset.pixels[i]) for i in range(len(dataset))])
    counts = np.bincount(routed, minlength=tree.num_leaves)
    np.testing.assert_array_equal(counts, tree.leaf_counts[: tree.num_leaves])
    assert counts.sum() == len(dataset)
    # every accepted split had two non-empty sides
    assert np.all(counts > 0)

    for leaf_idx in range(tree.num_leaves):
        expected = dataset.labels[routed == leaf_idx].astype(np.float64).mean(axis=0)
        np.testing.assert_allclose(tree.leaf(leaf_idx).mean, expected, rtol=1e-4, atol=1e-4)


def test_internal_rows_hold_in_bounds_tests() -> None:
    dataset = make_dataset()
    tree = grow(dataset).tree
    width, height = dataset.patch_size
    internal = [node for node in tree.iter_reachable() if not tree.is_leaf(node)]
    assert internal
    for node in internal:
        assert tree.nodes[node, 0] == -1
        test = tree.test_at(node)
        assert 0 <= test.x1 < width and 0 <= test.x2 < width
        assert 0 <= test.y1 < height and 0 <= test.y2 < height
        assert test.reserved == 0


def test_same_seed_grows_identical_trees() -> None:
    dataset = make_dataset()
    a = grow(dataset, random_state=123).tree
    b = grow(dataset, random_state=123).tree
    np.testing.assert_array_equal(a.nodes, b.nodes)
    np.testing.assert_array_equal(a.leaf_counts, b.leaf_counts)


def test_identical_labels_fall_back_to_leaf() -> None:
    rng = np.random.default_rng(0)
    pixels = rng.integers(0, 256, size=(50, 6, 6), dtype=np.uint8)
    dataset = TrainingSet.from_arrays(pixels, np.full(50, 3.0), np.full(50, -1.5))
    grower = grow(dataset, max_depth=3, min_samples=2)
    tree = grower.tree
    assert tree.num_leaves == 1
    assert tree.is_leaf(0)
    root_log = grower.depth_logs[0]
    assert root_log["failed_searches"] == 1
    assert root_log["singular_parents"] == 1
    assert root_log["tests_evaluated"] == 0
    assert root_log["thresholds_scored"] == 0
    np.testing.assert_allclose(tree.leaf(0).mean, [3.0, -1.5])


def test_small_training_set_skips_search() -> None:
    dataset = make_dataset(n_patches=5)
    grower = grow(dataset, min_samples=10)
    assert grower.tree.num_leaves == 1
    assert grower.depth_logs[0]["tests_evaluated"] == 0


def test_default_iteration_budget_is_training_set_size() -> None:
    dataset = make_dataset(n_patches=30)
    grower = grow(dataset, max_depth=1, min_samples=1, test_iterations=None)
    assert grower.depth_logs[0]["tests_evaluated"] == len(dataset)


def test_optimize_test_returns_strict_partition() -> None:
    dataset = make_dataset()
    grower = TreeGrower(PoseTreeConfig(n_threshold_iterations=4, random_state=3))
    grower._prepare(dataset)
    rows = torch.arange(len(dataset), dtype=torch.int64)

    decision = grower.optimize_test(rows, iterations=25)
    assert decision is not None
    assert decision.part_a.numel() > 0 and decision.part_b.numel() > 0
    a = set(decision.part_a.tolist())
    b = set(decision.part_b.tolist())
    assert a.isdisjoint(b)
    assert a | b == set(range(len(dataset)))
    assert np.isfinite(decision.score)


def test_optimize_test_keeps_earliest_candidate_on_ties(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("posetree.grower.information_gain", lambda *args, **kwargs: 1.0)
    dataset = make_dataset()
    grower = TreeGrower(PoseTreeConfig(n_threshold_iterations=4, random_state=3))
    grower._prepare(dataset)
    rows = torch.arange(len(dataset), dtype=torch.int64)

    decision = grower.optimize_test(rows, iterations=10)

    # replay the generator to find the first accepted candidate
    gen = torch.Generator().manual_seed(3)
    width, height = dataset.patch_size
    while True:
        test = generate_test(width, height, gen)
        evaluated = evaluate_test(grower._pixels, rows, test)
        if evaluated.has_range:
            first = test.with_threshold(draw_threshold(evaluated, gen))
            break
    assert decision is not None
    assert decision.test == first
    assert decision.score == 1.0


def test_small_partitions_become_leaves_without_search() -> None:
    dataset = make_dataset()
    min_samples, max_depth, iterations = 10, 6, 20
    grower = grow(dataset, min_samples=min_samples, max_depth=max_depth, test_iterations=iterations)
    tree = grower.tree

    routed = np.array([tree.route(dataset.pixels[i]) for i in range(len(dataset))])
    counts = np.bincount(routed, minlength=tree.num_leaves)

    def node_depth(node: int) -> int:
        return (node + 1).bit_length() - 1

    reachable = list(tree.iter_reachable())
    saw_small_child = False
    for log in grower.depth_logs:
        depth = int(log["depth"])
        nodes_at = [n for n in reachable if node_depth(n) == depth]
        leaves_at = [n for n in nodes_at if tree.is_leaf(n)]
        gated = [
            n for n in leaves_at
            if depth >= max_depth or counts[tree.nodes[n, 0]] <= min_samples
        ]
        if depth > 0 and any(counts[tree.nodes[n, 0]] <= min_samples for n in gated):
            saw_small_child = True
        # every other leaf at this depth comes from a search that found no split
        assert len(leaves_at) - len(gated) == log["failed_searches"]
        searched = len(nodes_at) - len(gated)
        assert searched == log["nodes_split"] + log["failed_searches"]
        assert log["tests_evaluated"] == (searched - log["singular_parents"]) * iterations
    assert saw_small_child


def test_grow_tree_is_single_use() -> None:
    dataset = make_dataset(n_patches=20)
    grower = grow(dataset)
    with pytest.raises(RuntimeError):
        grower.grow_tree(dataset)


def test_empty_training_set_rejected() -> None:
    grower = TreeGrower(PoseTreeConfig(random_state=1))
    with pytest.raises(ValueError):
        grower.grow_tree(TrainingSet.from_patches([]))


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_depth": -1},
        {"min_samples": -2},
        {"min_samples": 0},
        {"n_threshold_iterations": 0},
        {"test_iterations": 0},
    ],
)
def test_invalid_config_rejected(overrides: dict) -> None:
    with pytest.raises(ValueError):
        TreeGrower(PoseTreeConfig(**overrides))


def test_depth_logs_emitted_as_json(caplog: pytest.LogCaptureFixture) -> None:
    dataset = make_dataset(n_patches=60)
    with caplog.at_level(logging.INFO, logger="posetree.grower"):
        grower = grow(dataset, max_depth=2)
    records = [json.loads(r.getMessage()) for r in caplog.records if r.name == "posetree.grower"]
    assert [r["depth"] for r in records] == [log["depth"] for log in grower.depth_logs]
    assert all(r["seed"] == 7 for r in records)


def test_unseeded_grower_records_wall_clock_seed() -> None:
    grower = TreeGrower(PoseTreeConfig(max_depth=1, test_iterations=3))
    grower.grow_tree(make_dataset(n_patches=30))
    assert isinstance(grower.seed, int)
