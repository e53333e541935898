"""posetree: randomized regression trees for head-pose patches."""

from .config import PoseTreeConfig
from .data import LabeledPatch, TrainingSet
from .grower import TreeGrower
from .model import FlatTreeStore, LeafNode

__all__ = [
    "FlatTreeStore",
    "LabeledPatch",
    "LeafNode",
    "PoseTreeConfig",
    "TrainingSet",
    "TreeGrower",
]
