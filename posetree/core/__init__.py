"""Split primitives used while growing a pose regression tree."""

from .binary_test import (
    BinaryTest,
    EvaluatedTest,
    draw_threshold,
    evaluate_test,
    generate_test,
    split_rows,
)
from .gain import information_gain, label_statistics, log_det_covariance

__all__ = [
    "BinaryTest",
    "EvaluatedTest",
    "draw_threshold",
    "evaluate_test",
    "generate_test",
    "information_gain",
    "label_statistics",
    "log_det_covariance",
    "split_rows",
]
