"""Label statistics and the log-determinant information gain."""

from __future__ import annotations

import math

import torch

SINGULAR_RTOL = 1e-9


def label_statistics(labels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
    """Return ``(mean, covariance)`` of ``(n, 2)`` pose labels.

    The covariance is the population estimate (scaled by ``1 / n``).
    """
    labels = labels.to(torch.float64)
    n = labels.shape[0]
    if n == 0:
        dim = labels.shape[1]
        return (
            torch.zeros(dim, dtype=torch.float64, device=labels.device),
            torch.zeros((dim, dim), dtype=torch.float64, device=labels.device),
        )
    mean = labels.mean(dim=0)
    centered = labels - mean
    cov = centered.T @ centered / float(n)
    return mean, cov


def log_det_covariance(labels: torch.Tensor) -> float:
    """``log |Sigma|`` of ``labels``; ``-inf`` when the covariance is singular.

    A covariance counts as singular when its determinant is non-positive or
    vanishes relative to the product of its variances (perfectly correlated
    labels, e.g. two samples).
    """
    _, cov = label_statistics(labels)
    det = float(torch.linalg.det(cov).item())
    scale = float(torch.prod(torch.diagonal(cov)).item())
    if not math.isfinite(det) or det <= 0.0 or det <= SINGULAR_RTOL * scale:
        return float("-inf")
    return math.log(det)


def information_gain(
    parent: torch.Tensor,
    part_a: torch.Tensor,
    part_b: torch.Tensor,
    parent_log_det: float | None = None,
) -> float:
    """Reduction of the label log-determinant achieved by splitting ``parent``.

    ``IG = log|S(P)| - w_B log|S(B)| - w_A log|S(A)|`` with ``w_i = |i| / |P|``.
    Returns ``-inf`` when any of the three covariances is singular so the
    candidate can never be selected. ``parent_log_det`` may carry a
    precomputed ``log_det_covariance(parent)``.
    """
    n = parent.shape[0]
    if n == 0 or part_a.shape[0] == 0 or part_b.shape[0] == 0:
        return float("-inf")
    w_a = part_a.shape[0] / n
    w_b = part_b.shape[0] / n

    log_p = log_det_covariance(parent) if parent_log_det is None else parent_log_det
    log_a = log_det_covariance(part_a)
    log_b = log_det_covariance(part_b)
    if not (math.isfinite(log_p) and math.isfinite(log_a) and math.isfinite(log_b)):
        return float("-inf")
    return log_p - w_b * log_b - w_a * log_a
