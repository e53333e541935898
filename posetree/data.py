"""Training data containers for posetree."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import torch


def ensure_numpy(array: np.ndarray | torch.Tensor | Sequence[float]) -> np.ndarray:
    """Convert ``array`` to an ``np.ndarray`` without copying when possible."""

    if isinstance(array, np.ndarray):
        return np.asarray(array)
    if isinstance(array, torch.Tensor):  # pragma: no cover - convenience path
        return array.detach().cpu().numpy()
    return np.asarray(array)


@dataclass(frozen=True, slots=True)
class LabeledPatch:
    """Grayscale image patch annotated with a head pose."""

    pixels: np.ndarray
    pitch: float
    yaw: float

    def __post_init__(self) -> None:
        pixels = ensure_numpy(self.pixels)
        if pixels.ndim != 2:
            raise ValueError("patch pixels must be a 2-D intensity grid")
        object.__setattr__(self, "pixels", pixels.astype(np.uint8, copy=False))
        object.__setattr__(self, "pitch", float(self.pitch))
        object.__setattr__(self, "yaw", float(self.yaw))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(slots=True)
class TrainingSet:
    """Stacked patches and their ``(pitch, yaw)`` labels.

    ``pixels`` has shape ``(n, height, width)`` and dtype ``uint8``;
    ``labels`` has shape ``(n, 2)`` and dtype ``float32``. Every patch shares
    the shape of the first one.
    """

    pixels: np.ndarray
    labels: np.ndarray

    @classmethod
    def from_patches(cls, patches: Sequence[LabeledPatch]) -> "TrainingSet":
        if len(patches) == 0:
            return cls(
                pixels=np.empty((0, 0, 0), dtype=np.uint8),
                labels=np.empty((0, 2), dtype=np.float32),
            )
        shape = patches[0].pixels.shape
        for idx, patch in enumerate(patches):
            if patch.pixels.shape != shape:
                raise ValueError(
                    f"patch {idx} has shape {patch.pixels.shape}, expected {shape}"
                )
        pixels = np.stack([p.pixels for p in patches]).astype(np.uint8, copy=False)
        labels = np.array([[p.pitch, p.yaw] for p in patches], dtype=np.float32)
        return cls(pixels=pixels, labels=labels)

    @classmethod
    def from_arrays(
        cls,
        pixels: np.ndarray | torch.Tensor,
        pitch: np.ndarray | Sequence[float],
        yaw: np.ndarray | Sequence[float],
    ) -> "TrainingSet":
        pixels_np = ensure_numpy(pixels)
        if pixels_np.ndim != 3:
            raise ValueError("pixels must be 3-D (n_patches, height, width)")
        pitch_np = np.asarray(pitch, dtype=np.float32)
        yaw_np = np.asarray(yaw, dtype=np.float32)
        if pitch_np.ndim != 1 or yaw_np.ndim != 1:
            raise ValueError("pitch and yaw must be 1-D")
        n = pixels_np.shape[0]
        if pitch_np.shape[0] != n or yaw_np.shape[0] != n:
            raise ValueError("pitch/yaw must align with pixels rows")
        labels = np.stack([pitch_np, yaw_np], axis=1)
        return cls(pixels=pixels_np.astype(np.uint8, copy=False), labels=labels)

    def __len__(self) -> int:
        return int(self.pixels.shape[0])

    def __getitem__(self, idx: int) -> LabeledPatch:
        return LabeledPatch(
            pixels=self.pixels[idx],
            pitch=float(self.labels[idx, 0]),
            yaw=float(self.labels[idx, 1]),
        )

    @property
    def patch_size(self) -> tuple[int, int]:
        """``(width, height)`` shared by every patch."""
        return int(self.pixels.shape[2]), int(self.pixels.shape[1])
