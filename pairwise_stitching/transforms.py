"""Homogeneous affine helpers and world-space bounding boxes.

All coordinates follow numpy axis order, i.e. ``(y, x)`` for 2-D views and
``(z, y, x)`` for 3-D views. A registration is an ``(ndim + 1, ndim + 1)``
matrix mapping pixel index coordinates to world coordinates.
"""
import itertools
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from ._typing_utils import FloatArray


def identity_transform(ndim: int) -> FloatArray:
    return np.eye(ndim + 1, dtype=np.float64)


def translation_transform(shift: Sequence[float]) -> FloatArray:
    shift = np.asarray(shift, dtype=np.float64)
    affine = identity_transform(shift.size)
    affine[:-1, -1] = shift
    return affine


def grid_transform(origin: Sequence[float], spacing: Sequence[float]) -> FloatArray:
    """Map grid indices onto positions ``origin + spacing * index``."""
    spacing = np.asarray(spacing, dtype=np.float64)
    affine = translation_transform(origin)
    affine[:-1, :-1] = np.diag(spacing)
    return affine


def validate_affine(affine: Iterable, ndim: Optional[int] = None) -> FloatArray:
    """Return ``affine`` as a float array, checking it is homogeneous.

    Raises:
        ValueError: if the matrix is not square, has the wrong size or a bad last row
    """
    affine = np.array(affine, dtype=np.float64)
    if affine.ndim != 2 or affine.shape[0] != affine.shape[1] or affine.shape[0] < 2:
        raise ValueError(f"Affine must be a square (n+1)x(n+1) matrix, got shape {affine.shape}")
    if ndim is not None and affine.shape[0] != ndim + 1:
        raise ValueError(f"Expected a {ndim + 1}x{ndim + 1} affine, got shape {affine.shape}")
    expected_last_row = np.zeros(affine.shape[0])
    expected_last_row[-1] = 1.0
    if not np.allclose(affine[-1], expected_last_row):
        raise ValueError(f"Affine last row must be {expected_last_row.tolist()}, got {affine[-1].tolist()}")
    if not np.all(np.isfinite(affine)):
        raise ValueError("Affine contains non-finite values")
    return affine


def transform_points(points: FloatArray, affine: FloatArray) -> FloatArray:
    """Apply ``affine`` to an ``(n_points, ndim)`` array of points."""
    points = np.atleast_2d(np.asarray(points, dtype=np.float64))
    return points @ affine[:-1, :-1].T + affine[:-1, -1]


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in world coordinates, bounds inclusive."""

    lower: tuple[float, ...]
    upper: tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.lower) != len(self.upper):
            raise ValueError("lower and upper must have the same dimensionality")

    @property
    def ndim(self) -> int:
        return len(self.lower)

    @property
    def extent(self) -> tuple[float, ...]:
        return tuple(u - l for l, u in zip(self.lower, self.upper))

    def intersection(self, other: "BoundingBox") -> Optional["BoundingBox"]:
        """The common box, or None when the boxes do not touch along some axis."""
        if other.ndim != self.ndim:
            raise ValueError(f"Cannot intersect {self.ndim}-D and {other.ndim}-D boxes")
        lower = tuple(max(a, b) for a, b in zip(self.lower, other.lower))
        upper = tuple(min(a, b) for a, b in zip(self.upper, other.upper))
        if any(l > u for l, u in zip(lower, upper)):
            return None
        return BoundingBox(lower, upper)

    def overlaps(self, other: "BoundingBox") -> bool:
        return self.intersection(other) is not None

    @classmethod
    def union(cls, boxes: Iterable["BoundingBox"]) -> "BoundingBox":
        boxes = list(boxes)
        if not boxes:
            raise ValueError("Cannot compute the union of zero boxes")
        lower = tuple(np.min([b.lower for b in boxes], axis=0).tolist())
        upper = tuple(np.max([b.upper for b in boxes], axis=0).tolist())
        return cls(lower, upper)


def view_bounding_box(shape: Sequence[int], affine: FloatArray) -> BoundingBox:
    """World bounding box of a view's pixel-center corners ``[0, shape - 1]``."""
    corner_ranges = [(0.0, float(max(n - 1, 0))) for n in shape]
    corners = np.array(list(itertools.product(*corner_ranges)))
    world = transform_points(corners, affine)
    return BoundingBox(tuple(world.min(axis=0).tolist()), tuple(world.max(axis=0).tolist()))
