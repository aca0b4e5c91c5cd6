"""Downsampling, resampling onto a shared grid, and combining the views of a group.

Both groups of a pair are rendered on the same sampling grid covering their
overlap, so the registration strategies only ever see two equally shaped
arrays. Grid samples not covered by any view of a group are NaN.
"""
import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy import ndimage
from skimage.measure import block_reduce

from ._typing_utils import FloatArray, NumArray
from .grouping import Group
from .image_loaders import ImageLoader
from .parameters import GroupAggregation
from .transforms import BoundingBox, grid_transform
from .views import ViewCatalog

logger = logging.getLogger(__name__)

# Tolerance, in pixels, for grid points falling exactly on a view's border.
EDGE_TOLERANCE = 1e-6


@dataclass(frozen=True)
class SamplingGrid:
    """Regular world-space grid: index ``i`` sits at ``origin + spacing * i``."""

    origin: tuple[float, ...]
    spacing: tuple[float, ...]
    shape: tuple[int, ...]

    @classmethod
    def over(cls, box: BoundingBox, spacing: Sequence[float]) -> "SamplingGrid":
        """Grid starting at the lower corner of ``box`` and staying inside it."""
        spacing = tuple(float(s) for s in spacing)
        if len(spacing) != box.ndim:
            raise ValueError(f"Got {len(spacing)} spacings for a {box.ndim}-D box")
        shape = tuple(
            int(np.floor(extent / s + EDGE_TOLERANCE)) + 1 for extent, s in zip(box.extent, spacing)
        )
        return cls(tuple(box.lower), spacing, shape)

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def size(self) -> int:
        return int(np.prod(self.shape))

    @property
    def transform(self) -> FloatArray:
        """Affine mapping grid indices to world coordinates."""
        return grid_transform(self.origin, self.spacing)


def downsample(image: NumArray, affine: FloatArray, factors: Sequence[int]) -> tuple[FloatArray, FloatArray]:
    """Block-average ``image`` and adjust its registration accordingly.

    Trailing pixels that do not fill a whole block are dropped. Axes shorter
    than their factor are averaged as a single block.

    Returns:
        The downsampled image and the registration of its pixels
    """
    factors = tuple(max(1, min(int(f), n)) for f, n in zip(factors, image.shape))
    image = np.asarray(image, dtype=np.float64)
    if all(f == 1 for f in factors):
        return image, affine.copy()

    trimmed = image[tuple(slice(0, (n // f) * f) for n, f in zip(image.shape, factors))]
    reduced = block_reduce(trimmed, block_size=factors, func=np.mean)
    # Pixel j of the reduced image is the centre of original pixels [j*f, j*f + f - 1].
    offset = [(f - 1) / 2.0 for f in factors]
    return reduced, affine @ grid_transform(offset, factors)


def resample_to_grid(image: NumArray, affine: FloatArray, grid: SamplingGrid) -> FloatArray:
    """Linearly interpolate ``image`` at every grid point; NaN outside the image."""
    if image.ndim != grid.ndim:
        raise ValueError(f"Cannot sample a {image.ndim}-D image on a {grid.ndim}-D grid")
    grid_to_pixel = np.linalg.inv(affine) @ grid.transform
    indices = np.indices(grid.shape, dtype=np.float64).reshape(grid.ndim, -1)
    coords = grid_to_pixel[:-1, :-1] @ indices + grid_to_pixel[:-1, -1:]

    upper = np.asarray(image.shape, dtype=np.float64)[:, np.newaxis] - 1
    valid = np.all((coords >= -EDGE_TOLERANCE) & (coords <= upper + EDGE_TOLERANCE), axis=0)

    samples = np.full(coords.shape[1], np.nan)
    if np.any(valid):
        samples[valid] = ndimage.map_coordinates(
            np.asarray(image, dtype=np.float64),
            coords[:, valid],
            order=1,
            mode="nearest",
        )
    return samples.reshape(grid.shape)


def aggregate_views(
    samples: Sequence[FloatArray],
    aggregation: GroupAggregation,
    intensities: Optional[Sequence[float]] = None,
) -> FloatArray:
    """Combine the grid samples of the views of one group.

    Args:
        samples: one equally shaped array per view, NaN where a view has no data
        aggregation: the combination rule
        intensities: mean intensity of each view, used by ``brightest``;
            defaults to the mean of the valid samples
    """
    if not samples:
        raise ValueError("Nothing to aggregate")
    if len(samples) == 1:
        return samples[0]

    stack = np.stack(samples)
    if aggregation == GroupAggregation.first:
        result = np.full(stack.shape[1:], np.nan)
        for sample in stack:
            fill = np.isnan(result) & ~np.isnan(sample)
            result[fill] = sample[fill]
        return result
    elif aggregation == GroupAggregation.average:
        with warnings.catch_warnings():
            # all-NaN positions stay NaN
            warnings.simplefilter("ignore", category=RuntimeWarning)
            return np.nanmean(stack, axis=0)
    elif aggregation == GroupAggregation.maximum:
        return np.fmax.reduce(stack, axis=0)
    elif aggregation == GroupAggregation.brightest:
        if intensities is None:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", category=RuntimeWarning)
                intensities = [float(np.nanmean(s)) for s in stack]
        if len(intensities) != len(stack):
            raise ValueError(f"Got {len(intensities)} intensities for {len(stack)} views")
        scores = np.nan_to_num(np.asarray(intensities, dtype=np.float64), nan=-np.inf)
        return stack[int(np.argmax(scores))]
    else:
        raise RuntimeError(f"Unexpected GroupAggregation value: {aggregation}")


def render_group(
    catalog: ViewCatalog,
    loader: ImageLoader,
    group: Group,
    grid: SamplingGrid,
    downsampling: Sequence[int],
    aggregation: GroupAggregation,
) -> FloatArray:
    """Downsample, resample and aggregate the views of ``group`` on ``grid``."""
    samples = []
    intensities = []
    for view_id in group:
        view = catalog.view(view_id)
        image = loader.read_view(view)
        reduced, affine = downsample(image, catalog.get_registration(view_id), downsampling)
        samples.append(resample_to_grid(reduced, affine, grid))
        intensities.append(float(reduced.mean()))
    return aggregate_views(samples, aggregation, intensities)
