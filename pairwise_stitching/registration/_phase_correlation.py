import itertools
import logging
from typing import Optional, Sequence, Tuple

import numpy as np
from skimage.registration import phase_cross_correlation

from .._typing_utils import FloatArray
from .._typing_utils import IntArray
from .._typing_utils import NumArray

logger = logging.getLogger(__name__)

MIN_OVERLAP_PIXELS = 25


def validate_image_pair(image1: NumArray, image2: NumArray) -> None:
    """Validate a pair of images for translation computation.

    Raises:
        ValueError: If images are invalid or incompatible
    """
    if image1.ndim not in (2, 3) or image2.ndim not in (2, 3):
        raise ValueError("Images must be 2- or 3-dimensional")
    if image1.shape != image2.shape:
        raise ValueError(f"Images must have same shape. Got {image1.shape} and {image2.shape}")
    if not np.isfinite(image1).all() or not np.isfinite(image2).all():
        raise ValueError("Images contain non-finite values")


def fill_invalid(image: FloatArray) -> FloatArray:
    """Replace NaN samples by the mean of the valid ones."""
    invalid = np.isnan(image)
    if not invalid.any():
        return image
    filled = image.copy()
    filled[invalid] = np.nanmean(image) if not invalid.all() else 0.0
    return filled


def pcm(image1: NumArray, image2: NumArray) -> FloatArray:
    """Compute the peak correlation matrix of two equally shaped images.

    The PCM is the inverse transform of the whitened cross-power spectrum:
    PCM = IFFT(F1 * conj(F2) / |F1 * conj(F2)|)

    A peak at index ``t`` means ``image1[q] ~ image2[q - t]``, modulo the image size.
    """
    validate_image_pair(image1, image2)
    F1 = np.fft.fftn(np.asarray(image1, dtype=np.float64))
    F2 = np.fft.fftn(np.asarray(image2, dtype=np.float64))
    FC = F1 * np.conjugate(F2)
    epsilon = np.finfo(np.float64).eps * 100
    return np.fft.ifftn(FC / (np.abs(FC) + epsilon)).real


def multi_peak_max(PCM: FloatArray, max_peaks: Optional[int] = None) -> Tuple[IntArray, FloatArray]:
    """Find the largest values of a peak correlation matrix.

    Returns:
        Peak indices, shape (n_peaks, ndim), and their values, in descending order
    """
    if PCM.size == 0:
        raise ValueError("PCM cannot be empty")
    if max_peaks is not None and max_peaks <= 0:
        raise ValueError(f"max_peaks must be positive, got {max_peaks}")

    flat = PCM.ravel()
    order = np.argsort(-flat, kind="stable")
    if max_peaks is not None:
        order = order[:max_peaks]
    peaks = np.stack(np.unravel_index(order, PCM.shape), axis=-1).astype(np.int64)
    return peaks, flat[order].astype(np.float64)


def extract_overlap_subregion(image: NumArray, shift: Sequence[int]) -> NumArray:
    """The part of ``image`` overlapping a copy of itself moved by ``-shift``.

    ``extract_overlap_subregion(a, t)`` and ``extract_overlap_subregion(b, -t)``
    are the pixel-to-pixel corresponding regions when ``a[q] ~ b[q - t]``.
    An empty array is returned when there is no overlap.
    """
    slices = []
    for n, t in zip(image.shape, shift):
        t = int(t)
        if abs(t) >= n:
            return image[tuple(slice(0, 0) for _ in image.shape)]
        slices.append(slice(max(0, t), n + min(0, t)))
    return image[tuple(slices)]


def ncc(image1: NumArray, image2: NumArray, min_overlap_pixels: int = MIN_OVERLAP_PIXELS) -> float:
    """Normalized cross-correlation over the pixels valid (not NaN) in both images.

    Returns:
        NCC value between -1 and 1, or -inf when too few pixels overlap or an
        image is constant there
    """
    if image1.shape != image2.shape or image1.size == 0:
        return float("-inf")

    a = np.asarray(image1, dtype=np.float64)
    b = np.asarray(image2, dtype=np.float64)
    valid = ~(np.isnan(a) | np.isnan(b))
    if np.count_nonzero(valid) < min_overlap_pixels:
        return float("-inf")

    centered1 = a[valid] - a[valid].mean()
    centered2 = b[valid] - b[valid].mean()
    denominator = np.sqrt(np.sum(centered1 * centered1) * np.sum(centered2 * centered2))
    if denominator == 0.0 or not np.isfinite(denominator):
        return float("-inf")
    return float(np.clip(np.sum(centered1 * centered2) / denominator, -1.0, 1.0))


def candidate_shifts(peak: Sequence[int], shape: Sequence[int]) -> list[tuple[int, ...]]:
    """Every periodic interpretation of a PCM peak, one per axis combination."""
    per_axis = []
    for p, n in zip(peak, shape):
        options = {int(p)}
        if p != 0:
            options.add(int(p) - int(n))
        per_axis.append(sorted(options))
    return [tuple(c) for c in itertools.product(*per_axis)]


def overlap_fraction(shift: Sequence[int], shape: Sequence[int]) -> float:
    return float(np.prod([max(0, n - abs(t)) / n for t, n in zip(shift, shape)]))


def interpret_translation(
    image1: NumArray,
    image2: NumArray,
    peaks: IntArray,
    min_overlap: float = 0.0,
    max_shift: Optional[Sequence[float]] = None,
) -> Tuple[float, tuple[int, ...]]:
    """Pick the interpretation of the PCM peaks with the highest NCC.

    Args:
        image1: fixed image, may contain NaN
        image2: moving image, same shape, may contain NaN
        peaks: PCM peak indices, shape (n_peaks, ndim)
        min_overlap: smallest overlap fraction accepted for a candidate
        max_shift: if given, the largest absolute shift accepted per axis

    Returns:
        Tuple of (best_ncc, best_shift); best_ncc is -inf when no candidate is valid
    """
    if image1.shape != image2.shape:
        raise ValueError("Images must have same shape")
    shape = image1.shape

    best_ncc = float("-inf")
    best_shift: tuple[int, ...] = (0,) * len(shape)
    seen = set()
    for peak in peaks:
        for shift in candidate_shifts(peak, shape):
            if shift in seen:
                continue
            seen.add(shift)
            if max_shift is not None and any(abs(t) > m for t, m in zip(shift, max_shift)):
                continue
            if overlap_fraction(shift, shape) < min_overlap:
                continue

            sub1 = extract_overlap_subregion(image1, shift)
            sub2 = extract_overlap_subregion(image2, [-t for t in shift])
            if sub1.size == 0 or sub2.size == 0:
                continue

            ncc_val = ncc(sub1, sub2)
            if np.isnan(ncc_val):
                continue
            if ncc_val > best_ncc:
                best_ncc = ncc_val
                best_shift = shift

    return best_ncc, best_shift


def refine_subpixel(
    image1: NumArray, image2: NumArray, shift: Sequence[int], upsample_factor: int
) -> FloatArray:
    """Refine an integer shift by upsampled cross-correlation of the aligned regions.

    The refinement is dropped when it moves the shift by a full pixel or more.
    """
    shift_arr = np.asarray(shift, dtype=np.float64)
    sub1 = fill_invalid(np.asarray(extract_overlap_subregion(image1, shift), dtype=np.float64))
    sub2 = fill_invalid(np.asarray(extract_overlap_subregion(image2, [-t for t in shift]), dtype=np.float64))
    # singleton axes (a flat z) are not refined
    axes = [i for i, n in enumerate(sub1.shape) if n > 1]
    if sub1.size < MIN_OVERLAP_PIXELS or len(axes) < 2:
        return shift_arr

    flat_shape = [sub1.shape[i] for i in axes]
    refined, _, _ = phase_cross_correlation(
        sub1.reshape(flat_shape), sub2.reshape(flat_shape), upsample_factor=upsample_factor
    )
    residual = np.zeros_like(shift_arr)
    residual[axes] = np.asarray(refined, dtype=np.float64)
    if np.all(np.abs(residual) < 1.0):
        return shift_arr + residual
    logger.debug(f"Discarding subpixel refinement {residual.tolist()} of shift {list(shift)}")
    return shift_arr
