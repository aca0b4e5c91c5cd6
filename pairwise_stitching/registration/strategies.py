"""Interchangeable registration strategies for a pair of group images.

Every strategy receives the fixed (first group) and moving (second group)
images rendered on the same sampling grid and returns the grid-space
correction to apply to the moving group together with a quality score, or
raises RegistrationFailure.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

import numpy as np

from .._typing_utils import FloatArray
from ..exceptions import ConfigurationError, RegistrationFailure
from ..parameters import (
    LucasKanadeParameters,
    PhaseCorrelationParameters,
    RegistrationMethod,
)
from ..transforms import identity_transform, translation_transform
from . import _lucas_kanade
from ._phase_correlation import (
    MIN_OVERLAP_PIXELS,
    fill_invalid,
    interpret_translation,
    multi_peak_max,
    ncc,
    pcm,
    refine_subpixel,
)

logger = logging.getLogger(__name__)


def _no_log(_message: str) -> None:
    pass


def _no_abort() -> None:
    pass


@dataclass
class PairAlignment:
    transform: FloatArray
    """Grid-space correction of the moving image: content at ``y`` belongs at ``transform @ y``."""
    quality: float


class RegistrationStrategy(ABC):
    """Abstract base class for pairwise registration strategies."""

    method: RegistrationMethod

    @abstractmethod
    def register(
        self,
        fixed: FloatArray,
        moving: FloatArray,
        log: Callable[[str], None] = _no_log,
        check_abort: Callable[[], None] = _no_abort,
    ) -> PairAlignment:
        """Align ``moving`` onto ``fixed``.

        Args:
            fixed: image of the first group on the sampling grid, NaN where empty
            moving: image of the second group on the same grid
            log: receives progress messages meant for the user
            check_abort: raises RegistrationAborted when the run was cancelled

        Raises:
            RegistrationFailure: if no usable alignment was found
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    def check_dimensionality(self, ndim: int) -> None:
        """Raise ConfigurationError if the parameters do not fit ``ndim``-D images."""
        pass

    @staticmethod
    def check_images(fixed: FloatArray, moving: FloatArray) -> None:
        """Reject pairs that cannot be registered meaningfully."""
        if fixed.shape != moving.shape:
            raise RegistrationFailure(f"Image shapes differ: {fixed.shape} and {moving.shape}")
        both_valid = ~(np.isnan(fixed) | np.isnan(moving))
        if np.count_nonzero(both_valid) < MIN_OVERLAP_PIXELS:
            raise RegistrationFailure(
                f"Only {np.count_nonzero(both_valid)} overlapping samples, need {MIN_OVERLAP_PIXELS}"
            )
        # a shift along an axis is only observable if the valid samples span it
        for axis, positions in enumerate(np.nonzero(both_valid)):
            if fixed.shape[axis] > 1 and positions.min() == positions.max():
                raise RegistrationFailure(
                    f"Overlap of shape {fixed.shape} holds a single valid sample along axis {axis}"
                )
        for name, image in (("fixed", fixed), ("moving", moving)):
            values = image[both_valid]
            if values.min() == values.max():
                raise RegistrationFailure(f"The {name} image is constant over the overlap")


class PhaseCorrelationStrategy(RegistrationStrategy):
    """Translation from the whitened cross-power spectrum, disambiguated by NCC."""

    method = RegistrationMethod.phase_correlation

    def __init__(self, params: Optional[PhaseCorrelationParameters] = None):
        self.params = params or PhaseCorrelationParameters()

    def register(
        self,
        fixed: FloatArray,
        moving: FloatArray,
        log: Callable[[str], None] = _no_log,
        check_abort: Callable[[], None] = _no_abort,
    ) -> PairAlignment:
        self.check_dimensionality(fixed.ndim)
        self.check_images(fixed, moving)
        params = self.params

        PCM = pcm(fill_invalid(fixed), fill_invalid(moving))
        peaks, _ = multi_peak_max(PCM, params.peaks_to_check)
        best_ncc, shift = interpret_translation(
            fixed, moving, peaks, min_overlap=params.min_overlap, max_shift=params.max_shift
        )
        if not np.isfinite(best_ncc):
            raise RegistrationFailure("No phase correlation peak gave a valid overlap")
        if best_ncc < params.min_correlation:
            raise RegistrationFailure(
                f"Correlation {best_ncc:.3f} is below the minimum {params.min_correlation:.3f}"
            )

        if params.subpixel:
            refined = refine_subpixel(fixed, moving, shift, params.upsample_factor)
        else:
            refined = np.asarray(shift, dtype=np.float64)
        return PairAlignment(transform=translation_transform(refined), quality=best_ncc)

    def get_name(self) -> str:
        return "phase_correlation"

    def check_dimensionality(self, ndim: int) -> None:
        max_shift = self.params.max_shift
        if max_shift is not None and len(max_shift) != ndim:
            raise ConfigurationError(f"max_shift has {len(max_shift)} entries for {ndim}-D views")


def _embed_warp(warp: FloatArray, axes: Sequence[int], ndim: int) -> FloatArray:
    """Lift a warp acting on ``axes`` to an ``ndim``-D warp that leaves the other axes alone."""
    full = identity_transform(ndim)
    index = list(axes) + [ndim]
    full[np.ix_(index, index)] = warp
    return full


class LucasKanadeStrategy(RegistrationStrategy):
    """Iterative intensity-based alignment over a translation, rigid or affine warp."""

    method = RegistrationMethod.lucas_kanade

    def __init__(self, params: Optional[LucasKanadeParameters] = None):
        self.params = params or LucasKanadeParameters()

    def register(
        self,
        fixed: FloatArray,
        moving: FloatArray,
        log: Callable[[str], None] = _no_log,
        check_abort: Callable[[], None] = _no_abort,
    ) -> PairAlignment:
        self.check_images(fixed, moving)
        params = self.params

        # a single z plane is aligned in 2-D
        axes = [i for i, n in enumerate(fixed.shape) if n > 1]
        if len(axes) < 2:
            raise RegistrationFailure(f"Overlap of shape {fixed.shape} is too thin to align")
        flat_shape = [fixed.shape[i] for i in axes]
        fixed_flat = fixed.reshape(flat_shape)
        moving_flat = moving.reshape(flat_shape)

        result = _lucas_kanade.align(
            fixed_flat,
            moving_flat,
            params.warp_function,
            params.max_iterations,
            params.min_parameter_change,
            check_abort,
            log,
        )
        if result is None:
            raise RegistrationFailure(
                f"Lucas-Kanade ({params.warp_function.value}) did not converge"
                f" within {params.max_iterations} iterations"
            )
        log(f"Lucas-Kanade ({params.warp_function.value}) converged after {result.iterations} iterations")

        warped = _lucas_kanade.warp_image(moving_flat, result.warp)
        quality = ncc(fixed_flat, warped)
        if not np.isfinite(quality):
            raise RegistrationFailure("Aligned images do not overlap")
        if quality < params.min_correlation:
            raise RegistrationFailure(
                f"Correlation {quality:.3f} is below the minimum {params.min_correlation:.3f}"
            )

        correction = np.linalg.inv(_embed_warp(result.warp, axes, fixed.ndim))
        return PairAlignment(transform=correction, quality=quality)

    def get_name(self) -> str:
        return "lucas_kanade"


def create_registration_strategy(
    method: Union[RegistrationMethod, str],
    phase_correlation: Optional[PhaseCorrelationParameters] = None,
    lucas_kanade: Optional[LucasKanadeParameters] = None,
) -> RegistrationStrategy:
    """Create the registration strategy for ``method``.

    Args:
        method: a RegistrationMethod, or its value or name ("Phase Correlation",
            "phase_correlation", "Lucas-Kanade", "lucas_kanade")
        phase_correlation: parameters used by the phase correlation strategy
        lucas_kanade: parameters used by the Lucas-Kanade strategy

    Raises:
        ConfigurationError: If the method is not recognized
    """
    if isinstance(method, str):
        by_name = {m.name: m for m in RegistrationMethod}
        by_value = {m.value.lower(): m for m in RegistrationMethod}
        key = method.strip()
        resolved = by_name.get(key) or by_value.get(key.lower())
        if resolved is None:
            raise ConfigurationError(
                f"Unknown registration method: {method}. "
                f"Available methods: {[m.value for m in RegistrationMethod]}"
            )
        method = resolved

    if method == RegistrationMethod.phase_correlation:
        return PhaseCorrelationStrategy(phase_correlation)
    elif method == RegistrationMethod.lucas_kanade:
        return LucasKanadeStrategy(lucas_kanade)
    raise ConfigurationError(f"Unhandled RegistrationMethod enum member: {method}")
