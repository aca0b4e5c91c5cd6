"""Forward-additive Lucas-Kanade alignment on a sampling grid.

The warp maps fixed image coordinates to moving image coordinates,
``fixed(x) ~ moving(W(p) x)``, and is parameterized about the grid centre so
that rotation and scale parameters are not coupled to a far-away origin.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from scipy import ndimage
from scipy.spatial.transform import Rotation

from .._typing_utils import FloatArray
from ..parameters import WarpFunctionType

logger = logging.getLogger(__name__)

_JACOBIAN_STEP = 1e-6
_MAX_CONDITION = 1e12
_MIN_SAMPLES_PER_PARAMETER = 10
PROGRESS_INTERVAL = 10


class WarpModel:
    """A family of homogeneous warps ``W(p)`` about a centre point."""

    def __init__(self, warp_type: WarpFunctionType, ndim: int, centre: FloatArray):
        if ndim not in (2, 3):
            raise ValueError(f"Unsupported dimensionality {ndim}")
        self.warp_type = warp_type
        self.ndim = ndim
        self.centre = np.asarray(centre, dtype=np.float64)

    @property
    def n_params(self) -> int:
        if self.warp_type == WarpFunctionType.translation:
            return self.ndim
        elif self.warp_type == WarpFunctionType.rigid:
            return self.ndim + (1 if self.ndim == 2 else 3)
        elif self.warp_type == WarpFunctionType.affine:
            return self.ndim * self.ndim + self.ndim
        else:
            raise RuntimeError(f"Unexpected WarpFunctionType value: {self.warp_type}")

    def identity_params(self) -> FloatArray:
        return np.zeros(self.n_params)

    def _linear_part(self, p: FloatArray) -> FloatArray:
        n = self.ndim
        if self.warp_type == WarpFunctionType.translation:
            return np.eye(n)
        elif self.warp_type == WarpFunctionType.rigid:
            if n == 2:
                c, s = np.cos(p[0]), np.sin(p[0])
                return np.array([[c, -s], [s, c]])
            return Rotation.from_rotvec(p[:3]).as_matrix()
        else:
            return np.eye(n) + p[: n * n].reshape(n, n)

    def matrix(self, p: FloatArray) -> FloatArray:
        """Homogeneous matrix of ``W(p)``: ``x -> L (x - c) + c + t``."""
        n = self.ndim
        linear = self._linear_part(p)
        translation = p[-n:]
        warp = np.eye(n + 1)
        warp[:n, :n] = linear
        warp[:n, n] = self.centre - linear @ self.centre + translation
        return warp

    def matrix_derivatives(self, p: FloatArray) -> list[FloatArray]:
        """Central-difference derivative of ``W(p)`` for each parameter."""
        derivatives = []
        for j in range(self.n_params):
            step = np.zeros_like(p)
            step[j] = _JACOBIAN_STEP
            derivatives.append((self.matrix(p + step) - self.matrix(p - step)) / (2 * _JACOBIAN_STEP))
        return derivatives


@dataclass
class LucasKanadeResult:
    warp: FloatArray
    """Fixed-to-moving grid coordinates at convergence."""
    iterations: int


def _normalize(image: FloatArray, valid: np.ndarray) -> FloatArray:
    values = image[valid]
    normalized = np.zeros_like(image)
    normalized[valid] = (values - values.mean()) / values.std()
    return normalized


def _warp_coordinates(warp: FloatArray, points: FloatArray) -> FloatArray:
    return warp[:-1, :-1] @ points + warp[:-1, -1:]


def align(
    fixed: FloatArray,
    moving: FloatArray,
    warp_type: WarpFunctionType,
    max_iterations: int,
    min_parameter_change: float,
    check_abort: Callable[[], None] = lambda: None,
    log: Callable[[str], None] = lambda _message: None,
) -> Optional[LucasKanadeResult]:
    """Gauss-Newton alignment of ``moving`` onto ``fixed``.

    Both images may contain NaN for samples without data. Images constant over
    their valid samples must be rejected by the caller.

    Every PROGRESS_INTERVAL iterations the current update size is sent to ``log``.

    Returns:
        The converged warp, or None when the alignment does not converge within
        ``max_iterations``, the system becomes singular, or too few samples overlap
    """
    ndim = fixed.ndim
    shape = np.asarray(fixed.shape)
    model = WarpModel(warp_type, ndim, (shape - 1) / 2.0)
    min_samples = _MIN_SAMPLES_PER_PARAMETER * model.n_params

    fixed_valid = ~np.isnan(fixed)
    moving_valid = ~np.isnan(moving)
    a = _normalize(fixed, fixed_valid)
    b = _normalize(moving, moving_valid)
    gradients = np.gradient(b)
    moving_valid_f = moving_valid.astype(np.float64)

    points = np.indices(fixed.shape, dtype=np.float64).reshape(ndim, -1)
    a_flat = a.reshape(-1)
    fixed_valid_flat = fixed_valid.reshape(-1)
    upper = (shape - 1).astype(np.float64)[:, np.newaxis]

    p = model.identity_params()
    for iteration in range(1, max_iterations + 1):
        check_abort()
        warp = model.matrix(p)
        coords = _warp_coordinates(warp, points)
        inside = np.all((coords >= 0) & (coords <= upper), axis=0)
        covered = ndimage.map_coordinates(moving_valid_f, coords, order=1, mode="constant", cval=0.0)
        valid = fixed_valid_flat & inside & (covered > 1 - 1e-6)
        n_valid = int(np.count_nonzero(valid))
        if n_valid < min_samples:
            logger.debug(f"Only {n_valid} valid samples left after {iteration - 1} iterations")
            return None

        coords_valid = coords[:, valid]
        warped = ndimage.map_coordinates(b, coords_valid, order=1, mode="nearest")
        warped_gradients = [
            ndimage.map_coordinates(g, coords_valid, order=1, mode="nearest") for g in gradients
        ]

        steepest_descent = np.empty((n_valid, model.n_params))
        points_valid = points[:, valid]
        for j, derivative in enumerate(model.matrix_derivatives(p)):
            jacobian = _warp_coordinates(derivative, points_valid)
            steepest_descent[:, j] = sum(g * d for g, d in zip(warped_gradients, jacobian))

        hessian = steepest_descent.T @ steepest_descent
        if not np.all(np.isfinite(hessian)) or np.linalg.cond(hessian) > _MAX_CONDITION:
            logger.debug(f"Singular Lucas-Kanade system at iteration {iteration}")
            return None
        error = a_flat[valid] - warped
        try:
            dp = np.linalg.solve(hessian, steepest_descent.T @ error)
        except np.linalg.LinAlgError:
            logger.debug(f"Singular Lucas-Kanade system at iteration {iteration}")
            return None

        p = p + dp
        change = float(np.linalg.norm(dp))
        if change < min_parameter_change:
            return LucasKanadeResult(warp=model.matrix(p), iterations=iteration)
        if iteration % PROGRESS_INTERVAL == 0:
            log(f"Lucas-Kanade iteration {iteration}/{max_iterations}, update {change:.4f}")

    logger.debug(f"Lucas-Kanade did not converge within {max_iterations} iterations")
    return None


def warp_image(moving: FloatArray, warp: FloatArray) -> FloatArray:
    """Sample ``moving`` at ``warp @ x`` for every grid point ``x``; NaN outside."""
    ndim = moving.ndim
    points = np.indices(moving.shape, dtype=np.float64).reshape(ndim, -1)
    coords = _warp_coordinates(warp, points)
    upper = (np.asarray(moving.shape) - 1).astype(np.float64)[:, np.newaxis]
    inside = np.all((coords >= -1e-6) & (coords <= upper + 1e-6), axis=0)

    filled = np.where(np.isnan(moving), 0.0, moving)
    covered = ndimage.map_coordinates(
        (~np.isnan(moving)).astype(np.float64), coords, order=1, mode="nearest"
    )
    samples = ndimage.map_coordinates(filled, coords, order=1, mode="nearest")
    samples[~inside | (covered < 1 - 1e-6)] = np.nan
    return samples.reshape(moving.shape)
