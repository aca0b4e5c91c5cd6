import logging
import threading
from dataclasses import dataclass
from multiprocessing.pool import ThreadPool
from typing import Callable, Optional, Sequence

import numpy as np
from tqdm import tqdm

from ..aggregation import SamplingGrid, render_group
from ..exceptions import RegistrationAborted, RegistrationFailure
from ..grouping import GroupPair
from ..image_loaders import ImageLoader
from ..pairs import group_bounding_box
from ..parameters import GroupAggregation
from ..results import PairwiseResult
from ..views import ViewCatalog
from .strategies import RegistrationStrategy

logger = logging.getLogger(__name__)


@dataclass
class ProgressCallbacks:
    update_progress: Callable[[int, int], None]
    log: Callable[[str], None]

    @classmethod
    def no_op(cls):
        return cls(
            update_progress=lambda _a, _b: None,
            log=lambda _s: None,
        )


def _abort_checker(cancel_event: Optional[threading.Event]) -> Callable[[], None]:
    def check_abort() -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RegistrationAborted("Pairwise registration was cancelled")

    return check_abort


def compute_pair(
    catalog: ViewCatalog,
    loader: ImageLoader,
    pair: GroupPair,
    downsampling: Sequence[int],
    strategy: RegistrationStrategy,
    aggregation: GroupAggregation = GroupAggregation.average,
    callbacks: ProgressCallbacks = ProgressCallbacks.no_op(),
    cancel_event: Optional[threading.Event] = None,
) -> Optional[PairwiseResult]:
    """Register the second group of ``pair`` onto the first.

    Returns:
        The result, or None if the strategy found no usable alignment

    Raises:
        RegistrationAborted: if ``cancel_event`` is set
        ConfigurationError: if the strategy parameters do not fit the views
        OSError, ValueError: if an image cannot be read; these abort the whole batch
    """
    check_abort = _abort_checker(cancel_event)
    check_abort()
    group_a, group_b = pair
    try:
        box_a = group_bounding_box(catalog, group_a)
        box_b = group_bounding_box(catalog, group_b)
        overlap = box_a.intersection(box_b)
        if overlap is None:
            raise RegistrationFailure("Groups do not overlap")
        registration_hash = catalog.registration_hash(group_a.views + group_b.views)

        grid = SamplingGrid.over(overlap, downsampling)
        # a single sample is only acceptable along an axis the views themselves are flat in
        degenerate = [
            axis
            for axis, (n, extent_a, extent_b) in enumerate(zip(grid.shape, box_a.extent, box_b.extent))
            if n < 2 and max(extent_a, extent_b) > 0
        ]
        if degenerate:
            raise RegistrationFailure(f"Overlap {overlap} is degenerate along axes {degenerate}")

        fixed = render_group(catalog, loader, group_a, grid, downsampling, aggregation)
        moving = render_group(catalog, loader, group_b, grid, downsampling, aggregation)

        alignment = strategy.register(
            fixed,
            moving,
            log=lambda message: callbacks.log(f"{group_a} <> {group_b}: {message}"),
            check_abort=check_abort,
        )
        to_world = grid.transform
        transform = to_world @ alignment.transform @ np.linalg.inv(to_world)
    except (RegistrationFailure, np.linalg.LinAlgError, FloatingPointError) as e:
        logger.warning(f"Failed to register {group_b} onto {group_a}: {e}")
        return None

    logger.debug(
        f"{group_a} <> {group_b}: shift={np.round(transform[:-1, -1], 3).tolist()} "
        f"quality={alignment.quality:.3f}"
    )
    return PairwiseResult(
        pair=pair,
        transform=transform,
        quality=float(alignment.quality),
        overlap=overlap,
        registration_hash=registration_hash,
    )


def compute_pairs(
    catalog: ViewCatalog,
    loader: ImageLoader,
    pairs: Sequence[GroupPair],
    downsampling: Sequence[int],
    strategy: RegistrationStrategy,
    aggregation: GroupAggregation = GroupAggregation.average,
    num_workers: int = 1,
    callbacks: ProgressCallbacks = ProgressCallbacks.no_op(),
    cancel_event: Optional[threading.Event] = None,
    tqdm_class=tqdm,
) -> list[Optional[PairwiseResult]]:
    """Register every pair, one result (or None) per pair, in input order.

    Pairs are independent and run on a thread pool when ``num_workers > 1``.
    The registrations in ``catalog`` are only read.

    Raises:
        RegistrationAborted: if ``cancel_event`` is set before all pairs are done;
            no results are returned in that case
        OSError, ValueError: errors reading images propagate the same way
    """
    total = len(pairs)
    if total == 0:
        return []

    def work(pair: GroupPair) -> Optional[PairwiseResult]:
        return compute_pair(
            catalog, loader, pair, downsampling, strategy, aggregation, callbacks, cancel_event
        )

    results: list[Optional[PairwiseResult]] = []
    callbacks.update_progress(0, total)
    if num_workers > 1:
        with ThreadPool(processes=min(num_workers, total)) as pool:
            for result in tqdm_class(pool.imap(work, pairs), total=total, desc="Registering pairs"):
                results.append(result)
                callbacks.update_progress(len(results), total)
    else:
        for pair in tqdm_class(pairs, total=total, desc="Registering pairs"):
            results.append(work(pair))
            callbacks.update_progress(len(results), total)

    n_failed = sum(1 for r in results if r is None)
    if n_failed:
        logger.info(f"{n_failed} of {total} pairs could not be registered")
    return results
