"""Idempotent upsert of freshly computed pairwise results."""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .grouping import GroupPair
from .results import PairwiseResult, PairwiseResultsStore

logger = logging.getLogger(__name__)


@dataclass
class MergeSummary:
    removed: int
    """Stale entries dropped, counting both orderings."""
    inserted: int
    failed: int
    """Pairs that produced no result; their previous entries are gone too."""


def merge_pairwise_results(
    store: PairwiseResultsStore,
    pairs: Sequence[GroupPair],
    results: Sequence[Optional[PairwiseResult]],
) -> MergeSummary:
    """Replace the store entries of every pair of this run.

    Every pair that was recomputed loses its old entry under either ordering,
    whether or not the recomputation succeeded. Non-null results are then
    inserted under their own pair. Running the same merge twice leaves the
    store unchanged.

    Raises:
        ValueError: if ``results`` does not hold exactly one entry per pair;
            the store is not modified in that case
    """
    if len(pairs) != len(results):
        raise ValueError(f"Expected one result per pair, got {len(results)} results for {len(pairs)} pairs")

    removed = 0
    for pair in pairs:
        removed += store.remove_pair(pair)

    inserted = 0
    failed = 0
    for pair, result in zip(pairs, results):
        if result is None:
            failed += 1
            continue
        if set(result.pair) != set(pair):
            logger.warning(f"Result for {result.pair} was returned for pair {pair}, storing it under its own pair")
        store.set_result(result)
        inserted += 1

    logger.debug(f"Merged pairwise results: removed={removed} inserted={inserted} failed={failed}")
    return MergeSummary(removed=removed, inserted=inserted, failed=failed)
