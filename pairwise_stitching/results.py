"""Pairwise registration results and the store holding them."""
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np
import pandas as pd

from ._typing_utils import FloatArray
from .grouping import GroupPair
from .transforms import BoundingBox

logger = logging.getLogger(__name__)


@dataclass
class PairwiseResult:
    pair: GroupPair
    transform: FloatArray
    """World-space correction for the second group: ``new_registration = transform @ registration``."""
    quality: float
    """Cross-correlation of the aligned group images, in [-1, 1]."""
    overlap: BoundingBox
    """World region that was compared."""
    registration_hash: str
    """Digest of the registrations of both groups' views when this was computed."""

    @property
    def shift(self) -> FloatArray:
        return self.transform[:-1, -1].copy()

    @property
    def ndim(self) -> int:
        return self.transform.shape[0] - 1


def _reversed(pair: GroupPair) -> GroupPair:
    return (pair[1], pair[0])


class PairwiseResultsStore:
    """Results keyed by group pair, holding at most one entry per unordered pair.

    The order a pair is stored under is the order it was computed in, since the
    transform of a result always applies to the second group.
    """

    def __init__(self) -> None:
        self._results: dict[GroupPair, PairwiseResult] = {}

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[GroupPair]:
        return iter(sorted(self._results))

    def __contains__(self, pair: object) -> bool:
        return self.get(pair) is not None  # type: ignore[arg-type]

    def get(self, pair: GroupPair) -> Optional[PairwiseResult]:
        """The result for ``pair`` stored under either ordering."""
        result = self._results.get(pair)
        if result is None:
            result = self._results.get(_reversed(pair))
        return result

    def items(self) -> list[tuple[GroupPair, PairwiseResult]]:
        return [(pair, self._results[pair]) for pair in self]

    def remove_pair(self, pair: GroupPair) -> int:
        """Remove the entries for ``pair`` under both orderings.

        Returns:
            Number of entries removed
        """
        removed = 0
        for key in (pair, _reversed(pair)):
            if self._results.pop(key, None) is not None:
                removed += 1
        return removed

    def set_result(self, result: PairwiseResult) -> None:
        """Insert ``result`` under its own pair, replacing any entry for the same unordered pair."""
        self.remove_pair(result.pair)
        self._results[result.pair] = result

    def to_dataframe(self) -> pd.DataFrame:
        """One row per stored pair, with the translational part of its correction."""
        rows = []
        for (group_a, group_b), result in self.items():
            row = {
                "group_a": " ".join(f"{v.timepoint}/{v.setup}" for v in group_a),
                "group_b": " ".join(f"{v.timepoint}/{v.setup}" for v in group_b),
                "quality": result.quality,
                "registration_hash": result.registration_hash,
            }
            axes = ("z", "y", "x")[-result.ndim:]
            for axis, value in zip(axes, result.shift):
                row[f"shift {axis}"] = float(value)
            row["is_translation"] = bool(
                np.allclose(result.transform[:-1, :-1], np.eye(result.ndim))
            )
            rows.append(row)
        return pd.DataFrame(rows)
