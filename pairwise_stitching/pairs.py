import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .exceptions import ConfigurationError
from .grouping import Group, GroupPair, ViewGrouping
from .parameters import default_downsampling
from .transforms import BoundingBox
from .views import ViewCatalog

logger = logging.getLogger(__name__)


@dataclass
class PairEnumeration:
    pairs: list[GroupPair]
    """Overlapping comparable pairs, each unordered pair once."""
    downsampling: tuple[int, ...]
    """Downsampling per spatial axis, shared by every pair of the run."""

    def __len__(self) -> int:
        return len(self.pairs)


def group_bounding_box(catalog: ViewCatalog, group: Group) -> BoundingBox:
    """World bounding box enclosing every view of ``group``."""
    return BoundingBox.union(catalog.bounding_box(v) for v in group)


def resolve_downsampling(downsampling: Optional[Sequence[int]], ndim: int) -> tuple[int, ...]:
    if downsampling is None:
        return default_downsampling(ndim)
    factors = tuple(int(f) for f in downsampling)
    if len(factors) != ndim:
        raise ConfigurationError(
            f"Got {len(factors)} downsampling factors {factors} for {ndim}-D views"
        )
    if any(f < 1 for f in factors):
        raise ConfigurationError(f"Downsampling factors must be positive integers, got {factors}")
    return factors


def enumerate_pairs(
    grouping: ViewGrouping, downsampling: Optional[Sequence[int]] = None
) -> PairEnumeration:
    """Comparable group pairs whose world bounding boxes overlap.

    Raises:
        ConfigurationError: if the downsampling does not match the view dimensionality
    """
    factors = resolve_downsampling(downsampling, grouping.ndim)
    boxes: dict[Group, BoundingBox] = {}

    def box(group: Group) -> BoundingBox:
        if group not in boxes:
            boxes[group] = group_bounding_box(grouping.catalog, group)
        return boxes[group]

    pairs: list[GroupPair] = []
    for group_a, group_b in grouping.comparisons():
        if box(group_a).overlaps(box(group_b)):
            pairs.append((group_a, group_b))
        else:
            logger.debug(f"Skipping {group_a} / {group_b}: bounding boxes do not overlap")

    return PairEnumeration(pairs=pairs, downsampling=factors)
