"""Partition and group views into comparison-ready units.

Three disjoint factor sets drive the grouping:

- application axes: views differing in any of these belong to independent
  sub-problems ("partitions") that are never compared with each other;
- grouping factors: views differing only in these are combined into one group;
- comparison factors: two groups of one partition form a candidate pair when
  they agree on every remaining factor and differ in at least one of these.
"""
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Union

from .exceptions import ConfigurationError
from .parameters import GroupAggregation, GroupingFactors
from .views import Factor, ViewCatalog, ViewDescription, ViewId

logger = logging.getLogger(__name__)

DEFAULT_APPLICATION_AXES = (Factor.timepoint, Factor.angle)
DEFAULT_GROUPING_FACTORS = (Factor.channel, Factor.illumination)
DEFAULT_COMPARISON_FACTORS = (Factor.tile,)

FactorSpec = Iterable[Union[Factor, str]]
FactorKey = tuple[int, ...]


@dataclass(frozen=True, order=True)
class Group:
    """A non-empty set of views treated as one unit for pairwise comparison."""

    views: tuple[ViewId, ...]

    def __post_init__(self) -> None:
        views = tuple(sorted(set(ViewId(*v) for v in self.views)))
        if not views:
            raise ValueError("A group needs at least one view")
        object.__setattr__(self, "views", views)

    @classmethod
    def of(cls, *view_ids: ViewId) -> "Group":
        return cls(tuple(view_ids))

    def __len__(self) -> int:
        return len(self.views)

    def __iter__(self) -> Iterator[ViewId]:
        return iter(self.views)

    def __contains__(self, view_id: object) -> bool:
        return view_id in self.views

    def __repr__(self) -> str:
        return "Group(" + ", ".join(f"{v.timepoint}/{v.setup}" for v in self.views) + ")"


GroupPair = tuple[Group, Group]


def resolve_factors(factors: FactorSpec) -> tuple[Factor, ...]:
    """Parse factor names, dropping duplicates and keeping enum order."""
    parsed = {Factor.parse(f) for f in factors}
    return tuple(f for f in Factor if f in parsed)


def check_disjoint(
    application_axes: Iterable[Factor],
    grouping_factors: Iterable[Factor],
    comparison_factors: Iterable[Factor],
) -> None:
    """Raise ConfigurationError if any factor appears in more than one set."""
    named_sets = {
        "application axes": set(application_axes),
        "grouping factors": set(grouping_factors),
        "comparison factors": set(comparison_factors),
    }
    clashes = []
    for (name_a, set_a), (name_b, set_b) in itertools.combinations(named_sets.items(), 2):
        common = set_a & set_b
        if common:
            values = ", ".join(sorted(f.value for f in common))
            clashes.append(f"{name_a} and {name_b} share {values}")
    if clashes:
        raise ConfigurationError("Factor sets must be disjoint: " + "; ".join(clashes))


class ViewGrouping:
    """Groups of a view selection and the candidate comparisons between them.

    Groups and comparisons are derived from the catalog at construction time
    and are not cached across runs.
    """

    def __init__(
        self,
        catalog: ViewCatalog,
        views: Iterable[Union[ViewDescription, ViewId]],
        application_axes: FactorSpec,
        grouping_factors: FactorSpec,
        comparison_factors: FactorSpec,
        aggregation: GroupAggregation = GroupAggregation.average,
    ):
        self.catalog = catalog
        self.application_axes = resolve_factors(application_axes)
        self.grouping_factors = resolve_factors(grouping_factors)
        self.comparison_factors = resolve_factors(comparison_factors)
        check_disjoint(self.application_axes, self.grouping_factors, self.comparison_factors)
        self.aggregation = GroupAggregation(aggregation)
        self.views = self._resolve_views(views)

        if not self.comparison_factors:
            logger.warning("No comparison factors configured, no pairs will be compared")

    @classmethod
    def default(
        cls,
        catalog: ViewCatalog,
        views: Iterable[Union[ViewDescription, ViewId]],
        aggregation: GroupAggregation = GroupAggregation.average,
    ) -> "ViewGrouping":
        """Group channels and illuminations, compare tiles, per timepoint and angle."""
        return cls(
            catalog,
            views,
            DEFAULT_APPLICATION_AXES,
            DEFAULT_GROUPING_FACTORS,
            DEFAULT_COMPARISON_FACTORS,
            aggregation,
        )

    @classmethod
    def from_config(
        cls,
        catalog: ViewCatalog,
        views: Iterable[Union[ViewDescription, ViewId]],
        grouping: Optional[GroupingFactors],
        aggregation: GroupAggregation = GroupAggregation.average,
    ) -> "ViewGrouping":
        if grouping is None:
            return cls.default(catalog, views, aggregation)
        return cls(
            catalog,
            views,
            grouping.application_axes,
            grouping.grouping_factors,
            grouping.comparison_factors,
            aggregation,
        )

    def _resolve_views(self, views: Iterable[Union[ViewDescription, ViewId]]) -> list[ViewDescription]:
        view_ids = sorted(
            set(v.view_id if isinstance(v, ViewDescription) else ViewId(*v) for v in views)
        )
        if not view_ids:
            raise ConfigurationError("No views selected for pairwise registration")

        unknown = [v for v in view_ids if v not in self.catalog]
        if unknown:
            raise ConfigurationError(f"Selected views are not in the catalog: {unknown}")

        resolved = [self.catalog.view(v) for v in view_ids]
        missing = [v.view_id for v in resolved if v.missing]
        if missing:
            raise ConfigurationError(f"Selected views are missing from the acquisition: {missing}")

        ndims = sorted(set(v.ndim for v in resolved))
        if len(ndims) > 1:
            raise ConfigurationError(f"Selected views mix dimensionalities {ndims}")
        return resolved

    @property
    def ndim(self) -> int:
        return self.views[0].ndim

    @property
    def other_factors(self) -> tuple[Factor, ...]:
        """Factors in none of the three sets; comparable groups must agree on them."""
        used = set(self.application_axes) | set(self.grouping_factors) | set(self.comparison_factors)
        return tuple(f for f in Factor if f not in used)

    def application_key(self, view: ViewDescription) -> FactorKey:
        return tuple(view.factor_value(f) for f in self.application_axes)

    def group_key(self, view: ViewDescription) -> FactorKey:
        """Values of every non-grouping factor, in enum order."""
        return tuple(view.factor_value(f) for f in Factor if f not in self.grouping_factors)

    def partitions(self) -> dict[FactorKey, list[Group]]:
        """Groups per distinct combination of application-axis values."""
        buckets: dict[FactorKey, dict[FactorKey, list[ViewId]]] = defaultdict(lambda: defaultdict(list))
        for view in self.views:
            buckets[self.application_key(view)][self.group_key(view)].append(view.view_id)

        return {
            app_key: sorted(Group(tuple(view_ids)) for view_ids in groups.values())
            for app_key, groups in sorted(buckets.items())
        }

    def groups(self) -> list[Group]:
        return [group for groups in self.partitions().values() for group in groups]

    def _representative(self, group: Group) -> ViewDescription:
        return self.catalog.view(group.views[0])

    def is_comparable(self, group_a: Group, group_b: Group) -> bool:
        """Same partition, same other factors, differing in some comparison factor.

        All views of a group share their non-grouping factor values, so the
        first view stands for the whole group.
        """
        if group_a == group_b:
            return False
        view_a = self._representative(group_a)
        view_b = self._representative(group_b)
        if self.application_key(view_a) != self.application_key(view_b):
            return False
        if any(view_a.factor_value(f) != view_b.factor_value(f) for f in self.other_factors):
            return False
        return any(view_a.factor_value(f) != view_b.factor_value(f) for f in self.comparison_factors)

    def comparisons(self) -> list[GroupPair]:
        """Every comparable pair of groups once, smaller group first.

        Partitions with fewer than two groups contribute nothing. No overlap
        test is done here.
        """
        pairs: list[GroupPair] = []
        for app_key, groups in self.partitions().items():
            if len(groups) < 2:
                logger.debug(f"Partition {app_key} has {len(groups)} group(s), nothing to compare")
                continue
            for group_a, group_b in itertools.combinations(groups, 2):
                if self.is_comparable(group_a, group_b):
                    pairs.append((group_a, group_b))
        return pairs

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"application_axes={[f.value for f in self.application_axes]}, "
            f"grouping_factors={[f.value for f in self.grouping_factors]}, "
            f"comparison_factors={[f.value for f in self.comparison_factors]}, "
            f"aggregation={self.aggregation.value}, views={len(self.views)})"
        )
