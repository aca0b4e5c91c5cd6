"""Pairwise Stitching Package.

This package computes pairwise shifts between overlapping views of a
multi-view microscopy acquisition, ahead of global optimization.

Main functionality:
- View catalog: views tagged by timepoint, channel, illumination, angle and tile
- Grouping: partition views into independent problems and aggregate them into groups
- Pair enumeration: comparable group pairs with overlapping bounding boxes
- Registration: phase correlation or Lucas-Kanade alignment of each pair
- Merge: idempotent upsert into the project's pairwise results store
"""

from .exceptions import ConfigurationError, RegistrationAborted, RegistrationFailure
from .grouping import Group, ViewGrouping
from .merge import MergeSummary, merge_pairwise_results
from .pairs import PairEnumeration, enumerate_pairs
from .parameters import (
    GroupAggregation,
    GroupingFactors,
    LucasKanadeParameters,
    PhaseCorrelationParameters,
    RegistrationConfig,
    RegistrationMethod,
    WarpFunctionType,
)
from .pipeline import PairwiseShiftCalculator
from .project import StitchingProject
from .registration import ProgressCallbacks, compute_pairs, create_registration_strategy
from .results import PairwiseResult, PairwiseResultsStore
from .views import Factor, ViewCatalog, ViewDescription, ViewId

__all__ = [
    'ConfigurationError',
    'RegistrationAborted',
    'RegistrationFailure',
    'Group',
    'ViewGrouping',
    'MergeSummary',
    'merge_pairwise_results',
    'PairEnumeration',
    'enumerate_pairs',
    'GroupAggregation',
    'GroupingFactors',
    'LucasKanadeParameters',
    'PhaseCorrelationParameters',
    'RegistrationConfig',
    'RegistrationMethod',
    'WarpFunctionType',
    'PairwiseShiftCalculator',
    'StitchingProject',
    'ProgressCallbacks',
    'compute_pairs',
    'create_registration_strategy',
    'PairwiseResult',
    'PairwiseResultsStore',
    'Factor',
    'ViewCatalog',
    'ViewDescription',
    'ViewId',
]
