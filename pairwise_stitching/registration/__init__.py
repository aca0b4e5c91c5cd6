"""Pairwise registration of view groups.

Renders both groups of a pair on a shared grid over their overlap and hands
them to a registration strategy.
"""

from .dispatcher import ProgressCallbacks, compute_pair, compute_pairs
from .strategies import (
    LucasKanadeStrategy,
    PairAlignment,
    PhaseCorrelationStrategy,
    RegistrationStrategy,
    create_registration_strategy,
)

__all__ = [
    "ProgressCallbacks",
    "compute_pair",
    "compute_pairs",
    "RegistrationStrategy",
    "PairAlignment",
    "PhaseCorrelationStrategy",
    "LucasKanadeStrategy",
    "create_registration_strategy",
]
