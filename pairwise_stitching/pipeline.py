import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Optional

from tqdm import tqdm

from .benchmarking_util import debug_timing
from .grouping import ViewGrouping
from .merge import MergeSummary, merge_pairwise_results
from .pairs import PairEnumeration, enumerate_pairs
from .parameters import RegistrationConfig
from .project import StitchingProject
from .registration import ProgressCallbacks, compute_pairs, create_registration_strategy
from .views import ViewCatalog, ViewDescription, ViewId

logger = logging.getLogger(__name__)


@dataclass
class PairwiseShiftRun:
    """What one run computed and how it changed the results store."""

    enumeration: PairEnumeration
    n_successful: int
    summary: MergeSummary


class PairwiseShiftCalculator:
    """Compute pairwise shifts for a project and merge them into its results store.

    One run goes through grouping, pair enumeration, registration of every pair
    and the merge. Nothing is written to the store before all pairs are done;
    saving the project is up to the caller.
    """

    def __init__(
        self,
        project: StitchingProject,
        config: RegistrationConfig,
        callbacks: ProgressCallbacks = ProgressCallbacks.no_op(),
        cancel_event: Optional[threading.Event] = None,
    ):
        self.project = project
        self.config = config
        self.callbacks = callbacks
        self.cancel_event = cancel_event
        self.tqdm_class = tqdm

    @property
    def catalog(self) -> ViewCatalog:
        return self.project.catalog

    def select_views(self, view_ids: Optional[Iterable[ViewId]] = None) -> list[ViewDescription]:
        return self.catalog.list_views(self.config.view_selection, view_ids)

    def _log(self, message: str) -> None:
        logger.info(message)
        self.callbacks.log(message)

    def run(self, view_ids: Optional[Iterable[ViewId]] = None) -> PairwiseShiftRun:
        """Run the pairwise shift calculation on the selected views.

        Args:
            view_ids: restrict the run to these views; by default every present
                view matching the configured selection

        Raises:
            ConfigurationError: for an invalid grouping, selection, downsampling or
                strategy parameters
            RegistrationAborted: when cancelled; the store is left untouched
            OSError, ValueError: when an image cannot be read; the store is left untouched
        """
        views = self.select_views(view_ids)
        grouping = ViewGrouping.from_config(
            self.catalog, views, self.config.grouping, self.config.aggregation
        )
        if ViewCatalog.all_views_2d(grouping.views):
            logger.info("All selected views are 2-D")
        logger.debug(f"Using {grouping}")

        strategy = create_registration_strategy(
            self.config.method, self.config.phase_correlation, self.config.lucas_kanade
        )
        strategy.check_dimensionality(grouping.ndim)

        self._log("Finding pairs to compute overlap ...")
        with debug_timing("enumerate pairs"):
            enumeration = enumerate_pairs(grouping, self.config.downsampling)
        self._log(
            f"Found {len(enumeration)} overlapping pairs, downsampling {list(enumeration.downsampling)}"
        )

        self._log(f"Computing overlap with {strategy.get_name()} ...")
        with debug_timing("compute pairs"):
            results = compute_pairs(
                self.catalog,
                self.project.loader,
                enumeration.pairs,
                enumeration.downsampling,
                strategy,
                aggregation=grouping.aggregation,
                num_workers=self.config.num_workers,
                callbacks=self.callbacks,
                cancel_event=self.cancel_event,
                tqdm_class=self.tqdm_class,
            )

        self._log("Organizing results ...")
        summary = merge_pairwise_results(self.project.results, enumeration.pairs, results)
        n_successful = sum(1 for r in results if r is not None)
        self._log(
            f"Registered {n_successful} of {len(enumeration)} pairs "
            f"({summary.removed} previous results replaced)"
        )
        return PairwiseShiftRun(enumeration=enumeration, n_successful=n_successful, summary=summary)
