import enum
import os
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, Field

from .views import Factor

DEFAULT_PLANE_DOWNSAMPLING = 2


class RegistrationMethod(enum.Enum):
    phase_correlation = "Phase Correlation"
    lucas_kanade = "Lucas-Kanade"


class WarpFunctionType(enum.Enum):
    """Transformation family refined by the Lucas-Kanade strategy."""

    translation = "translation"
    rigid = "rigid"
    affine = "affine"


class GroupAggregation(enum.Enum):
    """How the images of the views collapsed into one group are combined."""

    first = "first"
    """Per pixel, the first view (by view id) that covers it."""
    average = "average"
    """Per pixel mean over the views covering it."""
    maximum = "maximum"
    """Per pixel maximum over the views covering it."""
    brightest = "brightest"
    """Only the view with the highest mean intensity."""


def input_path_exists(path: str) -> str:
    """Pydantic validator to check the path exists."""
    if not os.path.exists(path):
        raise ValueError(f"Input file does not exist: {path}")

    return path


def positive_factors(factors: Optional[list[int]]) -> Optional[list[int]]:
    """Pydantic validator for downsampling factors."""
    if factors is not None:
        if not factors:
            raise ValueError("Downsampling needs at least one factor")
        if any(f < 1 for f in factors):
            raise ValueError(f"Downsampling factors must be positive integers, got {factors}")
    return factors


def default_downsampling(ndim: int) -> tuple[int, ...]:
    """2x in-plane downsampling; z is never downsampled for 3-D views."""
    if ndim == 2:
        return (DEFAULT_PLANE_DOWNSAMPLING,) * 2
    return (1, DEFAULT_PLANE_DOWNSAMPLING, DEFAULT_PLANE_DOWNSAMPLING)


class GroupingFactors(BaseModel, use_attribute_docstrings=True):
    """Manual grouping configuration.

    The three sets must be pairwise disjoint; this is checked by the grouping
    engine, which reports violations as configuration errors.
    """

    application_axes: list[Factor] = Field(default_factory=lambda: [Factor.timepoint, Factor.angle])
    """Views differing in any of these are processed as independent problems."""

    grouping_factors: list[Factor] = Field(default_factory=lambda: [Factor.channel, Factor.illumination])
    """Views differing only in these are combined into one group."""

    comparison_factors: list[Factor] = Field(default_factory=lambda: [Factor.tile])
    """Groups may be compared when they differ in these."""


class PhaseCorrelationParameters(BaseModel, use_attribute_docstrings=True):
    """Parameters of the phase correlation strategy."""

    peaks_to_check: int = Field(default=5, ge=1)
    """Number of phase correlation peaks disambiguated by cross-correlation."""

    min_overlap: float = Field(default=0.0, ge=0.0, le=1.0)
    """Minimum fraction of the overlap region that must remain overlapping after the shift."""

    min_correlation: float = Field(default=0.0, ge=-1.0, le=1.0)
    """Shifts whose cross-correlation is below this are discarded."""

    subpixel: bool = True
    """Refine the integer shift by upsampled cross-correlation."""

    upsample_factor: int = Field(default=10, ge=1)
    """Subpixel refinement precision is 1 / upsample_factor grid pixels."""

    max_shift: Optional[list[float]] = None
    """If set, the largest absolute shift accepted per axis, in downsampled pixels."""


class LucasKanadeParameters(BaseModel, use_attribute_docstrings=True):
    """Parameters of the iterative Lucas-Kanade strategy."""

    warp_function: WarpFunctionType = WarpFunctionType.translation
    """Transformation family to refine."""

    max_iterations: int = Field(default=100, ge=1)
    """Pairs not converged after this many iterations are discarded."""

    min_parameter_change: float = Field(default=0.01, gt=0.0)
    """Convergence is reached once the parameter update norm drops below this."""

    min_correlation: float = Field(default=0.0, ge=-1.0, le=1.0)
    """Alignments whose cross-correlation is below this are discarded."""


class RegistrationConfig(BaseModel, use_attribute_docstrings=True):
    """Configuration of one pairwise shift calculation run."""

    method: RegistrationMethod = RegistrationMethod.phase_correlation
    """Registration strategy used for every pair."""

    grouping: Optional[GroupingFactors] = None
    """Manual grouping; `None` uses timepoint/angle application axes, channel/illumination
    grouping and tile comparison."""

    aggregation: GroupAggregation = GroupAggregation.average
    """How the views of a group are combined before registration."""

    downsampling: Annotated[Optional[list[int]], AfterValidator(positive_factors)] = None
    """Downsampling per spatial axis in numpy order ((y, x) or (z, y, x)).

    The default, `None`, downsamples 2x in-plane and leaves z untouched.
    """

    view_selection: dict[Factor, list[int]] = Field(default_factory=dict)
    """Restrict processing to views with these factor values, e.g. {"timepoint": [0]}."""

    phase_correlation: PhaseCorrelationParameters = Field(default_factory=PhaseCorrelationParameters)
    lucas_kanade: LucasKanadeParameters = Field(default_factory=LucasKanadeParameters)

    num_workers: int = Field(default=1, ge=1)
    """Number of pairs registered concurrently."""

    @classmethod
    def from_json_file(cls, json_path: str):
        """Create parameters from a JSON file.

        Args:
            json_path: Path to JSON file containing parameters

        Returns:
            New instance with values from JSON
        """
        with open(json_path) as f:
            return cls.model_validate_json(f.read())

    def to_json_file(self, json_path: str) -> None:
        """Save parameters to a JSON file.

        Args:
            json_path: Path where JSON file should be saved
        """
        with open(json_path, "w") as f:
            f.write(self.model_dump_json(indent=2))


class PairwiseShiftParameters(RegistrationConfig):
    """Command line parameters: a run configuration plus the project to process."""

    project_file: Annotated[str, AfterValidator(input_path_exists)]
    """Project JSON file, or a view table CSV, describing the views to register."""

    output_file: Optional[str] = None
    """Where to save the updated project; defaults to the project file (a .json next
    to it when the input is a CSV table)."""

    verbose: bool = False
    """Show debug-level logging."""

    def registration_config(self) -> RegistrationConfig:
        return RegistrationConfig.model_validate(
            self.model_dump(exclude={"project_file", "output_file", "verbose"})
        )
