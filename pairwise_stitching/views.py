"""View catalog for multi-view acquisitions.

A view is one acquired image volume, identified by a (timepoint, setup) pair
and tagged with the acquisition dimensions it was recorded at: channel,
illumination, angle and tile. Each view carries an affine registration that
maps its pixel coordinates into a shared world space.

The catalog can be built from records, from a pandas table, or from a CSV file
in the same spirit as the microscope ``coordinates.csv`` files:

    timepoint,setup,channel,illumination,angle,tile,image_path,y (px),x (px)
    0,0,0,0,0,0,tile_0.tiff,0,0
    0,1,0,0,0,1,tile_1.tiff,0,900
"""
import enum
import hashlib
import logging
import pathlib
from dataclasses import dataclass
from typing import Collection, Iterable, Iterator, Mapping, NamedTuple, Optional, Union

import numpy as np
import pandas as pd

from ._typing_utils import FloatArray
from .exceptions import ConfigurationError
from .transforms import BoundingBox, identity_transform, translation_transform, validate_affine, view_bounding_box

logger = logging.getLogger(__name__)

DEFAULT_POSITION_COLS = ("z (px)", "y (px)", "x (px)")
VIEW_TABLE_COLS = ("timepoint", "setup", "channel", "illumination", "angle", "tile")


class Factor(enum.Enum):
    """An acquisition dimension usable as a partition, grouping or comparison key."""

    timepoint = "timepoint"
    channel = "channel"
    illumination = "illumination"
    angle = "angle"
    tile = "tile"

    @classmethod
    def parse(cls, value: Union["Factor", str]) -> "Factor":
        """Resolve a factor given as a member or by name.

        Raises:
            ConfigurationError: if the name is not a known acquisition dimension
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            known = ", ".join(f.value for f in cls)
            raise ConfigurationError(
                f"Unknown acquisition dimension {value!r}; expected one of: {known}"
            ) from None


class ViewId(NamedTuple):
    """A (timepoint, setup) key.

    This uniquely identifies a view within an acquisition.
    """

    timepoint: int
    setup: int


@dataclass
class ViewDescription:
    view_id: ViewId
    shape: tuple[int, ...]
    """Pixel shape in numpy axis order: (y, x) or (z, y, x)."""
    channel: int = 0
    illumination: int = 0
    angle: int = 0
    tile: int = 0
    image_path: Optional[str] = None
    """Image file of this view; relative paths resolve against the project folder."""
    missing: bool = False
    """Missing views were never acquired and are skipped by every selection."""

    def __post_init__(self) -> None:
        self.view_id = ViewId(*self.view_id)
        self.shape = tuple(int(n) for n in self.shape)
        if len(self.shape) not in (2, 3) or min(self.shape) < 1:
            raise ValueError(f"View {self.view_id}: expected a 2-D or 3-D positive shape, got {self.shape}")

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def is_2d(self) -> bool:
        """True for 2-D views and for 3-D views holding a single plane."""
        return self.ndim == 2 or self.shape[0] == 1

    def factor_value(self, factor: Factor) -> int:
        if factor == Factor.timepoint:
            return self.view_id.timepoint
        elif factor == Factor.channel:
            return self.channel
        elif factor == Factor.illumination:
            return self.illumination
        elif factor == Factor.angle:
            return self.angle
        elif factor == Factor.tile:
            return self.tile
        else:
            raise RuntimeError(f"Unexpected Factor value: {factor}")


ViewSelection = Mapping[Union[Factor, str], Collection[int]]


class ViewCatalog:
    """Read-only view descriptions plus the mutable registration of every view."""

    def __init__(
        self,
        views: Iterable[ViewDescription],
        registrations: Optional[Mapping[ViewId, FloatArray]] = None,
    ):
        self._views: dict[ViewId, ViewDescription] = {}
        for view in views:
            if view.view_id in self._views:
                raise ValueError(f"Duplicate view {view.view_id}")
            self._views[view.view_id] = view

        registrations = registrations or {}
        unknown = set(registrations) - set(self._views)
        if unknown:
            raise ValueError(f"Registrations given for unknown views: {sorted(unknown)}")

        self._registrations: dict[ViewId, FloatArray] = {}
        for view_id, view in self._views.items():
            affine = registrations.get(view_id)
            if affine is None:
                affine = identity_transform(view.ndim)
            self.set_registration(view_id, affine)

    def __len__(self) -> int:
        return len(self._views)

    def __contains__(self, view_id: object) -> bool:
        return view_id in self._views

    def __iter__(self) -> Iterator[ViewDescription]:
        return iter(self._views[v] for v in sorted(self._views))

    def view(self, view_id: ViewId) -> ViewDescription:
        try:
            return self._views[ViewId(*view_id)]
        except KeyError:
            raise KeyError(f"View {tuple(view_id)} is not in the catalog") from None

    def list_views(
        self,
        selection: Optional[ViewSelection] = None,
        view_ids: Optional[Iterable[ViewId]] = None,
    ) -> list[ViewDescription]:
        """Present views, sorted by id, optionally restricted.

        Args:
            selection: allowed values per factor; factors not listed are unrestricted
            view_ids: if given, only these views are considered

        Raises:
            ConfigurationError: if the selection names an unknown factor or view
        """
        allowed = {
            Factor.parse(factor): set(int(v) for v in values)
            for factor, values in (selection or {}).items()
        }
        if view_ids is None:
            candidates = sorted(self._views)
        else:
            candidates = sorted(set(ViewId(*v) for v in view_ids))
            unknown = [v for v in candidates if v not in self._views]
            if unknown:
                raise ConfigurationError(f"Selected views are not in the catalog: {unknown}")

        selected = []
        for view_id in candidates:
            view = self._views[view_id]
            if view.missing:
                continue
            if all(view.factor_value(f) in values for f, values in allowed.items()):
                selected.append(view)
        return selected

    def get_registration(self, view_id: ViewId) -> FloatArray:
        """A copy of the current registration of ``view_id``."""
        return self._registrations[ViewId(*view_id)].copy()

    def set_registration(self, view_id: ViewId, affine: FloatArray) -> None:
        view = self.view(view_id)
        self._registrations[view.view_id] = validate_affine(affine, view.ndim)

    def bounding_box(self, view_id: ViewId) -> BoundingBox:
        view = self.view(view_id)
        return view_bounding_box(view.shape, self._registrations[view.view_id])

    def registration_hash(self, view_ids: Iterable[ViewId]) -> str:
        """Digest of the registrations of ``view_ids``.

        Stored with pairwise results so later stages can tell whether a result
        was computed against the registrations currently in the catalog.
        """
        digest = hashlib.sha1()
        for view_id in sorted(set(ViewId(*v) for v in view_ids)):
            digest.update(np.asarray(view_id, dtype=np.int64).tobytes())
            digest.update(np.round(self._registrations[view_id], 9).tobytes())
        return digest.hexdigest()

    @staticmethod
    def all_views_2d(views: Iterable[ViewDescription]) -> bool:
        return all(view.is_2d for view in views)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "ViewCatalog":
        """Build a catalog from a view table.

        Required columns: ``timepoint`` and ``setup``. Optional: ``channel``,
        ``illumination``, ``angle``, ``tile``, ``image_path``, ``missing``,
        ``shape`` (e.g. "512x512") and the position columns ``z (px)``,
        ``y (px)``, ``x (px)`` giving a translation-only registration.
        Views without a ``shape`` need an ``image_path`` to read it from.
        """
        from .image_loaders import get_image_shape

        for col in ("timepoint", "setup"):
            if col not in df.columns:
                raise ValueError(f"View table is missing required column '{col}'")

        views = []
        registrations = {}
        for _, row in df.iterrows():
            view_id = ViewId(int(row["timepoint"]), int(row["setup"]))
            image_path = row.get("image_path")
            image_path = None if pd.isna(image_path) else str(image_path)

            shape_value = row.get("shape")
            if shape_value is not None and not pd.isna(shape_value):
                shape = tuple(int(n) for n in str(shape_value).lower().split("x"))
            elif image_path is not None:
                shape = get_image_shape(image_path)
            else:
                raise ValueError(f"View {view_id}: neither 'shape' nor 'image_path' given")

            view = ViewDescription(
                view_id=view_id,
                shape=shape,
                channel=int(row.get("channel", 0)),
                illumination=int(row.get("illumination", 0)),
                angle=int(row.get("angle", 0)),
                tile=int(row.get("tile", 0)),
                image_path=image_path,
                missing=bool(row.get("missing", False)),
            )
            position_cols = DEFAULT_POSITION_COLS[-view.ndim:]
            if any(col in df.columns for col in position_cols):
                position = [float(row.get(col, 0.0)) for col in position_cols]
                registrations[view_id] = translation_transform(position)
            views.append(view)

        logger.info(f"Loaded {len(views)} views from table")
        return cls(views, registrations)

    def to_dataframe(self) -> pd.DataFrame:
        """View table with the translational part of each registration."""
        rows = []
        for view in self:
            affine = self._registrations[view.view_id]
            row = {
                "timepoint": view.view_id.timepoint,
                "setup": view.view_id.setup,
                "channel": view.channel,
                "illumination": view.illumination,
                "angle": view.angle,
                "tile": view.tile,
                "image_path": view.image_path,
                "missing": view.missing,
                "shape": "x".join(str(n) for n in view.shape),
            }
            for col, value in zip(DEFAULT_POSITION_COLS[-view.ndim:], affine[:-1, -1]):
                row[col] = float(value)
            rows.append(row)
        return pd.DataFrame(rows)


def read_views_csv(csv_path: Union[str, pathlib.Path]) -> ViewCatalog:
    """Read a view table from CSV.

    Relative ``image_path`` entries are resolved against the CSV's folder.
    """
    csv_path = pathlib.Path(csv_path)
    df = pd.read_csv(csv_path)
    if "image_path" in df.columns:
        df["image_path"] = [
            None if pd.isna(p) else str((csv_path.parent / str(p)).resolve())
            for p in df["image_path"]
        ]
    return ViewCatalog.from_dataframe(df)
