"""Project files: the view catalog plus the pairwise results computed for it.

A project is stored as a single JSON document::

    {
      "version": 1,
      "views": [{"timepoint": 0, "setup": 0, "shape": [512, 512], "registration": [[...]], ...}],
      "pairwise_results": [{"group_a": [[0, 0]], "group_b": [[0, 1]], "transform": [[...]], ...}]
    }

View tables in CSV form can be loaded as well, and are saved back as JSON.
"""
import logging
import pathlib
from typing import Optional, Union

import numpy as np
from pydantic import BaseModel, Field

from .grouping import Group
from .image_loaders import ImageLoader, TiffImageLoader
from .results import PairwiseResult, PairwiseResultsStore
from .transforms import BoundingBox
from .views import ViewCatalog, ViewDescription, ViewId, read_views_csv

logger = logging.getLogger(__name__)

PROJECT_FORMAT_VERSION = 1


class ViewRecord(BaseModel):
    timepoint: int
    setup: int
    shape: list[int]
    channel: int = 0
    illumination: int = 0
    angle: int = 0
    tile: int = 0
    image_path: Optional[str] = None
    missing: bool = False
    registration: Optional[list[list[float]]] = None
    """Pixel to world affine; identity when absent."""


class PairwiseResultRecord(BaseModel):
    group_a: list[tuple[int, int]]
    group_b: list[tuple[int, int]]
    transform: list[list[float]]
    quality: float
    overlap_lower: list[float]
    overlap_upper: list[float]
    registration_hash: str


class ProjectFile(BaseModel):
    version: int = PROJECT_FORMAT_VERSION
    views: list[ViewRecord]
    pairwise_results: list[PairwiseResultRecord] = Field(default_factory=list)


def _view_from_record(record: ViewRecord) -> ViewDescription:
    return ViewDescription(
        view_id=ViewId(record.timepoint, record.setup),
        shape=tuple(record.shape),
        channel=record.channel,
        illumination=record.illumination,
        angle=record.angle,
        tile=record.tile,
        image_path=record.image_path,
        missing=record.missing,
    )


def _group_from_record(view_ids: list[tuple[int, int]]) -> Group:
    return Group(tuple(ViewId(*v) for v in view_ids))


class StitchingProject:
    """Owns the view catalog, the pairwise results store and the image loader of a session."""

    def __init__(
        self,
        catalog: ViewCatalog,
        results: Optional[PairwiseResultsStore] = None,
        loader: Optional[ImageLoader] = None,
        path: Optional[pathlib.Path] = None,
    ):
        self.catalog = catalog
        self.results = results if results is not None else PairwiseResultsStore()
        self.path = path
        if loader is None:
            loader = TiffImageLoader(path.parent if path is not None else None)
        self.loader = loader

    @classmethod
    def load(cls, path: Union[str, pathlib.Path]) -> "StitchingProject":
        """Load a project JSON file or a CSV view table.

        Relative image paths resolve against the folder of ``path``.
        """
        path = pathlib.Path(path)
        if path.suffix.lower() == ".csv":
            logger.info(f"Reading view table {path}")
            return cls(read_views_csv(path), path=path)

        logger.info(f"Reading project {path}")
        with open(path) as f:
            project_file = ProjectFile.model_validate_json(f.read())
        if project_file.version != PROJECT_FORMAT_VERSION:
            raise ValueError(
                f"Unsupported project version {project_file.version}, expected {PROJECT_FORMAT_VERSION}"
            )

        views = [_view_from_record(r) for r in project_file.views]
        registrations = {
            ViewId(r.timepoint, r.setup): np.array(r.registration)
            for r in project_file.views
            if r.registration is not None
        }
        catalog = ViewCatalog(views, registrations)

        store = PairwiseResultsStore()
        for record in project_file.pairwise_results:
            pair = (_group_from_record(record.group_a), _group_from_record(record.group_b))
            store.set_result(
                PairwiseResult(
                    pair=pair,
                    transform=np.array(record.transform, dtype=np.float64),
                    quality=record.quality,
                    overlap=BoundingBox(tuple(record.overlap_lower), tuple(record.overlap_upper)),
                    registration_hash=record.registration_hash,
                )
            )
        logger.info(f"Loaded {len(catalog)} views and {len(store)} pairwise results")
        return cls(catalog, store, path=path)

    def _saved_image_path(self, view: ViewDescription) -> Optional[str]:
        """Absolute image path of ``view``, so the project can be saved to any folder."""
        if view.image_path is None or not isinstance(self.loader, TiffImageLoader):
            return view.image_path
        return str(self.loader.resolve(view).resolve())

    def to_project_file(self) -> ProjectFile:
        views = [
            ViewRecord(
                timepoint=view.view_id.timepoint,
                setup=view.view_id.setup,
                shape=list(view.shape),
                channel=view.channel,
                illumination=view.illumination,
                angle=view.angle,
                tile=view.tile,
                image_path=self._saved_image_path(view),
                missing=view.missing,
                registration=self.catalog.get_registration(view.view_id).tolist(),
            )
            for view in self.catalog
        ]
        results = [
            PairwiseResultRecord(
                group_a=[tuple(v) for v in group_a],
                group_b=[tuple(v) for v in group_b],
                transform=result.transform.tolist(),
                quality=result.quality,
                overlap_lower=list(result.overlap.lower),
                overlap_upper=list(result.overlap.upper),
                registration_hash=result.registration_hash,
            )
            for (group_a, group_b), result in self.results.items()
        ]
        return ProjectFile(views=views, pairwise_results=results)

    def save(self, path: Optional[Union[str, pathlib.Path]] = None) -> pathlib.Path:
        """Write the project as JSON, by default over the file it was loaded from.

        A project loaded from a CSV table is saved next to it with a .json suffix.
        """
        if path is None:
            if self.path is None:
                raise ValueError("No path given and the project was not loaded from a file")
            path = self.path
            if path.suffix.lower() == ".csv":
                path = path.with_suffix(".json")
        path = pathlib.Path(path)

        logger.info(f"Saving project to {path}")
        with open(path, "w") as f:
            f.write(self.to_project_file().model_dump_json(indent=2))
        return path
