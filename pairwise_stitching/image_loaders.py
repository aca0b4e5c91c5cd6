"""Image loaders feeding view pixel data into the registration dispatcher.

DESIGN PRINCIPLE: Standardized Axes
------------------------------------
Every loader returns an array whose shape equals the view's ``shape`` (numpy
axis order, (y, x) or (z, y, x)). Leading singleton axes written by some TIFF
writers are squeezed at the loader boundary so the rest of the package never
has to care about file-format specific axis conventions.
"""
from abc import ABC, abstractmethod
import logging
from pathlib import Path
from typing import Mapping, Optional, Union

import numpy as np
import tifffile

from .views import ViewDescription, ViewId

logger = logging.getLogger(__name__)


def get_image_shape(filepath: Union[str, Path]) -> tuple[int, ...]:
    """Shape of the first series of a TIFF file without reading pixel data."""
    with tifffile.TiffFile(filepath) as tif:
        shape = tuple(int(n) for n in tif.series[0].shape)
    squeezed = tuple(n for n in shape if n != 1)
    if len(squeezed) < 2:
        # keep at least a 2-D plane
        squeezed = shape[-2:]
    return squeezed


def _conform_to_view(image: np.ndarray, view: ViewDescription) -> np.ndarray:
    if image.shape == view.shape:
        return image
    squeezed = image
    while squeezed.ndim > view.ndim and squeezed.shape[0] == 1:
        squeezed = squeezed[0]
    if squeezed.shape == view.shape:
        return squeezed
    if squeezed.ndim == view.ndim - 1 and view.shape[0] == 1 and squeezed.shape == view.shape[1:]:
        return squeezed[np.newaxis]
    raise ValueError(
        f"Image for view {tuple(view.view_id)} has shape {image.shape}, expected {view.shape}"
    )


class ImageLoader(ABC):
    """Abstract base class for loading the pixel data of a view."""

    @abstractmethod
    def read_view(self, view: ViewDescription) -> np.ndarray:
        """Read the full image of ``view``.

        Returns:
            Array with shape ``view.shape``
        """
        pass


class TiffImageLoader(ImageLoader):
    """Reads each view from its ``image_path`` with tifffile."""

    def __init__(self, base_folder: Optional[Union[str, Path]] = None):
        self.base_folder = Path(base_folder) if base_folder is not None else None

    def resolve(self, view: ViewDescription) -> Path:
        if view.image_path is None:
            raise ValueError(f"View {tuple(view.view_id)} has no image path")
        path = Path(view.image_path)
        if not path.is_absolute() and self.base_folder is not None:
            path = self.base_folder / path
        return path

    def read_view(self, view: ViewDescription) -> np.ndarray:
        path = self.resolve(view)
        logger.debug(f"Reading view {tuple(view.view_id)} from {path}")
        return _conform_to_view(tifffile.imread(path), view)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(base_folder={self.base_folder})"


class InMemoryImageLoader(ImageLoader):
    """Serves images already held in memory, keyed by view id."""

    def __init__(self, images: Mapping[ViewId, np.ndarray]):
        self.images = {ViewId(*k): v for k, v in images.items()}

    def read_view(self, view: ViewDescription) -> np.ndarray:
        try:
            image = self.images[view.view_id]
        except KeyError:
            raise ValueError(f"No image loaded for view {tuple(view.view_id)}") from None
        return _conform_to_view(np.asarray(image), view)
