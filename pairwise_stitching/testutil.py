import contextlib
import pathlib
import tempfile
from typing import Generator, Optional, Sequence

import numpy as np
import pandas as pd
import tifffile
from scipy import ndimage

from .image_loaders import InMemoryImageLoader
from .project import StitchingProject
from .transforms import translation_transform
from .views import DEFAULT_POSITION_COLS, ViewCatalog, ViewDescription, ViewId

PARAMETERS_FIXTURE_FILE = (
    pathlib.Path(__file__).parent.parent
    / "test_fixtures"
    / "parameters_test"
    / "parameters.json"
)


def textured_scene(shape: Sequence[int], seed: int = 0, sigma: float = 3.0) -> np.ndarray:
    """Smooth random texture in [0, 1000], so every crop has structure to register."""
    rng = np.random.default_rng(seed)
    scene = ndimage.gaussian_filter(rng.normal(size=tuple(shape)), sigma)
    scene -= scene.min()
    return scene * (1000.0 / scene.max())


def crop(scene: np.ndarray, position: Sequence[int], tile_shape: Sequence[int]) -> np.ndarray:
    return scene[tuple(slice(p, p + n) for p, n in zip(position, tile_shape))].copy()


def tiled_views(
    scene: np.ndarray,
    tile_shape: Sequence[int],
    positions: Sequence[Sequence[int]],
    registration_errors: Optional[Sequence[Sequence[float]]] = None,
    n_timepoints: int = 1,
    n_channels: int = 1,
) -> tuple[ViewCatalog, dict[ViewId, np.ndarray]]:
    """Build a catalog of tiles cropped from ``scene`` and their images.

    Setups enumerate (channel, tile) with the tile index varying fastest. The
    registration of each tile is its true position plus its registration error;
    channel ``c`` has the intensity of the scene times ``c + 1``.
    """
    if registration_errors is None:
        registration_errors = [[0.0] * len(tile_shape)] * len(positions)
    views = []
    registrations = {}
    images = {}
    for timepoint in range(n_timepoints):
        for channel in range(n_channels):
            for tile, (position, error) in enumerate(zip(positions, registration_errors)):
                view_id = ViewId(timepoint, channel * len(positions) + tile)
                views.append(
                    ViewDescription(view_id=view_id, shape=tuple(tile_shape), channel=channel, tile=tile)
                )
                registrations[view_id] = translation_transform(np.add(position, error))
                images[view_id] = crop(scene, position, tile_shape) * (channel + 1)
    return ViewCatalog(views, registrations), images


def in_memory_project(
    scene: np.ndarray,
    tile_shape: Sequence[int],
    positions: Sequence[Sequence[int]],
    registration_errors: Optional[Sequence[Sequence[float]]] = None,
    n_timepoints: int = 1,
    n_channels: int = 1,
) -> StitchingProject:
    catalog, images = tiled_views(
        scene, tile_shape, positions, registration_errors, n_timepoints, n_channels
    )
    return StitchingProject(catalog, loader=InMemoryImageLoader(images))


@contextlib.contextmanager
def temporary_tiff_project(
    scene: np.ndarray,
    tile_shape: Sequence[int],
    positions: Sequence[Sequence[int]],
    registration_errors: Optional[Sequence[Sequence[float]]] = None,
    name: str = "views.csv",
) -> Generator[pathlib.Path, None, None]:
    """Write the tiles as TIFF files plus a view table and yield the table's path."""
    catalog, images = tiled_views(scene, tile_shape, positions, registration_errors)
    ndim = len(tile_shape)
    with tempfile.TemporaryDirectory() as d:
        base_dir = pathlib.Path(d)
        rows = []
        for view in catalog:
            filename = f"tile_{view.view_id.setup}.tiff"
            tifffile.imwrite(base_dir / filename, images[view.view_id].astype(np.uint16))
            row = {
                "timepoint": view.view_id.timepoint,
                "setup": view.view_id.setup,
                "channel": view.channel,
                "illumination": view.illumination,
                "angle": view.angle,
                "tile": view.tile,
                "image_path": filename,
            }
            translation = catalog.get_registration(view.view_id)[:-1, -1]
            for col, value in zip(DEFAULT_POSITION_COLS[-ndim:], translation):
                row[col] = float(value)
            rows.append(row)
        table_path = base_dir / name
        pd.DataFrame(rows).to_csv(table_path, index=False)
        yield table_path
