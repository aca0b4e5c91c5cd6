import pathlib
import tempfile
import unittest

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError
from .transforms import BoundingBox, translation_transform
from .views import Factor, ViewCatalog, ViewDescription, ViewId, read_views_csv


def make_catalog() -> ViewCatalog:
    views = [
        ViewDescription(ViewId(0, 0), (100, 100), channel=0, tile=0),
        ViewDescription(ViewId(0, 1), (100, 100), channel=0, tile=1),
        ViewDescription(ViewId(1, 0), (100, 100), channel=0, tile=0),
        ViewDescription(ViewId(1, 1), (100, 100), channel=0, tile=1, missing=True),
    ]
    registrations = {ViewId(0, 1): translation_transform([0, 80])}
    return ViewCatalog(views, registrations)


class FactorTest(unittest.TestCase):
    def test_parse(self) -> None:
        self.assertEqual(Factor.parse("tile"), Factor.tile)
        self.assertEqual(Factor.parse(" Channel "), Factor.channel)
        self.assertEqual(Factor.parse(Factor.angle), Factor.angle)
        with self.assertRaises(ConfigurationError):
            Factor.parse("wavelength")

    def test_factor_value(self) -> None:
        view = ViewDescription(ViewId(3, 7), (10, 20), channel=1, illumination=2, angle=4, tile=5)
        self.assertEqual(view.factor_value(Factor.timepoint), 3)
        self.assertEqual(view.factor_value(Factor.channel), 1)
        self.assertEqual(view.factor_value(Factor.illumination), 2)
        self.assertEqual(view.factor_value(Factor.angle), 4)
        self.assertEqual(view.factor_value(Factor.tile), 5)


class ViewCatalogTest(unittest.TestCase):
    def test_list_views_skips_missing_and_sorts(self) -> None:
        catalog = make_catalog()
        ids = [v.view_id for v in catalog.list_views()]
        self.assertEqual(ids, [ViewId(0, 0), ViewId(0, 1), ViewId(1, 0)])

    def test_list_views_with_selection(self) -> None:
        catalog = make_catalog()
        ids = [v.view_id for v in catalog.list_views({"timepoint": [0]})]
        self.assertEqual(ids, [ViewId(0, 0), ViewId(0, 1)])
        ids = [v.view_id for v in catalog.list_views({Factor.tile: [1]})]
        self.assertEqual(ids, [ViewId(0, 1)])
        ids = [v.view_id for v in catalog.list_views(view_ids=[(1, 0), (0, 0)])]
        self.assertEqual(ids, [ViewId(0, 0), ViewId(1, 0)])

    def test_list_views_unknown_view(self) -> None:
        with self.assertRaises(ConfigurationError):
            make_catalog().list_views(view_ids=[ViewId(5, 5)])

    def test_registrations(self) -> None:
        catalog = make_catalog()
        np.testing.assert_array_equal(catalog.get_registration(ViewId(0, 0)), np.eye(3))
        np.testing.assert_array_equal(catalog.get_registration(ViewId(0, 1))[:2, 2], [0, 80])

        # returned registrations are copies
        catalog.get_registration(ViewId(0, 0))[0, 2] = 10
        self.assertEqual(catalog.get_registration(ViewId(0, 0))[0, 2], 0)

        with self.assertRaises(ValueError):
            catalog.set_registration(ViewId(0, 0), np.eye(4))

    def test_bounding_box(self) -> None:
        catalog = make_catalog()
        self.assertEqual(catalog.bounding_box(ViewId(0, 1)), BoundingBox((0.0, 80.0), (99.0, 179.0)))

    def test_registration_hash_tracks_registrations(self) -> None:
        catalog = make_catalog()
        ids = [ViewId(0, 0), ViewId(0, 1)]
        before = catalog.registration_hash(ids)
        self.assertEqual(before, catalog.registration_hash(reversed(ids)))
        catalog.set_registration(ViewId(0, 1), translation_transform([0, 81]))
        self.assertNotEqual(before, catalog.registration_hash(ids))

    def test_duplicate_views(self) -> None:
        view = ViewDescription(ViewId(0, 0), (10, 10))
        with self.assertRaises(ValueError):
            ViewCatalog([view, ViewDescription(ViewId(0, 0), (10, 10))])

    def test_all_views_2d(self) -> None:
        flat = [ViewDescription(ViewId(0, 0), (1, 10, 10)), ViewDescription(ViewId(0, 1), (10, 10))]
        self.assertTrue(ViewCatalog.all_views_2d(flat))
        self.assertFalse(ViewCatalog.all_views_2d(flat + [ViewDescription(ViewId(0, 2), (5, 10, 10))]))

    def test_dataframe_roundtrip(self) -> None:
        df = pd.DataFrame(
            {
                "timepoint": [0, 0],
                "setup": [0, 1],
                "tile": [0, 1],
                "shape": ["50x60", "50x60"],
                "y (px)": [0.0, 5.0],
                "x (px)": [0.0, 40.0],
            }
        )
        catalog = ViewCatalog.from_dataframe(df)
        self.assertEqual(len(catalog), 2)
        self.assertEqual(catalog.view(ViewId(0, 1)).shape, (50, 60))
        np.testing.assert_array_equal(catalog.get_registration(ViewId(0, 1))[:2, 2], [5.0, 40.0])

        out = catalog.to_dataframe()
        self.assertEqual(list(out["x (px)"]), [0.0, 40.0])
        self.assertEqual(list(out["shape"]), ["50x60", "50x60"])

    def test_read_views_csv_resolves_paths(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            csv_path = pathlib.Path(d) / "views.csv"
            pd.DataFrame(
                {"timepoint": [0], "setup": [0], "shape": ["8x8"], "image_path": ["tile_0.tiff"]}
            ).to_csv(csv_path, index=False)
            catalog = read_views_csv(csv_path)
            image_path = catalog.view(ViewId(0, 0)).image_path
            self.assertEqual(pathlib.Path(image_path), (pathlib.Path(d) / "tile_0.tiff").resolve())


if __name__ == "__main__":
    unittest.main()
