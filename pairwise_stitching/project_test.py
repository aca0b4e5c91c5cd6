import json
import pathlib
import tempfile
import unittest

import numpy as np

from .grouping import Group
from .image_loaders import TiffImageLoader
from .project import StitchingProject
from .results import PairwiseResult
from .testutil import temporary_tiff_project, textured_scene, tiled_views
from .transforms import BoundingBox, translation_transform
from .views import ViewId


class StitchingProjectTest(unittest.TestCase):
    def setUp(self) -> None:
        self.scene = textured_scene((160, 160), seed=3)

    def test_json_roundtrip(self) -> None:
        catalog, _ = tiled_views(self.scene, (100, 100), [(0, 0), (0, 60)], [(0, 0), (1.5, -0.5)])
        project = StitchingProject(catalog)
        pair = (Group.of(ViewId(0, 0)), Group.of(ViewId(0, 1)))
        project.results.set_result(
            PairwiseResult(
                pair=pair,
                transform=translation_transform([-1.5, 0.5]),
                quality=0.87,
                overlap=BoundingBox((1.5, 59.5), (99.0, 99.0)),
                registration_hash=catalog.registration_hash([ViewId(0, 0), ViewId(0, 1)]),
            )
        )

        with tempfile.TemporaryDirectory() as d:
            path = project.save(pathlib.Path(d) / "project.json")
            with open(path) as f:
                self.assertEqual(json.load(f)["version"], 1)
            loaded = StitchingProject.load(path)

        self.assertEqual(list(loaded.catalog), list(catalog))
        for view in catalog:
            np.testing.assert_array_equal(
                loaded.catalog.get_registration(view.view_id), catalog.get_registration(view.view_id)
            )
        self.assertEqual(list(loaded.results), [pair])
        result = loaded.results.get(pair)
        np.testing.assert_allclose(result.shift, [-1.5, 0.5])
        self.assertEqual(result.quality, 0.87)
        self.assertEqual(result.overlap, BoundingBox((1.5, 59.5), (99.0, 99.0)))
        # the hash still matches the reloaded registrations
        self.assertEqual(
            result.registration_hash, loaded.catalog.registration_hash([ViewId(0, 0), ViewId(0, 1)])
        )
        self.assertEqual(loaded.path, path)

    def test_load_csv_table(self) -> None:
        with temporary_tiff_project(self.scene, (100, 100), [(0, 0), (0, 60)]) as table_path:
            project = StitchingProject.load(table_path)

            self.assertEqual(len(project.catalog), 2)
            self.assertIsInstance(project.loader, TiffImageLoader)
            np.testing.assert_array_equal(
                project.catalog.get_registration(ViewId(0, 1)), translation_transform([0, 60])
            )
            view = project.catalog.view(ViewId(0, 1))
            self.assertEqual(view.shape, (100, 100))
            image = project.loader.read_view(view)
            self.assertEqual(image.shape, (100, 100))
            np.testing.assert_array_equal(image, self.scene[:100, 60:160].astype(np.uint16))

            saved = project.save()
            self.assertEqual(saved, table_path.with_suffix(".json"))
            self.assertTrue(saved.exists())
            reloaded = StitchingProject.load(saved)
            self.assertEqual(list(reloaded.catalog), list(project.catalog))

    def test_relative_image_paths_saved_elsewhere(self) -> None:
        with temporary_tiff_project(self.scene, (100, 100), [(0, 0), (0, 60)]) as table_path:
            project_path = StitchingProject.load(table_path).save()
            with open(project_path) as f:
                content = json.load(f)
            for view in content["views"]:
                view["image_path"] = pathlib.Path(view["image_path"]).name
            with open(project_path, "w") as f:
                json.dump(content, f)

            project = StitchingProject.load(project_path)
            with tempfile.TemporaryDirectory() as d:
                moved = StitchingProject.load(project.save(pathlib.Path(d) / "moved.json"))
                view = moved.catalog.view(ViewId(0, 1))
                self.assertTrue(pathlib.Path(view.image_path).is_absolute())
                np.testing.assert_array_equal(
                    moved.loader.read_view(view), self.scene[:100, 60:160].astype(np.uint16)
                )

    def test_save_without_path(self) -> None:
        catalog, _ = tiled_views(self.scene, (100, 100), [(0, 0)])
        with self.assertRaises(ValueError):
            StitchingProject(catalog).save()

    def test_unsupported_version(self) -> None:
        catalog, _ = tiled_views(self.scene, (100, 100), [(0, 0)])
        with tempfile.TemporaryDirectory() as d:
            path = StitchingProject(catalog).save(pathlib.Path(d) / "project.json")
            with open(path) as f:
                content = json.load(f)
            content["version"] = 99
            with open(path, "w") as f:
                json.dump(content, f)
            with self.assertRaises(ValueError):
                StitchingProject.load(path)


if __name__ == "__main__":
    unittest.main()
