import unittest

import numpy as np

from .cli import main
from .grouping import Group
from .project import StitchingProject
from .testutil import temporary_tiff_project, textured_scene
from .views import ViewId


class CliTest(unittest.TestCase):
    def setUp(self) -> None:
        self.scene = textured_scene((160, 160), seed=1)

    def test_csv_table_to_project(self) -> None:
        with temporary_tiff_project(
            self.scene, (100, 100), [(0, 0), (0, 60)], registration_errors=[(0, 0), (0, 2)]
        ) as table_path:
            main(["--project_file", str(table_path), "--downsampling", "[1,1]"])

            project = StitchingProject.load(table_path.with_suffix(".json"))
            self.assertEqual(len(project.results), 1)
            result = project.results.get((Group.of(ViewId(0, 0)), Group.of(ViewId(0, 1))))
            np.testing.assert_allclose(result.shift, [0, -2], atol=0.2)

    def test_output_file(self) -> None:
        with temporary_tiff_project(self.scene, (100, 100), [(0, 0), (0, 60)]) as table_path:
            output = table_path.parent / "registered.json"
            main(
                [
                    "--project_file",
                    str(table_path),
                    "--output_file",
                    str(output),
                    "--method",
                    "Lucas-Kanade",
                    "--downsampling",
                    "[1,1]",
                ]
            )
            self.assertTrue(output.exists())
            self.assertFalse(table_path.with_suffix(".json").exists())
            self.assertEqual(len(StitchingProject.load(output).results), 1)


if __name__ == "__main__":
    unittest.main()
