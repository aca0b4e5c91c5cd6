import pathlib
import tempfile
import unittest

from pydantic import ValidationError

from pairwise_stitching.testutil import PARAMETERS_FIXTURE_FILE

from .parameters import (
    GroupAggregation,
    PairwiseShiftParameters,
    RegistrationConfig,
    RegistrationMethod,
    WarpFunctionType,
    default_downsampling,
)
from .views import Factor


class ParametersTest(unittest.TestCase):
    def test_parsing(self) -> None:
        params = RegistrationConfig.from_json_file(str(PARAMETERS_FIXTURE_FILE))
        self.assertEqual(params.method, RegistrationMethod.lucas_kanade)
        self.assertEqual(params.aggregation, GroupAggregation.maximum)
        self.assertEqual(params.downsampling, [1, 2, 2])
        self.assertEqual(params.lucas_kanade.warp_function, WarpFunctionType.rigid)
        self.assertEqual(params.lucas_kanade.max_iterations, 50)
        self.assertEqual(params.num_workers, 2)
        self.assertIsNotNone(params.grouping)
        self.assertEqual(params.grouping.grouping_factors, [Factor.channel])
        self.assertEqual(params.grouping.comparison_factors, [Factor.tile, Factor.illumination])
        self.assertEqual(params.view_selection, {Factor.timepoint: [0]})

    def test_roundtrip(self) -> None:
        params = RegistrationConfig.from_json_file(str(PARAMETERS_FIXTURE_FILE))
        with tempfile.TemporaryDirectory() as temp_dir_name:
            out_file = pathlib.Path(temp_dir_name) / "parameters.json"
            params.to_json_file(str(out_file))
            reloaded = RegistrationConfig.from_json_file(str(out_file))

        self.assertEqual(reloaded, params)

    def test_defaults(self) -> None:
        params = RegistrationConfig()
        self.assertEqual(params.method, RegistrationMethod.phase_correlation)
        self.assertIsNone(params.grouping)
        self.assertIsNone(params.downsampling)
        self.assertEqual(params.aggregation, GroupAggregation.average)
        self.assertEqual(params.num_workers, 1)
        self.assertEqual(params.lucas_kanade.warp_function, WarpFunctionType.translation)

    def test_method_by_display_name(self) -> None:
        params = RegistrationConfig.model_validate({"method": "Lucas-Kanade"})
        self.assertEqual(params.method, RegistrationMethod.lucas_kanade)

    def test_invalid_values(self) -> None:
        with self.assertRaises(ValidationError):
            RegistrationConfig(downsampling=[0, 2])
        with self.assertRaises(ValidationError):
            RegistrationConfig(downsampling=[])
        with self.assertRaises(ValidationError):
            RegistrationConfig.model_validate({"method": "SIFT"})
        with self.assertRaises(ValidationError):
            RegistrationConfig.model_validate({"view_selection": {"wavelength": [0]}})
        with self.assertRaises(ValidationError):
            RegistrationConfig.model_validate({"num_workers": 0})

    def test_project_file_must_exist(self) -> None:
        with self.assertRaises(ValidationError):
            PairwiseShiftParameters(project_file="/this/file/does/not/exist.json")

    def test_registration_config_drops_command_line_fields(self) -> None:
        with tempfile.NamedTemporaryFile(suffix=".json") as f:
            params = PairwiseShiftParameters(
                project_file=f.name,
                downsampling=[2, 2],
                aggregation=GroupAggregation.brightest,
                verbose=True,
            )
            config = params.registration_config()

        self.assertIs(type(config), RegistrationConfig)
        self.assertEqual(config.downsampling, [2, 2])
        self.assertEqual(config.aggregation, GroupAggregation.brightest)

    def test_default_downsampling(self) -> None:
        self.assertEqual(default_downsampling(2), (2, 2))
        self.assertEqual(default_downsampling(3), (1, 2, 2))


if __name__ == "__main__":
    unittest.main()
