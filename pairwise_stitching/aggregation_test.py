import unittest

import numpy as np

from .aggregation import SamplingGrid, aggregate_views, downsample, render_group, resample_to_grid
from .grouping import Group
from .image_loaders import InMemoryImageLoader
from .parameters import GroupAggregation
from .transforms import BoundingBox, transform_points, translation_transform
from .views import ViewCatalog, ViewDescription, ViewId


class SamplingGridTest(unittest.TestCase):
    def test_over_box(self) -> None:
        grid = SamplingGrid.over(BoundingBox((10.0, 20.0), (19.0, 29.0)), (1, 2))
        self.assertEqual(grid.shape, (10, 5))
        np.testing.assert_allclose(transform_points([[9, 4]], grid.transform), [[19.0, 28.0]])

    def test_flat_axis(self) -> None:
        grid = SamplingGrid.over(BoundingBox((3.0, 0.0, 0.0), (3.0, 9.0, 9.0)), (1, 2, 2))
        self.assertEqual(grid.shape, (1, 5, 5))


class DownsampleTest(unittest.TestCase):
    def test_block_mean_and_registration(self) -> None:
        image = np.arange(16, dtype=np.float64).reshape(4, 4)
        reduced, affine = downsample(image, translation_transform([10, 20]), (2, 2))
        np.testing.assert_allclose(reduced, [[2.5, 4.5], [10.5, 12.5]])
        # reduced pixel (0, 0) sits at the centre of original pixels 0 and 1
        np.testing.assert_allclose(transform_points([[0, 0], [1, 1]], affine), [[10.5, 20.5], [12.5, 22.5]])

    def test_trailing_pixels_dropped(self) -> None:
        reduced, _ = downsample(np.ones((5, 7)), np.eye(3), (2, 2))
        self.assertEqual(reduced.shape, (2, 3))

    def test_no_downsampling(self) -> None:
        image = np.ones((4, 4), dtype=np.uint16)
        reduced, affine = downsample(image, np.eye(3), (1, 1))
        self.assertEqual(reduced.dtype, np.float64)
        np.testing.assert_array_equal(affine, np.eye(3))


class ResampleTest(unittest.TestCase):
    def test_identity_grid(self) -> None:
        image = np.arange(20, dtype=np.float64).reshape(4, 5)
        grid = SamplingGrid((0.0, 0.0), (1.0, 1.0), (4, 5))
        np.testing.assert_allclose(resample_to_grid(image, np.eye(3), grid), image)

    def test_outside_is_nan(self) -> None:
        image = np.ones((4, 4))
        grid = SamplingGrid((0.0, 2.0), (1.0, 1.0), (4, 4))
        samples = resample_to_grid(image, np.eye(3), grid)
        self.assertFalse(np.isnan(samples[:, :2]).any())
        self.assertTrue(np.isnan(samples[:, 2:]).all())

    def test_linear_interpolation(self) -> None:
        image = np.tile(np.arange(4, dtype=np.float64), (3, 1))
        grid = SamplingGrid((0.0, 0.5), (1.0, 1.0), (3, 3))
        np.testing.assert_allclose(resample_to_grid(image, np.eye(3), grid)[0], [0.5, 1.5, 2.5])


class AggregateViewsTest(unittest.TestCase):
    def setUp(self) -> None:
        nan = np.nan
        self.samples = [
            np.array([[1.0, nan], [3.0, nan]]),
            np.array([[5.0, 6.0], [nan, nan]]),
        ]

    def test_first(self) -> None:
        result = aggregate_views(self.samples, GroupAggregation.first)
        np.testing.assert_array_equal(result, [[1.0, 6.0], [3.0, np.nan]])

    def test_average(self) -> None:
        result = aggregate_views(self.samples, GroupAggregation.average)
        np.testing.assert_array_equal(result, [[3.0, 6.0], [3.0, np.nan]])

    def test_maximum(self) -> None:
        result = aggregate_views(self.samples, GroupAggregation.maximum)
        np.testing.assert_array_equal(result, [[5.0, 6.0], [3.0, np.nan]])

    def test_brightest(self) -> None:
        result = aggregate_views(self.samples, GroupAggregation.brightest)
        np.testing.assert_array_equal(result, self.samples[1])
        result = aggregate_views(self.samples, GroupAggregation.brightest, intensities=[10.0, 1.0])
        np.testing.assert_array_equal(result, self.samples[0])

    def test_single_view(self) -> None:
        for aggregation in GroupAggregation:
            self.assertIs(aggregate_views(self.samples[:1], aggregation), self.samples[0])


class RenderGroupTest(unittest.TestCase):
    def test_two_channels_averaged(self) -> None:
        views = [
            ViewDescription(ViewId(0, 0), (6, 6), channel=0),
            ViewDescription(ViewId(0, 1), (6, 6), channel=1),
        ]
        catalog = ViewCatalog(views)
        loader = InMemoryImageLoader({ViewId(0, 0): np.full((6, 6), 2.0), ViewId(0, 1): np.full((6, 6), 4.0)})
        grid = SamplingGrid.over(BoundingBox((0.0, 0.0), (5.0, 5.0)), (2, 2))
        image = render_group(
            catalog, loader, Group.of(ViewId(0, 0), ViewId(0, 1)), grid, (2, 2), GroupAggregation.average
        )
        self.assertEqual(image.shape, (3, 3))
        # the downsampled views cover centres 0.5..4.5, so the first grid row and column are empty
        np.testing.assert_allclose(image[1:, 1:], 3.0)
        self.assertTrue(np.isnan(image[0]).all())
        self.assertTrue(np.isnan(image[:, 0]).all())


if __name__ == "__main__":
    unittest.main()
