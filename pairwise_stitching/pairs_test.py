import unittest

from .exceptions import ConfigurationError
from .grouping import Group, ViewGrouping
from .pairs import enumerate_pairs, group_bounding_box
from .transforms import BoundingBox, translation_transform
from .views import ViewCatalog, ViewDescription, ViewId


def tile_catalog(positions, shape=(100, 100), timepoints=1) -> ViewCatalog:
    views = []
    registrations = {}
    for timepoint in range(timepoints):
        for tile, position in enumerate(positions):
            view_id = ViewId(timepoint, tile)
            views.append(ViewDescription(view_id, shape, tile=tile))
            registrations[view_id] = translation_transform(position)
    return ViewCatalog(views, registrations)


def unordered(pairs):
    return {frozenset(p) for p in pairs}


class EnumeratePairsTest(unittest.TestCase):
    def test_two_timepoints_two_tiles(self) -> None:
        catalog = tile_catalog([(0, 0), (0, 80)], timepoints=2)
        enumeration = enumerate_pairs(ViewGrouping.default(catalog, catalog.list_views()))
        self.assertEqual(
            unordered(enumeration.pairs),
            {
                frozenset({Group.of(ViewId(0, 0)), Group.of(ViewId(0, 1))}),
                frozenset({Group.of(ViewId(1, 0)), Group.of(ViewId(1, 1))}),
            },
        )

    def test_three_tiles_in_a_line(self) -> None:
        catalog = tile_catalog([(0, 0), (0, 80), (0, 160)])
        enumeration = enumerate_pairs(ViewGrouping.default(catalog, catalog.list_views()))
        self.assertEqual(
            unordered(enumeration.pairs),
            {
                frozenset({Group.of(ViewId(0, 0)), Group.of(ViewId(0, 1))}),
                frozenset({Group.of(ViewId(0, 1)), Group.of(ViewId(0, 2))}),
            },
        )

    def test_touching_boxes_overlap(self) -> None:
        # pixel centres 0..99 and 99..198 share the column x=99
        catalog = tile_catalog([(0, 0), (0, 99)])
        self.assertEqual(len(enumerate_pairs(ViewGrouping.default(catalog, catalog.list_views()))), 1)
        catalog = tile_catalog([(0, 0), (0, 99.5)])
        self.assertEqual(len(enumerate_pairs(ViewGrouping.default(catalog, catalog.list_views()))), 0)

    def test_no_self_or_mirrored_pairs(self) -> None:
        catalog = tile_catalog([(0, 0), (0, 50), (50, 0), (50, 50)])
        pairs = enumerate_pairs(ViewGrouping.default(catalog, catalog.list_views())).pairs
        self.assertEqual(len(pairs), 6)
        self.assertEqual(len(unordered(pairs)), 6)
        for group_a, group_b in pairs:
            self.assertNotEqual(group_a, group_b)

    def test_downsampling(self) -> None:
        catalog = tile_catalog([(0, 0), (0, 80)])
        grouping = ViewGrouping.default(catalog, catalog.list_views())
        self.assertEqual(enumerate_pairs(grouping).downsampling, (2, 2))
        self.assertEqual(enumerate_pairs(grouping, [1, 4]).downsampling, (1, 4))
        with self.assertRaises(ConfigurationError):
            enumerate_pairs(grouping, [1, 2, 2])
        with self.assertRaises(ConfigurationError):
            enumerate_pairs(grouping, [0, 2])

    def test_default_downsampling_3d(self) -> None:
        catalog = tile_catalog([(0, 0, 0), (0, 0, 80)], shape=(10, 100, 100))
        grouping = ViewGrouping.default(catalog, catalog.list_views())
        self.assertEqual(enumerate_pairs(grouping).downsampling, (1, 2, 2))

    def test_group_bounding_box(self) -> None:
        views = [
            ViewDescription(ViewId(0, 0), (10, 10), channel=0),
            ViewDescription(ViewId(0, 1), (10, 10), channel=1),
        ]
        catalog = ViewCatalog(views, {ViewId(0, 1): translation_transform([5, -5])})
        box = group_bounding_box(catalog, Group.of(ViewId(0, 0), ViewId(0, 1)))
        self.assertEqual(box, BoundingBox((0.0, -5.0), (14.0, 9.0)))


if __name__ == "__main__":
    unittest.main()
