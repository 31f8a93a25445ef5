from django.test import SimpleTestCase

from common.utils import (
    calculate_distance,
    covering_precision,
    encode_geohash,
    get_covering_geohashes,
    is_valid_coordinate,
)


class GeoUtilsTests(SimpleTestCase):
    def test_distance(self):
        self.assertAlmostEqual(calculate_distance(10.0, 10.0, 10.0, 10.0), 0.0)
        # One degree of latitude on the 6371 km sphere
        self.assertAlmostEqual(calculate_distance(0, 0, 1, 0), 111194.93, delta=0.1)

    def test_coordinate_bounds(self):
        self.assertTrue(is_valid_coordinate(90, -180))
        self.assertFalse(is_valid_coordinate(90.0001, 0))
        self.assertFalse(is_valid_coordinate(0, 180.5))
        self.assertFalse(is_valid_coordinate(None, 0))
        self.assertFalse(is_valid_coordinate(float('nan'), 0))

    def test_geohash(self):
        self.assertEqual(encode_geohash(57.64911, 10.40744, 11), 'u4pruydqqvj')

    def test_cover_contains_center_and_edges(self):
        precision = covering_precision(28.6139, 77.2090, 2000)
        cells = get_covering_geohashes(28.6139, 77.2090, 2000, precision)

        self.assertIn(encode_geohash(28.6139, 77.2090, precision), cells)
        self.assertIn(encode_geohash(28.6139 + 2000 / 111194.93, 77.2090, precision), cells)

    def test_no_cover_across_antimeridian(self):
        self.assertIsNone(covering_precision(0.0, 179.999, 1000))
        self.assertIsNone(covering_precision(89.999, 0.0, 5000))
