import unittest

import numpy as np

from geospin.preprocessing.spin_image_config import SpinImageConfig
from geospin.preprocessing.spin_image import (
    select_rotation_axis, filter_neighbor, map_coordinates, bilinear_bins, bilinear_splat, normalize_histogram,
    spin_image_for_point, compute_spin_image
)
from geospin.utils.errors import DegenerateNormal, InsufficientNeighbors
from geospin.utils.neighbor_search import RadiusNeighborSearch


class TestSelectRotationAxis(unittest.TestCase):
    def test_axis_sources(self):
        normals = np.array([[0., 0., 1.], [0., 1., 0.]])
        axes = np.array([[1., 0., 0.], [0., 0., -1.]])

        assert np.all(select_rotation_axis(1, SpinImageConfig(search_radius=1.), normals) == normals[1])
        fixed = SpinImageConfig(search_radius=1., rotation_axis=[0., 1., 0.])
        assert np.all(select_rotation_axis(1, fixed, normals) == [0., 1., 0.])
        cloud = SpinImageConfig(search_radius=1., rotation_axes=axes)
        assert np.all(select_rotation_axis(1, cloud, normals) == axes[1])


class TestFilterNeighbor(unittest.TestCase):
    def test_inactive_filter(self):
        included, cos_between_normals = filter_neighbor(None, None, SpinImageConfig(search_radius=1.))
        assert included
        assert cos_between_normals is None

    def test_support_angle(self):
        config = SpinImageConfig(search_radius=1., support_angle_cos=.5)
        query_normal = np.array([0., 0., 1.])

        included, cos_between_normals = filter_neighbor(query_normal, np.array([0., np.sqrt(.75), .5]), config)
        assert included and np.isclose(cos_between_normals, .5)
        included, _ = filter_neighbor(query_normal, np.array([0., np.sqrt(.84), .4]), config)
        assert not included

    def test_counter_directed_normals(self):
        config = SpinImageConfig(search_radius=1., support_angle_cos=.9)
        included, cos_between_normals = filter_neighbor(np.array([0., 0., 1.]), np.array([0., 0., -1.]), config)
        assert included
        assert cos_between_normals == 1.

    def test_unnormalized_normals(self):
        config = SpinImageConfig(search_radius=1., is_angular=True)
        with self.assertRaises(DegenerateNormal) as context:
            filter_neighbor(np.array([0., 0., 2.]), np.array([0., 0., 1.]), config, point_index=4, neighbor_index=2)
        assert context.exception.point_index == 4

    def test_tolerance(self):
        config = SpinImageConfig(search_radius=1., is_angular=True)
        normal = np.array([0., 0., 1. + 1e-7])
        included, cos_between_normals = filter_neighbor(normal, normal, config)
        assert included
        assert cos_between_normals == 1.


class TestMapCoordinates(unittest.TestCase):
    def setUp(self):
        self.axis = np.array([0., 0., 1.])

    def test_rectangular(self):
        config = SpinImageConfig(search_radius=1., image_width=4)
        alpha, beta = map_coordinates(np.array([.3, .4, -.2]), self.axis, config)
        assert np.isclose(alpha, .5)
        assert np.isclose(beta, -.2)

    def test_radial(self):
        config = SpinImageConfig(search_radius=1., image_width=4, is_radial=True)
        alpha, beta = map_coordinates(np.array([.5, 0., .5]), self.axis, config)
        assert np.isclose(alpha, np.sqrt(.5))
        assert np.isclose(beta, np.pi / 4)

    def test_outside_cylinder(self):
        config = SpinImageConfig(search_radius=1., image_width=4)
        support = config.bin_size * config.image_width
        assert map_coordinates(np.array([support, 0., 0.]), self.axis, config) is None
        assert map_coordinates(np.array([0., 0., -support]), self.axis, config) is None
        # Radial spin images have no cylinder
        radial = SpinImageConfig(search_radius=1., image_width=4, is_radial=True)
        assert map_coordinates(np.array([0., 0., -support]), self.axis, radial) is not None

    def test_coincident_point(self):
        config = SpinImageConfig(search_radius=1.)
        assert map_coordinates(np.zeros(3), self.axis, config) is None

    def test_unnormalized_axis(self):
        config = SpinImageConfig(search_radius=1.)
        with self.assertRaises(DegenerateNormal):
            map_coordinates(np.array([0., 0., .1]), np.array([0., 0., 2.]), config, point_index=0)


class TestBilinearInterpolation(unittest.TestCase):
    def test_weights_sum_to_one(self):
        np.random.seed(1337)
        for is_radial in [False, True]:
            config = SpinImageConfig(search_radius=1., image_width=5, is_radial=is_radial)
            support = config.bin_size * config.image_width
            beta_support = config.beta_bin_size * config.image_width
            for alpha, beta in zip(
                    np.random.uniform(0., support, 50), np.random.uniform(-beta_support, beta_support, 50)
            ):
                histogram = np.zeros(config.descriptor_shape)
                bilinear_splat(histogram, *bilinear_bins(alpha, beta, config))
                assert np.isclose(histogram.sum(), 1.)
                assert np.all(histogram >= 0.)

    def test_interpolation(self):
        config = SpinImageConfig(search_radius=1., image_width=4, is_radial=True)
        alpha_bin, beta_bin, a, b = bilinear_bins(.375, -np.pi / 16, config)
        assert (alpha_bin, beta_bin) == (1, 3)
        assert np.isclose(a, .5) and np.isclose(b, .5)

        histogram = np.zeros(config.descriptor_shape)
        bilinear_splat(histogram, alpha_bin, beta_bin, a, b)
        assert np.allclose(histogram[1:3, 3:5], .25)

    def test_boundary_clamping(self):
        for is_radial in [False, True]:
            config = SpinImageConfig(search_radius=1., image_width=4, is_radial=is_radial)
            alpha = config.bin_size * config.image_width
            beta = config.beta_bin_size * config.image_width
            alpha_bin, beta_bin, a, b = bilinear_bins(alpha, beta, config)

            assert alpha_bin == config.image_width - 1
            assert beta_bin == 2 * config.image_width - 1
            assert 0. <= a <= 1. and 0. <= b <= 1.
            assert np.isclose(a, 1.) and np.isclose(b, 1.)

            histogram = np.zeros(config.descriptor_shape)
            bilinear_splat(histogram, alpha_bin, beta_bin, a, b)
            assert np.isclose(histogram[-1, -1], 1.)

    def test_lower_boundary(self):
        config = SpinImageConfig(search_radius=1., image_width=4, is_radial=True)
        alpha_bin, beta_bin, a, b = bilinear_bins(.1, -np.pi / 2, config)
        assert beta_bin == 0
        assert np.isclose(b, 0.)


class TestNormalizeHistogram(unittest.TestCase):
    def test_density(self):
        config = SpinImageConfig(search_radius=1., image_width=2)
        weights = np.zeros(config.descriptor_shape)
        weights[0, 0], weights[1, 2] = 1., 3.
        assert np.isclose(normalize_histogram(weights, None, config, 2).sum(), 1.)
        assert np.isclose(normalize_histogram(weights, None, config, 2)[1, 2], .75)

    def test_single_contribution_is_not_divided(self):
        config = SpinImageConfig(search_radius=1., image_width=2)
        weights = np.zeros(config.descriptor_shape)
        assert np.all(normalize_histogram(weights, None, config, 0) == 0.)
        weights[1, 1] = .5
        assert normalize_histogram(weights, None, config, 1)[1, 1] == .5

    def test_angular(self):
        config = SpinImageConfig(search_radius=1., image_width=2, is_angular=True)
        weights, angle_sums = np.zeros(config.descriptor_shape), np.zeros(config.descriptor_shape)
        weights[0, 0], angle_sums[0, 0] = 2., 1.
        average = normalize_histogram(weights, angle_sums, config, 2)
        assert np.isclose(average[0, 0], .5)
        assert np.all(np.isfinite(average))
        assert np.all(average[1:] == 0.)


class TestSpinImageForPoint(unittest.TestCase):
    def setUp(self):
        np.random.seed(1337)
        self.points = np.random.uniform(-.5, .5, (150, 3))
        self.normals = np.random.randn(150, 3)
        self.normals /= np.linalg.norm(self.normals, axis=-1, keepdims=True)
        self.search = RadiusNeighborSearch(self.points)

    def compute(self, config, point_index=0, normals=None):
        normals = self.normals if normals is None else normals
        return spin_image_for_point(point_index, config, self.search, self.points, normals, self.points, normals)

    def test_normalized(self):
        for is_radial in [False, True]:
            config = SpinImageConfig(search_radius=.6, image_width=5, is_radial=is_radial)
            for point_index in range(10):
                spin_image = self.compute(config, point_index)
                assert spin_image.shape == (6, 11)
                assert np.isclose(spin_image.sum(), 1.)
                assert np.all(spin_image >= 0.)

    def test_support_angle_reduces_contributions(self):
        config = SpinImageConfig(search_radius=.6, image_width=5, support_angle_cos=.7)
        spin_image = self.compute(config)
        assert np.isclose(spin_image.sum(), 1.)
        assert not np.allclose(spin_image, self.compute(SpinImageConfig(search_radius=.6, image_width=5)))

    def test_angular_range(self):
        config = SpinImageConfig(search_radius=.6, image_width=5, is_angular=True)
        spin_image = self.compute(config)
        assert np.all(spin_image >= 0.)
        assert np.all(spin_image <= np.pi / 2 + 1e-9)

    def test_insufficient_neighbors(self):
        config = SpinImageConfig(search_radius=.6, min_neighbors=len(self.points) + 1)
        with self.assertRaises(InsufficientNeighbors) as context:
            self.compute(config, point_index=3)
        assert context.exception.point_index == 3

    def test_degenerate_normal(self):
        normals = self.normals.copy()
        normals[0] *= 2.
        config = SpinImageConfig(search_radius=.6, support_angle_cos=.1)
        with self.assertRaises(DegenerateNormal):
            self.compute(config, normals=normals)

    def test_degenerate_normal_is_ignored_without_filtering(self):
        normals = self.normals.copy()
        normals[1] *= 2.
        spin_image = self.compute(SpinImageConfig(search_radius=.6), normals=normals)
        assert np.isclose(spin_image.sum(), 1.)

    def test_result_values(self):
        config = SpinImageConfig(search_radius=.6, min_neighbors=len(self.points) + 1)
        result = compute_spin_image(2, config, self.search, self.points, self.normals, self.points, self.normals)
        assert result.index == 2
        assert result.histogram is None
        assert isinstance(result.error, InsufficientNeighbors)

        config = SpinImageConfig(search_radius=.6)
        result = compute_spin_image(2, config, self.search, self.points, self.normals, self.points, self.normals)
        assert result.error is None
        assert result.histogram.shape == config.descriptor_shape
