from geospin.utils.errors import ConfigurationError

import numpy as np


class SpinImageConfig:
    def __init__(self,
                 search_radius,
                 image_width=8,
                 support_angle_cos=0.0,
                 min_neighbors=0,
                 is_radial=False,
                 is_angular=False,
                 rotation_axis=None,
                 rotation_axes=None,
                 abort_on_error=True):
        """Parameters of a spin image computation.

        The rotation axis of a spin image is taken from exactly one source: the normals of the query
        points (default), one fixed axis shared by all query points ('rotation_axis') or one axis per
        query point ('rotation_axes').

        Parameters
        ----------
        search_radius: float
            The radius within which neighbors contribute to a spin image.
        image_width: int
            The resolution 'W' of a spin image. A spin image has 'W + 1' rows and '2W + 1' columns.
        support_angle_cos: float
            Neighbors whose normals have an absolute cosine smaller than this value with the normal of
            the query point are ignored. Must be within [0, 1]. Zero disables the filtering.
        min_neighbors: int
            The minimum amount of neighbors a query point must have within 'search_radius'.
        is_radial: bool
            Whether to use spherical (distance, elevation) instead of cylindrical coordinates.
        is_angular: bool
            Whether to store average angles between normals instead of point densities.
        rotation_axis: np.ndarray
            A unit vector of shape (3,) which shall be used as rotation axis for all query points.
        rotation_axes: np.ndarray
            A (n_query, 3)-array of unit vectors, one rotation axis for each query point.
        abort_on_error: bool
            If 'True', the first failing query point aborts the entire computation. Otherwise, failing
            query points are skipped and reported.
        """
        if not float(search_radius) > 0.0:
            raise ConfigurationError(f"The search radius must be positive, got {search_radius}.")
        if int(image_width) != image_width or image_width < 1:
            raise ConfigurationError(f"The image width must be a positive integer, got {image_width}.")
        if not 0.0 <= support_angle_cos <= 1.0:
            raise ConfigurationError(f"The support angle cosine must be within [0, 1], got {support_angle_cos}.")
        if int(min_neighbors) != min_neighbors or min_neighbors < 0:
            raise ConfigurationError(
                f"The minimum neighbor count must be a non-negative integer, got {min_neighbors}."
            )
        if rotation_axis is not None and rotation_axes is not None:
            raise ConfigurationError(
                "A fixed rotation axis and a rotation axis cloud are given. Choose only one rotation axis source."
            )

        self.search_radius = float(search_radius)
        self.image_width = int(image_width)
        self.support_angle_cos = float(support_angle_cos)
        self.min_neighbors = int(min_neighbors)
        self.is_radial = bool(is_radial)
        self.is_angular = bool(is_angular)
        self.abort_on_error = bool(abort_on_error)

        self.rotation_axis = None
        if rotation_axis is not None:
            self.rotation_axis = np.asarray(rotation_axis, dtype=np.float64)
            if self.rotation_axis.shape != (3,):
                raise ConfigurationError(
                    f"The rotation axis must have shape (3,), got {self.rotation_axis.shape}."
                )

        self.rotation_axes = None
        if rotation_axes is not None:
            self.rotation_axes = np.asarray(rotation_axes, dtype=np.float64)
            if self.rotation_axes.ndim != 2 or self.rotation_axes.shape[1] != 3:
                raise ConfigurationError(
                    f"The rotation axis cloud must have shape (n, 3), got {self.rotation_axes.shape}."
                )

    @property
    def axis_source(self):
        """The source of the rotation axes: 'fixed', 'cloud' or 'normals'."""
        if self.rotation_axis is not None:
            return "fixed"
        elif self.rotation_axes is not None:
            return "cloud"
        return "normals"

    @property
    def filter_normals(self):
        """Whether neighbor normals have to be compared with the query normal."""
        return self.support_angle_cos > 0.0 or self.is_angular

    @property
    def descriptor_shape(self):
        return self.image_width + 1, 2 * self.image_width + 1

    @property
    def descriptor_length(self):
        rows, cols = self.descriptor_shape
        return rows * cols

    @property
    def bin_size(self):
        """The size of the distance bins.

        The rectangular support cylinder of height '2r' and radius 'r = bin_size * W' is inscribed into the
        search sphere, hence its radius shrinks by 'sqrt(2)'.
        """
        if self.is_radial:
            return self.search_radius / self.image_width
        return self.search_radius / self.image_width / np.sqrt(2.0)

    @property
    def beta_bin_size(self):
        if self.is_radial:
            return np.pi / 2 / self.image_width
        return self.bin_size

    def validate(self, query_points, query_normals=None, surface_points=None, surface_normals=None):
        """Checks the given clouds against this configuration.

        Parameters
        ----------
        query_points: np.ndarray
            A (n_query, 3)-array of points for which spin images shall be computed.
        query_normals: np.ndarray
            A (n_query, 3)-array of unit normals of the query points.
        surface_points: np.ndarray
            A (n_surface, 3)-array of points which contribute to the spin images. If 'None', the query
            points are used.
        surface_normals: np.ndarray
            A (n_surface, 3)-array of unit normals of the surface points.

        Returns
        -------
        tuple:
            The query points, query normals, surface points and surface normals as float64 arrays. Surface
            points and normals are aliased to the query cloud if no surface cloud is given.
        """
        query_points = _as_cloud(query_points, "query points")
        query_normals = _as_cloud(query_normals, "query normals", n_points=query_points.shape[0])
        if surface_points is None:
            if surface_normals is not None:
                raise ConfigurationError("Surface normals are given without a surface cloud.")
            surface_points, surface_normals = query_points, query_normals
        else:
            surface_points = _as_cloud(surface_points, "surface points")
            surface_normals = _as_cloud(surface_normals, "surface normals", n_points=surface_points.shape[0])

        if self.axis_source == "normals" and query_normals is None:
            raise ConfigurationError(
                "No normals for the query cloud were given. Normals are required unless a rotation axis"
                " or a rotation axis cloud is set."
            )
        if self.filter_normals and (query_normals is None or surface_normals is None):
            raise ConfigurationError(
                "Normals for the query and the surface cloud are required if the support angle is positive"
                " or if angular spin images are computed."
            )
        if self.axis_source == "cloud" and self.rotation_axes.shape[0] != query_points.shape[0]:
            raise ConfigurationError(
                f"The rotation axis cloud has {self.rotation_axes.shape[0]} axes, but there are"
                f" {query_points.shape[0]} query points."
            )
        return query_points, query_normals, surface_points, surface_normals

    def to_dict(self):
        return {
            "search_radius": self.search_radius,
            "image_width": self.image_width,
            "support_angle_cos": self.support_angle_cos,
            "min_neighbors": self.min_neighbors,
            "is_radial": self.is_radial,
            "is_angular": self.is_angular,
            "rotation_axis": None if self.rotation_axis is None else self.rotation_axis.tolist(),
            "axis_source": self.axis_source,
            "abort_on_error": self.abort_on_error
        }

    @classmethod
    def from_dict(cls, properties, rotation_axes=None):
        """Restores a configuration from 'to_dict()'. Rotation axis clouds are not stored and have to be passed."""
        properties = dict(properties)
        axis_source = properties.pop("axis_source", "normals")
        if axis_source == "cloud" and rotation_axes is None:
            raise ConfigurationError("The stored configuration used a rotation axis cloud, but none was passed.")
        return cls(rotation_axes=rotation_axes, **properties)


def _as_cloud(cloud, name, n_points=None):
    if cloud is None:
        return None
    cloud = np.asarray(cloud, dtype=np.float64)
    if cloud.ndim != 2 or cloud.shape[1] != 3:
        raise ConfigurationError(f"The {name} must have shape (n, 3), got {cloud.shape}.")
    if n_points is not None and cloud.shape[0] != n_points:
        raise ConfigurationError(f"There are {cloud.shape[0]} {name}, but {n_points} points.")
    return cloud
