from geospin.utils.errors import SpinImageError, InsufficientNeighbors, DegenerateNormal

from collections import namedtuple

import numpy as np


# Dot products of unit vectors may exceed one by this much due to single precision normals
UNIT_TOLERANCE = 1.0 + 10 * np.finfo(np.float32).eps
# Neighbors closer than this to the query point are the query point itself
COINCIDENCE_THRESHOLD = 10 * np.finfo(np.float64).eps
EPS = np.finfo(np.float64).eps

SpinImageResult = namedtuple("SpinImageResult", ["index", "histogram", "error"])


def select_rotation_axis(point_index, config, query_normals):
    """Returns the rotation axis for a query point.

    Parameters
    ----------
    point_index: int
        The index of the query point.
    config: geospin.preprocessing.spin_image_config.SpinImageConfig
        The spin image configuration.
    query_normals: np.ndarray
        The normals of the query points. Only used if the configuration has no explicit rotation axes.

    Returns
    -------
    np.ndarray:
        The rotation axis. It is not normalized.
    """
    if config.axis_source == "fixed":
        return config.rotation_axis
    elif config.axis_source == "cloud":
        return config.rotation_axes[point_index]
    return query_normals[point_index]


def filter_neighbor(query_normal, neighbor_normal, config, point_index=None, neighbor_index=None):
    """Decides whether a neighbor contributes to the spin image of a query point.

    Normals are treated as undirected, i.e. counter-directed normals are aligned.

    Parameters
    ----------
    query_normal: np.ndarray
        The unit normal of the query point.
    neighbor_normal: np.ndarray
        The unit normal of the neighbor.
    config: geospin.preprocessing.spin_image_config.SpinImageConfig
        The spin image configuration.
    point_index: int
        The index of the query point. Only used for error messages.
    neighbor_index: int
        The index of the neighbor. Only used for error messages.

    Returns
    -------
    (bool, float):
        Whether the neighbor is included and the absolute cosine between both normals. The cosine is
        'None' if normals are not compared.
    """
    if not config.filter_normals:
        return True, None

    cos_between_normals = float(np.dot(query_normal, neighbor_normal))
    if abs(cos_between_normals) > UNIT_TOLERANCE:
        raise DegenerateNormal(
            f"The normals of the query point and/or of neighbor {neighbor_index} are not normalized,"
            f" their dot product is {cos_between_normals}.",
            point_index=point_index
        )
    cos_between_normals = min(1.0, max(-1.0, cos_between_normals))

    cos_between_normals = abs(cos_between_normals)
    return cos_between_normals >= config.support_angle_cos, cos_between_normals


def map_coordinates(displacement, rotation_axis, config, point_index=None):
    """Computes the spin image coordinates of a neighbor.

    Parameters
    ----------
    displacement: np.ndarray
        The vector from the query point to the neighbor.
    rotation_axis: np.ndarray
        The unit rotation axis of the query point.
    config: geospin.preprocessing.spin_image_config.SpinImageConfig
        The spin image configuration.
    point_index: int
        The index of the query point. Only used for error messages.

    Returns
    -------
    tuple:
        The coordinates (alpha, beta). Cylindrical coordinates contain the distance to the rotation axis
        and the signed height along it. Radial coordinates contain the distance to the query point and
        the elevation over the tangent plane. 'None' if the neighbor coincides with the query point or
        lies outside the support cylinder.
    """
    distance = float(np.linalg.norm(displacement))
    if distance < COINCIDENCE_THRESHOLD:
        return None

    cos_dir_axis = float(np.dot(displacement, rotation_axis)) / distance
    if abs(cos_dir_axis) > UNIT_TOLERANCE:
        raise DegenerateNormal(
            f"The rotation axis is not normalized, its dot product with a unit direction is {cos_dir_axis}.",
            point_index=point_index
        )
    cos_dir_axis = min(1.0, max(-1.0, cos_dir_axis))

    if config.is_radial:
        # Arc sine, as the elevation is measured against the tangent plane
        return distance, float(np.arcsin(cos_dir_axis))

    beta = distance * cos_dir_axis
    alpha = distance * np.sqrt(1.0 - cos_dir_axis ** 2)
    support = config.bin_size * config.image_width
    if abs(beta) >= support or alpha >= support:
        return None
    return alpha, beta


def bilinear_bins(alpha, beta, config):
    """Determines the lower bin indices of a coordinate pair and its fractional offsets within them.

    Parameters
    ----------
    alpha: float
        The radial coordinate.
    beta: float
        The angular coordinate (radial mode) or the height (rectangular mode).
    config: geospin.preprocessing.spin_image_config.SpinImageConfig
        The spin image configuration.

    Returns
    -------
    (int, int, float, float):
        The alpha bin, the beta bin and the offsets 'a' and 'b' in [0, 1].
    """
    width = config.image_width
    bin_size, beta_bin_size = config.bin_size, config.beta_bin_size

    alpha_bin = int(np.floor(alpha / bin_size))
    if alpha_bin >= width:
        # Border points go into the last bin
        alpha_bin = width - 1
        alpha = bin_size * width - EPS

    beta_bin = int(np.floor(beta / beta_bin_size)) + width
    if beta_bin >= 2 * width:
        beta_bin = 2 * width - 1
        beta = beta_bin_size * width - EPS
    elif beta_bin < 0:
        beta_bin = 0

    a = min(1.0, max(0.0, alpha / bin_size - alpha_bin))
    b = min(1.0, max(0.0, beta / beta_bin_size - (beta_bin - width)))
    return alpha_bin, beta_bin, a, b


def bilinear_splat(histogram, alpha_bin, beta_bin, a, b, value=1.0):
    """Adds 'value' to the four cells around (alpha_bin, beta_bin) weighted by the offsets 'a' and 'b'."""
    histogram[alpha_bin, beta_bin] += (1 - a) * (1 - b) * value
    histogram[alpha_bin + 1, beta_bin] += a * (1 - b) * value
    histogram[alpha_bin, beta_bin + 1] += (1 - a) * b * value
    histogram[alpha_bin + 1, beta_bin + 1] += a * b * value


def normalize_histogram(weights, angle_sums, config, n_contributions):
    """Turns accumulated sums into the final spin image.

    Parameters
    ----------
    weights: np.ndarray
        The accumulated interpolation weights.
    angle_sums: np.ndarray
        The accumulated angle-weighted interpolation weights. Only used for angular spin images.
    config: geospin.preprocessing.spin_image_config.SpinImageConfig
        The spin image configuration.
    n_contributions: int
        The amount of neighbors that have been splatted into 'weights'.

    Returns
    -------
    np.ndarray:
        Average angles per bin for angular spin images. Otherwise, the histogram normalized to sum one if
        more than one neighbor contributed.
    """
    if config.is_angular:
        return angle_sums / (weights + EPS)
    elif n_contributions > 1:
        return weights / weights.sum()
    return weights


def spin_image_for_point(point_index,
                         config,
                         neighbor_search,
                         query_points,
                         query_normals,
                         surface_points,
                         surface_normals):
    """Computes the spin image of one query point.

    Spin images have been introduced in:
    > [Using spin images for efficient object recognition in cluttered 3D scenes]
      (https://doi.org/10.1109/34.765655)
    > Andrew E. Johnson and Martial Hebert

    Parameters
    ----------
    point_index: int
        The index of the query point.
    config: geospin.preprocessing.spin_image_config.SpinImageConfig
        The spin image configuration.
    neighbor_search:
        An object with a 'search(point_index, radius)'-method returning neighbor indices into the surface
        cloud and their squared distances.
    query_points: np.ndarray
        The query cloud.
    query_normals: np.ndarray
        The normals of the query cloud. May be 'None' if normals are neither filtered nor used as axes.
    surface_points: np.ndarray
        The surface cloud.
    surface_normals: np.ndarray
        The normals of the surface cloud. May be 'None' if normals are not filtered.

    Returns
    -------
    np.ndarray:
        The spin image of shape (W + 1, 2W + 1).
    """
    neighbor_indices, _ = neighbor_search.search(point_index, config.search_radius)
    if len(neighbor_indices) < config.min_neighbors:
        raise InsufficientNeighbors(
            f"Found {len(neighbor_indices)} neighbors within radius {config.search_radius}, but at least"
            f" {config.min_neighbors} are required. Decrease the minimum neighbor count or increase the radius.",
            point_index=point_index
        )

    origin = query_points[point_index]
    query_normal = None if query_normals is None else query_normals[point_index]
    rotation_axis = select_rotation_axis(point_index, config, query_normals)

    weights = np.zeros(config.descriptor_shape)
    angle_sums = np.zeros(config.descriptor_shape) if config.is_angular else None
    n_contributions = 0
    for neighbor_index in neighbor_indices:
        included, cos_between_normals = filter_neighbor(
            query_normal,
            None if surface_normals is None else surface_normals[neighbor_index],
            config,
            point_index=point_index,
            neighbor_index=neighbor_index
        )
        if not included:
            continue

        coordinates = map_coordinates(surface_points[neighbor_index] - origin, rotation_axis, config, point_index)
        if coordinates is None:
            continue

        alpha_bin, beta_bin, a, b = bilinear_bins(*coordinates, config)
        bilinear_splat(weights, alpha_bin, beta_bin, a, b)
        if config.is_angular:
            bilinear_splat(angle_sums, alpha_bin, beta_bin, a, b, value=np.arccos(cos_between_normals))
        n_contributions += 1

    return normalize_histogram(weights, angle_sums, config, n_contributions)


def compute_spin_image(point_index,
                       config,
                       neighbor_search,
                       query_points,
                       query_normals,
                       surface_points,
                       surface_normals):
    """Computes the spin image of one query point and returns failures as values.

    Takes the same parameters as 'spin_image_for_point'.

    Returns
    -------
    SpinImageResult:
        Either contains the spin image or the error that prevented its computation.
    """
    try:
        histogram = spin_image_for_point(
            point_index, config, neighbor_search, query_points, query_normals, surface_points, surface_normals
        )
    except SpinImageError as error:
        if error.point_index is None:
            error.point_index = point_index
        return SpinImageResult(index=point_index, histogram=None, error=error)
    return SpinImageResult(index=point_index, histogram=histogram, error=None)
