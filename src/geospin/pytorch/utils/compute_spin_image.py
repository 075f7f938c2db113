from geospin.pytorch.utils.tensor_utils import tensor_scatter_nd_add_, radius_neighborhoods
from geospin.preprocessing.spin_image import UNIT_TOLERANCE, COINCIDENCE_THRESHOLD, EPS
from geospin.utils.errors import InsufficientNeighbors, DegenerateNormal

import math
import torch


def _first_failure(mask: torch.Tensor):
    """Returns the (point, neighbor)-index of the first True entry of a (n_query, k)-mask or 'None'."""
    failures = torch.nonzero(mask)
    if failures.shape[0] == 0:
        return None
    return int(failures[0, 0]), int(failures[0, 1])


def spin_image_descr(query_points: torch.Tensor,
                     surface_points: torch.Tensor,
                     neighborhood_indices: torch.Tensor,
                     rotation_axes: torch.Tensor,
                     radius: float,
                     image_width: int = 8,
                     query_normals: torch.Tensor = None,
                     surface_normals: torch.Tensor = None,
                     support_angle_cos: float = 0.,
                     min_neighbors: int = 0,
                     is_radial: bool = False,
                     is_angular: bool = False) -> torch.Tensor:
    """Computes spin images for all query points at once.

    Spin images have been introduced in:
    > [Using spin images for efficient object recognition in cluttered 3D scenes]
      (https://doi.org/10.1109/34.765655)
    > Andrew E. Johnson and Martial Hebert

    Parameters
    ----------
    query_points: torch.Tensor
        A rank-2 tensor of shape (n_query, 3) containing the query points.
    surface_points: torch.Tensor
        A rank-2 tensor of shape (n_surface, 3) containing the surface points.
    neighborhood_indices: torch.Tensor
        A rank-2 tensor of shape (n_query, k) containing surface point indices within 'radius' of each query
        point, padded with -1.
    rotation_axes: torch.Tensor
        A rank-2 tensor of shape (n_query, 3) containing the unit rotation axis of each query point.
    radius: float
        The search radius used to determine the neighborhoods.
    image_width: int
        The resolution 'W' of the spin images.
    query_normals: torch.Tensor
        A rank-2 tensor of shape (n_query, 3) containing the unit normals of the query points.
    surface_normals: torch.Tensor
        A rank-2 tensor of shape (n_surface, 3) containing the unit normals of the surface points.
    support_angle_cos: float
        The minimal absolute cosine between the normals of a query point and a contributing neighbor.
    min_neighbors: int
        The minimal amount of neighbors each query point must have.
    is_radial: bool
        Whether to use spherical instead of cylindrical coordinates.
    is_angular: bool
        Whether to compute average angles between normals instead of point densities.

    Returns
    -------
    torch.Tensor:
        A rank-2 tensor of shape (n_query, (W + 1) * (2W + 1)) containing the flattened spin images.
    """
    query_points = query_points.to(torch.float64)
    surface_points = surface_points.to(torch.float64)
    rotation_axes = rotation_axes.to(torch.float64)
    n_query, k = neighborhood_indices.shape

    valid = neighborhood_indices >= 0
    safe_indices = torch.where(valid, neighborhood_indices, torch.zeros_like(neighborhood_indices)).long()

    # Collect the first failure of every kind and raise the one of the earliest query point
    failures = []
    too_few = torch.nonzero(valid.sum(dim=-1) < min_neighbors)
    if too_few.shape[0] > 0:
        failures.append((int(too_few[0, 0]), InsufficientNeighbors(
            f"Found {int(valid[too_few[0, 0]].sum())} neighbors within radius {radius}, but at least"
            f" {min_neighbors} are required.",
            point_index=int(too_few[0, 0])
        )))

    # 'displacements': (n_query, k, 3)
    displacements = surface_points[safe_indices] - query_points.unsqueeze(1)
    distances = torch.linalg.norm(displacements, dim=-1)

    ##################################
    # Filter neighbors by their normal
    ##################################
    contributing = valid.clone()
    cos_normals = torch.ones_like(distances)
    if support_angle_cos > 0. or is_angular:
        cos_normals = torch.einsum(
            "vi,vni->vn", query_normals.to(torch.float64), surface_normals.to(torch.float64)[safe_indices]
        )
        failure = _first_failure(valid & (cos_normals.abs() > UNIT_TOLERANCE))
        if failure is not None:
            failures.append((failure[0], DegenerateNormal(
                f"The normals of the query point and/or of neighbor {int(neighborhood_indices[failure])} are not"
                f" normalized, their dot product is {float(cos_normals[failure])}.",
                point_index=failure[0]
            )))
        cos_normals = torch.clamp(cos_normals, min=-1., max=1.)
        contributing = contributing & (cos_normals.abs() >= support_angle_cos)
        cos_normals = cos_normals.abs()

    # The query point itself does not contribute
    contributing = contributing & (distances >= COINCIDENCE_THRESHOLD)

    ################################
    # Compute spin image coordinates
    ################################
    safe_distances = torch.where(contributing, distances, torch.ones_like(distances))
    cos_dir_axis = torch.einsum("vni,vi->vn", displacements, rotation_axes) / safe_distances
    failure = _first_failure(contributing & (cos_dir_axis.abs() > UNIT_TOLERANCE))
    if failure is not None:
        failures.append((failure[0], DegenerateNormal(
            f"The rotation axis is not normalized, its dot product with a unit direction is"
            f" {float(cos_dir_axis[failure])}.",
            point_index=failure[0]
        )))
    if failures:
        raise min(failures, key=lambda x: x[0])[1]
    cos_dir_axis = torch.clamp(cos_dir_axis, min=-1., max=1.)

    if is_radial:
        bin_size = radius / image_width
        beta_bin_size = math.pi / 2 / image_width
        alpha, beta = distances, torch.asin(cos_dir_axis)
    else:
        bin_size = radius / image_width / math.sqrt(2.)
        beta_bin_size = bin_size
        beta = distances * cos_dir_axis
        alpha = distances * torch.sqrt(1. - cos_dir_axis ** 2)
        support = bin_size * image_width
        contributing = contributing & (beta.abs() < support) & (alpha < support)

    ##########################
    # Bilinear interpolation
    ##########################
    alpha_bin = torch.floor(alpha / bin_size)
    border = alpha_bin >= image_width
    alpha_bin = torch.where(border, torch.full_like(alpha_bin, image_width - 1), alpha_bin)
    alpha = torch.where(border, torch.full_like(alpha, bin_size * image_width - EPS), alpha)

    beta_bin = torch.floor(beta / beta_bin_size) + image_width
    border = beta_bin >= 2 * image_width
    beta_bin = torch.where(border, torch.full_like(beta_bin, 2 * image_width - 1), beta_bin)
    beta = torch.where(border, torch.full_like(beta, beta_bin_size * image_width - EPS), beta)
    beta_bin = torch.clamp(beta_bin, min=0)

    a = torch.clamp(alpha / bin_size - alpha_bin, min=0., max=1.)
    b = torch.clamp(beta / beta_bin_size - (beta_bin - image_width), min=0., max=1.)

    weights = torch.zeros((n_query, image_width + 1, 2 * image_width + 1), dtype=torch.float64)
    angle_sums = torch.zeros_like(weights)
    mask = contributing.to(torch.float64)
    angles = torch.acos(cos_normals) * mask
    point_ids = torch.arange(n_query).unsqueeze(1).expand(n_query, k)
    alpha_bin, beta_bin = alpha_bin.long(), beta_bin.long()
    for alpha_shift, beta_shift, weight in [
        (0, 0, (1 - a) * (1 - b)), (1, 0, a * (1 - b)), (0, 1, (1 - a) * b), (1, 1, a * b)
    ]:
        indices = torch.stack([point_ids, alpha_bin + alpha_shift, beta_bin + beta_shift], dim=-1)
        tensor_scatter_nd_add_(weights, indices, weight * mask)
        if is_angular:
            tensor_scatter_nd_add_(angle_sums, indices, weight * angles)

    #################
    # Normalization
    #################
    if is_angular:
        histograms = angle_sums / (weights + EPS)
    else:
        sums = weights.sum(dim=(1, 2), keepdim=True)
        normalize = (contributing.sum(dim=-1) > 1).reshape(-1, 1, 1)
        histograms = torch.where(normalize, weights / torch.where(sums > 0, sums, torch.ones_like(sums)), weights)
    return histograms.reshape(n_query, -1)


def compute_spin_images(config, query_points, query_normals=None, surface_points=None, surface_normals=None):
    """Computes spin images for all query points of a cloud with the batched implementation.

    Parameters
    ----------
    config: geospin.preprocessing.spin_image_config.SpinImageConfig
        The spin image configuration. Its failure policy is ignored, the first failing query point raises.
    query_points: np.ndarray
        A (n_query, 3)-array of points for which spin images shall be computed.
    query_normals: np.ndarray
        A (n_query, 3)-array of unit normals of the query points.
    surface_points: np.ndarray
        A (n_surface, 3)-array of points which contribute to the spin images.
    surface_normals: np.ndarray
        A (n_surface, 3)-array of unit normals of the surface points.

    Returns
    -------
    torch.Tensor:
        A rank-2 tensor of shape (n_query, (W + 1) * (2W + 1)) containing the flattened spin images.
    """
    query_points, query_normals, surface_points, surface_normals = config.validate(
        query_points, query_normals, surface_points, surface_normals
    )
    query_points, surface_points = torch.from_numpy(query_points), torch.from_numpy(surface_points)
    query_normals = None if query_normals is None else torch.from_numpy(query_normals)
    surface_normals = None if surface_normals is None else torch.from_numpy(surface_normals)

    if config.axis_source == "fixed":
        rotation_axes = torch.from_numpy(config.rotation_axis).unsqueeze(0).repeat(query_points.shape[0], 1)
    elif config.axis_source == "cloud":
        rotation_axes = torch.from_numpy(config.rotation_axes)
    else:
        rotation_axes = query_normals

    neighborhood_indices, _ = radius_neighborhoods(query_points, surface_points, config.search_radius)
    return spin_image_descr(
        query_points,
        surface_points,
        neighborhood_indices,
        rotation_axes,
        radius=config.search_radius,
        image_width=config.image_width,
        query_normals=query_normals,
        surface_normals=surface_normals,
        support_angle_cos=config.support_angle_cos,
        min_neighbors=config.min_neighbors,
        is_radial=config.is_radial,
        is_angular=config.is_angular
    )
