from typing import Tuple

import torch


@torch.jit.script
def tensor_scatter_nd_add_(tensor: torch.Tensor, indices: torch.Tensor, updates: torch.Tensor):
    """In-place adds `updates` to `tensor` at `indices`.

    Parameters
    ----------
    tensor: torch.Tensor
        The tensor to which the updates should be added.
    indices: torch.Tensor
        The indices where the updates should be added. Its last dimension indexes all dimensions of `tensor`.
    updates: torch.Tensor
        The values to add to the tensor. Repeated indices accumulate.
    """
    indices = indices.long()

    flat_indices = list(indices.reshape(-1, tensor.dim()).t())
    flat_updates = updates.reshape(-1).to(tensor.dtype)
    tensor.index_put_(flat_indices, flat_updates, accumulate=True)


def radius_neighborhoods(query_points: torch.Tensor,
                         surface_points: torch.Tensor,
                         radius: float) -> Tuple[torch.Tensor, torch.Tensor]:
    """Determines all surface points within a radius around each query point.

    Parameters
    ----------
    query_points: torch.Tensor
        A (n_query, 3)-tensor of query points.
    surface_points: torch.Tensor
        A (n_surface, 3)-tensor of surface points.
    radius: float
        The search radius.

    Returns
    -------
    Tuple[torch.Tensor, torch.Tensor]:
        A (n_query, k_max)-tensor of surface point indices sorted by increasing distance and padded with -1,
        and a (n_query,)-tensor containing the amount of neighbors of each query point.
    """
    # 'distances': (n_query, n_surface)
    distances = torch.linalg.norm(query_points.unsqueeze(1) - surface_points.unsqueeze(0), dim=-1)
    within = distances <= radius
    counts = within.sum(dim=-1)
    k_max = int(counts.max()) if counts.numel() > 0 else 0

    masked_distances = torch.where(within, distances, torch.full_like(distances, float("inf")))
    sorted_distances, order = torch.sort(masked_distances, dim=-1, stable=True)
    neighborhood_indices = torch.where(
        torch.isfinite(sorted_distances[:, :k_max]), order[:, :k_max], torch.full_like(order[:, :k_max], -1)
    )
    return neighborhood_indices, counts
