from scipy.spatial import cKDTree

import numpy as np


class RadiusNeighborSearch:
    def __init__(self, surface_points, query_points=None, leafsize=16):
        """Radius search over a static surface cloud.

        Query points are addressed by their index. If no query cloud is given, the surface cloud
        is queried with its own points.

        Parameters
        ----------
        surface_points: np.ndarray
            A (n_surface, 3)-array that contains the points which can be found.
        query_points: np.ndarray
            A (n_query, 3)-array that contains the points around which is searched.
        leafsize: int
            The leaf size of the underlying k-d tree.
        """
        self.surface_points = np.asarray(surface_points, dtype=np.float64)
        self.query_points = self.surface_points if query_points is None else np.asarray(
            query_points, dtype=np.float64
        )
        self.tree = cKDTree(self.surface_points, leafsize=leafsize)

    def search(self, point_index, radius):
        """Finds all surface points within 'radius' of a query point.

        Parameters
        ----------
        point_index: int
            The index of the query point.
        radius: float
            The search radius.

        Returns
        -------
        (np.ndarray, np.ndarray):
            The indices of the found surface points and their squared distances to the query
            point, both sorted by increasing distance.
        """
        query_point = self.query_points[point_index]
        neighbor_indices = np.array(self.tree.query_ball_point(query_point, r=radius), dtype=np.int64)
        squared_distances = np.sum(np.square(self.surface_points[neighbor_indices] - query_point), axis=-1)
        order = np.argsort(squared_distances, kind="stable")
        return neighbor_indices[order], squared_distances[order]

    def __len__(self):
        return self.query_points.shape[0]
