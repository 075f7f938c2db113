from geospin.preprocessing.spin_image import compute_spin_image
from geospin.utils.errors import ConfigurationError, InsufficientNeighbors, DegenerateNormal, SpinImageError
from geospin.utils.neighbor_search import RadiusNeighborSearch

from multiprocessing import Pool
from tqdm import tqdm

import numpy as np
import warnings
import json
import os


ERROR_TYPES = {
    error_type.__name__: error_type
    for error_type in [SpinImageError, ConfigurationError, InsufficientNeighbors, DegenerateNormal]
}


class SpinImageEstimation:
    def __init__(self,
                 config,
                 query_points,
                 query_normals=None,
                 surface_points=None,
                 surface_normals=None,
                 neighbor_search=None,
                 processes=1):
        """Computes spin images for the points of a query cloud.

        The configuration is validated against the given clouds right away. If no surface cloud is given,
        the query cloud is compared with itself.

        Parameters
        ----------
        config: geospin.preprocessing.spin_image_config.SpinImageConfig
            The spin image configuration.
        query_points: np.ndarray
            A (n_query, 3)-array of points for which spin images shall be computed.
        query_normals: np.ndarray
            A (n_query, 3)-array of unit normals of the query points.
        surface_points: np.ndarray
            A (n_surface, 3)-array of points which contribute to the spin images.
        surface_normals: np.ndarray
            A (n_surface, 3)-array of unit normals of the surface points.
        neighbor_search:
            An object with a 'search(point_index, radius)'-method over the surface cloud. Defaults to a
            k-d tree radius search.
        processes: int
            The amount of processes to be used concurrently.
        """
        self.config = config
        self.query_points, self.query_normals, self.surface_points, self.surface_normals = config.validate(
            query_points, query_normals, surface_points, surface_normals
        )
        if neighbor_search is None:
            neighbor_search = RadiusNeighborSearch(self.surface_points, query_points=self.query_points)
        self.neighbor_search = neighbor_search
        self.processes = processes

        self.spin_images = None
        self.query_indices = None
        self.failures = {}

    def compute_point(self, point_index):
        """Computes the spin image for one query point.

        Parameters
        ----------
        point_index: int
            The index of the query point.

        Returns
        -------
        geospin.preprocessing.spin_image.SpinImageResult:
            The spin image or the error of the query point.
        """
        return compute_spin_image(
            int(point_index),
            self.config,
            self.neighbor_search,
            self.query_points,
            self.query_normals,
            self.surface_points,
            self.surface_normals
        )

    def compute(self, indices=None, chunksize=64):
        """Computes the spin images for the given query point indices.

        If the configuration aborts on errors, the first failing query point raises its error. Otherwise,
        failing query points are warned about, their rows are filled with NaN and their errors are kept
        in 'self.failures'.

        Parameters
        ----------
        indices: list
            The indices of the query points. Defaults to all query points.
        chunksize: int
            The amount of query points handed to a worker process at once.

        Returns
        -------
        np.ndarray:
            A (n_indices, (W + 1) * (2W + 1))-array with one flattened spin image per query index.
        """
        n_query = self.query_points.shape[0]
        if indices is None:
            indices = np.arange(n_query)
        else:
            indices = np.asarray(indices)
            if indices.ndim != 1 or (indices.size > 0 and not np.issubdtype(indices.dtype, np.integer)):
                raise ConfigurationError("Query indices must be a one-dimensional sequence of integers.")
            indices = indices.astype(np.int64)
            if np.any(indices < 0) or np.any(indices >= n_query):
                raise ConfigurationError(f"Query indices must be within [0, {n_query}).")

        self.spin_images, self.query_indices, self.failures = None, None, {}
        if self.processes > 1:
            with Pool(self.processes) as p:
                spin_images, failures = self._collect(p.imap(self.compute_point, indices, chunksize=chunksize), indices)
        else:
            spin_images, failures = self._collect(map(self.compute_point, indices), indices)

        self.spin_images, self.query_indices, self.failures = spin_images, indices, failures
        return spin_images

    def _collect(self, results, indices):
        spin_images = np.zeros((indices.shape[0], self.config.descriptor_length))
        failures = {}
        for row, result in enumerate(
                tqdm(results, total=indices.shape[0], postfix="Computing spin images", disable=indices.shape[0] < 2)
        ):
            if result.error is None:
                spin_images[row] = result.histogram.reshape(-1)
            elif self.config.abort_on_error:
                raise result.error
            else:
                warnings.warn(f"Skipping spin image. {result.error}", RuntimeWarning)
                spin_images[row] = np.nan
                failures[result.index] = result.error
        return spin_images, failures

    def save(self, path):
        """Saves computed spin images.

        Parameters
        ----------
        path: str
            The directory where the spin images shall be stored.
        """
        if self.spin_images is None:
            raise RuntimeError("There are no spin images to save. Call 'compute()' first.")
        os.makedirs(path, exist_ok=True)
        np.save(f"{path}/spin_images.npy", self.spin_images)
        np.save(f"{path}/query_indices.npy", self.query_indices)
        with open(f"{path}/properties.json", "w") as properties_file:
            json.dump(
                {
                    "config": self.config.to_dict(),
                    "failures": {
                        f"{idx}": {"type": type(error).__name__, "message": error.message}
                        for idx, error in self.failures.items()
                    }
                },
                properties_file,
                indent=4
            )

    def load(self, path):
        """Loads spin images that have been stored with 'save()'.

        Parameters
        ----------
        path: str
            The directory from where to load the spin images.
        """
        with open(f"{path}/properties.json") as properties_file:
            properties = json.load(properties_file)
        stored_width = properties["config"]["image_width"]
        if stored_width != self.config.image_width:
            raise ConfigurationError(
                f"Stored spin images have width {stored_width}, but the current configuration uses width"
                f" {self.config.image_width}."
            )
        self.spin_images = np.load(f"{path}/spin_images.npy")
        self.query_indices = np.load(f"{path}/query_indices.npy")
        self.failures = {
            int(idx): ERROR_TYPES[failure["type"]](failure["message"], point_index=int(idx))
            for idx, failure in properties["failures"].items()
        }
