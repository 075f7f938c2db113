from geospin.preprocessing.spin_image_config import SpinImageConfig
from geospin.preprocessing.spin_image_estimation import SpinImageEstimation

import json
import os


def compute_spin_images_wrapper(points, output_dir, normals=None, indices=None, processes=1, **config_kwargs):
    """Wrapper function that computes and stores the spin images of one point cloud.

    Parameters
    ----------
    points: np.ndarray
        A (n, 3)-array containing the point cloud.
    output_dir: str
        The directory where the spin images shall be stored.
    normals: np.ndarray
        A (n, 3)-array containing the unit normals of the point cloud.
    indices: list
        The indices of the points for which spin images shall be computed. Defaults to all points.
    processes: int
        The amount of processes to be used concurrently.
    config_kwargs:
        Keyword arguments for 'SpinImageConfig', e.g. 'search_radius' and 'image_width'.

    Returns
    -------
    bool:
        Whether spin images have been computed.
    """
    # 0.) Check whether file already exist. If so, skip computing spin images.
    properties_file_path = f"{output_dir}/preprocess_properties.json"
    if os.path.isfile(properties_file_path):
        print(f"{properties_file_path} already exists. Skipping preprocessing.")
        return False

    # 1.) Create output dir if not existent
    os.makedirs(output_dir, exist_ok=True)

    # 2.) Compute spin images
    estimation = SpinImageEstimation(SpinImageConfig(**config_kwargs), points, query_normals=normals, processes=processes)
    spin_images = estimation.compute(indices=indices)
    estimation.save(f"{output_dir}/spin_images")

    # 3.) Log preprocess properties
    with open(properties_file_path, "w") as properties_file:
        json.dump(
            {
                "amount_spin_images": int(spin_images.shape[0]),
                "failed_points": len(estimation.failures),
                "descriptor_length": estimation.config.descriptor_length,
                "search_radius": estimation.config.search_radius
            },
            properties_file,
            indent=4
        )
    return True
