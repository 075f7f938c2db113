from setuptools import setup, find_namespace_packages


if __name__ == "__main__":
    setup(
        name="geospin",
        version="0.1.0",
        description="Spin image descriptors for 3D point clouds",
        package_dir={"": "src"},
        packages=find_namespace_packages(where="src", include=["geospin*"]),
        python_requires=">=3.8",
        install_requires=[
            "numpy",
            "scipy",
            "tqdm",
            "torch"
        ],
        extras_require={
            "test": ["pytest", "trimesh"]
        }
    )
