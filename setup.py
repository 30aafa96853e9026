"""Setup"""

from pathlib import Path

from setuptools import find_packages, setup

this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="splinevar",
    version="0.1.0",
    packages=find_packages(include=["splinevar", "splinevar.*"]),
    license="MIT License",
    long_description=long_description,
    long_description_content_type="text/markdown",
    description="Three-dimensional variational analysis on a cubic B-spline basis",
    install_requires=[
        "torch",
        "numpy",
        "pandas",
        "xarray",
        "einops",
        "pyyaml",
        "netCDF4",
    ],
    extras_require={"test": ["pytest"]},
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Atmospheric Science",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
    ],
)
