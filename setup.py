from setuptools import setup, find_packages

setup(
    name="trackml_ca",
    version="0.1.0",
    description="Cellular-automaton doublet chaining (n-tuplet seeding) for TrackML-style layered detectors",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(exclude=("tests",)),
    python_requires=">=3.10",
    install_requires=[
        # GitHub dependency for TrackML library
        "trackml @ git+https://github.com/LAL/trackml-library.git@master",

        # Runtime dependencies
        "numpy",
        "numba",
        "pandas",
        "matplotlib",
        "scipy",
        "networkx",
        "orjson",
    ],
    extras_require={
        # Test runner
        "test": [
            "pytest",
        ],
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "trackml-ca=trackml_ca.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
