from setuptools import setup, find_packages

setup(
    name="tracknav",
    version="0.1.0",
    description="Detector geometry model and straight-line navigator for track propagation",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(include=["tracknav", "tracknav.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "pandas",
        "matplotlib",
        "scipy",
        "networkx",
        "orjson",
    ],
    extras_require={
        # Optional speed/profiling stack
        "speed": [
            "scalene>=1.5.49; platform_system != 'Windows'",
            "py-spy>=0.3.14",
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
            # CLI entry point
            "tracknav=tracknav.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
