"""
Setup file.
"""

import os

from setuptools import find_packages, setup

KEYWORDS = "cross-compile toolchain aarch64 embedded build deploy homebrew apt elf"
HERE = os.path.dirname(os.path.abspath(__file__))


if __name__ == "__main__":
    setup(
        name="crossbuild",
        version="0.1.0",
        description="Cross-compilation build orchestrator for aarch64 Linux devices",
        keywords=KEYWORDS,
        python_requires=">=3.9",
        package_dir={"": "src"},
        packages=find_packages(os.path.join(HERE, "src")),
        install_requires=[
            "psutil",
            "pyelftools",
        ],
        extras_require={
            "test": ["pytest"],
        },
        entry_points={
            "console_scripts": ["crossbuild=crossbuild.cli:main"],
        },
        include_package_data=True)
