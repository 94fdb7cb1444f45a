#!/usr/bin/env python
# Copyright (c) VaReg Contributors
"""The setup script."""

import ast

from setuptools import find_packages, setup  # type: ignore

with open("vareg/__init__.py") as f:
    for line in f:
        if line.startswith("__version__"):
            version = ast.parse(line).body[0].value.value  # type: ignore
            break

with open("README.rst") as readme_file:
    readme = readme_file.read()


setup(
    author="VaReg Contributors",
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "OSI Approved :: Apache Software License",
        "Natural Language :: English",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    description="VaReg - variational deformable image registration with demons, SSD and NCC forces.",
    entry_points={
        "console_scripts": [
            "vareg=vareg.cli.cli:main",
        ],
    },
    install_requires=[
        "numpy>=1.21.2",
        "omegaconf==2.3.0",
        "torch>=2.2.0",
        "SimpleITK>=2.2.0",
        "einops",
    ],
    extras_require={
        "dev": [
            "pytest",
            "numpydoc",
            "pylint",
        ],
    },
    license="Apache Software License 2.0",
    long_description=readme,
    include_package_data=True,
    keywords="vareg",
    name="vareg",
    packages=find_packages(include=["vareg", "vareg.*"]),
    test_suite="tests",
    version=version,
    zip_safe=False,
)
