#!/usr/bin/env python3
"""
Setup script for prom-datasource-toolkit
"""

import os
from setuptools import setup, find_packages


def read_requirements():
    """Read install requirements, skipping comments and blank lines"""
    with open("requirements.txt", "r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]


def main():
    # Read the long description from README
    long_description = ""
    if os.path.exists("README.md"):
        with open("README.md", "r", encoding="utf-8") as fh:
            long_description = fh.read()

    setup(
        name="prom-datasource-toolkit",
        version="1.0.0",
        author="DroidSpace",
        author_email="support@droidspace.com",
        description="Query pipeline for Prometheus-compatible datasources: step resolution, "
                    "variable expansion, request building and response decoding",
        long_description=long_description,
        long_description_content_type="text/markdown",
        packages=find_packages(),
        classifiers=[
            "Development Status :: 4 - Beta",
            "Intended Audience :: Developers",
            "License :: OSI Approved :: MIT License",
            "Operating System :: OS Independent",
            "Programming Language :: Python :: 3",
            "Programming Language :: Python :: 3.8",
            "Programming Language :: Python :: 3.9",
            "Programming Language :: Python :: 3.10",
            "Programming Language :: Python :: 3.11",
            "Topic :: Software Development :: Libraries :: Python Modules",
            "Topic :: System :: Monitoring",
        ],
        python_requires=">=3.8",
        install_requires=read_requirements(),
        extras_require={
            "dev": [
                "pytest>=7.0.0",
                "pytest-cov>=4.0.0",
            ],
        },
        entry_points={
            "console_scripts": [
                "prom-datasource=prom_datasource.cli:main",
            ],
        },
    )


if __name__ == "__main__":
    main()
