#!/usr/bin/env python
"""
Tool Telemetry Rollups Setup
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="tool-telemetry-rollups",
    version="1.0.0",
    description="Download and version-check telemetry tracking with daily rollups and retention compaction",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: System :: Monitoring",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "pytest-asyncio>=0.21.0",
        ],
        "seed": [
            "Faker>=20.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "telemetry-rollups=src.main:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
    keywords=[
        "telemetry",
        "analytics",
        "rollups",
        "postgresql",
        "sqlalchemy",
        "prefect",
    ],
)
