#!/usr/bin/env python3
"""
KV-Cluster Setup Script
=======================
Allows installation of the kv-cluster package.

Usage:
    pip install -e .           # Development install
    pip install -e ".[test]"   # Development install with test tools
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="kv-cluster",
    version="1.0.0",
    packages=find_packages(include=["kvcluster", "kvcluster.*"]),
    python_requires=">=3.10",
    install_requires=[
        "redis>=5.0.1,<8",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "kv-cluster=kvcluster.cli:main",
        ],
    },
)
