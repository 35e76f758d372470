"""Setup script for integ_test_orchestrator package."""

from setuptools import setup, find_packages

setup(
    name="integ-test-orchestrator",
    version="1.0.0",
    description="Parallel, isolated integration tests for multi-component builds",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20",
        "pandas>=1.3",
        "pyyaml>=5.4",
        "click>=8.0",
        "requests>=2.25",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "integ-test=integ_test_orchestrator.cli.main:cli",
        ],
    },
)
