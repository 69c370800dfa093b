"""Setup configuration for leadtime"""

from setuptools import setup, find_packages

setup(
    name="repo-lead-time",
    version="0.1.0",
    description=(
        "CLI tool for DORA lead time for changes: matches merged pull/merge "
        "requests from GitHub and GitLab to deployments and reports phase "
        "durations, percentiles and performance categories."
    ),
    author="Repo Lead Time Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
        "SQLAlchemy>=2.0",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "repo-lead-time=leadtime.main:main",
        ],
    },
)
