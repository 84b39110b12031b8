"""Setup configuration for sprinthealth"""

from setuptools import setup, find_namespace_packages

setup(
    name="sprint-health-analyzer",
    version="0.1.0",
    description=(
        "CLI tool for sprint health analysis: flow metrics, risk assessment, "
        "spillover prediction and recommendations from Jira and Bitbucket."
    ),
    author="Sprint Health Analyzer Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
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
            "sprint-health-analyzer=sprinthealth.main:main",
        ],
    },
)
