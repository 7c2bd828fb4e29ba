# setup.py
from setuptools import setup, find_packages

setup(
    name="billcycle",
    version="0.1.0",
    description="Recurring bill and income tracker that generates due transactions",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "click>=7.0",
        "pyyaml>=5.3",
        "python-dotenv>=0.19",
        "mcp>=1.0,<2",
        "anyio>=3.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "billcycle=bill_tracker.cli:main",
            "billcycle-mcp=bill_tracker.mcp_server:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
