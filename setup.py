"""
PaperDB setup.py — Package configuration.
"""

from setuptools import find_packages, setup

setup(
    name="paperdb",
    version="1.0.0",
    description="PaperDB — typed, access-controlled document collections over append-only logs",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "cryptography>=42.0",
        "pyyaml>=6.0",
        "httpx>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
