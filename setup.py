"""Setup script for silo-provision."""

from setuptools import setup, find_packages
from pathlib import Path

here = Path(__file__).parent
readme = (here / "README.md").read_text() if (here / "README.md").exists() else ""

setup(
    name="silo-provision",
    version="0.1.0",
    description="Provisioning and signature verification for SiLo NFC tags",
    long_description=readme,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "cryptography>=41.0.0",
    ],
    extras_require={
        "pcsc": [
            "pyscard>=2.0.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "silo-scan=silo_provision.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security :: Cryptography",
        "Typing :: Typed",
    ],
    package_data={
        "silo_provision": ["py.typed"],
    },
)
