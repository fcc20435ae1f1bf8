"""
Setup script for the scs-servo-emulator package.

This script uses setuptools to package and distribute scs-servo-emulator,
a command-line tool that emulates SCS/STS-protocol serial bus servos so a
driver stack can be tested without physical hardware. It defines metadata,
dependencies, and the entry point for the emulator's command-line interface.
"""
import os
import re
from setuptools import find_packages, setup


def get_version_from_init():
    """Reads the __version__ string from scs_emulator/__init__.py."""
    init_py_path = os.path.join(
        os.path.dirname(__file__), "scs_emulator", "__init__.py"
    )
    try:
        with open(init_py_path, "r", encoding="utf-8") as f_version:
            version_file_content = f_version.read()
        version_match = re.search(
            r"^__version__\s*=\s*['\"]([^'\"]*)['\"]",
            version_file_content,
            re.M,
        )
        if version_match:
            return version_match.group(1)
        raise RuntimeError(
            f"Unable to find __version__ string in {init_py_path}."
        )
    except FileNotFoundError as exc:
        raise RuntimeError(
            f"{init_py_path} not found. Ensure you are in the correct "
            f"directory."
        ) from exc


try:
    with open("README.md", "r", encoding="utf-8") as f_readme:
        long_description = f_readme.read()
except FileNotFoundError:
    long_description = (
        "SCS servo bus emulator for testing serial servo drivers."
    )


setup(
    name="scs-servo-emulator",
    version=get_version_from_init(),
    description="Byte-level emulator for SCS/STS serial bus servos.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where=".", include=["scs_emulator", "scs_emulator.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
        "Topic :: Software Development :: Testing :: Simulation",
        "Topic :: System :: Emulators",
    ],
    python_requires=">=3.8",
    install_requires=[
        "click>=7.0",  # For the CLI
        "rich>=10.0.0",  # For the startup summary
        "fastapi>=0.68.0",  # For the HTTP debug server
        "pydantic>=1.8",  # Request models of the debug server
        "uvicorn>=0.15.0",  # For running the FastAPI server
        "pyserial>=3.4",  # For the serial transport
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "pytest-mock>=3.10",
            "httpx>=0.23",  # Required by fastapi.testclient
        ],
    },
    entry_points={
        "console_scripts": [
            "scs_emulator=scs_emulator.main:main",
            "scs-emulator=scs_emulator.main:main",
        ],
    },
    keywords="scs sts feetech servo serial bus emulator testing development",
)
