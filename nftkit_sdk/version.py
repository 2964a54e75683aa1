"""
Version of the NFT Kit SDK and the User-Agent it announces.

An installed distribution reports its metadata version. A source checkout
falls back to the ``[project]`` table of the adjacent pyproject.toml.
"""
import importlib.metadata
import pathlib
from typing import Optional

import tomli

DISTRIBUTION = "nftkit-sdk"
DEFAULT_VERSION = "0.1.0"
PYPROJECT_PATH = pathlib.Path(__file__).parent.parent / "pyproject.toml"


def installed_version() -> Optional[str]:
    try:
        return importlib.metadata.version(DISTRIBUTION)
    except importlib.metadata.PackageNotFoundError:
        return None


def source_tree_version(path: pathlib.Path = PYPROJECT_PATH) -> Optional[str]:
    """Project version declared in ``path``, or None when it cannot be read"""
    try:
        with open(path, "rb") as f:
            project = tomli.load(f).get("project", {})
    except (FileNotFoundError, tomli.TOMLDecodeError):
        return None
    return project.get("version")


def user_agent(version: Optional[str] = None) -> str:
    return f"{DISTRIBUTION}/{version or __version__}"


__version__ = installed_version() or source_tree_version() or DEFAULT_VERSION
