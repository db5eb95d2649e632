"""
Package version, from installed metadata or the source tree's pyproject.toml.
"""
import importlib.metadata
import pathlib

import tomli

_PYPROJECT = pathlib.Path(__file__).resolve().parent.parent / "pyproject.toml"
_UNKNOWN_VERSION = "0.1.0"


def _source_tree_version() -> str:
    try:
        with open(_PYPROJECT, "rb") as f:
            return tomli.load(f)["project"]["version"]
    except (FileNotFoundError, KeyError):
        return _UNKNOWN_VERSION


try:
    __version__ = importlib.metadata.version("ccq-client")
except importlib.metadata.PackageNotFoundError:
    __version__ = _source_tree_version()
