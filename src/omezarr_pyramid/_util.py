import os
import re

from ._errors import NotFoundError

__all__ = ["env_flag", "find_dataset_root", "is_zarr_path"]

ZARR_SUFFIX = ".zarr"

_ROOT_RE = re.compile(r"^(.*?\.zarr)(?:/|$)", re.IGNORECASE)
"""Matches everything up to and including the first segment ending in '.zarr'."""


def _normalize(path: "str | os.PathLike[str]") -> str:
    path = os.fspath(path)
    if os.sep != "/":
        path = path.replace(os.sep, "/")
    return path


def find_dataset_root(path: "str | os.PathLike[str]") -> str:
    """Return the dataset root of any path inside a zarr dataset.

    The root is the prefix of `path` up to and including the first segment
    ending in ".zarr" (case-insensitive), so that `/data/plate.zarr/A/1/0/.zattrs`
    and `s3://bucket/plate.zarr` both resolve to the `plate.zarr` directory.

    Raises
    ------
    NotFoundError
        If no segment of `path` ends in ".zarr".
    """
    normalized = _normalize(path)
    match = _ROOT_RE.match(normalized)
    if match is None:
        raise NotFoundError(f"No '{ZARR_SUFFIX}' directory in path {path!r}")
    return match.group(1)


def is_zarr_path(path: "str | os.PathLike[str]") -> bool:
    """Whether `path` lies inside (or is) a zarr dataset."""
    return _ROOT_RE.match(_normalize(path)) is not None


def env_flag(name: str) -> bool:
    """Read a boolean flag from the environment ('1', 'true', 'yes', 'on')."""
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")
