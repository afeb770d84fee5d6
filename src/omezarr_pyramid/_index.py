"""Partition array paths into series and resolution levels.

Every group carrying a multiscale descriptor contributes one *resolution group*:
its dataset paths, in declared order, from full detail to coarsest.  The flat
array listing is reordered so that each resolution group is contiguous, with
groups appended in discovery order (root first, then the group listing).
Arrays that belong to no multiscale are their own single-resolution series and
keep their listing order.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from types import MappingProxyType

from ._errors import (
    MetadataErrorType,
    MetadataValidationError,
    NotFoundError,
)
from ._parse import GroupMetadata
from ._pixel import CoreDimensions

__all__ = [
    "DatasetIndex",
    "Resolution",
    "ResolutionGroup",
    "Series",
    "order_array_paths",
    "resolve_series",
]

logger = logging.getLogger(__name__)


def join_path(group: str, relative: str) -> str:
    """Join a path relative to `group`, normalized and without leading './'."""
    joined = posixpath.normpath(posixpath.join(group, relative))
    return "" if joined == "." else joined.lstrip("/")


@dataclass(frozen=True, slots=True)
class ResolutionGroup:
    """The dataset paths of one multiscale, relative to the store root."""

    group_path: str
    paths: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Resolution:
    array_path: str
    level: int
    core: CoreDimensions | None = None

    @property
    def dimensions(self) -> CoreDimensions:
        """The core dimensions of this level, once they have been read."""
        if self.core is None:
            raise NotFoundError(
                f"Dimensions of {self.array_path!r} have not been read yet"
            )
        return self.core


@dataclass(frozen=True, slots=True)
class Series:
    """One logical image and its resolution levels (level 0 is full detail)."""

    index: int
    resolutions: tuple[Resolution, ...]
    group_path: str | None = None
    """Path of the multiscale group owning this series, if any."""

    @property
    def name(self) -> str:
        return self.resolutions[0].array_path

    @property
    def resolution_count(self) -> int:
        return len(self.resolutions)

    @property
    def core(self) -> CoreDimensions:
        """The nominal dimensions of the series: those of level 0."""
        return self.resolution(0).dimensions

    def resolution(self, level: int) -> Resolution:
        if not 0 <= level < len(self.resolutions):
            raise NotFoundError(
                f"Series {self.index} has no resolution {level} "
                f"(resolution count: {len(self.resolutions)})"
            )
        return self.resolutions[level]

    @property
    def array_paths(self) -> tuple[str, ...]:
        return tuple(r.array_path for r in self.resolutions)


def collect_resolution_groups(
    groups: Iterable[GroupMetadata],
) -> list[ResolutionGroup]:
    """Collect the dataset paths of every multiscale, in discovery order."""
    result: list[ResolutionGroup] = []
    owner: dict[str, str] = {}
    for meta in groups:
        if (ms := meta.multiscale) is None:
            continue
        paths = tuple(join_path(meta.path, p) for p in ms.paths)
        for i, path in enumerate(paths):
            if path in owner:
                raise MetadataValidationError.single(
                    MetadataErrorType.invalid_descriptor,
                    (meta.path, "multiscales", 0, "datasets", i, "path"),
                    f"Array {path!r} is already a resolution of {owner[path]!r}",
                )
            owner[path] = meta.path
        result.append(ResolutionGroup(meta.path, paths))
    return result


def order_array_paths(
    array_paths: Sequence[str], resolution_groups: Sequence[ResolutionGroup]
) -> list[str]:
    """Reorder the array listing so that every resolution group is contiguous.

    Raises
    ------
    MetadataValidationError
        If a multiscale lists a dataset path that is not an array in the store.
    """
    ordered = list(array_paths)
    available = set(ordered)
    for rg in resolution_groups:
        for i, path in enumerate(rg.paths):
            if path not in available:
                raise MetadataValidationError.single(
                    MetadataErrorType.multiscale_dataset_not_found,
                    (rg.group_path, "multiscales", 0, "datasets", i, "path"),
                    f"Multiscale dataset {path!r} is not an array in the store",
                    ctx={"expected": "array", "found": None},
                )
            ordered.remove(path)
        ordered.extend(rg.paths)
    return ordered


def resolve_series(
    array_paths: Sequence[str],
    groups: Iterable[GroupMetadata],
    *,
    flatten: bool = False,
) -> tuple[Series, ...]:
    """Resolve the series/resolution layout of a dataset.

    Parameters
    ----------
    array_paths : Sequence[str]
        Every array path in the store, in enumeration order.
    groups : Iterable[GroupMetadata]
        Parsed metadata of the root and every group, in discovery order.
    flatten : bool
        When True, every resolution level is exposed as its own series.

    Returns
    -------
    tuple[Series, ...]
        Series in index order.  Dimensions are not populated yet.
    """
    resolution_groups = collect_resolution_groups(groups)
    ordered = order_array_paths(array_paths, resolution_groups)
    by_first = {rg.paths[0]: rg for rg in resolution_groups}

    series: list[Series] = []
    i = 0
    while i < len(ordered):
        path = ordered[i]
        rg = by_first.get(path)
        if rg is None:
            series.append(Series(len(series), (Resolution(path, 0),)))
            i += 1
        elif flatten:
            for path in rg.paths:
                level = (Resolution(path, 0),)
                series.append(Series(len(series), level, rg.group_path))
            i += len(rg.paths)
        else:
            levels = tuple(Resolution(p, n) for n, p in enumerate(rg.paths))
            series.append(Series(len(series), levels, rg.group_path))
            i += len(rg.paths)

    logger.debug(
        "Resolved %d arrays into %d series (%d multiscale groups, flatten=%s)",
        len(ordered),
        len(series),
        len(resolution_groups),
        flatten,
    )
    return tuple(series)


def attach_dimensions(
    series: Series, dims: Mapping[str, CoreDimensions]
) -> Series:
    """Return a copy of `series` with core dimensions filled in from `dims`.

    Raises
    ------
    MetadataValidationError
        If level 0 is not the array with the largest pixel extent.
    """
    count = series.resolution_count
    levels = [
        replace(
            res,
            core=replace(
                dims[res.array_path], resolution_count=count if res.level == 0 else 1
            ),
        )
        for res in series.resolutions
    ]

    full = levels[0].dimensions
    for res in levels[1:]:
        core = res.dimensions
        if core.size_x * core.size_y > full.size_x * full.size_y:
            raise MetadataValidationError.single(
                MetadataErrorType.resolution_order,
                (series.group_path or "", "multiscales", 0, "datasets", res.level),
                f"Resolution {res.level} ({res.array_path!r}) is larger than "
                f"resolution 0 ({levels[0].array_path!r})",
                ctx={
                    "expected": f"<= {full.size_x}x{full.size_y}",
                    "found": f"{core.size_x}x{core.size_y}",
                },
            )
    return replace(series, resolutions=tuple(levels))


class DatasetIndex:
    """Immutable lookup tables built once when a dataset is opened."""

    __slots__ = ("_by_path", "_groups", "_ordered", "_series")

    def __init__(
        self, series: Sequence[Series], groups: Sequence[GroupMetadata] = ()
    ) -> None:
        self._series = tuple(series)
        self._groups = MappingProxyType({g.path: g for g in groups})
        self._ordered = tuple(
            res.array_path for s in self._series for res in s.resolutions
        )
        by_path: dict[str, Series] = {}
        for s in self._series:
            for p in s.array_paths:
                by_path[p] = s
            if s.group_path is not None:
                by_path.setdefault(s.group_path, s)
        self._by_path = MappingProxyType(by_path)

    @property
    def series(self) -> tuple[Series, ...]:
        return self._series

    @property
    def series_count(self) -> int:
        return len(self._series)

    @property
    def ordered_array_paths(self) -> tuple[str, ...]:
        """Every array path in final order: one entry per series/resolution."""
        return self._ordered

    @property
    def groups(self) -> Mapping[str, GroupMetadata]:
        return self._groups

    def get_series(self, index: int) -> Series:
        if not 0 <= index < len(self._series):
            raise NotFoundError(
                f"Series {index} does not exist (series count: {len(self._series)})"
            )
        return self._series[index]

    def resolution(self, series: int, level: int) -> Resolution:
        return self.get_series(series).resolution(level)

    def find_series(self, path: str) -> Series:
        """Return the series backed by `path` (an array path or multiscale group)."""
        try:
            return self._by_path[path.strip("/")]
        except KeyError:
            raise NotFoundError(f"No series is backed by {path!r}") from None

    def core_index(self, series: int, level: int = 0) -> int:
        """Position of a series/resolution entry in `ordered_array_paths`."""
        self.resolution(series, level)
        return sum(s.resolution_count for s in self._series[:series]) + level

    def __len__(self) -> int:
        return len(self._series)
