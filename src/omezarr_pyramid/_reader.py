"""Open an OME-Zarr dataset as a pyramid of image series."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import numpy as np

from ._binding import SeriesBinding
from ._decode import RegionDecoder
from ._errors import (
    MetadataErrorType,
    MetadataValidationError,
    NotFoundError,
    StoreIOError,
)
from ._hcs import PlateRecord, build_plate
from ._index import DatasetIndex, Series, attach_dimensions, resolve_series
from ._metadata import DatasetMetadata, MetadataSink, build_annotations
from ._options import ReaderOptions
from ._parse import GroupMetadata, parse_attributes
from ._pixel import CoreDimensions, PixelType
from ._store import ArrayStore
from ._util import find_dataset_root

if TYPE_CHECKING:
    from types import TracebackType

    from typing_extensions import Self

    from ._store import ArrayHandle

__all__ = ["HCS_DOMAIN", "UNKNOWN_DOMAIN", "OMEZarrReader", "open_dataset"]

logger = logging.getLogger(__name__)

HCS_DOMAIN = "High-Content Screening (HCS)"
UNKNOWN_DOMAIN = "Unknown"


def _core_from_handle(handle: ArrayHandle) -> CoreDimensions:
    size_t, size_c, size_z, size_y, size_x = handle.shape
    try:
        pixel_type = PixelType.from_dtype(handle.dtype)
    except TypeError as e:
        raise MetadataValidationError.single(
            MetadataErrorType.unsupported_dtype,
            (handle.path,),
            str(e),
            ctx={"found": str(handle.dtype)},
        ) from e
    return CoreDimensions(
        size_x=size_x,
        size_y=size_y,
        size_z=size_z,
        size_c=size_c,
        size_t=size_t,
        pixel_type=pixel_type,
        little_endian=handle.little_endian,
    )


class _Dataset:
    """Everything built while opening a dataset; immutable afterwards."""

    __slots__ = ("index", "metadata", "plate", "root")

    def __init__(
        self,
        index: DatasetIndex,
        root: GroupMetadata,
        plate: PlateRecord | None,
        metadata: DatasetMetadata,
    ) -> None:
        self.index = index
        self.root = root
        self.plate = plate
        self.metadata = metadata


def _read_dimensions(
    store: ArrayStore, paths: list[str]
) -> dict[str, CoreDimensions]:
    dims: dict[str, CoreDimensions] = {}
    for path in paths:
        try:
            handle = store.open(path)
        except (NotFoundError, StoreIOError):
            raise
        except (OSError, KeyError) as e:
            raise StoreIOError(f"Failed to open array {path!r}: {e}") from e
        try:
            dims[path] = _core_from_handle(handle)
        finally:
            handle.close()
    return dims


def _initialize(store: ArrayStore, options: ReaderOptions) -> _Dataset:
    root_attrs = store.get_attributes("")
    root = parse_attributes("", root_attrs)
    group_paths = store.list_group_paths()
    group_attrs = {p: store.get_attributes(p) for p in group_paths}
    groups = [root, *(parse_attributes(p, group_attrs[p]) for p in group_paths)]
    array_paths = store.list_array_paths()
    logger.debug(
        "Found %d groups and %d arrays", len(group_paths) + 1, len(array_paths)
    )

    resolved = resolve_series(
        array_paths, groups, flatten=options.flatten_resolutions
    )
    dims = _read_dimensions(store, [p for s in resolved for p in s.array_paths])
    series = [attach_dimensions(s, dims) for s in resolved]
    index = DatasetIndex(series, groups)
    plate = build_plate(root, index.groups, index)

    annotations = []
    if options.annotate_attributes:
        nodes = [(p, group_attrs[p]) for p in group_paths]
        nodes += [(p, store.get_attributes(p)) for p in array_paths]
        annotations = build_annotations(root_attrs, nodes)  # type: ignore[arg-type]

    metadata = DatasetMetadata.build(
        index.series, dict(index.groups), plate, annotations
    )
    return _Dataset(index, root, plate, metadata)


class OMEZarrReader:
    """Pixel and metadata access to an OME-Zarr dataset.

    The dataset is fully indexed when the reader is created: every metadata
    error surfaces here, and a reader is never partially open.  Reads address
    the *current* series and resolution, selected with `set_series` and
    `set_resolution`.  A reader is meant to be used by one thread at a time.

    Parameters
    ----------
    source : str | os.PathLike | ArrayStore
        A path or URL anywhere inside the dataset (the root is the first
        segment ending in ".zarr"), or an already open `ArrayStore`.
    options : ReaderOptions, optional
        Options for opening the dataset.  Keyword arguments are used to build
        one when not given.

    Examples
    --------
    >>> with open_dataset("plate.zarr") as reader:  # doctest: +SKIP
    ...     reader.set_series(3)
    ...     tile = reader.open_bytes(0, x=0, y=0, width=256, height=256)
    """

    def __init__(
        self,
        source: str | os.PathLike | ArrayStore,
        options: ReaderOptions | None = None,
        **kwargs: Any,
    ) -> None:
        self._options = options or ReaderOptions(**kwargs)
        store: ArrayStore
        if isinstance(source, ArrayStore):
            store = source
            self._owns_store = False
            self._source = repr(source)
        else:
            from ._zarr import ZarrStore

            root = find_dataset_root(source)
            store = ZarrStore(
                root,
                backend=self._options.backend,
                storage_options=self._options.storage_options,
            )
            self._owns_store = True
            self._source = root

        try:
            dataset = _initialize(store, self._options)
        except BaseException:
            if self._owns_store:
                store.close()
            raise

        index = dataset.index
        self._store: ArrayStore | None = store
        self._dataset: _Dataset | None = dataset
        self._binding: SeriesBinding | None = SeriesBinding(store, index)
        self._decoder = RegionDecoder(index, self._binding)
        self._series = 0
        self._resolution = 0
        logger.info(
            "Opened %s: %d series, %s",
            self._source,
            index.series_count,
            "plate" if dataset.plate is not None else "no plate",
        )

    # ------------------------ state ------------------------

    def _closed(self) -> NotFoundError:
        return NotFoundError(f"Dataset {self._source} is closed")

    def _open(self) -> _Dataset:
        if self._dataset is None:
            raise self._closed()
        return self._dataset

    def _open_binding(self) -> SeriesBinding:
        if self._binding is None:
            raise self._closed()
        return self._binding

    def _open_store(self) -> ArrayStore:
        if self._store is None:
            raise self._closed()
        return self._store

    @property
    def closed(self) -> bool:
        return self._dataset is None

    @property
    def options(self) -> ReaderOptions:
        return self._options

    @property
    def dataset_index(self) -> DatasetIndex:
        return self._open().index

    @property
    def series_count(self) -> int:
        return self._open().index.series_count

    @property
    def series_entries(self) -> tuple[Series, ...]:
        return self._open().index.series

    @property
    def series(self) -> int:
        """The current series."""
        return self._series

    @property
    def resolution(self) -> int:
        """The current resolution level of the current series."""
        return self._resolution

    @property
    def resolution_count(self) -> int:
        return self._open().index.get_series(self._series).resolution_count

    def set_series(self, series: int) -> None:
        """Select `series` at full resolution.

        The backing array is opened lazily by the next read, so selecting the
        current series again costs nothing.
        """
        self._open().index.get_series(series)
        if series != self._series:
            self._series = series
            self._resolution = 0

    def set_resolution(self, resolution: int) -> None:
        self._open().index.resolution(self._series, resolution)
        self._resolution = resolution

    @property
    def core_index(self) -> int:
        """Position of the current series/resolution in the flat list of arrays."""
        return self._open().index.core_index(self._series, self._resolution)

    def core(
        self, series: int | None = None, resolution: int | None = None
    ) -> CoreDimensions:
        """Dimensions of a series/resolution (default: the current one)."""
        series = self._series if series is None else series
        if resolution is None:
            resolution = self._resolution if series == self._series else 0
        return self._open().index.resolution(series, resolution).dimensions

    # ------------------------ pixels ------------------------

    def open_bytes(
        self,
        no: int,
        x: int = 0,
        y: int = 0,
        width: int | None = None,
        height: int | None = None,
        out: bytearray | memoryview | None = None,
    ) -> bytes | bytearray | memoryview:
        """Read a region of plane `no` of the current series/resolution.

        `width` and `height` default to the rest of the plane.  Pixels are
        packed row-major in the byte order reported by `core().little_endian`.
        When `out` is given it is filled and returned.

        Raises
        ------
        RegionBoundsError
            If the region or plane lies outside the image.  No store access
            happens in that case.
        StoreIOError
            If the store fails to open the array or serve the block.
        """
        core = self.core()
        width = core.size_x - x if width is None else width
        height = core.size_y - y if height is None else height
        return self._decoder.decode(
            self._series, self._resolution, no, x, y, width, height, out=out
        )

    def open_plane(
        self,
        no: int,
        x: int = 0,
        y: int = 0,
        width: int | None = None,
        height: int | None = None,
    ) -> np.ndarray:
        """Like `open_bytes`, returned as a (height, width) array."""
        core = self.core()
        width = core.size_x - x if width is None else width
        height = core.size_y - y if height is None else height
        data = self.open_bytes(no, x, y, width, height)
        return np.frombuffer(data, dtype=core.dtype).reshape(height, width)

    def optimal_tile_size(self) -> tuple[int, int]:
        """(width, height) of one chunk of the current array."""
        handle = self._open_binding().ensure(self._series, self._resolution)
        chunk_h, chunk_w = handle.chunk_shape
        core = self.core()
        return min(chunk_w, core.size_x), min(chunk_h, core.size_y)

    def z_ct_coords(self, no: int) -> tuple[int, int, int]:
        """Decompose plane index `no` of the current series into (z, c, t)."""
        return self.core().zct_coords(no)

    def index(self, z: int, c: int, t: int) -> int:
        """Plane index of (z, c, t) in the current series."""
        return self.core().index(z, c, t)

    # ------------------------ metadata ------------------------

    @property
    def metadata(self) -> DatasetMetadata:
        return self._open().metadata

    @property
    def plate(self) -> PlateRecord | None:
        return self._open().plate

    def populate(self, sink: MetadataSink) -> None:
        self._open().metadata.populate(sink)

    @property
    def domains(self) -> list[str]:
        return [HCS_DOMAIN] if self._open().plate is not None else [UNKNOWN_DOMAIN]

    def used_files(self) -> list[str]:
        return self._open_store().used_files()

    # ------------------------ lifecycle ------------------------

    def close(self) -> None:
        """Release the bound array and the store.  Safe to call twice."""
        if self._binding is not None:
            self._binding.release()
            self._binding = None
        if self._store is not None and self._owns_store:
            self._store.close()
        self._store = None
        self._dataset = None
        self._series = self._resolution = 0

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        if self._dataset is None:
            return f"<OMEZarrReader {self._source} (closed)>"
        return (
            f"<OMEZarrReader {self._source} series={self._series}/"
            f"{self._dataset.index.series_count} resolution={self._resolution}>"
        )


def open_dataset(
    source: str | os.PathLike | ArrayStore, **options: Any
) -> OMEZarrReader:
    """Open an OME-Zarr dataset for reading.

    Parameters
    ----------
    source : str | os.PathLike | ArrayStore
        A path or URL inside the dataset, or an `ArrayStore`.
    **options
        Fields of `ReaderOptions`.

    Returns
    -------
    OMEZarrReader
        Also usable as a context manager that closes the dataset on exit.
    """
    return OMEZarrReader(source, ReaderOptions(**options))
