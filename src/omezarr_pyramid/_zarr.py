"""fsspec-backed zarr v2/v3 array store.

Hierarchy discovery and attribute access read the zarr metadata documents
directly (`zarr.json`, `.zgroup`, `.zarray`, `.zattrs`) through an fsspec mapper
with an application-level cache, avoiding a full zarr-python dependency for
anything but chunk data.  Chunk data is read through zarr-python or tensorstore.

Mixed v2/v3 hierarchies are not supported: every child is expected to share
the zarr_format of its parent, matching zarr-python.
"""

from __future__ import annotations

import json
import logging
import os
import posixpath
from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ._errors import (
    MetadataErrorType,
    MetadataValidationError,
    NotFoundError,
    StoreIOError,
)
from ._store import Shape5

if TYPE_CHECKING:
    from fsspec import FSMap

__all__ = ["ZarrArrayHandle", "ZarrMetadata", "ZarrStore"]

logger = logging.getLogger(__name__)

CANONICAL_AXES = "tczyx"
# protocols whose filesystems can list directories
_LISTABLE_PROTOCOLS = {
    "file", "local", "memory", "s3", "s3a", "gs", "gcs", "az", "abfs"
}

# -------------------  Metadata Loading  -------------------


class ZarrMetadata(BaseModel):
    """Metadata from a zarr metadata file.

    v2 and v3 documents are both loaded into this common format.  Extra fields
    (chunks, codecs, compressor, ...) are kept, use `getattr()` or
    `model_dump()` to access them.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow", frozen=True)

    zarr_format: Literal[2, 3]
    node_type: Literal["group", "array"]
    attributes: dict[str, Any] = Field(default_factory=dict)
    shape: tuple[int, ...] | None = None
    data_type: str | list | None = None

    @model_validator(mode="before")
    @classmethod
    def _fix_inputs(cls, val: Any) -> Any:
        # cast v2 "dtype" to "data_type"
        if isinstance(val, dict):
            if "dtype" in val and "data_type" not in val:
                val = {**val, "data_type": val["dtype"]}
                del val["dtype"]
        return val

    @property
    def chunks(self) -> tuple[int, ...] | None:
        if self.zarr_format == 2:
            chunks = (self.model_extra or {}).get("chunks")
            return tuple(chunks) if chunks else None
        grid = (self.model_extra or {}).get("chunk_grid") or {}
        shape = grid.get("configuration", {}).get("chunk_shape")
        return tuple(shape) if shape else None

    @property
    def little_endian(self) -> bool:
        """Byte order of the stored elements.

        v2 encodes it in the dtype string ('<u2', '>f4', '|u1'), v3 in the
        configuration of the `bytes` codec.  Single byte types are reported as
        little endian.
        """
        if self.zarr_format == 2:
            return not (isinstance(self.data_type, str) and self.data_type[0] == ">")
        for codec in (self.model_extra or {}).get("codecs") or ():
            if codec.get("name") in ("bytes", "endian"):
                endian = (codec.get("configuration") or {}).get("endian", "little")
                return endian != "big"
            if codec.get("name") == "sharding_indexed":
                inner = (codec.get("configuration") or {}).get("codecs") or ()
                nested = {**self.model_dump(), "codecs": inner}
                return ZarrMetadata.model_validate(nested).little_endian
        return True

    @property
    def dimension_names(self) -> list[str] | None:
        names = (self.model_extra or {}).get("dimension_names")
        if names and all(isinstance(n, str) for n in names):
            return list(names)
        return None

    def numpy_dtype(self) -> np.dtype:
        if self.data_type is None:  # pragma: no cover
            raise ValueError("Array metadata missing 'data_type'")
        if isinstance(self.data_type, list):
            raise TypeError(f"Structured dtypes are not supported: {self.data_type}")
        return np.dtype(self.data_type)


def _load_zarr_json(prefix: str, mapper: Mapping[str, bytes]) -> ZarrMetadata | None:
    """Load and parse zarr v3 metadata (zarr.json)."""
    if json_data := mapper.get(f"{prefix}zarr.json".lstrip("/")):
        return ZarrMetadata.model_validate_json(json_data)
    return None


def _load_v2(
    prefix: str, mapper: Mapping[str, bytes], node_type: Literal["group", "array"]
) -> ZarrMetadata | None:
    """Load and parse zarr v2 metadata (.zgroup or .zarray, plus .zattrs)."""
    name = ".zgroup" if node_type == "group" else ".zarray"
    data = mapper.get(f"{prefix}{name}".lstrip("/"))
    if data is None:
        return None
    meta = json.loads(data.decode("utf-8"))
    if not isinstance(meta, dict):
        raise ValueError(f"{name} must hold a JSON object")
    attrs_data = mapper.get(f"{prefix}.zattrs".lstrip("/"))
    attrs = json.loads(attrs_data.decode("utf-8")) if attrs_data else {}
    return ZarrMetadata.model_validate(
        {**meta, "node_type": node_type, "attributes": attrs}
    )


def load_zarr_metadata(
    mapper: Mapping[str, bytes], path: str = "", zarr_format: int | None = None
) -> ZarrMetadata | None:
    """Load zarr metadata at `path`, or None when no zarr node lives there.

    v3 (zarr.json) is tried first, then v2 (.zgroup, then .zarray).  Passing
    `zarr_format` restricts the lookup to that version.

    Raises
    ------
    MetadataValidationError
        If a metadata document exists but is not valid JSON or not valid zarr
        metadata.
    """
    try:
        return _load_metadata(mapper, path, zarr_format)
    except ValueError as e:
        raise MetadataValidationError.single(
            MetadataErrorType.invalid_zarr_metadata,
            (path,),
            f"Malformed zarr metadata at {path or '<root>'!r}: {e}",
        ) from e


def _load_metadata(
    mapper: Mapping[str, bytes], path: str, zarr_format: int | None
) -> ZarrMetadata | None:
    prefix = f"{path}/" if path else ""
    if zarr_format in (None, 3):
        if (meta := _load_zarr_json(prefix, mapper)) is not None:
            return meta
    if zarr_format in (None, 2):
        if (meta := _load_v2(prefix, mapper, "group")) is not None:
            return meta
        return _load_v2(prefix, mapper, "array")
    return None


class _CachedMapper(Mapping[str, bytes]):
    """Caching wrapper for FSMap that caches metadata file reads.

    fsspec does NOT cache individual file reads.  Discovering a plate means
    reading thousands of small, immutable metadata files, so they are cached
    here (including misses).  Only metadata goes through this cache; chunk
    data is read by zarr-python or tensorstore.
    """

    def __init__(self, mapper: FSMap) -> None:
        self._fsmap = mapper
        self._cache: dict[str, bytes | None] = {}

    @property
    def fsmap(self) -> FSMap:
        return self._fsmap

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._cache:
            self._cache[key] = self._fsmap.get(key)
        val = self._cache[key]
        return default if val is None else val

    def prefetch(self, keys: Sequence[str]) -> None:
        """Batch fetch `keys` (concurrently on async filesystems) into the cache."""
        missing = [k for k in keys if k not in self._cache]
        if not missing:
            return
        results = self._fsmap.getitems(missing, on_error="return")
        for key in missing:
            val = results.get(key)
            self._cache[key] = None if isinstance(val, BaseException) else val

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __getitem__(self, key: str) -> bytes:
        if (result := self.get(key)) is None:
            raise KeyError(key)
        return result

    def __iter__(self) -> Iterator[str]:
        return iter(self._fsmap)

    def __len__(self) -> int:
        return len(self._fsmap)


# ---------------------------------------------------


def _canonical_axis(name: str) -> str | None:
    key = name.lower()
    if key in ("t", "time"):
        return "t"
    if key in ("c", "ch", "channel", "channels"):
        return "c"
    if key in ("z", "y", "x"):
        return key
    return None


def canonical_axes(names: Sequence[str] | None, ndim: int) -> str:
    """Map array axis names to letters of 'tczyx'.

    Falls back to the trailing `ndim` letters of 'tczyx' when names are
    missing, unrecognized, or inconsistent with the array rank.
    """
    default = CANONICAL_AXES[-ndim:] if ndim else ""
    if not names or len(names) != ndim:
        return default
    letters = [_canonical_axis(n) for n in names]
    if None in letters or len(set(letters)) != ndim or not {"y", "x"} <= set(letters):
        return default
    return "".join(letters)  # type: ignore[arg-type]


class ZarrArrayHandle:
    """An open zarr array viewed as a (T, C, Z, Y, X) volume.

    Arrays of rank 2 to 5 are supported; missing axes are exposed as singleton
    dimensions.  The chunk-data backend is opened lazily on the first read.
    """

    def __init__(
        self,
        store: ZarrStore,
        path: str,
        meta: ZarrMetadata,
        axes: str,
    ) -> None:
        self._store = store
        self._path = path
        self._meta = meta
        self._axes = axes
        self._dtype = meta.numpy_dtype()
        self._data: Any = None
        sizes = dict(zip(axes, meta.shape or ()))
        shape = tuple(sizes.get(a, 1) for a in CANONICAL_AXES)
        self._shape: Shape5 = shape  # type: ignore[assignment]

    @property
    def path(self) -> str:
        return self._path

    @property
    def axes(self) -> str:
        """The canonical letter of each stored dimension, in storage order."""
        return self._axes

    @property
    def shape(self) -> Shape5:
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def little_endian(self) -> bool:
        return self._meta.little_endian

    @property
    def chunk_shape(self) -> tuple[int, int]:
        chunks = self._meta.chunks
        if chunks is None or len(chunks) != len(self._axes):
            return self._shape[3], self._shape[4]
        sizes = dict(zip(self._axes, chunks))
        return sizes["y"], sizes["x"]

    def _backend_array(self) -> Any:
        if self._data is None:
            self._data = self._store._open_backend(self._path, self._meta)
        return self._data

    def read(self, offset: Sequence[int], shape: Sequence[int]) -> np.ndarray:
        if len(offset) != 5 or len(shape) != 5:
            raise ValueError("offset and shape must both have 5 items (T, C, Z, Y, X)")
        selection = []
        for axis in self._axes:
            i = CANONICAL_AXES.index(axis)
            selection.append(slice(offset[i], offset[i] + shape[i]))
        for i, axis in enumerate(CANONICAL_AXES):
            if axis not in self._axes and (offset[i] != 0 or shape[i] != 1):
                raise ValueError(f"Array {self._path!r} has no {axis!r} axis to index")

        try:
            data = self._store._read_backend(self._backend_array(), tuple(selection))
        except (OSError, KeyError, RuntimeError, ValueError) as e:
            raise StoreIOError(
                f"Failed to read {tuple(shape)} block at {tuple(offset)} "
                f"from {self._path!r}: {e}"
            ) from e

        # reorder the stored axes to canonical order, then insert singletons
        present = [a for a in CANONICAL_AXES if a in self._axes]
        data = np.transpose(data, [self._axes.index(a) for a in present])
        return data.reshape(tuple(shape))

    def close(self) -> None:
        self._data = None

    def __repr__(self) -> str:
        return f"<ZarrArrayHandle {self._path!r} shape={self._shape} {self._dtype}>"


class ZarrStore:
    """A zarr v2/v3 hierarchy read through fsspec.

    Parameters
    ----------
    uri : str | os.PathLike
        Local path or URL of the dataset root (e.g. "s3://bucket/plate.zarr").
    backend : {"zarr", "tensorstore"}
        Library used to read chunk data.
    storage_options : dict, optional
        Passed to `fsspec.get_mapper`.
    """

    def __init__(
        self,
        uri: str | os.PathLike,
        *,
        backend: Literal["zarr", "tensorstore"] = "zarr",
        storage_options: Mapping[str, Any] | None = None,
    ) -> None:
        try:
            from fsspec import get_mapper
        except ImportError as e:  # pragma: no cover
            raise ImportError(
                "fsspec package is required for ZarrStore.  "
                "Please install with `pip install omezarr-pyramid[io]`."
            ) from e

        self._uri = os.path.expanduser(os.fspath(uri)).rstrip("/")
        self._backend = backend
        self._storage_options = dict(storage_options or {})
        self._mapper = _CachedMapper(get_mapper(self._uri, **self._storage_options))

        root = load_zarr_metadata(self._mapper)
        if root is None:
            raise NotFoundError(f"No zarr metadata found at {self._uri!r}")
        if root.node_type != "group":
            raise MetadataValidationError.single(
                MetadataErrorType.invalid_zarr_metadata,
                ("",),
                f"Expected root node to be 'group', got '{root.node_type}'",
            )
        self._root = root
        self._nodes: dict[str, ZarrMetadata] | None = None

    # ------------------------ hierarchy ------------------------

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def zarr_format(self) -> int:
        return self._root.zarr_format

    @property
    def protocol(self) -> str:
        protocol = self._mapper.fsmap.fs.protocol
        return protocol[0] if isinstance(protocol, tuple) else protocol

    def _full_path(self, path: str) -> str:
        root = self._mapper.fsmap.root.rstrip("/")
        return f"{root}/{path}" if path else root

    def _child_names(self, path: str, meta: ZarrMetadata) -> list[str]:
        if self.protocol in _LISTABLE_PROTOCOLS:
            entries = self._mapper.fsmap.fs.ls(self._full_path(path), detail=True)
            return sorted(
                posixpath.basename(e["name"].rstrip("/"))
                for e in entries
                if e.get("type") == "directory"
            )
        return _referenced_children(meta.attributes)

    def _metadata_keys(self, path: str) -> list[str]:
        prefix = f"{path}/" if path else ""
        if self.zarr_format == 3:
            return [f"{prefix}zarr.json"]
        return [f"{prefix}.zgroup", f"{prefix}.zarray", f"{prefix}.zattrs"]

    def _walk(self) -> dict[str, ZarrMetadata]:
        nodes: dict[str, ZarrMetadata] = {}

        def visit(path: str, meta: ZarrMetadata) -> None:
            nodes[path] = meta
            if meta.node_type != "group":
                return
            children = [
                posixpath.join(path, n) if path else n
                for n in self._child_names(path, meta)
            ]
            self._mapper.prefetch([k for c in children for k in self._metadata_keys(c)])
            for child in children:
                if child in nodes:
                    continue
                child_meta = load_zarr_metadata(self._mapper, child, self.zarr_format)
                if child_meta is not None:
                    visit(child, child_meta)

        visit("", self._root)
        logger.debug("Discovered %d zarr nodes below %s", len(nodes), self._uri)
        return nodes

    @property
    def nodes(self) -> Mapping[str, ZarrMetadata]:
        if self._nodes is None:
            self._nodes = self._walk()
        return self._nodes

    def list_array_paths(self) -> list[str]:
        return [p for p, m in self.nodes.items() if m.node_type == "array"]

    def list_group_paths(self) -> list[str]:
        return [p for p, m in self.nodes.items() if m.node_type == "group" and p]

    def get_attributes(self, path: str) -> Mapping[str, Any] | None:
        path = path.strip("/")
        meta = self.nodes.get(path)
        if meta is None:
            meta = load_zarr_metadata(self._mapper, path, self.zarr_format)
        return None if meta is None else meta.attributes

    # ------------------------ arrays ------------------------

    def _axis_names(self, path: str, meta: ZarrMetadata) -> list[str] | None:
        if names := meta.dimension_names:
            return names
        parent, name = posixpath.split(path)
        parent_attrs = self.get_attributes(parent) or {}
        multiscales = parent_attrs.get("ome", parent_attrs).get("multiscales")
        if not isinstance(multiscales, list):
            return None
        for ms in multiscales:
            if not isinstance(ms, dict):
                continue
            datasets = ms.get("datasets") or ()
            if any(isinstance(d, dict) and d.get("path") == name for d in datasets):
                axes = ms.get("axes")
                if isinstance(axes, list):
                    return [
                        a if isinstance(a, str) else str(a.get("name", ""))
                        for a in axes
                    ]
        return None

    def open(self, path: str) -> ZarrArrayHandle:
        path = path.strip("/")
        try:
            meta = self.nodes.get(path) or load_zarr_metadata(
                self._mapper, path, self.zarr_format
            )
        except MetadataValidationError:
            raise
        except (OSError, ValueError) as e:
            raise StoreIOError(f"Failed to read metadata of {path!r}: {e}") from e
        if meta is None:
            raise NotFoundError(f"No array at {path!r} in {self._uri}")
        if meta.node_type != "array":
            raise NotFoundError(f"{path!r} in {self._uri} is a group, not an array")

        shape = meta.shape or ()
        if not 2 <= len(shape) <= 5:
            raise MetadataValidationError.single(
                MetadataErrorType.unsupported_shape,
                (path,),
                f"Array {path!r} must have 2 to 5 dimensions, got shape {shape}",
                ctx={"expected": "2 to 5 dimensions", "found": len(shape)},
            )
        try:
            meta.numpy_dtype()
        except (TypeError, ValueError) as e:
            raise MetadataValidationError.single(
                MetadataErrorType.unsupported_dtype,
                (path,),
                f"Array {path!r} has an unsupported data type: {e}",
                ctx={"found": str(meta.data_type)},
            ) from e
        axes = canonical_axes(self._axis_names(path, meta), len(shape))
        return ZarrArrayHandle(self, path, meta, axes)

    def _open_backend(self, path: str, meta: ZarrMetadata) -> Any:
        if self._backend == "tensorstore":
            return self._open_tensorstore(path, meta)
        return self._open_zarr_python(path)

    def _open_zarr_python(self, path: str) -> Any:
        try:
            import zarr
        except ImportError as e:
            raise ImportError(
                "zarr package is required to read chunk data with backend='zarr'"
            ) from e

        if self.protocol in ("file", "local"):
            return zarr.open_array(os.path.join(self._full_path(""), path), mode="r")
        url = self._mapper.fsmap.fs.unstrip_protocol(self._full_path(path))
        return zarr.open_array(url, mode="r", storage_options=self._storage_options)

    def _open_tensorstore(self, path: str, meta: ZarrMetadata) -> Any:
        try:
            import tensorstore as ts
        except ImportError as e:
            raise ImportError(
                "tensorstore package is required to read chunk data with "
                "backend='tensorstore'"
            ) from e

        spec = {
            "driver": "zarr3" if meta.zarr_format == 3 else "zarr",
            "kvstore": _fsmap_to_tensorstore_kvstore(self._mapper.fsmap, path),
        }
        return ts.open(spec, read=True).result()

    def _read_backend(self, array: Any, selection: tuple[slice, ...]) -> np.ndarray:
        if self._backend == "tensorstore":
            return np.asarray(array[selection].read().result())
        return np.asarray(array[selection])

    # ------------------------ bookkeeping ------------------------

    def used_files(self) -> list[str]:
        """Every file below the dataset root."""
        fs = self._mapper.fsmap.fs
        root = self._full_path("")
        if self.protocol not in _LISTABLE_PROTOCOLS:
            return [self._uri]
        return [root, *sorted(fs.find(root))]

    def close(self) -> None:
        self._nodes = None

    def __repr__(self) -> str:
        return f"<ZarrStore {self._uri} (zarr v{self.zarr_format})>"


def _referenced_children(attrs: Mapping[str, Any]) -> list[str]:
    """Child node names referenced by OME metadata.

    Used on filesystems that cannot list directories (e.g. plain HTTP).
    """
    ome = attrs.get("ome", attrs)
    if not isinstance(ome, Mapping):
        return []
    names: list[str] = []
    for ms in ome.get("multiscales") or ():
        names.extend(d.get("path", "") for d in ms.get("datasets") or ())
    names.extend(w.get("path", "") for w in (ome.get("plate") or {}).get("wells") or ())
    names.extend(i.get("path", "") for i in (ome.get("well") or {}).get("images") or ())
    names.extend(ome.get("labels") or ())
    # bioformats2raw layout: numbered series below the root
    if "bioformats2raw.layout" in ome:
        names.extend(str(s) for s in ome.get("series") or ())
    if ome.get("multiscales"):
        names.append("labels")
    return [n for n in dict.fromkeys(names) if n]


def _fsmap_to_tensorstore_kvstore(fsmap: FSMap, path: str = "") -> dict:
    """Convert FSMap to tensorstore kvstore spec."""
    protocol = fsmap.fs.protocol
    if isinstance(protocol, tuple):
        protocol = protocol[0]

    path = path.strip("/")
    if protocol in ("file", "local"):
        base_path = os.path.abspath(fsmap.root)
        if path:
            base_path = os.path.join(base_path, path)
        return {"driver": "file", "path": base_path}

    if protocol in ("http", "https"):
        base_url = fsmap.root
        if not base_url.startswith(("http://", "https://")):
            base_url = f"{protocol}://{base_url}"
        if path:
            base_url = f"{base_url.rstrip('/')}/{path}"
        return {"driver": "http", "base_url": base_url}

    if protocol in ("s3", "s3a", "gcs", "gs"):  # pragma: no cover
        bucket, _, base_path = fsmap.root.partition("/")
        if path:
            base_path = f"{base_path}/{path}" if base_path else path
        driver = "s3" if protocol.startswith("s3") else "gcs"
        spec: dict[str, Any] = {"driver": driver, "bucket": bucket}
        if base_path:
            spec["path"] = base_path
        return spec

    raise ValueError(
        f"Cannot map fsspec protocol '{protocol}' to tensorstore kvstore. "
        f"Supported protocols: file, s3, gcs, http/https"
    )
