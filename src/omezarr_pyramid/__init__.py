"""Read OME-Zarr datasets as pyramids of image series."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("omezarr-pyramid")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "uninstalled"

from ._binding import SeriesBinding
from ._decode import RegionDecoder, pack_plane
from ._errors import (
    ErrorDetails,
    MetadataErrorType,
    MetadataValidationError,
    MetadataWarning,
    NotFoundError,
    RegionBoundsError,
    StoreIOError,
)
from ._hcs import PlateRecord, WellRecord, WellSampleRecord, build_plate
from ._index import DatasetIndex, Resolution, Series, resolve_series
from ._json import JsonValue
from ._metadata import DatasetMetadata, MetadataSink
from ._options import ReaderOptions
from ._parse import GroupMetadata, parse_attributes
from ._pixel import CoreDimensions, PixelType
from ._plate import label_to_index
from ._reader import OMEZarrReader, open_dataset
from ._store import ArrayHandle, ArrayStore
from ._util import find_dataset_root, is_zarr_path
from ._zarr import ZarrStore

__all__ = [
    "ArrayHandle",
    "ArrayStore",
    "CoreDimensions",
    "DatasetIndex",
    "DatasetMetadata",
    "ErrorDetails",
    "GroupMetadata",
    "JsonValue",
    "MetadataErrorType",
    "MetadataSink",
    "MetadataValidationError",
    "MetadataWarning",
    "NotFoundError",
    "OMEZarrReader",
    "PixelType",
    "PlateRecord",
    "ReaderOptions",
    "RegionBoundsError",
    "RegionDecoder",
    "Resolution",
    "Series",
    "SeriesBinding",
    "StoreIOError",
    "WellRecord",
    "WellSampleRecord",
    "ZarrStore",
    "build_plate",
    "find_dataset_root",
    "is_zarr_path",
    "label_to_index",
    "open_dataset",
    "pack_plane",
    "parse_attributes",
    "resolve_series",
]
