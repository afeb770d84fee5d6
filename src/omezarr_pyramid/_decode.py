"""Read rectangular regions of one plane into packed pixel bytes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from ._errors import RegionBoundsError, StoreIOError

if TYPE_CHECKING:
    from ._binding import SeriesBinding
    from ._index import DatasetIndex
    from ._pixel import CoreDimensions, PixelType

__all__ = ["RegionDecoder", "pack_plane"]

logger = logging.getLogger(__name__)


def pack_plane(arr: np.ndarray, pixel_type: PixelType, little_endian: bool) -> bytes:
    """Pack a 2D block row-major into bytes of `pixel_type` in the given order.

    Floating point values keep their exact bit patterns (NaN payloads, signed
    zero); integers are reinterpreted without any range conversion.
    """
    dtype = pixel_type.to_dtype(little_endian)
    if arr.dtype.kind != dtype.kind or arr.dtype.itemsize != dtype.itemsize:
        raise TypeError(f"Cannot pack {arr.dtype} data as {pixel_type.value}")
    return np.ascontiguousarray(arr, dtype=dtype).tobytes()


def check_region(
    core: CoreDimensions, no: int, x: int, y: int, width: int, height: int
) -> None:
    """Raise `RegionBoundsError` unless the region lies inside one plane."""
    if not 0 <= no < core.image_count:
        raise RegionBoundsError(
            f"Plane index {no} out of range [0, {core.image_count})"
        )
    if width < 0 or height < 0:
        raise RegionBoundsError(f"Negative region size {width}x{height}")
    if x < 0 or y < 0 or x + width > core.size_x or y + height > core.size_y:
        raise RegionBoundsError(
            f"Region x={x}, y={y}, width={width}, height={height} exceeds the "
            f"plane extent {core.size_x}x{core.size_y}"
        )


class RegionDecoder:
    """Decode plane regions of the series/resolution selected on a binding."""

    def __init__(self, index: DatasetIndex, binding: SeriesBinding) -> None:
        self._index = index
        self._binding = binding

    def decode(
        self,
        series: int,
        level: int,
        no: int,
        x: int,
        y: int,
        width: int,
        height: int,
        out: bytearray | memoryview | None = None,
    ) -> bytes | bytearray | memoryview:
        """Return `width * height` pixels of plane `no`, starting at (x, y).

        Parameters
        ----------
        series, level : int
            The series and resolution to read from.
        no : int
            Plane index, decomposed with the series dimension order.
        x, y, width, height : int
            The region, which must lie entirely inside the plane.
        out : bytearray | memoryview, optional
            Destination buffer.  It must hold at least
            `width * height * bytes_per_pixel` bytes; the packed pixels are
            written to its start and `out` is returned.

        Raises
        ------
        RegionBoundsError
            Before any store access, if the region or plane is out of range, or
            `out` is too small.
        StoreIOError
            If the store fails to serve the block.
        """
        core = self._index.resolution(series, level).dimensions
        check_region(core, no, x, y, width, height)
        n_bytes = width * height * core.bytes_per_pixel
        if out is not None and len(out) < n_bytes:
            raise RegionBoundsError(
                f"Output buffer holds {len(out)} bytes, {n_bytes} are needed"
            )
        if n_bytes == 0:
            return b"" if out is None else out

        z, c, t = core.zct_coords(no)
        handle = self._binding.ensure(series, level)
        try:
            block = handle.read((t, c, z, y, x), (1, 1, 1, height, width))
        except (StoreIOError, RegionBoundsError):
            raise
        except (OSError, KeyError, ValueError) as e:
            raise StoreIOError(
                f"Failed to read plane {no} of {handle.path!r}: {e}"
            ) from e
        data = pack_plane(
            np.asarray(block).reshape(height, width),
            core.pixel_type,
            core.little_endian,
        )
        logger.debug(
            "Read %dx%d region at (%d, %d) of plane %d from %r",
            width,
            height,
            x,
            y,
            no,
            handle.path,
        )
        if out is None:
            return data
        memoryview(out)[:n_bytes] = data
        return out
