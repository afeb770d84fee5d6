from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal, TypeAlias

import numpy as np

from ._errors import RegionBoundsError

__all__ = ["DIMENSION_ORDERS", "CoreDimensions", "DimensionOrder", "PixelType"]

DimensionOrder: TypeAlias = Literal[
    "XYZCT", "XYZTC", "XYCZT", "XYCTZ", "XYTZC", "XYTCZ"
]
DIMENSION_ORDERS: tuple[str, ...] = (
    "XYZCT",
    "XYZTC",
    "XYCZT",
    "XYCTZ",
    "XYTZC",
    "XYTCZ",
)


class PixelType(Enum):
    """Numeric kind of a pixel, with its width in bytes."""

    INT8 = "int8"
    UINT8 = "uint8"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    UINT32 = "uint32"
    FLOAT = "float"
    DOUBLE = "double"
    BIT = "bit"

    @property
    def bytes_per_pixel(self) -> int:
        return _BYTES[self]

    @property
    def is_floating_point(self) -> bool:
        return self in (PixelType.FLOAT, PixelType.DOUBLE)

    @property
    def is_signed(self) -> bool:
        return self in (
            PixelType.INT8,
            PixelType.INT16,
            PixelType.INT32,
            PixelType.FLOAT,
            PixelType.DOUBLE,
        )

    def to_dtype(self, little_endian: bool = True) -> np.dtype:
        """The numpy dtype holding this pixel type in the given byte order."""
        dt = np.dtype(_NUMPY[self])
        if dt.itemsize == 1:
            return dt
        return dt.newbyteorder("<" if little_endian else ">")

    @classmethod
    def from_dtype(cls, dtype: np.dtype | str) -> PixelType:
        """Map a numpy dtype to a pixel type.

        Raises
        ------
        TypeError
            If the dtype has no pixel type equivalent (e.g. int64, complex).
        """
        dt = np.dtype(dtype)
        key = (dt.kind, dt.itemsize)
        if key not in _FROM_NUMPY:
            raise TypeError(f"Unsupported array dtype for pixel data: {dt}")
        return _FROM_NUMPY[key]


_BYTES = {
    PixelType.INT8: 1,
    PixelType.UINT8: 1,
    PixelType.INT16: 2,
    PixelType.UINT16: 2,
    PixelType.INT32: 4,
    PixelType.UINT32: 4,
    PixelType.FLOAT: 4,
    PixelType.DOUBLE: 8,
    PixelType.BIT: 1,
}
_NUMPY = {
    PixelType.INT8: "i1",
    PixelType.UINT8: "u1",
    PixelType.INT16: "i2",
    PixelType.UINT16: "u2",
    PixelType.INT32: "i4",
    PixelType.UINT32: "u4",
    PixelType.FLOAT: "f4",
    PixelType.DOUBLE: "f8",
    PixelType.BIT: "?",
}
_FROM_NUMPY = {(np.dtype(v).kind, np.dtype(v).itemsize): k for k, v in _NUMPY.items()}


@dataclass(frozen=True, slots=True)
class CoreDimensions:
    """Dimensions and pixel layout of one series/resolution entry."""

    size_x: int
    size_y: int
    size_z: int
    size_c: int
    size_t: int
    pixel_type: PixelType
    little_endian: bool
    dimension_order: str = "XYCZT"
    resolution_count: int = 1

    def __post_init__(self) -> None:
        sizes = (self.size_x, self.size_y, self.size_z, self.size_c, self.size_t)
        if any(s < 0 for s in sizes):
            raise ValueError(f"Dimension sizes must be non-negative: {sizes}")
        if self.dimension_order not in DIMENSION_ORDERS:
            raise ValueError(f"Invalid dimension order {self.dimension_order!r}")

    @property
    def image_count(self) -> int:
        return self.size_z * self.size_c * self.size_t

    @property
    def bytes_per_pixel(self) -> int:
        return self.pixel_type.bytes_per_pixel

    @property
    def plane_size(self) -> int:
        """Bytes needed for one full plane."""
        return self.size_x * self.size_y * self.bytes_per_pixel

    @property
    def dtype(self) -> np.dtype:
        return self.pixel_type.to_dtype(self.little_endian)

    def _sizes(self) -> dict[str, int]:
        return {"Z": self.size_z, "C": self.size_c, "T": self.size_t}

    def zct_coords(self, no: int) -> tuple[int, int, int]:
        """Decompose a plane index into (z, c, t) following `dimension_order`.

        The first of the three non-spatial letters varies fastest.
        """
        if not 0 <= no < self.image_count:
            raise RegionBoundsError(
                f"Plane index {no} out of range [0, {self.image_count})"
            )
        sizes = self._sizes()
        coords: dict[str, int] = {}
        rest = no
        for axis in self.dimension_order[2:]:
            coords[axis] = rest % sizes[axis]
            rest //= sizes[axis]
        return coords["Z"], coords["C"], coords["T"]

    def index(self, z: int, c: int, t: int) -> int:
        """Inverse of `zct_coords`."""
        sizes = self._sizes()
        coords = {"Z": z, "C": c, "T": t}
        for axis, value in coords.items():
            if not 0 <= value < sizes[axis]:
                raise RegionBoundsError(
                    f"{axis} index {value} out of range [0, {sizes[axis]})"
                )
        no = 0
        for axis in reversed(self.dimension_order[2:]):
            no = no * sizes[axis] + coords[axis]
        return no
