"""Interfaces consumed from the chunked array store.

The reader never touches chunk files itself.  Anything that can enumerate a
hierarchy of groups and arrays, return their attribute dictionaries, and serve
rectangular sub-blocks can back a dataset.  `ZarrStore` is the fsspec/zarr
implementation shipped with this package.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    import numpy as np

__all__ = ["ArrayHandle", "ArrayStore", "Shape5"]

Shape5 = tuple[int, int, int, int, int]
"""Five integers in (T, C, Z, Y, X) order."""


@runtime_checkable
class ArrayHandle(Protocol):
    """An open chunked array, viewed as a (T, C, Z, Y, X) volume."""

    @property
    def path(self) -> str: ...

    @property
    def shape(self) -> Shape5: ...

    @property
    def dtype(self) -> np.dtype: ...

    @property
    def little_endian(self) -> bool: ...

    @property
    def chunk_shape(self) -> tuple[int, int]:
        """(chunk height, chunk width): the natural tile size."""
        ...

    def read(self, offset: Sequence[int], shape: Sequence[int]) -> np.ndarray:
        """Read the block starting at `offset` with extent `shape` (both 5-tuples).

        Returns an array of exactly `shape`, with `dtype`.  Blocks synchronously
        until every chunk has been fetched, or raises.
        """
        ...

    def close(self) -> None: ...


@runtime_checkable
class ArrayStore(Protocol):
    """A hierarchical collection of named groups and arrays."""

    def list_array_paths(self) -> list[str]:
        """All array paths below the root, relative and '/'-separated."""
        ...

    def list_group_paths(self) -> list[str]:
        """All group paths below the root, excluding the root itself."""
        ...

    def get_attributes(self, path: str) -> Mapping[str, Any] | None:
        """The attribute dictionary of the node at `path` ("" is the root)."""
        ...

    def open(self, path: str) -> ArrayHandle:
        """Open the array at `path`.  Opening never affects other open handles."""
        ...

    def used_files(self) -> list[str]: ...

    def close(self) -> None: ...
