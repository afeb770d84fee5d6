"""Which array a reader is currently decoding from."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ._errors import NotFoundError, StoreIOError

if TYPE_CHECKING:
    from ._index import DatasetIndex
    from ._store import ArrayHandle, ArrayStore

__all__ = ["Bound", "SeriesBinding"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Bound:
    """An open handle to the array backing one series/resolution."""

    series: int
    level: int
    handle: ArrayHandle


class SeriesBinding:
    """Binds at most one open array handle to a (series, resolution) pair.

    The binding is either unbound (`state is None`) or `Bound`.  Rebinding opens
    the new handle before releasing the old one, so a failed rebind leaves the
    previous binding in place.
    """

    def __init__(self, store: ArrayStore, index: DatasetIndex) -> None:
        self._store = store
        self._index = index
        self._state: Bound | None = None

    @property
    def state(self) -> Bound | None:
        return self._state

    @property
    def is_bound(self) -> bool:
        return self._state is not None

    def ensure(self, series: int, level: int = 0) -> ArrayHandle:
        """Return a handle bound to (`series`, `level`), opening it if needed.

        Calling this again with the same pair performs no store operations.

        Raises
        ------
        NotFoundError
            If the series or resolution does not exist, or the store has no
            array at the resolved path.
        StoreIOError
            If the store fails to open the array.
        """
        state = self._state
        if state is not None and (state.series, state.level) == (series, level):
            return state.handle

        path = self._index.resolution(series, level).array_path
        try:
            handle = self._store.open(path)
        except (NotFoundError, StoreIOError):
            raise
        except (OSError, KeyError) as e:
            raise StoreIOError(f"Failed to open array {path!r}: {e}") from e

        self._state = Bound(series, level, handle)
        if state is not None:
            state.handle.close()
        logger.debug("Bound series %d resolution %d to %r", series, level, path)
        return handle

    def release(self) -> None:
        """Close the bound handle, if any, and return to the unbound state."""
        state, self._state = self._state, None
        if state is not None:
            state.handle.close()
