from __future__ import annotations

import pytest
from _helpers import FakeStore

from omezarr_pyramid import (
    DatasetIndex,
    NotFoundError,
    OMEZarrReader,
    SeriesBinding,
    StoreIOError,
    parse_attributes,
    resolve_series,
)


@pytest.fixture
def binding(pyramid_store: FakeStore) -> SeriesBinding:
    groups = [parse_attributes("", pyramid_store.attrs[""])]
    series = resolve_series(pyramid_store.list_array_paths(), groups)
    return SeriesBinding(pyramid_store, DatasetIndex(series, groups))


def test_starts_unbound(binding: SeriesBinding, pyramid_store: FakeStore) -> None:
    assert binding.state is None
    assert not binding.is_bound
    assert pyramid_store.opens == []


def test_ensure_is_idempotent(binding: SeriesBinding, pyramid_store: FakeStore) -> None:
    h1 = binding.ensure(0, 0)
    h2 = binding.ensure(0, 0)
    assert h1 is h2
    assert pyramid_store.opens == ["0"]
    assert binding.state is not None
    assert (binding.state.series, binding.state.level) == (0, 0)


def test_rebind_closes_previous(
    binding: SeriesBinding, pyramid_store: FakeStore
) -> None:
    first = binding.ensure(0, 0)
    second = binding.ensure(0, 2)
    assert first.closed  # type: ignore[attr-defined]
    assert not second.closed  # type: ignore[attr-defined]
    assert second.path == "2"
    assert pyramid_store.opens == ["0", "2"]


def test_failed_rebind_keeps_previous(
    binding: SeriesBinding, pyramid_store: FakeStore
) -> None:
    first = binding.ensure(0, 0)
    pyramid_store.fail_open.add("1")
    with pytest.raises(StoreIOError):
        binding.ensure(0, 1)
    assert binding.state is not None
    assert binding.state.handle is first
    assert not first.closed  # type: ignore[attr-defined]

    with pytest.raises(NotFoundError):
        binding.ensure(0, 3)
    with pytest.raises(NotFoundError):
        binding.ensure(1, 0)
    assert binding.state.handle is first


def test_unexpected_open_error_is_wrapped(
    binding: SeriesBinding,
    pyramid_store: FakeStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_open(path: str) -> None:
        raise KeyError(path)

    monkeypatch.setattr(pyramid_store, "open", broken_open)
    with pytest.raises(StoreIOError) as e:
        binding.ensure(0, 0)
    assert isinstance(e.value.__cause__, KeyError)


def test_release(binding: SeriesBinding) -> None:
    handle = binding.ensure(0, 1)
    binding.release()
    assert binding.state is None
    assert handle.closed  # type: ignore[attr-defined]
    binding.release()


def test_repeated_set_series_does_not_reopen(pyramid_store: FakeStore) -> None:
    reader = OMEZarrReader(pyramid_store)
    init_opens = len(pyramid_store.opens)

    reader.set_series(0)
    first = reader.open_bytes(0, 0, 0, 8, 8)
    reader.set_series(0)
    reader.set_series(0)
    second = reader.open_bytes(0, 0, 0, 8, 8)

    assert first == second
    assert len(pyramid_store.opens) == init_opens + 1


def test_reader_failed_rebind_surfaces_error(pyramid_store: FakeStore) -> None:
    reader = OMEZarrReader(pyramid_store)
    reader.open_bytes(0, 0, 0, 2, 2)
    opens = len(pyramid_store.opens)

    pyramid_store.fail_open.add("1")
    reader.set_resolution(1)
    with pytest.raises(StoreIOError):
        reader.open_bytes(0, 0, 0, 2, 2)

    # the full-resolution binding is still valid
    reader.set_resolution(0)
    reader.open_bytes(0, 0, 0, 2, 2)
    assert len(pyramid_store.opens) == opens
