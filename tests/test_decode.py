from __future__ import annotations

import numpy as np
import pytest
from _helpers import FakeStore, ramp

from omezarr_pyramid import (
    NotFoundError,
    OMEZarrReader,
    PixelType,
    RegionBoundsError,
    StoreIOError,
    pack_plane,
)


def _reader(
    data: np.ndarray, **store_kwargs: object
) -> tuple[OMEZarrReader, FakeStore]:
    store = FakeStore({"img": data}, **store_kwargs)  # type: ignore[arg-type]
    return OMEZarrReader(store), store


@pytest.mark.parametrize(
    ("x", "y", "w", "h"), [(0, 0, 16, 12), (3, 5, 7, 4), (15, 11, 1, 1)]
)
def test_uint16_little_endian_region(x: int, y: int, w: int, h: int) -> None:
    data = ramp(12, 16)
    reader, _ = _reader(data)
    buf = reader.open_bytes(0, x, y, w, h)
    assert len(buf) == 2 * w * h
    decoded = np.frombuffer(buf, dtype="<u2").reshape(h, w)
    rows, cols = np.mgrid[y : y + h, x : x + w]
    np.testing.assert_array_equal(decoded, rows * 16 + cols)


def test_big_endian_output() -> None:
    data = ramp(4, 4)
    reader, _ = _reader(data, little_endian={"img": False})
    assert not reader.core().little_endian
    assert reader.open_bytes(0) == data.astype(">u2").tobytes()
    np.testing.assert_array_equal(reader.open_plane(0), data)


def test_float_bit_patterns_are_preserved() -> None:
    bits = np.array([0x7FC00001, 0x80000000, 0x7F800000, 0x3FC00000], dtype=np.uint32)
    data = bits.view(np.float32).reshape(2, 2)
    reader, _ = _reader(data)
    assert reader.core().pixel_type is PixelType.FLOAT
    out = np.frombuffer(reader.open_bytes(0), dtype="<u4")
    np.testing.assert_array_equal(out, bits)


def test_double_signed_zero() -> None:
    data = np.array([[-0.0, 1e300]], dtype=np.float64)
    reader, _ = _reader(data)
    out = reader.open_bytes(0)
    assert out == data.astype("<f8").tobytes()
    assert np.signbit(np.frombuffer(out, dtype="<f8")[0])


def test_signed_integers_are_twos_complement() -> None:
    data = np.array([[-1, -32768, 32767]], dtype=np.int16)
    reader, _ = _reader(data)
    assert reader.open_bytes(0) == b"\xff\xff\x00\x80\xff\x7f"


def test_boundary_region() -> None:
    reader, store = _reader(ramp(12, 16))
    before = store.calls
    reader.open_bytes(0, 8, 4, 8, 8)
    assert store.calls > before

    before = store.calls
    with pytest.raises(RegionBoundsError):
        reader.open_bytes(0, 9, 4, 8, 8)
    with pytest.raises(RegionBoundsError):
        reader.open_bytes(0, 0, 5, 16, 8)
    assert store.calls == before


def test_out_of_bounds_makes_no_store_calls() -> None:
    reader, store = _reader(ramp(4, 4))
    before = store.calls
    for args in [(1,), (0, -1), (0, 0, -1), (0, 0, 0, 5), (0, 0, 0, -1, 1)]:
        with pytest.raises(RegionBoundsError):
            reader.open_bytes(*args)
    assert store.calls == before
    assert store.reads == []


def test_plane_out_of_range_is_a_bounds_error(pyramid_store: FakeStore) -> None:
    reader = OMEZarrReader(pyramid_store)
    before = pyramid_store.calls
    with pytest.raises(RegionBoundsError, match="Plane index 2") as e:
        reader.open_bytes(2, 0, 0, 1, 1)
    assert not isinstance(e.value, NotFoundError)
    assert pyramid_store.calls == before


def test_plane_index_selects_channel(pyramid_store: FakeStore) -> None:
    reader = OMEZarrReader(pyramid_store)
    assert reader.core().image_count == 2
    np.testing.assert_array_equal(reader.open_plane(1, 0, 0, 4, 1), [[1, 2, 3, 4]])
    assert pyramid_store.reads[-1] == ("0", (0, 1, 0, 0, 0), (1, 1, 1, 1, 4))


def test_output_buffer() -> None:
    data = ramp(4, 4)
    reader, _ = _reader(data)
    buf = bytearray(40)
    result = reader.open_bytes(0, out=buf)
    assert result is buf
    assert bytes(buf[:32]) == data.astype("<u2").tobytes()
    assert bytes(buf[32:]) == bytes(8)

    with pytest.raises(RegionBoundsError, match="Output buffer"):
        reader.open_bytes(0, out=bytearray(31))


def test_empty_region() -> None:
    reader, store = _reader(ramp(4, 4))
    before = store.calls
    assert reader.open_bytes(0, 4, 4, 0, 0) == b""
    assert store.calls == before


def test_read_failure_is_a_store_error() -> None:
    reader, store = _reader(ramp(4, 4))
    store.fail_read.add("img")
    with pytest.raises(StoreIOError, match="plane 0") as e:
        reader.open_bytes(0)
    assert isinstance(e.value.__cause__, OSError)


def test_pack_plane() -> None:
    arr = np.array([[1, 256]], dtype="<u2")
    assert pack_plane(arr, PixelType.UINT16, little_endian=False) == b"\x00\x01\x01\x00"
    with pytest.raises(TypeError, match="Cannot pack"):
        pack_plane(arr, PixelType.FLOAT, little_endian=True)
