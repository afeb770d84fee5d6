"""Shared fixtures: in-memory array stores that record every store call."""

from __future__ import annotations

from typing import Callable

import numpy as np
import pytest
from _helpers import FakeStore, multiscale, ramp


@pytest.fixture
def make_store() -> Callable[..., FakeStore]:
    return FakeStore


@pytest.fixture
def pyramid_store() -> FakeStore:
    """Root multiscale with three levels, listed coarsest first."""
    arrays = {
        "2": ramp(8, 8),
        "1": ramp(16, 16),
        "0": np.stack([ramp(32, 32), ramp(32, 32) + 1]).reshape(1, 2, 1, 32, 32),
    }
    return FakeStore(arrays, {"": multiscale("0", "1", "2")})


def _image_attrs(n_levels: int = 1) -> dict:
    return multiscale(*(str(i) for i in range(n_levels)))


@pytest.fixture
def plate_store() -> FakeStore:
    """2 wells (A/1 and B/2), one field each, two acquisitions."""
    attrs: dict[str, dict] = {
        "": {
            "plate": {
                "name": "test plate",
                "field_count": 1,
                "rows": [{"name": "A"}, {"name": "B"}],
                "columns": [{"name": "1"}, {"name": "2"}],
                "acquisitions": [{"id": 0, "name": "first"}, {"id": 1}],
                "wells": [{"path": "A/1"}, {"path": "B/2"}],
            }
        },
        "A": {},
        "A/1": {"well": {"images": [{"path": "0", "acquisition": 0}]}},
        "A/1/0": _image_attrs(2),
        "B": {},
        "B/2": {"well": {"images": [{"path": "0", "acquisition": 1}]}},
        "B/2/0": _image_attrs(2),
    }
    arrays = {
        "A/1/0/0": ramp(16, 16),
        "A/1/0/1": ramp(8, 8),
        "B/2/0/0": ramp(16, 16) + 1000,
        "B/2/0/1": ramp(8, 8) + 1000,
    }
    return FakeStore(arrays, attrs)
