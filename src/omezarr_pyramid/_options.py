from __future__ import annotations

import os
from typing import Any, ClassVar, Literal

from pydantic import ConfigDict, Field

from ._base import _FrozenModel
from ._util import env_flag

__all__ = ["ReaderOptions"]

Backend = Literal["zarr", "tensorstore"]


def _default_backend() -> str:
    return os.getenv("OMEZARR_PYRAMID_BACKEND", "zarr").strip().lower() or "zarr"


class ReaderOptions(_FrozenModel):
    """Options controlling how a dataset is opened.

    Defaults for `flatten_resolutions` and `backend` can be set with the
    `OMEZARR_PYRAMID_FLATTEN` and `OMEZARR_PYRAMID_BACKEND` environment variables.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    flatten_resolutions: bool = Field(
        default_factory=lambda: env_flag("OMEZARR_PYRAMID_FLATTEN"),
        description="Expose every resolution level as its own series.",
    )
    backend: Backend = Field(
        default_factory=_default_backend,  # type: ignore[arg-type]
        description="Library used to read chunk data.",
    )
    storage_options: dict[str, Any] = Field(
        default_factory=dict,
        description="Keyword arguments forwarded to `fsspec.get_mapper`.",
    )
    annotate_attributes: bool = Field(
        default=True,
        description="Record every attribute dictionary as a JSON annotation.",
    )
