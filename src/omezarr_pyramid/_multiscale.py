from typing import Annotated, Any

from annotated_types import MinLen
from pydantic import BeforeValidator, Field, model_validator
from typing_extensions import Self

from ._base import _BaseModel

__all__ = ["Axis", "Dataset", "Multiscale"]

# ------------------------------------------------------------------------------
# Axis model
# ------------------------------------------------------------------------------


def _axis_from_name(v: Any) -> Any:
    # v0.3 stores axes as a plain list of names
    if isinstance(v, str):
        return {"name": v}
    return v


class Axis(_BaseModel):
    name: str = Field(description="The name of the axis.")
    type: str | None = None  # SHOULD
    unit: str | None = None  # SHOULD


AxisEntry = Annotated[Axis, BeforeValidator(_axis_from_name)]

# ------------------------------------------------------------------------------
# Dataset model
# ------------------------------------------------------------------------------


class Dataset(_BaseModel):
    """One resolution level of a multiscale image."""

    path: str = Field(
        min_length=1,
        description=(
            "The path to the array for this resolution, "
            "relative to the current zarr group."
        ),
    )
    coordinateTransformations: list[dict[str, Any]] | None = Field(
        default=None,
        description="Transformations for this level, kept for the metadata sink.",
    )


# ------------------------------------------------------------------------------
# Multiscale model
# ------------------------------------------------------------------------------


class Multiscale(_BaseModel):
    """A multiscale representation of an image.

    `datasets` order is resolution order: index 0 is full detail, the last entry
    is the coarsest level.
    """

    name: str | None = None
    version: str | None = None
    axes: list[AxisEntry] | None = Field(
        default=None, description="The axes of the image."
    )
    datasets: Annotated[list[Dataset], MinLen(1)] = Field(
        description="The arrays storing the individual resolution levels"
    )
    type: str | None = Field(
        default=None,
        description=(
            "Type of downscaling method used to generate the multiscale image pyramid."
        ),
    )
    metadata: dict | None = None

    @model_validator(mode="after")
    def _check_unique_paths(self) -> Self:
        seen: set[str] = set()
        for ds in self.datasets:
            if ds.path in seen:
                raise ValueError(f"Dataset path {ds.path!r} is listed more than once")
            seen.add(ds.path)
        return self

    @property
    def paths(self) -> list[str]:
        return [ds.path for ds in self.datasets]

    @property
    def axis_names(self) -> list[str] | None:
        if self.axes is None:
            return None
        return [ax.name for ax in self.axes]
