import string
from typing import Annotated

from annotated_types import MinLen
from pydantic import AliasChoices, Field, NonNegativeInt, PositiveInt, field_validator

from ._base import _BaseModel
from ._types import UniqueList

__all__ = [  # noqa: RUF022  (don't resort, this is used for docs ordering)
    "PlateDef",
    # PlateDef
    "Column",
    "Row",
    "PlateWell",
    "Acquisition",
    # Well and its dependencies
    "WellDef",
    "FieldOfView",
    "label_to_index",
]

ALPHABET = string.ascii_uppercase


def label_to_index(label: str | int) -> int:
    """Convert a row or column label to a zero-based index.

    A label is first matched against the 26 letter alphabet (case-insensitive),
    so "A" -> 0 and "c" -> 2.  Anything else must parse as a non-negative
    integer, which is returned unchanged.

    Raises
    ------
    ValueError
        If the label is neither a single letter nor an integer.
    """
    if isinstance(label, int) and not isinstance(label, bool):
        if label < 0:
            raise ValueError(f"Row/column index must be non-negative, got {label}")
        return label
    text = str(label).strip()
    if len(text) == 1 and text.upper() in ALPHABET:
        return ALPHABET.index(text.upper())
    try:
        value = int(text)
    except ValueError:
        raise ValueError(
            f"Row/column label {label!r} is neither a letter A-Z nor an integer"
        ) from None
    if value < 0:
        raise ValueError(f"Row/column index must be non-negative, got {value}")
    return value


# ------------------------------------------------------------------------------
# Acquisition model
# ------------------------------------------------------------------------------


class Acquisition(_BaseModel):
    """An imaging acquisition run within a plate."""

    id: NonNegativeInt = Field(
        description="Unique identifier within the plate for this acquisition",
    )
    maximumfieldcount: PositiveInt | None = None
    name: str | None = None
    description: str | None = None
    starttime: NonNegativeInt | None = None
    endtime: NonNegativeInt | None = None


# ------------------------------------------------------------------------------
# Row / Column models
# ------------------------------------------------------------------------------


class Column(_BaseModel):
    name: str = Field(description="Column identifier (typically numeric)")


class Row(_BaseModel):
    name: str = Field(description="Row identifier (typically alphabetic)")


# ------------------------------------------------------------------------------
# Well reference model
# ------------------------------------------------------------------------------


def _blank_to_none(v: int | str | None) -> int | str | None:
    if isinstance(v, str) and not v.strip():
        return None
    return v


# naming this PlateWell to disambiguate from a top level Well
class PlateWell(_BaseModel):
    """A well location reference within a plate.

    The row and column may be declared as integer indices, as labels ("B",
    "03"), or omitted, in which case they are taken from the well path.
    """

    path: str = Field(
        min_length=1,
        description="Relative path to the well's group (usually 'row/column')",
    )
    rowIndex: int | str | None = Field(
        default=None,
        validation_alias=AliasChoices("rowIndex", "row_index"),
    )
    columnIndex: int | str | None = Field(
        default=None,
        validation_alias=AliasChoices("columnIndex", "column_index"),
    )

    @field_validator("rowIndex", "columnIndex", mode="after")
    @classmethod
    def _normalize_blank(cls, v: int | str | None) -> int | str | None:
        return _blank_to_none(v)

    @property
    def path_labels(self) -> tuple[str, str] | None:
        """The (row, column) labels taken from the last two path segments."""
        parts = [p for p in self.path.split("/") if p]
        if len(parts) < 2:
            return None
        return parts[-2], parts[-1]


# ------------------------------------------------------------------------------
# Plate model
# ------------------------------------------------------------------------------


class PlateDef(_BaseModel):
    wells: Annotated[UniqueList[PlateWell], MinLen(1)] = Field(
        description="The wells of the plate"
    )
    columns: list[Column] | None = None
    rows: list[Row] | None = None
    acquisitions: list[Acquisition] | None = None
    field_count: PositiveInt | None = Field(
        default=None,
        description="The maximum number of fields per view across all wells",
    )
    name: str | None = None
    version: str | None = None

    @field_validator("acquisitions", mode="after")
    @classmethod
    def _unique_acquisition_ids(
        cls, v: list[Acquisition] | None
    ) -> list[Acquisition] | None:
        if v is not None:
            ids = [a.id for a in v]
            if len(set(ids)) != len(ids):
                raise ValueError(f"Acquisition ids must be unique, got {ids}")
        return v

    @property
    def row_names(self) -> list[str]:
        return [r.name for r in self.rows or ()]

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns or ()]


# ------------------------------------------------------------------------------
# Well models
# ------------------------------------------------------------------------------


class FieldOfView(_BaseModel):
    path: str = Field(
        min_length=1,
        description="The path for this field of view subgroup, relative to the well",
    )
    acquisition: int | None = Field(
        default=None,
        description="The id of the acquisition this field belongs to",
    )


class WellDef(_BaseModel):
    images: Annotated[UniqueList[FieldOfView], MinLen(1)] = Field(
        description="The fields of view for this well",
    )
    version: str | None = None
