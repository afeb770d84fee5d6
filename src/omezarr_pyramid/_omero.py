from typing import ClassVar

from pydantic import ConfigDict

from ._base import _BaseModel

__all__ = ["Omero", "OmeroChannel", "OmeroRenderingDefs", "OmeroWindow"]


class OmeroWindow(_BaseModel):
    start: float | None = None
    min: float | None = None
    end: float | None = None
    max: float | None = None


class OmeroChannel(_BaseModel):
    window: OmeroWindow | None = None
    label: str | None = None
    family: str | None = None
    color: str | None = None
    active: bool | None = None
    inverted: bool | None = None
    coefficient: float | None = None


class OmeroRenderingDefs(_BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow")

    model: str | None = None
    defaultT: int | None = None
    defaultZ: int | None = None
    projection: str | None = None


class Omero(_BaseModel):
    """Per-channel rendering hints (the transitional `omero` block).

    Extra fields are allowed to accommodate the many variants found in the wild.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow")

    channels: list[OmeroChannel] = []
    id: int | None = None
    name: str | None = None
    version: str | None = None
    rdefs: OmeroRenderingDefs | None = None
