from typing import Annotated, Any, ClassVar

from annotated_types import Interval, Len
from pydantic import AliasChoices, ConfigDict, Field

from ._base import _BaseModel

__all__ = ["ImageLabel", "LabelColor", "LabelProperty", "LabelSource", "LabelsGroup"]

Int8bit = Annotated[int, Interval(ge=0, le=255)]


class LabelColor(_BaseModel):
    """Display color for one label value."""

    label_value: float = Field(alias="label-value")
    rgba: Annotated[list[Int8bit], Len(min_length=4, max_length=4)] | None = None


class LabelProperty(_BaseModel):
    """Arbitrary key/value properties for one label value.

    e.g. `{"label-value": 1, "area (pixels)": 1200, "class": "foo"}`
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow")

    label_value: int = Field(alias="label-value")

    @property
    def extras(self) -> dict[str, Any]:
        return dict(self.__pydantic_extra__ or {})


class LabelSource(_BaseModel):
    image: str | list[str] | None = None


class ImageLabel(_BaseModel):
    """The `image-label` block of a label image."""

    version: str | None = None
    # some writers use the singular "color"
    colors: list[LabelColor] | None = Field(
        default=None, validation_alias=AliasChoices("colors", "color")
    )
    properties: list[LabelProperty] | None = None
    source: LabelSource | None = None


class LabelsGroup(_BaseModel):
    """The `labels` group listing the label images below it."""

    labels: list[str]
