"""Serializable image/plate/annotation records handed to metadata consumers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import Field

from ._base import _BaseModel
from ._label import ImageLabel
from ._omero import OmeroChannel
from ._pixel import CoreDimensions, PixelType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ._hcs import PlateRecord
    from ._index import Series
    from ._parse import GroupMetadata

__all__ = [
    "AnnotationMetadata",
    "DatasetMetadata",
    "ImageMetadata",
    "MetadataSink",
    "PixelsMetadata",
    "PlateAcquisitionMetadata",
    "PlateMetadata",
    "WellMetadata",
    "WellSampleMetadata",
    "build_annotations",
]


class PixelsMetadata(_BaseModel):
    size_x: int
    size_y: int
    size_z: int
    size_c: int
    size_t: int
    pixel_type: PixelType
    little_endian: bool
    dimension_order: str = "XYCZT"

    @classmethod
    def from_core(cls, core: CoreDimensions) -> PixelsMetadata:
        return cls(
            size_x=core.size_x,
            size_y=core.size_y,
            size_z=core.size_z,
            size_c=core.size_c,
            size_t=core.size_t,
            pixel_type=core.pixel_type,
            little_endian=core.little_endian,
            dimension_order=core.dimension_order,
        )


class ImageMetadata(_BaseModel):
    """One series, named after the array holding its full-resolution pixels."""

    id: str
    name: str
    series_index: int
    pixels: PixelsMetadata
    resolution_count: int = 1
    channels: list[OmeroChannel] = Field(default_factory=list)
    label: ImageLabel | None = None


class WellSampleMetadata(_BaseModel):
    id: str
    index: int
    image_ref: str
    """The `id` of the `ImageMetadata` holding this field's pixels."""
    acquisition_ref: str | None = None


class WellMetadata(_BaseModel):
    id: str
    row: int
    column: int
    external_identifier: str
    samples: list[WellSampleMetadata] = Field(default_factory=list)


class PlateAcquisitionMetadata(_BaseModel):
    id: str
    name: str | None = None
    description: str | None = None
    start_time: int | None = None
    end_time: int | None = None
    maximum_field_count: int | None = None
    well_sample_refs: list[str] = Field(default_factory=list)


class PlateMetadata(_BaseModel):
    id: str
    name: str | None = None
    field_count: int | None = None
    rows: int = 0
    columns: int = 0
    wells: list[WellMetadata] = Field(default_factory=list)
    acquisitions: list[PlateAcquisitionMetadata] = Field(default_factory=list)


class AnnotationMetadata(_BaseModel):
    """The attribute dictionary of one node, as pretty-printed JSON."""

    id: str
    path: str
    value: str


@runtime_checkable
class MetadataSink(Protocol):
    """Anything that can receive the records derived from a dataset."""

    def add_image(self, image: ImageMetadata) -> None: ...

    def set_plate(self, plate: PlateMetadata) -> None: ...

    def add_annotation(self, annotation: AnnotationMetadata) -> None: ...


class DatasetMetadata(_BaseModel):
    """Everything a dataset exposes beyond pixel data."""

    images: list[ImageMetadata] = Field(default_factory=list)
    plate: PlateMetadata | None = None
    annotations: list[AnnotationMetadata] = Field(default_factory=list)

    def populate(self, sink: MetadataSink) -> None:
        """Push every record into `sink`: images, then the plate, then annotations."""
        for image in self.images:
            sink.add_image(image)
        if self.plate is not None:
            sink.set_plate(self.plate)
        for annotation in self.annotations:
            sink.add_annotation(annotation)

    @classmethod
    def build(
        cls,
        series: Iterable[Series],
        groups: dict[str, GroupMetadata],
        plate: PlateRecord | None = None,
        annotations: Iterable[AnnotationMetadata] = (),
    ) -> DatasetMetadata:
        images = [_image_metadata(s, groups) for s in series]
        image_ids = [img.id for img in images]
        return cls(
            images=images,
            plate=None if plate is None else _plate_metadata(plate, image_ids),
            annotations=list(annotations),
        )


def _owner(series: Series, groups: dict[str, GroupMetadata]) -> GroupMetadata | None:
    if series.group_path is not None:
        return groups.get(series.group_path)
    return None


def _image_metadata(series: Series, groups: dict[str, GroupMetadata]) -> ImageMetadata:
    owner = _owner(series, groups)
    return ImageMetadata(
        id=series.name,
        name=series.name,
        series_index=series.index,
        pixels=PixelsMetadata.from_core(series.core),
        resolution_count=series.resolution_count,
        channels=list(owner.omero.channels) if owner and owner.omero else [],
        label=owner.image_label if owner else None,
    )


def _plate_metadata(plate: PlateRecord, image_ids: list[str]) -> PlateMetadata:
    sample_acq = {
        sample_id: acq.id for acq in plate.acquisitions for sample_id in acq.sample_ids
    }
    wells = [
        WellMetadata(
            id=well.id,
            row=well.row,
            column=well.column,
            external_identifier=well.external_path,
            samples=[
                WellSampleMetadata(
                    id=s.id,
                    index=s.index,
                    image_ref=image_ids[s.series_index],
                    acquisition_ref=sample_acq.get(s.id),
                )
                for s in well.samples
            ],
        )
        for well in plate.wells
    ]
    acquisitions = [
        PlateAcquisitionMetadata(
            id=acq.id,
            name=acq.acquisition.name,
            description=acq.acquisition.description,
            start_time=acq.acquisition.starttime,
            end_time=acq.acquisition.endtime,
            maximum_field_count=acq.acquisition.maximumfieldcount,
            well_sample_refs=list(acq.sample_ids),
        )
        for acq in plate.acquisitions
    ]
    return PlateMetadata(
        id=plate.id,
        name=plate.name,
        field_count=plate.field_count,
        rows=len(plate.row_names),
        columns=len(plate.column_names),
        wells=wells,
        acquisitions=acquisitions,
    )


def build_annotations(
    root: dict[str, Any] | None,
    nodes: Iterable[tuple[str, dict[str, Any] | None]],
) -> list[AnnotationMetadata]:
    """One annotation per non-empty attribute dictionary.

    The root dictionary comes first, with id `AttributesAnnotation:0`; each
    other node follows with id `AttributesAnnotation:<path>:<index>`, `index`
    counting every annotation emitted so far.
    """
    result: list[AnnotationMetadata] = []
    if root:
        result.append(
            AnnotationMetadata(
                id=f"AttributesAnnotation:{len(result)}",
                path="",
                value=json.dumps(root, indent=2),
            )
        )
    for path, attrs in nodes:
        if not attrs:
            continue
        result.append(
            AnnotationMetadata(
                id=f"AttributesAnnotation:{path}:{len(result)}",
                path=path,
                value=json.dumps(attrs, indent=2),
            )
        )
    return result
