"""Reconstruct the plate -> well -> field hierarchy of a high-content screen."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ._errors import (
    ErrorDetails,
    MetadataErrorType,
    MetadataValidationError,
    NotFoundError,
)
from ._index import DatasetIndex, join_path
from ._parse import GroupMetadata
from ._plate import Acquisition, PlateWell, label_to_index

__all__ = [
    "AcquisitionRecord",
    "PlateRecord",
    "WellRecord",
    "WellSampleRecord",
    "build_plate",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WellSampleRecord:
    """One imaged field of a well, bound to the series holding its pixels."""

    id: str
    index: int
    """Position of the field within its well."""
    global_index: int
    """Position of the field across the whole plate."""
    image_path: str
    series_index: int
    acquisition_id: int | None = None


@dataclass(frozen=True, slots=True)
class WellRecord:
    id: str
    index: int
    row: int
    column: int
    external_path: str
    samples: tuple[WellSampleRecord, ...] = ()


@dataclass(frozen=True, slots=True)
class AcquisitionRecord:
    id: str
    acquisition: Acquisition
    sample_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PlateRecord:
    id: str
    name: str | None
    field_count: int | None
    wells: tuple[WellRecord, ...]
    acquisitions: tuple[AcquisitionRecord, ...] = ()
    row_names: tuple[str, ...] = ()
    column_names: tuple[str, ...] = ()

    @property
    def samples(self) -> tuple[WellSampleRecord, ...]:
        return tuple(s for w in self.wells for s in w.samples)


@dataclass(slots=True)
class _Collector:
    errors: list[ErrorDetails] = field(default_factory=list)

    def add(
        self,
        error_type: MetadataErrorType,
        loc: tuple[int | str, ...],
        msg: str,
        ctx: dict[str, Any] | None = None,
    ) -> None:
        detail: ErrorDetails = {"type": str(error_type), "loc": loc, "msg": msg}
        if ctx is not None:
            detail["ctx"] = ctx
        self.errors.append(detail)


def _resolve_axis(declared: int | str | None, from_path: str | None) -> int:
    """Resolve one well coordinate.

    A declared index or label wins, otherwise the label taken from the well path
    is used.  Either is normalized with `label_to_index`: "C" is 2 whatever
    rows the plate declares.
    """
    label = declared if declared is not None else from_path
    if label is None:
        raise ValueError("No index declared and the well path has no such segment")
    return label_to_index(label)


def _well_position(well: PlateWell) -> tuple[int, int]:
    labels = well.path_labels
    row_label, col_label = labels if labels is not None else (None, None)
    row = _resolve_axis(well.rowIndex, row_label)
    col = _resolve_axis(well.columnIndex, col_label)
    return row, col


def build_plate(
    root: GroupMetadata,
    groups: Mapping[str, GroupMetadata],
    index: DatasetIndex,
    plate_index: int = 0,
) -> PlateRecord | None:
    """Build the plate graph from the plate descriptor found at `root`.

    Parameters
    ----------
    root : GroupMetadata
        Parsed metadata of the group carrying the `plate` descriptor.
    groups : Mapping[str, GroupMetadata]
        Parsed metadata of every group, keyed by path.  Well groups are looked
        up here.
    index : DatasetIndex
        The resolved series index; each field is bound to one of its series.
    plate_index : int
        Index of this plate, used in the generated identifiers.

    Returns
    -------
    PlateRecord | None
        None when `root` carries no plate descriptor.

    Raises
    ------
    MetadataValidationError
        Collecting every unresolvable label, well, field or acquisition
        reference found in the plate.
    """
    plate = root.plate
    if plate is None:
        return None

    errors = _Collector()
    acquisitions = {a.id: a for a in plate.acquisitions or ()}
    acq_samples: dict[int, list[str]] = {a_id: [] for a_id in acquisitions}
    wells: list[WellRecord] = []
    sample_count = 0

    for w, well in enumerate(plate.wells):
        loc = (root.path, "plate", "wells", w)
        try:
            row, col = _well_position(well)
        except ValueError as e:
            errors.add(
                MetadataErrorType.invalid_label,
                loc,
                f"Cannot resolve row/column of well {well.path!r}: {e}",
                ctx={"path": well.path},
            )
            continue

        well_path = join_path(root.path, well.path)
        well_meta = groups.get(well_path)
        if well_meta is None or well_meta.well is None:
            errors.add(
                MetadataErrorType.missing_key,
                (well_path, "well"),
                f"Well group {well_path!r} has no 'well' metadata",
            )
            continue

        images = well_meta.well.images
        if plate.field_count is not None and len(images) > plate.field_count:
            errors.add(
                MetadataErrorType.field_count_exceeded,
                (well_path, "well", "images"),
                f"Well {well.path!r} lists {len(images)} fields but the plate "
                f"declares field_count={plate.field_count}",
                ctx={"expected": plate.field_count, "found": len(images)},
            )

        samples: list[WellSampleRecord] = []
        for i, image in enumerate(images):
            image_loc = (well_path, "well", "images", i)
            image_path = join_path(well_path, image.path)
            if image.acquisition is not None and image.acquisition not in acquisitions:
                errors.add(
                    MetadataErrorType.acquisition_not_found,
                    (*image_loc, "acquisition"),
                    f"Field {image_path!r} references undeclared acquisition "
                    f"{image.acquisition}",
                    ctx={"expected": sorted(acquisitions), "found": image.acquisition},
                )
            try:
                series = index.find_series(image_path)
            except NotFoundError:
                errors.add(
                    MetadataErrorType.well_sample_image_not_found,
                    (*image_loc, "path"),
                    f"Field {image_path!r} does not match any series",
                )
                continue

            sample_id = f"WellSample:{sample_count}"
            samples.append(
                WellSampleRecord(
                    id=sample_id,
                    index=i,
                    global_index=sample_count,
                    image_path=image_path,
                    series_index=series.index,
                    acquisition_id=image.acquisition,
                )
            )
            if image.acquisition in acq_samples:
                acq_samples[image.acquisition].append(sample_id)
            sample_count += 1

        wells.append(
            WellRecord(
                id=f"Well:{w}",
                index=w,
                row=row,
                column=col,
                external_path=well.path,
                samples=tuple(samples),
            )
        )

    if errors.errors:
        raise MetadataValidationError(errors.errors)

    logger.debug(
        "Plate %r: %d wells, %d fields, %d acquisitions",
        plate.name,
        len(wells),
        sample_count,
        len(acquisitions),
    )
    return PlateRecord(
        id=f"Plate:{plate_index}",
        name=plate.name,
        field_count=plate.field_count,
        wells=tuple(wells),
        acquisitions=tuple(
            AcquisitionRecord(
                id=f"PlateAcquisition:{plate_index}:{a_id}",
                acquisition=acq,
                sample_ids=tuple(acq_samples[a_id]),
            )
            for a_id, acq in acquisitions.items()
        ),
        row_names=tuple(plate.row_names),
        column_names=tuple(plate.column_names),
    )
