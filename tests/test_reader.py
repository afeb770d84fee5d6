from __future__ import annotations

import json

import numpy as np
import pytest
from _helpers import FakeStore, multiscale, ramp

from omezarr_pyramid import (
    MetadataValidationError,
    MetadataWarning,
    NotFoundError,
    OMEZarrReader,
    PixelType,
    ReaderOptions,
    open_dataset,
)
from omezarr_pyramid._metadata import (
    AnnotationMetadata,
    ImageMetadata,
    PlateMetadata,
)


def test_pyramid(pyramid_store: FakeStore) -> None:
    reader = OMEZarrReader(pyramid_store)
    assert reader.series_count == 1
    assert reader.resolution_count == 3
    assert reader.series == reader.resolution == 0

    core = reader.core()
    assert (core.size_x, core.size_y, core.size_c) == (32, 32, 2)
    assert core.resolution_count == 3
    assert core.pixel_type is PixelType.UINT16

    reader.set_resolution(2)
    assert reader.core().size_x == 8
    assert reader.core_index == 2
    assert reader.core(0, 1).size_x == 16
    np.testing.assert_array_equal(reader.open_plane(0), ramp(8, 8))
    assert reader.domains == ["Unknown"]
    assert reader.used_files() == ["0", "1", "2"]


def test_set_series_resets_resolution(plate_store: FakeStore) -> None:
    reader = OMEZarrReader(plate_store)
    reader.set_resolution(1)
    reader.set_series(1)
    assert reader.resolution == 0
    assert reader.core_index == 2
    np.testing.assert_array_equal(reader.open_plane(0, 0, 0, 2, 1), [[1000, 1001]])

    with pytest.raises(NotFoundError):
        reader.set_series(2)
    with pytest.raises(NotFoundError):
        reader.set_resolution(2)
    assert (reader.series, reader.resolution) == (1, 0)


def test_flattened(pyramid_store: FakeStore) -> None:
    reader = OMEZarrReader(pyramid_store, flatten_resolutions=True)
    assert reader.series_count == 3
    assert reader.resolution_count == 1
    assert [s.name for s in reader.series_entries] == ["0", "1", "2"]
    reader.set_series(2)
    assert reader.core().size_x == 8


def test_flatten_from_environment(
    pyramid_store: FakeStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("OMEZARR_PYRAMID_FLATTEN", "1")
    assert ReaderOptions().flatten_resolutions
    assert OMEZarrReader(pyramid_store).series_count == 3


def test_unknown_option(pyramid_store: FakeStore) -> None:
    with pytest.raises(ValueError, match="flaten"):
        OMEZarrReader(pyramid_store, flaten_resolutions=True)


def test_plane_coordinates(pyramid_store: FakeStore) -> None:
    reader = OMEZarrReader(pyramid_store)
    assert reader.z_ct_coords(1) == (0, 1, 0)
    assert reader.index(0, 1, 0) == 1


def test_optimal_tile_size(make_store) -> None:
    store = make_store({"img": ramp(64, 48)}, chunks={"img": (16, 32)})
    reader = OMEZarrReader(store)
    assert reader.optimal_tile_size() == (32, 16)

    store = make_store({"img": ramp(8, 8)}, chunks={"img": (16, 32)})
    assert OMEZarrReader(store).optimal_tile_size() == (8, 8)


def test_close(pyramid_store: FakeStore) -> None:
    with open_dataset(pyramid_store) as reader:
        reader.open_bytes(0, 0, 0, 1, 1)
        handle = pyramid_store.handles[-1]
    assert reader.closed
    assert handle.closed
    # the reader does not own a store it was given
    assert not pyramid_store.closed

    for call in (
        lambda: reader.open_bytes(0),
        lambda: reader.set_series(0),
        lambda: reader.series_count,
        lambda: reader.metadata,
        lambda: reader.used_files(),
        lambda: reader.optimal_tile_size(),
    ):
        with pytest.raises(NotFoundError, match="closed"):
            call()
    reader.close()
    assert "closed" in repr(reader)


def test_unsupported_dtype(make_store) -> None:
    store = make_store({"img": np.zeros((4, 4), dtype=np.int64)})
    with pytest.raises(MetadataValidationError) as e:
        OMEZarrReader(store)
    (detail,) = e.value.errors()
    assert detail["type"] == "unsupported_dtype"
    assert detail["loc"] == ("img",)


def test_malformed_structure_aborts_open(make_store) -> None:
    store = make_store({"0": ramp(4, 4)}, {"": {"multiscales": [{"axes": []}]}})
    with pytest.raises(MetadataValidationError, match="datasets"):
        OMEZarrReader(store)


def test_malformed_descriptive_metadata_is_dropped(make_store) -> None:
    attrs = {"": {**multiscale("0"), "omero": {"channels": 42}}}
    store = make_store({"0": ramp(4, 4)}, attrs)
    with pytest.warns(MetadataWarning, match="omero"):
        reader = OMEZarrReader(store)
    assert reader.metadata.images[0].channels == []


def test_resolution_order_is_validated(make_store) -> None:
    store = make_store(
        {"0": ramp(4, 4), "1": ramp(8, 8)}, {"": multiscale("0", "1")}
    )
    with pytest.raises(MetadataValidationError, match="larger than resolution 0"):
        OMEZarrReader(store)


class RecordingSink:
    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    def add_image(self, image: ImageMetadata) -> None:
        self.calls.append(("image", image))

    def set_plate(self, plate: PlateMetadata) -> None:
        self.calls.append(("plate", plate))

    def add_annotation(self, annotation: AnnotationMetadata) -> None:
        self.calls.append(("annotation", annotation))


def test_plate_metadata(plate_store: FakeStore) -> None:
    reader = OMEZarrReader(plate_store)
    assert reader.domains == ["High-Content Screening (HCS)"]
    meta = reader.metadata

    assert [img.id for img in meta.images] == ["A/1/0/0", "B/2/0/0"]
    assert meta.images[0].resolution_count == 2
    assert meta.images[0].pixels.size_x == 16

    plate = meta.plate
    assert plate is not None
    assert (plate.rows, plate.columns) == (2, 2)
    assert [w.id for w in plate.wells] == ["Well:0", "Well:1"]
    assert plate.wells[1].samples[0].image_ref == "B/2/0/0"
    assert plate.wells[1].samples[0].acquisition_ref == "PlateAcquisition:0:1"
    assert plate.acquisitions[0].well_sample_refs == ["WellSample:0"]

    assert [a.id for a in meta.annotations] == [
        "AttributesAnnotation:0",
        "AttributesAnnotation:A/1:1",
        "AttributesAnnotation:A/1/0:2",
        "AttributesAnnotation:B/2:3",
        "AttributesAnnotation:B/2/0:4",
    ]
    assert json.loads(meta.annotations[1].value) == plate_store.attrs["A/1"]

    sink = RecordingSink()
    reader.populate(sink)
    kinds = [kind for kind, _ in sink.calls]
    assert kinds == ["image", "image", "plate"] + ["annotation"] * 5


def test_metadata_is_json_serializable(plate_store: FakeStore) -> None:
    dumped = json.loads(OMEZarrReader(plate_store).metadata.model_dump_json())
    assert dumped["images"][0]["pixels"]["pixel_type"] == "uint16"
    assert dumped["plate"]["id"] == "Plate:0"


def test_annotations_can_be_disabled(plate_store: FakeStore) -> None:
    reader = OMEZarrReader(plate_store, annotate_attributes=False)
    assert reader.metadata.annotations == []


def test_image_descriptive_metadata(make_store) -> None:
    attrs = {
        "": {
            **multiscale("0"),
            "omero": {"channels": [{"label": "DAPI"}, {"label": "GFP"}]},
            "image-label": {"colors": [{"label-value": 1, "rgba": [1, 2, 3, 4]}]},
        }
    }
    reader = OMEZarrReader(make_store({"0": ramp(4, 4)}, attrs))
    (image,) = reader.metadata.images
    assert [c.label for c in image.channels] == ["DAPI", "GFP"]
    assert image.label is not None
