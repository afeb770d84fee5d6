from __future__ import annotations

import pytest

from omezarr_pyramid import MetadataValidationError, MetadataWarning, parse_attributes
from omezarr_pyramid._plate import PlateWell, label_to_index


def test_no_attributes() -> None:
    meta = parse_attributes("x", None)
    assert meta.path == "x"
    assert meta.multiscale is None
    assert meta.plate is None
    assert parse_attributes("x", {}).multiscales == ()


def test_unrelated_keys_are_ignored() -> None:
    meta = parse_attributes("", {"foo": {"bar": 1}})
    assert meta.multiscale is None
    assert meta.well is None


def test_multiscale_v04() -> None:
    attrs = {
        "multiscales": [
            {
                "version": "0.4",
                "axes": ["c", {"name": "y", "type": "space"}, {"name": "x"}],
                "datasets": [{"path": "0"}, {"path": "1"}],
            },
            {"datasets": [{"path": "other"}]},
        ]
    }
    meta = parse_attributes("img", attrs)
    assert len(meta.multiscales) == 2
    assert meta.multiscale is not None
    assert meta.multiscale.paths == ["0", "1"]
    assert meta.multiscale.axis_names == ["c", "y", "x"]
    assert meta.ome_version is None


def test_multiscale_v05_namespace() -> None:
    attrs = {"ome": {"version": "0.5", "multiscales": [{"datasets": [{"path": "s0"}]}]}}
    meta = parse_attributes("", attrs)
    assert meta.ome_version == "0.5"
    assert meta.multiscale is not None
    assert meta.multiscale.paths == ["s0"]


@pytest.mark.parametrize(
    ("multiscales", "error_type", "loc"),
    [
        ([], "missing_key", ("", "multiscales")),
        ({"datasets": []}, "wrong_type", ("", "multiscales")),
        ([{"axes": []}], "missing_key", ("", "multiscales", 0, "datasets")),
        ([{"datasets": "0"}], "wrong_type", ("", "multiscales", 0, "datasets")),
        (
            [{"datasets": [{"path": "0"}, {"path": "0"}]}],
            "invalid_descriptor",
            ("", "multiscales", 0),
        ),
    ],
)
def test_malformed_multiscale(multiscales: object, error_type: str, loc: tuple) -> None:
    with pytest.raises(MetadataValidationError) as e:
        parse_attributes("", {"multiscales": multiscales})
    detail = e.value.errors()[0]
    assert detail["type"] == error_type
    assert detail["loc"] == loc


def test_plate_and_well() -> None:
    plate = parse_attributes(
        "",
        {
            "plate": {
                "wells": [{"path": "A/1", "rowIndex": 0, "columnIndex": ""}],
                "rows": [{"name": "A"}],
                "columns": [{"name": "1"}],
                "field_count": 2,
            }
        },
    ).plate
    assert plate is not None
    assert plate.wells[0].columnIndex is None
    assert plate.row_names == ["A"]
    assert plate.column_names == ["1"]

    well = parse_attributes("A/1", {"well": {"images": [{"path": "0"}]}}).well
    assert well is not None
    assert well.images[0].path == "0"
    assert well.images[0].acquisition is None


def test_malformed_plate_is_fatal() -> None:
    with pytest.raises(MetadataValidationError) as e:
        parse_attributes("", {"plate": {"wells": []}})
    assert e.value.errors()[0]["loc"][:3] == ("", "plate", "wells")


def test_duplicate_wells_are_fatal() -> None:
    wells = [{"path": "A/1"}, {"path": "A/1"}]
    with pytest.raises(MetadataValidationError, match="not unique"):
        parse_attributes("", {"plate": {"wells": wells}})


def test_duplicate_acquisitions_are_fatal() -> None:
    plate = {"wells": [{"path": "A/1"}], "acquisitions": [{"id": 1}, {"id": 1}]}
    with pytest.raises(MetadataValidationError, match="Acquisition ids"):
        parse_attributes("", {"plate": plate})


def test_malformed_descriptive_metadata_warns() -> None:
    attrs = {
        "multiscales": [{"datasets": [{"path": "0"}]}],
        "omero": {"channels": "not a list"},
        "image-label": {"colors": [{"label-value": 1, "rgba": [0, 0, 0]}]},
    }
    with pytest.warns(MetadataWarning) as record:
        meta = parse_attributes("img", attrs)
    assert len(record) == 2
    assert meta.omero is None
    assert meta.image_label is None
    assert meta.multiscale is not None


def test_descriptive_metadata() -> None:
    attrs = {
        "multiscales": [{"datasets": [{"path": "0"}]}],
        "omero": {
            "channels": [{"label": "DAPI", "color": "0000FF", "window": {"end": 10}}],
            "rdefs": {"model": "color", "extra": True},
        },
        "image-label": {
            "version": "0.4",
            "color": [{"label-value": 1, "rgba": [255, 0, 0, 255]}],
            "properties": [{"label-value": 1, "class": "cell"}],
            "source": {"image": "../../"},
        },
        "labels": ["cells", "nuclei"],
    }
    meta = parse_attributes("img", attrs)
    assert meta.omero is not None
    assert meta.omero.channels[0].label == "DAPI"
    assert meta.image_label is not None
    assert meta.image_label.colors is not None
    assert meta.image_label.colors[0].rgba == [255, 0, 0, 255]
    assert meta.image_label.properties is not None
    assert meta.image_label.properties[0].extras == {"class": "cell"}
    assert meta.labels == ("cells", "nuclei")


@pytest.mark.parametrize(
    ("label", "expected"),
    [("A", 0), ("a", 0), ("Z", 25), ("h", 7), ("0", 0), ("12", 12), (" 3 ", 3), (4, 4)],
)
def test_label_to_index(label: str | int, expected: int) -> None:
    assert label_to_index(label) == expected


@pytest.mark.parametrize("label", ["AA", "x1", "", "-1", -2, "1.5"])
def test_invalid_labels(label: str | int) -> None:
    with pytest.raises(ValueError):
        label_to_index(label)


def test_plate_well_aliases() -> None:
    well = PlateWell.model_validate({"path": "B/03", "row_index": "B"})
    assert well.rowIndex == "B"
    assert well.columnIndex is None
    assert well.path_labels == ("B", "03")
    assert PlateWell(path="A").path_labels is None
