"""Turn raw attribute dictionaries into typed descriptors.

Only the pyramid (`multiscales`) and high-content-screening (`plate`, `well`)
blocks are load-bearing: when present they must be well formed, otherwise a
`MetadataValidationError` is raised.  Rendering hints (`omero`) and label
metadata (`image-label`, `labels`) are parsed best effort; a malformed block
emits a `MetadataWarning` and is dropped.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel

from ._errors import MetadataErrorType, MetadataValidationError, MetadataWarning
from ._json import JsonValue
from ._label import ImageLabel, LabelsGroup
from ._multiscale import Multiscale
from ._omero import Omero
from ._plate import PlateDef, WellDef

__all__ = ["GroupMetadata", "parse_attributes"]

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# keys that live under the "ome" namespace in OME-Zarr v0.5
OME_KEYS = ("multiscales", "plate", "well", "labels", "image-label", "omero")


@dataclass(frozen=True, slots=True)
class GroupMetadata:
    """Typed descriptors found in the attribute dictionary of one node."""

    path: str
    attributes: Mapping[str, Any] = field(default_factory=dict, repr=False)
    multiscales: tuple[Multiscale, ...] = ()
    plate: PlateDef | None = None
    well: WellDef | None = None
    labels: tuple[str, ...] = ()
    image_label: ImageLabel | None = None
    omero: Omero | None = None
    ome_version: str | None = None

    @property
    def multiscale(self) -> Multiscale | None:
        """The multiscale used to build the pyramid (the first one listed)."""
        return self.multiscales[0] if self.multiscales else None


def _ome_namespace(root: JsonValue) -> tuple[JsonValue, str | None]:
    """Return the value holding the OME keys, and the declared OME version.

    v0.5 nests everything under `attributes["ome"]`, earlier versions put the
    keys at the top level.
    """
    ome = root.get("ome")
    if ome is not None and ome.kind == "mapping":
        version = ome.get("version")
        return ome, version.raw if version is not None else None
    return root, None


def _parse_multiscales(value: JsonValue) -> tuple[Multiscale, ...]:
    entries = value.as_list()
    if not entries:
        raise MetadataValidationError.single(
            MetadataErrorType.missing_key,
            value.loc,
            "'multiscales' must list at least one multiscale image",
        )
    result = []
    for entry in entries:
        entry.as_mapping()
        entry.require("datasets").as_list()
        result.append(entry.validate(Multiscale))
    return tuple(result)


def _best_effort(value: JsonValue, model: type[M]) -> M | None:
    try:
        return value.validate(model)
    except MetadataValidationError as e:
        warnings.warn(
            f"Ignoring malformed descriptive metadata at "
            f"{'.'.join(map(str, value.loc))}:\n{e}",
            MetadataWarning,
            stacklevel=4,
        )
        return None


def parse_attributes(path: str, attributes: Mapping[str, Any] | None) -> GroupMetadata:
    """Extract typed descriptors from the attribute dictionary at `path`.

    Parameters
    ----------
    path : str
        Path of the group or array owning the attributes ("" for the root).
    attributes : Mapping[str, Any] | None
        The decoded attribute dictionary.  `None` or an empty mapping yields a
        `GroupMetadata` without descriptors.

    Raises
    ------
    MetadataValidationError
        If a `multiscales`, `plate` or `well` block is present but malformed.
    """
    if not attributes:
        return GroupMetadata(path=path)

    root = JsonValue(attributes, (path,))
    root.as_mapping()
    ome, version = _ome_namespace(root)

    kwargs: dict[str, Any] = {}
    if (value := ome.get("multiscales")) is not None:
        kwargs["multiscales"] = _parse_multiscales(value)
    if (value := ome.get("plate")) is not None:
        value.as_mapping()
        kwargs["plate"] = value.validate(PlateDef)
    if (value := ome.get("well")) is not None:
        value.as_mapping()
        kwargs["well"] = value.validate(WellDef)

    if (value := ome.get("labels")) is not None:
        wrapped = JsonValue({"labels": value.raw}, ome.loc)
        if (group := _best_effort(wrapped, LabelsGroup)) is not None:
            kwargs["labels"] = tuple(group.labels)
    if (value := ome.get("image-label")) is not None:
        kwargs["image_label"] = _best_effort(value, ImageLabel)
    if (value := ome.get("omero")) is not None:
        kwargs["omero"] = _best_effort(value, Omero)

    meta = GroupMetadata(
        path=path, attributes=attributes, ome_version=version, **kwargs
    )
    if len(meta.multiscales) > 1:
        logger.debug(
            "%r declares %d multiscales, using the first",
            path,
            len(meta.multiscales),
        )
    return meta
