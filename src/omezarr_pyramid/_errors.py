"""Error taxonomy for dataset initialization and region reads."""

from __future__ import annotations

import textwrap
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from typing_extensions import NotRequired, TypedDict

if TYPE_CHECKING:
    from collections.abc import Iterable

__all__ = [
    "ErrorDetails",
    "MetadataErrorType",
    "MetadataValidationError",
    "MetadataWarning",
    "NotFoundError",
    "RegionBoundsError",
    "StoreIOError",
]

Loc = tuple[int | str, ...]


class ErrorDetails(TypedDict):
    type: str
    """
    The type of error that occurred, this is an identifier designed for
    programmatic use that will change rarely or never.
    """
    loc: tuple[int | str, ...]
    """Tuple of str and ints identifying where in the attributes the error occurred.

    The first item is always the group or array path owning the attribute
    dictionary ("" for the dataset root).
    """
    msg: str
    """A human readable error message."""
    ctx: NotRequired[dict[str, Any]]
    """
    Additional context about the error.

    Common context fields:
    - expected: What was expected (type, value, or state)
    - found: What was actually found
    - error: Exception object
    """


class MetadataErrorType(Enum):
    acquisition_not_found = auto()
    field_count_exceeded = auto()
    invalid_descriptor = auto()
    invalid_label = auto()
    invalid_zarr_metadata = auto()
    missing_key = auto()
    multiscale_dataset_not_found = auto()
    resolution_order = auto()
    unsupported_dtype = auto()
    unsupported_shape = auto()
    well_sample_image_not_found = auto()
    wrong_type = auto()

    def __str__(self) -> str:
        return self.name


def _format_loc(loc: Iterable[int | str]) -> str:
    parts = [str(x) for x in loc]
    if parts and parts[0] == "":
        parts[0] = "<root>"
    return ".".join(parts)


class MetadataValidationError(ValueError):
    """Raised when structural metadata is missing, malformed or inconsistent.

    It contains a list of errors which detail why validation failed.  Opening a
    dataset always aborts on this error; there is no partially opened state.
    """

    def __init__(self, errors: list[ErrorDetails]) -> None:
        self._details = errors
        super().__init__(self._format_message())

    @classmethod
    def single(
        cls,
        error_type: MetadataErrorType,
        loc: Loc,
        msg: str,
        *,
        ctx: dict[str, Any] | None = None,
    ) -> MetadataValidationError:
        """Build an error holding one detail."""
        detail: ErrorDetails = {"type": str(error_type), "loc": loc, "msg": msg}
        if ctx is not None:
            detail["ctx"] = ctx
        return cls([detail])

    @classmethod
    def from_pydantic(cls, err: ValidationError, loc: Loc) -> MetadataValidationError:
        """Convert a pydantic ValidationError, prefixing every location with `loc`."""
        details: list[ErrorDetails] = []
        for e in err.errors(include_url=False):
            details.append(
                {
                    "type": str(MetadataErrorType.invalid_descriptor),
                    "loc": (*loc, *e["loc"]),
                    "msg": e["msg"],
                    "ctx": {"pydantic_type": e["type"]},
                }
            )
        return cls(details)

    def _format_message(self) -> str:
        if not self._details:  # pragma: no cover
            return "No validation error(s)"

        lines = [f"{len(self._details)} validation error(s) for {self.title}"]
        for detail in self._details:
            lines.append(_format_loc(detail["loc"]))

            ctx_parts = [f"type={detail['type']}"]
            ctx = detail.get("ctx", {})
            for key, val in ctx.items():
                if key != "error":
                    ctx_parts.append(f"{key}={val!r}")

            msg = textwrap.indent(f"{detail['msg']} [{', '.join(ctx_parts)}]", "  ")
            if isinstance(ctx.get("error"), ValidationError):
                msg += "\n" + textwrap.indent(str(ctx["error"]), "  ")
            lines.append(msg)

        return "\n".join(lines)

    @property
    def title(self) -> str:
        """The title used in the heading of the formatted message."""
        return type(self).__qualname__

    def errors(self, *, include_context: bool = True) -> list[ErrorDetails]:
        """
        Details about each error in the validation error.

        Parameters
        ----------
        include_context: bool
            Whether to include the context of each error.

        Returns
        -------
            A list of `ErrorDetails` for each error in the validation error.
        """
        filtered: list[ErrorDetails] = []
        for detail in self._details:
            item: ErrorDetails = {
                "type": detail["type"],
                "loc": detail["loc"],
                "msg": detail["msg"],
            }
            if include_context and "ctx" in detail:
                item["ctx"] = detail["ctx"]
            filtered.append(item)
        return filtered


class MetadataWarning(UserWarning):
    """Emitted when descriptive (non load-bearing) metadata could not be parsed."""


class NotFoundError(LookupError):
    """A series, resolution or path does not exist in the resolved index."""


class StoreIOError(OSError):
    """The array store failed to open a path or serve a sub-block."""


class RegionBoundsError(ValueError):
    """A requested region or plane lies outside the series extent."""
