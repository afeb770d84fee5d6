"""A located, tagged view of decoded JSON attribute values.

Attribute dictionaries are free-form.  Rather than casting nested values at the
point of use, every value is wrapped in a `JsonValue` that knows where it came
from, so a type mismatch becomes a `MetadataValidationError` pointing at the
offending key instead of an `AttributeError` deep inside the parser.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Literal, TypeAlias, TypeVar

from pydantic import BaseModel, ValidationError

from ._errors import Loc, MetadataErrorType, MetadataValidationError

__all__ = ["JsonKind", "JsonValue"]

JsonKind: TypeAlias = Literal["null", "bool", "number", "string", "list", "mapping"]
M = TypeVar("M", bound=BaseModel)


def _kind_of(raw: Any) -> JsonKind:
    if raw is None:
        return "null"
    # bool must be checked before number, bool is a subclass of int
    if isinstance(raw, bool):
        return "bool"
    if isinstance(raw, (int, float)):
        return "number"
    if isinstance(raw, str):
        return "string"
    if isinstance(raw, Mapping):
        return "mapping"
    if isinstance(raw, Sequence):
        return "list"
    raise TypeError(f"Unsupported type for a JSON value: {type(raw)}")


class JsonValue:
    """One decoded JSON value and its location inside the attribute snapshot."""

    __slots__ = ("_kind", "_raw", "loc")

    def __init__(self, raw: Any, loc: Loc = ()) -> None:
        self._raw = raw
        self._kind = _kind_of(raw)
        self.loc = loc

    @property
    def kind(self) -> JsonKind:
        return self._kind

    @property
    def raw(self) -> Any:
        """The underlying decoded python object."""
        return self._raw

    def is_null(self) -> bool:
        return self._kind == "null"

    def _mismatch(self, expected: JsonKind) -> MetadataValidationError:
        return MetadataValidationError.single(
            MetadataErrorType.wrong_type,
            self.loc,
            f"Expected a JSON {expected}, found {self._kind}",
            ctx={"expected": expected, "found": self._kind},
        )

    # ------------------------ typed accessors ------------------------

    def as_mapping(self) -> Mapping[str, Any]:
        if self._kind != "mapping":
            raise self._mismatch("mapping")
        return self._raw

    def as_list(self) -> list[JsonValue]:
        if self._kind != "list":
            raise self._mismatch("list")
        return [JsonValue(v, (*self.loc, i)) for i, v in enumerate(self._raw)]

    def as_str(self) -> str:
        if self._kind != "string":
            raise self._mismatch("string")
        return self._raw

    def as_number(self) -> float | int:
        if self._kind != "number":
            raise self._mismatch("number")
        return self._raw

    def as_int(self) -> int:
        """Return an integral number, accepting floats with no fractional part.

        Some writers serialize every number as a double (e.g. `"acquisition": 0.0`).
        """
        num = self.as_number()
        if isinstance(num, float):
            if not num.is_integer():
                raise MetadataValidationError.single(
                    MetadataErrorType.wrong_type,
                    self.loc,
                    f"Expected an integer, found {num!r}",
                    ctx={"expected": "integer", "found": num},
                )
            return int(num)
        return num

    # ------------------------ navigation ------------------------

    def get(self, key: str) -> JsonValue | None:
        """Return the child at `key`, or None when absent.

        Raises if this value is not a mapping.
        """
        mapping = self.as_mapping()
        if key not in mapping:
            return None
        return JsonValue(mapping[key], (*self.loc, key))

    def require(self, key: str) -> JsonValue:
        """Return the child at `key`, raising a validation error when absent."""
        if (child := self.get(key)) is None:
            raise MetadataValidationError.single(
                MetadataErrorType.missing_key,
                (*self.loc, key),
                f"Missing required key {key!r}",
            )
        return child

    def __contains__(self, key: object) -> bool:
        return self._kind == "mapping" and key in self._raw

    def __iter__(self) -> Iterator[JsonValue]:
        return iter(self.as_list())

    def __len__(self) -> int:
        if self._kind not in ("list", "mapping"):
            raise self._mismatch("list")
        return len(self._raw)

    # ------------------------ conversion ------------------------

    def validate(self, model: type[M]) -> M:
        """Validate this value into a pydantic model.

        pydantic errors are re-raised as `MetadataValidationError` located
        relative to this value.
        """
        try:
            return model.model_validate(self._raw)
        except ValidationError as e:
            raise MetadataValidationError.from_pydantic(e, self.loc) from e

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self._raw, indent=indent)

    def __repr__(self) -> str:
        return f"JsonValue({self._kind}, loc={self.loc!r})"
