from collections.abc import Mapping, Sequence
from typing import Annotated, Any, TypeVar

from pydantic import AfterValidator, BaseModel, Field
from pydantic_core import PydanticCustomError

T = TypeVar("T")


def _as_plain(v: Any) -> Any:
    if isinstance(v, BaseModel):
        return v.model_dump()
    return v


def _json_equal(a: Any, b: Any) -> bool:
    a, b = _as_plain(a), _as_plain(b)
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        return a.keys() == b.keys() and all(_json_equal(a[k], b[k]) for k in a)
    if isinstance(a, (str, bytes)) or isinstance(b, (str, bytes)):
        return bool(a == b)
    if isinstance(a, Sequence) and isinstance(b, Sequence):
        return len(a) == len(b) and all(_json_equal(x, y) for x, y in zip(a, b))
    return bool(a == b)


def _validate_unique_list(v: list[T]) -> list[T]:
    """Validate that all items in the list are unique, using JSON equivalence."""
    for i, a in enumerate(v):
        for j in range(i + 1, len(v)):
            if _json_equal(a, v[j]):
                raise PydanticCustomError(
                    "listItemsNotUnique",
                    "List items are not unique. Equal items found at indices: {idx}",
                    {"idx": (i, j)},
                )
    return v


# A list that enforces uniqueItems
UniqueList = Annotated[
    list[T],
    AfterValidator(_validate_unique_list),
    Field(json_schema_extra={"uniqueItems": True}),
]
