"""Schema validation returning a result value instead of raising."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Tuple, TypeVar, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class SchemaValidationError:
    """Why a value did not conform to a schema."""
    message: str
    errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False


@dataclass(frozen=True)
class Err:
    error: SchemaValidationError

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True


ValidationResult = Union[Ok[T], Err]


class SchemaValidator:
    """Validate raw values against pydantic-describable schemas.

    ``validate`` never raises for non-conforming data; callers branch on
    ``result.is_err()``. Adapters are built once per schema object.
    """

    def __init__(self):
        self._adapters: Dict[int, Tuple[Any, TypeAdapter]] = {}

    def _adapter(self, schema: Any) -> TypeAdapter:
        cached = self._adapters.get(id(schema))
        if cached is not None and cached[0] is schema:
            return cached[1]
        adapter = TypeAdapter(schema)
        self._adapters[id(schema)] = (schema, adapter)
        return adapter

    def validate(self, raw: Any, schema: Any) -> ValidationResult:
        adapter = self._adapter(schema)
        try:
            value = adapter.validate_python(raw)
        except PydanticValidationError as exc:
            errors = exc.errors(include_url=False, include_context=False)
            return Err(SchemaValidationError(message=_summarize(errors), errors=errors))
        return Ok(value)


def _summarize(errors: List[Dict[str, Any]]) -> str:
    if not errors:
        return "value does not match schema"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    suffix = f" (+{len(errors) - 1} more)" if len(errors) > 1 else ""
    return f"{location}: {first.get('msg', 'invalid value')}{suffix}"

