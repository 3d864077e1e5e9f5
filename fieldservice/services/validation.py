"""
Payload validation shared by the service layer.
Services accept either a parsed schema instance or a plain dict (form data, CSV
rows, script input) and report the first validation problem as a string.
"""
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError


SchemaT = TypeVar("SchemaT", bound=BaseModel)


def first_error_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid data"
    err = errors[0]
    msg = str(err.get("msg") or "Invalid data")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    loc = ".".join(str(part) for part in err.get("loc", ()) if part != "__root__")
    return f"{loc}: {msg}" if loc and err.get("type") != "value_error" else msg


def coerce(schema: Type[SchemaT], data: Any) -> SchemaT:
    """
    Return ``data`` as a ``schema`` instance.

    Raises:
        ValidationError: when a dict does not satisfy the schema
    """
    if isinstance(data, schema):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    return schema.model_validate(data)
