"""
Validation and merge helpers used by every store.

Pydantic failures are translated into ``hinata.utils.exceptions.ValidationError``
so callers only ever see the store error taxonomy.
"""

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from hinata.utils.exceptions import ValidationError

M = TypeVar("M", bound=BaseModel)


def format_errors(error: PydanticValidationError) -> list[str]:
    """Flatten pydantic errors into ``field.path: message`` strings."""
    return [
        f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
        for err in error.errors()
    ]


def validate_model(model_cls: type[M], data: Any, entity: str | None = None) -> M:
    """
    Validate ``data`` into ``model_cls``.

    Model instances are re-validated through a dump so that a caller-side
    mutation can never bypass field constraints.

    Raises:
        ValidationError: With the individual messages in ``context["errors"]``
    """
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if not isinstance(data, Mapping):
        raise ValidationError(
            f"Expected a mapping for {entity or model_cls.__name__}, got {type(data).__name__}"
        )
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        errors = format_errors(e)
        raise ValidationError(
            f"Invalid {entity or model_cls.__name__}: {'; '.join(errors)}",
            context={"errors": errors},
        ) from e


def deep_merge(base: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    """
    Recursively merge ``updates`` into a copy of ``base``.

    Nested mappings are merged key by key. Any other value (lists included)
    replaces the existing one.
    """
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def as_update_dict(updates: Any) -> dict[str, Any]:
    """Accept a partial update as a mapping or a model (unset fields dropped)."""
    if isinstance(updates, BaseModel):
        return updates.model_dump(exclude_unset=True)
    if not isinstance(updates, Mapping):
        raise ValidationError(f"Expected a mapping of updates, got {type(updates).__name__}")
    return dict(updates)
