from __future__ import annotations

from typing import Any

from .errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_PAGE_SIZE = 100

_MISSING = object()


def parse_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and scientific notation.
    """
    if value is None:
        raise ValidationError(f"{field} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}")
    return result


def parse_optional_int(value: Any, field: str, *, default: int | None = None, **bounds) -> int | None:
    if value is None or value == "":
        return default
    return parse_int(value, field, **bounds)


def parse_str(
    value: Any,
    field: str,
    *,
    max_length: int | None = None,
    min_length: int = 0,
    required: bool = False,
) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")

    text = value.strip()
    if not text:
        if required:
            raise ValidationError(f"{field} cannot be blank")
        return None
    if len(text) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def parse_choice(value: Any, field: str, choices, *, default: Any = _MISSING) -> str:
    if value is None and default is not _MISSING:
        return default
    if value not in choices:
        raise ValidationError(f"Invalid {field}", details={"allowed": list(choices)})
    return value


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_pagination(args, default_limit: int = 10) -> tuple[int, int]:
    page = parse_optional_int(args.get("page"), "page", default=1, minimum=1)
    limit = parse_optional_int(args.get("limit"), "limit", default=default_limit, minimum=1, maximum=MAX_PAGE_SIZE)
    return page, limit


def page_count(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit else 0


def pick(data: dict, *names: str, default: Any = None) -> Any:
    """First present key among names (accepts snake_case and camelCase bodies)."""
    for name in names:
        if name in data:
            return data[name]
    return default
