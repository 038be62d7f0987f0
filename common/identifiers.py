import re
from typing import Optional, Union
from uuid import UUID

from .errors import ValidationError

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_canonical_id(value) -> bool:
    if isinstance(value, UUID):
        return True
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def ensure_uuid(value: Union[UUID, str, None], field: str = "id") -> UUID:
    """Return ``value`` as a UUID or raise ValidationError.

    Only the canonical hyphenated 8-4-4-4-12 form is accepted for strings;
    braces, URNs and bare hex are rejected.
    """
    if not is_canonical_id(value):
        raise ValidationError(f"Invalid {field} format")
    return value if isinstance(value, UUID) else UUID(value)


def check_page(limit: Optional[int], offset: int = 0) -> None:
    """Raise ValidationError unless ``limit`` is None or positive and ``offset`` is not negative."""
    if limit is not None and (isinstance(limit, bool) or limit < 1):
        raise ValidationError("Limit must be at least 1")
    if isinstance(offset, bool) or offset < 0:
        raise ValidationError("Offset must not be negative")
