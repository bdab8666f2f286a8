import enum
import uuid
from datetime import UTC, datetime
from typing import TypeVar

from fastapi import HTTPException
from sqlalchemy.orm import Query

E = TypeVar("E", bound=enum.Enum)


def coerce_uuid(value) -> uuid.UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid id: {value}") from exc


def validate_enum(value, enum_cls: type[E], label: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_cls)
        raise HTTPException(status_code=400, detail=f"Invalid {label}: {value}. Allowed: {allowed}") from exc


def apply_ordering(query: Query, order_by: str, order_dir: str, allowed_columns: dict) -> Query:
    if order_by not in allowed_columns:
        allowed = ", ".join(sorted(allowed_columns))
        raise HTTPException(status_code=400, detail=f"Invalid order_by. Allowed: {allowed}")
    column = allowed_columns[order_by]
    if order_dir == "desc":
        return query.order_by(column.desc())
    return query.order_by(column.asc())


def apply_pagination(query: Query, limit: int, offset: int) -> Query:
    return query.limit(limit).offset(offset)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)
