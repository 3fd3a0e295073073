"""
Document utilities for consistent handling of MongoDB ids, documents and timestamps.

This module converts between the string ids used by the API and the
ObjectId values stored in MongoDB, and turns raw documents into JSON-ready
dictionaries.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from bson import ObjectId

from app.exceptions import NotFoundError, ValidationError


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Make a datetime timezone-aware.

    Naive values coming back from the driver are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value: Union[str, ObjectId], entity: str = "Resource") -> ObjectId:
    """
    Convert an id from a path or body into an ObjectId.

    Args:
        value: String or ObjectId value
        entity: Name used in the error message

    Raises:
        NotFoundError: if the value is not a valid ObjectId, since such a
            document can never exist
    """
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise NotFoundError(f"{entity} not found")
    return ObjectId(str(value))


def parse_object_id(value: Union[str, ObjectId], field: str) -> ObjectId:
    """Like to_object_id, but a malformed body field is a validation error"""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise ValidationError(f"Invalid {field}")
    return ObjectId(str(value))


def id_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def contains_id(values: Iterable[Any], target: Any) -> bool:
    """Check membership comparing ids as strings"""
    target_str = str(target)
    return any(str(value) == target_str for value in values or [])


def serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, (list, tuple, set)):
        return [serialize_value(item) for item in value]
    return value


def serialize_doc(doc: Optional[dict], exclude: Iterable[str] = ()) -> Optional[dict]:
    """
    Convert a MongoDB document into a JSON-ready dictionary.

    `_id` becomes `id`, ObjectIds become strings and datetimes ISO strings.
    """
    if doc is None:
        return None
    excluded = set(exclude)
    result = {}
    for key, value in doc.items():
        if key in excluded:
            continue
        if key == "_id":
            result["id"] = serialize_value(value)
            continue
        result[key] = serialize_value(value)
    return result
