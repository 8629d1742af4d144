"""
utils/validation_utils.py

Purpose: Input validation

- ObjectId parsing for users and cash requests
- Participant identifier checks for chat
- Message body sanitization
"""

from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId

from app.core.exceptions import InvalidIdError, ValidationError


def is_valid_object_id(value: Any) -> bool:
    """
    Checks whether a value can be used as a MongoDB ObjectId.

    Accepts ObjectId instances and 24-character hex strings only.
    """
    if isinstance(value, ObjectId):
        return True
    if not isinstance(value, str) or len(value) != 24:
        return False
    return ObjectId.is_valid(value)


def to_object_id(value: Any, field: str = "id") -> ObjectId:
    """
    Converts a value to an ObjectId.

    Args:
        value: ObjectId or hex string
        field: Field name used in the error message

    Returns:
        ObjectId

    Raises:
        InvalidIdError: If the value is not a valid ObjectId
    """
    if isinstance(value, ObjectId):
        return value
    if not is_valid_object_id(value):
        raise InvalidIdError(f"Invalid {field} format", details={"field": field, "value": str(value)})
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as e:
        raise InvalidIdError(f"Invalid {field} format", details={"field": field}) from e


def require_identifier(value: Any, field: str = "userId") -> str:
    """
    Normalizes a participant identifier (non-empty string).

    Raises:
        ValidationError: If the identifier is missing or blank
    """
    if value is None:
        raise ValidationError(f"{field} is required", details={"field": field})
    identifier = str(value).strip()
    if not identifier:
        raise ValidationError(f"{field} is required", details={"field": field})
    return identifier


def sanitize_message(text: Optional[str], max_length: int = 2000) -> str:
    """
    Strips surrounding whitespace and enforces length limits on a chat message.

    Raises:
        ValidationError: If the message is empty or too long
    """
    if text is None:
        raise ValidationError("Message body is required", details={"field": "message"})

    cleaned = text.strip()
    if not cleaned:
        raise ValidationError("Message body cannot be empty", details={"field": "message"})

    if len(cleaned) > max_length:
        raise ValidationError(
            f"Message exceeds {max_length} characters",
            details={"field": "message", "max_length": max_length}
        )

    return cleaned
