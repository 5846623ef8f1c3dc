import re
import uuid
from typing import Any, Optional

from pydantic import ValidationError

from vcook_ai.schemas import USECASE_SCHEMAS

PLACEHOLDER_PATTERN = re.compile(r"^(hehe|hihi|haha|test|abc|xxx|null|undefined|n/a)$", re.IGNORECASE)
TOO_SHORT_PATTERN = re.compile(r"^[a-z]{1,3}$")
DIGITS_ONLY_PATTERN = re.compile(r"^\d+$")
REPEATED_CHAR_PATTERN = re.compile(r"(.)\1{3,}")


class PayloadError(ValueError):
    """Request body does not match the operation's schema"""
    pass


def validate_payload(usecase: str, payload: dict) -> Any:
    """Validate payload against the appropriate schema"""
    schema = USECASE_SCHEMAS.get(usecase)
    if not schema:
        raise PayloadError(f"Unknown usecase: {usecase}")
    if not isinstance(payload, dict):
        raise PayloadError("Request body must be a JSON object")

    try:
        return schema(**payload)
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise PayloadError(messages) from e


def food_input_rejection(text: str) -> Optional[str]:
    """
    Cheap local checks run before any model call.

    Returns:
        A short reason when the text cannot be a food ingredient, None otherwise
    """
    candidate = (text or "").lower().strip()

    if len(candidate) < 2 or TOO_SHORT_PATTERN.match(candidate):
        return "too short to be an ingredient name"
    if PLACEHOLDER_PATTERN.match(candidate):
        return "a placeholder or test value"
    if DIGITS_ONLY_PATTERN.match(candidate):
        return "a number, not an ingredient name"
    if not any(ch.isalpha() for ch in candidate):
        return "missing any letters"
    if REPEATED_CHAR_PATTERN.search(candidate):
        return "made of repeated characters"
    return None


def generate_request_id() -> str:
    """Generate a unique request ID for tracing"""
    return f"req_{uuid.uuid4().hex[:8]}"
