# clubspace/core/ids.py
"""Identifier helpers for backend rows and optimistic local records."""

from typing import Optional
import uuid

LOCAL_ID_PREFIX = "local-"


def generate_id() -> str:
    """Generate a new backend row id."""
    return str(uuid.uuid4())


def generate_local_id() -> str:
    """Generate an id for a record that exists only on this client."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


def is_local_id(value: Optional[str]) -> bool:
    return bool(value) and str(value).startswith(LOCAL_ID_PREFIX)


def parse_id(value: str) -> Optional[uuid.UUID]:
    """Parse and validate a backend id string."""
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return None


def is_valid_id(value: str) -> bool:
    return parse_id(value) is not None
