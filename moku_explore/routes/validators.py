"""Lightweight request validation helpers."""

import re
from typing import Any, Dict, List, Optional, Tuple


Rule = Tuple[str, type, Optional[int]]

# Genres are free text from the server, but keep them printable and short
GENRE_PATTERN = re.compile(r'^[\w\s&\'.,:+-]+$', re.UNICODE)
MAX_GENRE_LENGTH = 64


def validate_fields(payload: Dict[str, Any], rules: List[Rule]) -> Optional[str]:
    """
    Validate required fields with optional max length.

    Args:
        payload: Incoming JSON dict.
        rules: List of (field, type, max_length or None).

    Returns:
        None if valid, or error message string.
    """
    for field, expected_type, max_len in rules:
        if field not in payload:
            return f"Missing required field: {field}"
        value = payload.get(field)
        # bool is an int subclass; never accept it where an id is expected
        if isinstance(value, bool) and expected_type is not bool:
            return f"Field '{field}' must be {expected_type.__name__}"
        if not isinstance(value, expected_type):
            return f"Field '{field}' must be {expected_type.__name__}"
        if max_len is not None and len(str(value)) > max_len:
            return f"Field '{field}' exceeds max length {max_len}"
    return None


def validate_genre(genre: Optional[str]) -> Optional[str]:
    """
    Returns:
        None if valid, or error message string.
    """
    if not genre or not genre.strip():
        return "Missing genre"
    if len(genre) > MAX_GENRE_LENGTH:
        return f"Genre exceeds max length {MAX_GENRE_LENGTH}"
    if not GENRE_PATTERN.match(genre):
        return "Invalid genre format"
    return None
