"""
Back-reference tags linking generated formwork to its structural source.

Tags are stored in a free-form text field on the host entity. Accepted forms
are a bare identifier ("123456") or a prefixed one ("ID: 123456", prefix is
case-insensitive). Tags are always written in the prefixed form.
"""

import re
from typing import Optional

from formwork.core.exceptions import ConversionRecordMissing

TAG_PREFIX = "ID"

_TAG_PATTERN = re.compile(r"^\s*(?:id\s*:\s*)?(\d+)\s*$", re.IGNORECASE)


def format_tag(source_id: int) -> str:
    """Build the tag text for a structural element id."""
    if source_id < 0:
        raise ValueError(f"Element id must be non-negative, got {source_id}")
    return f"{TAG_PREFIX}: {source_id}"


def parse_tag(text: Optional[str]) -> int:
    """
    Parse a back-reference tag.

    Args:
        text: Tag text read from the host entity

    Returns:
        Referenced element id

    Raises:
        ConversionRecordMissing: If the text is empty or not a valid tag
    """
    if text is None or not text.strip():
        raise ConversionRecordMissing("Entity has no back-reference tag")

    match = _TAG_PATTERN.match(text)
    if not match:
        raise ConversionRecordMissing(f"Unrecognized back-reference tag: '{text}'")

    return int(match.group(1))


def try_parse_tag(text: Optional[str]) -> Optional[int]:
    """Parse a tag, returning None instead of raising."""
    try:
        return parse_tag(text)
    except ConversionRecordMissing:
        return None


def has_tag(text: Optional[str]) -> bool:
    """Check whether text carries a valid back-reference."""
    return try_parse_tag(text) is not None
