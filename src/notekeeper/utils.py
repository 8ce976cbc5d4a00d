"""Utility functions for notekeeper."""
import re
import unicodedata
from typing import List, Optional

# Relative blob paths look like "Images/<name>.jpg"; every segment must be
# a plain file-name component.
_SAFE_SEGMENT_PATTERN = re.compile(r"^[a-zA-Z0-9_\-.]+$")


def parse_tags(text: Optional[str]) -> List[str]:
    """Split a comma-separated tag string into individual tags.

    Surrounding whitespace and empty segments are dropped. The relative
    order of the remaining tags is preserved and duplicates are kept.

    Examples:
        "a, b ,, c" -> ["a", "b", "c"]
        "" / None / "  " -> []

    Args:
        text: The user-entered tag string.

    Returns:
        Ordered list of trimmed, non-empty tags.
    """
    if not text:
        return []
    return [segment.strip() for segment in text.split(",") if segment.strip()]


def format_tags(tags: List[str]) -> str:
    """Join tags back into the comma-separated form used for editing."""
    return ", ".join(tags)


def fold_for_search(value: Optional[str]) -> Optional[str]:
    """Fold text for case- and diacritic-insensitive matching.

    Works for any script: "Заметка" and "заметка" fold alike, as do
    "Éclair" and "eclair". None passes through so SQL NULLs stay NULL.
    """
    if value is None:
        return None
    decomposed = unicodedata.normalize("NFKD", value.casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
        >>> escape_like_pattern("file_name")
        'file\\_name'
    """
    # Use str.translate() for single-pass efficiency
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def validate_relative_path(value: str, field_name: str = "path") -> str:
    """Validate that a relative storage path cannot escape its root.

    Rejects absolute paths, backslashes, '..' segments and characters
    outside alphanumerics, '-', '_' and '.'.

    Args:
        value: The relative path to validate.
        field_name: Name of the field for error messages.

    Returns:
        The validated path (unchanged).

    Raises:
        ValueError: If the path is unsafe.
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if value.startswith("/") or "\\" in value:
        raise ValueError(f"{field_name} must be a relative path")

    for segment in value.split("/"):
        if segment in ("", ".", ".."):
            raise ValueError(
                f"{field_name} cannot contain empty, '.' or '..' segments"
            )
        if not _SAFE_SEGMENT_PATTERN.match(segment):
            raise ValueError(
                f"{field_name} segment '{segment}' contains invalid characters"
            )
    return value


def truncate(text: str, length: int) -> str:
    """Shorten text to at most `length` characters, marking the cut."""
    if len(text) <= length:
        return text
    if length <= 1:
        return text[:length]
    return text[: length - 1].rstrip() + "…"
