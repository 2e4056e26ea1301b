from typing import Any, Mapping, Optional

UNKNOWN = "Unknown"

# Placeholders that parsers emit instead of a real value
_PLACEHOLDERS = {"unknown", "other", ""}


def is_known(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in _PLACEHOLDERS
    return True


def first_known(*candidates: Any, default: Any = UNKNOWN) -> Any:
    """
    First-match-wins cascade: returns the first candidate carrying a real
    value, in the order given, or `default` when none does.
    """
    for candidate in candidates:
        if is_known(candidate):
            return candidate.strip() if isinstance(candidate, str) else candidate
    return default


def dig(record: Mapping, path: str) -> Optional[Any]:
    """Dotted-path lookup, e.g. dig(record, "geo.country")."""
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current
