"""
Product version comparison.

Versions compare as dotted numbers ("1.10.0" > "1.9.2") when every part is
numeric, ignoring a leading "v". Anything else falls back to a
case-insensitive string comparison. An empty version sorts lowest.
"""
from functools import cmp_to_key
from typing import Iterable, List, Optional, Tuple


def _numeric_parts(version: str) -> Optional[Tuple[int, ...]]:
    value = version.strip()
    if value[:1] in ("v", "V"):
        value = value[1:]
    parts = value.split(".")
    if not all(p.isdigit() for p in parts):
        return None
    return tuple(int(p) for p in parts)


def _pad(a: Tuple[int, ...], b: Tuple[int, ...]) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    width = max(len(a), len(b))
    return a + (0,) * (width - len(a)), b + (0,) * (width - len(b))


def compare_versions(a: Optional[str], b: Optional[str]) -> int:
    """
    Compare two product versions.

    Returns:
        Negative if a < b, zero if equal, positive if a > b
    """
    if not a or not a.strip():
        return 0 if not b or not b.strip() else -1
    if not b or not b.strip():
        return 1

    left, right = _numeric_parts(a), _numeric_parts(b)
    if left is not None and right is not None:
        left, right = _pad(left, right)
    else:
        left, right = a.strip().lower(), b.strip().lower()

    return (left > right) - (left < right)


def is_newer(candidate: Optional[str], current: Optional[str]) -> bool:
    return compare_versions(candidate, current) > 0


def sort_versions_desc(versions: Iterable[str]) -> List[str]:
    """Newest first."""
    return sorted(versions, key=cmp_to_key(compare_versions), reverse=True)
