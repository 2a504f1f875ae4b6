"""Sheet name collision resolution.

Host sheet names are unique case-insensitively, so every comparison here
folds case.  Resolution is deterministic: the same candidate against the
same existing-name set always yields the same result.
"""

from __future__ import annotations

from collections.abc import Iterable


def _folded(names: Iterable[str]) -> set[str]:
    return {n.casefold() for n in names}


def name_exists(name: str, existing_names: Iterable[str]) -> bool:
    """Return True if *name* matches any of *existing_names*, ignoring case."""
    return name.casefold() in _folded(existing_names)


def resolve_unique(candidate: str, existing_names: Iterable[str]) -> str:
    """Return *candidate*, or ``"<candidate> (n)"`` for the first free n >= 2.

    Examples:
        >>> resolve_unique("Sheet1", ["sheet1", "Sheet1 (2)"])
        'Sheet1 (3)'
    """
    taken = _folded(existing_names)
    final = candidate
    counter = 2
    while final.casefold() in taken:
        final = f"{candidate} ({counter})"
        counter += 1
    return final


def copy_name(name: str, existing_names: Iterable[str], suffix: str = "Copy") -> str:
    """Name for a duplicate of *name*: ``"<name> Copy"``, ``"<name> Copy (2)"``, ..."""
    return resolve_unique(f"{name} {suffix}", existing_names)
