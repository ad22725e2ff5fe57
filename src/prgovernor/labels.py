from __future__ import annotations

from dataclasses import dataclass
from typing import Final


LABEL_PREFIX: Final[str] = "prgovernor:"


@dataclass(frozen=True)
class _Labels:
    AUTOMERGE: str = f"{LABEL_PREFIX}automerge"
    MERGE_READY: str = f"{LABEL_PREFIX}merge-ready"


LABELS: Final[_Labels] = _Labels()


def is_label_match(label: str, name: str) -> bool:
    """True when ``label`` is ``name`` with or without the namespace prefix.

    Earlier releases applied the bare names (``automerge``), so those are
    still recognized and cleaned up. Matching is case-insensitive and never
    looser than that: ``automerge-later`` does not match.
    """
    normalized = label.strip().lower()
    if not normalized:
        return False
    expected = name.lower()
    if normalized == expected:
        return True
    return f"{LABEL_PREFIX}{normalized}" == expected


def find_matching_label(labels: tuple[str, ...] | list[str], name: str) -> str | None:
    for label in labels:
        if is_label_match(label, name):
            return label
    return None
