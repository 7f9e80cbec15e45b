"""
Scripture reference normalization.

Every place that compares references (cache keys, cache lookups, repair
tooling) goes through ``normalize_reference`` so "John 3:16-17",
"John 3:16 - 17" and the provider's "John 3:16–17" all land on one key.
"""
from __future__ import annotations

import re
from typing import Iterable

EN_DASH = "–"

# hyphen, hyphen-minus, figure dash, en dash, em dash, minus sign
_DASHES = "-‐‑‒–—−"
_RANGE = re.compile(rf"(?<=[0-9])\s*[{_DASHES}]+\s*(?=[0-9A-Z])")
_SPACED_COLON = re.compile(r"(?<=\d)\s*:\s*(?=\d)")
_SPACED_COMMA = re.compile(r"(?<=\d)\s*,\s*(?=\d)")
_SEMICOLONS = re.compile(r"\s*;\s*")
_WS = re.compile(r"\s+")


def normalize_reference(reference: str) -> str:
    """
    Canonical string form of a scripture reference.

    >>> normalize_reference("  John 3 : 16 - 17 ")
    'John 3:16–17'
    >>> normalize_reference("Romans 5:8;John 3:16-17")
    'Romans 5:8; John 3:16–17'
    """
    s = _WS.sub(" ", (reference or "").strip())
    if not s:
        raise ValueError("reference must not be empty")
    s = _SPACED_COLON.sub(":", s)
    s = _SPACED_COMMA.sub(",", s)
    s = _RANGE.sub(EN_DASH, s)
    s = _SEMICOLONS.sub("; ", s).strip("; ")
    return s


def join_references(references: Iterable[str]) -> str:
    """One provider query for a plan item that spans several ranges."""
    parts = [r.strip() for r in references if r and r.strip()]
    if not parts:
        raise ValueError("at least one reference is required")
    return "; ".join(parts)


__all__ = ["EN_DASH", "normalize_reference", "join_references"]
