"""
Extraction of a declared identity name from a vision model description.
"""

import re
from typing import Optional

# Tried in order; the first pattern yielding an acceptable name wins.
IDENTITY_PATTERNS = [
    re.compile(r"CELEBRITY:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"IDENTITY:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"NAME:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"This is\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)"),
    re.compile(r"recognized as\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)", re.IGNORECASE),
]

PLACEHOLDER_NAMES = {"unknown", "none", "not recognized", "unidentified", "n/a", "not a celebrity"}

MIN_NAME_LENGTH = 3

_PARENTHETICAL = re.compile(r"\s*\(.*?\)\s*")
_TRAILING_PUNCTUATION = re.compile(r"[.,;:!?]$")
_WRAPPING = "*\"'[]` "


def clean_identity_name(raw: str) -> str:
    """Strip markup, parenthetical asides and trailing punctuation."""
    name = raw.strip().strip(_WRAPPING)
    name = _PARENTHETICAL.sub(" ", name)
    name = _TRAILING_PUNCTUATION.sub("", name.strip())
    name = name.strip().strip(_WRAPPING)
    return " ".join(name.split())


def is_acceptable_name(name: str) -> bool:
    return len(name) >= MIN_NAME_LENGTH and name.lower() not in PLACEHOLDER_NAMES


def extract_identity_name(description: Optional[str]) -> Optional[str]:
    """
    Return the identity name confidently stated in ``description``, or None.

    Placeholder answers such as "Unknown" and names shorter than three
    characters are rejected.
    """
    if not description:
        return None

    for pattern in IDENTITY_PATTERNS:
        match = pattern.search(description)
        if not match:
            continue
        name = clean_identity_name(match.group(1))
        if is_acceptable_name(name):
            return name

    return None
