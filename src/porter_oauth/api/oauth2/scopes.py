"""Scope vocabulary for Porter OAuth.

Capability tiers are plain tuples so protected handlers compose them with
``require_scopes(*SCOPES_BOOK)`` and new tiers need no new code paths.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

SCOPE_READ = "read"  # Profile, searches, itineraries
SCOPE_WRITE = "write"  # Passenger details, preferences
SCOPE_BOOK = "book"  # Create and pay for bookings

SCOPES_READ = (SCOPE_READ,)
SCOPES_WRITE = (SCOPE_READ, SCOPE_WRITE)
SCOPES_BOOK = (SCOPE_READ, SCOPE_BOOK)
SCOPES_ALL = (SCOPE_READ, SCOPE_WRITE, SCOPE_BOOK)


def parse_scope(claim: Any) -> tuple[str, ...]:
    """Normalize a scope value to an ordered tuple without duplicates.

    OAuth2 scope is a space-separated string (RFC 6749 section 3.3); lists are
    accepted too. Anything else yields an empty tuple.
    """
    if claim is None:
        return ()
    if isinstance(claim, str):
        items: Iterable[Any] = claim.split()
    elif isinstance(claim, (list, tuple)):
        items = claim
    else:
        return ()
    seen: dict[str, None] = {}
    for item in items:
        value = str(item).strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


def format_scope(scopes: Iterable[str]) -> str:
    return " ".join(scopes)


def has_scopes(granted: Iterable[str], required: Iterable[str]) -> bool:
    """True when *granted* is a superset of *required*."""
    return set(required).issubset(granted)
