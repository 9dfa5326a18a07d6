"""Whitespace and paging normalisation helpers."""

from __future__ import annotations

from collections.abc import Iterable


def clean(value: str) -> str:
    """Return ``value`` without surrounding whitespace."""
    return value.strip()


def clean_lower(value: str) -> str:
    """Return ``value`` stripped and lower-cased."""
    return value.strip().lower()


def clean_optional(value: str | None) -> str | None:
    """Strip an optional string, mapping blank values to ``None``."""
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def clean_list(values: Iterable[str] | None) -> list[str]:
    """Strip every string and drop the blank ones."""
    if values is None:
        return []
    return [item for item in (value.strip() for value in values) if item]


def page(value: int, fallback: int) -> int:
    """Return ``value`` if it is a valid page number, else ``fallback``."""
    return fallback if value < 1 else value


def limit(value: int, fallback: int, maximum: int) -> int:
    """Return a page size, defaulting below 1 and capping at ``maximum`` when positive."""
    if value < 1:
        return fallback
    if maximum > 0 and value > maximum:
        return maximum
    return value