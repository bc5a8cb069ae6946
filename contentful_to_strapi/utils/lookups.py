from __future__ import annotations

from html import unescape
import re
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional


def normalize_label(value: Any) -> str:
    """Unescape HTML entities and collapse inner whitespace.

    Preserves original casing but trims leading/trailing spaces
    and converts sequences of whitespace to a single space.
    """
    if value is None:
        return ""
    text = unescape(str(value)).strip()
    # Collapse multiple whitespace to single space
    text = re.sub(r"\s+", " ", text)
    return text


def lookup_key(value: Any) -> str:
    return normalize_label(value).lower()


def freeze(mapping: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only view over a copy of ``mapping``."""
    return MappingProxyType(dict(mapping))


def destination_id(entry: Mapping[str, Any]) -> Optional[Any]:
    """Id used for relations: ``documentId`` on Strapi v5, ``id`` otherwise."""
    return entry.get("documentId") or entry.get("id")


def build_label_lookup(entries: Iterable[Mapping[str, Any]], label_field: str) -> Mapping[str, Any]:
    """
    Map the normalized ``label_field`` of existing destination entries to
    their id.  First entry wins on duplicate labels.
    """
    lookup: Dict[str, Any] = {}
    for entry in entries:
        key = lookup_key(entry.get(label_field))
        if key and key not in lookup:
            lookup[key] = destination_id(entry)
    return freeze(lookup)
