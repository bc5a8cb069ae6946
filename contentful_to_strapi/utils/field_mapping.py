"""
Field value mappers from Contentful to Strapi attributes.

Each mapper takes the raw value of a Contentful field (already localized
by the Delivery API) and returns the value Strapi expects, or ``None`` when
the field should be left empty.

Field names may be dotted paths (``hero.image``) to reach into object
fields on the Contentful side and to fill components on the Strapi side.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Union

from contentful_to_strapi.utils.lookups import lookup_key

RelationId = Union[int, str]


def map_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def map_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    number = float(value)
    return int(number) if number.is_integer() else number


def map_date(value: Any) -> Optional[str]:
    """ISO-8601 dates and date-times pass through unchanged."""
    return value or None


def map_boolean(value: Any) -> bool:
    return value is True or value == "true"


def map_sizes(value: Any) -> Optional[List[Any]]:
    """Size lists hold plain labels or ``{"size": label}`` objects; both become labels."""
    if not isinstance(value, (list, tuple)):
        return None
    return [item.get("size", item) if isinstance(item, Mapping) else item for item in value]


def get_path(fields: Optional[Mapping[str, Any]], path: str) -> Any:
    value: Any = fields
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def nest_dotted(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn ``{"hero.title": x}`` into ``{"hero": {"title": x}}``."""
    out: Dict[str, Any] = {}
    for key, value in data.items():
        *parents, leaf = key.split(".")
        target = out
        for part in parents:
            target = target.setdefault(part, {})
        target[leaf] = value
    return out


def _link_key(ref: Any) -> Optional[str]:
    # Text lists (space tags) are keyed by their normalized label
    if isinstance(ref, str):
        return lookup_key(ref) or None
    if not isinstance(ref, Mapping):
        return None
    return (ref.get("sys") or {}).get("id")


def map_reference(
    value: Any, id_mapping: Mapping[str, RelationId]
) -> Union[None, RelationId, List[RelationId]]:
    """
    Translate Contentful links into destination ids.

    A list of links gives a list of ids (unmapped links dropped, ``None``
    when nothing maps); a single link gives one id or ``None``.  Plain
    strings are matched against the mapping by their normalized label.
    """
    if not value:
        return None
    if isinstance(value, (list, tuple)):
        ids = [id_mapping[i] for i in (_link_key(ref) for ref in value) if i and i in id_mapping]
        return ids or None
    source_id = _link_key(value)
    return id_mapping.get(source_id) if source_id else None
