from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


def _slugify(value: str) -> str:
    text = value.strip().lower()
    out = []
    prev_dash = False
    for ch in text:
        if ch.isalnum():
            out.append(ch)
            prev_dash = False
        else:
            if not prev_dash:
                out.append("-")
            prev_dash = True
    slug = "".join(out).strip("-")
    return slug[:200]


class StrapiEntry(BaseModel):
    """Payload for one Strapi collection entry.

    ``title`` and ``slug`` are the natural keys used for existence checks; all
    remaining content-model fields travel as extra attributes and are sent
    verbatim.  Media fields hold Strapi file ids, relation fields hold lists of
    Strapi entry ids.

    A ``slug`` passed as empty is derived from ``title`` (or ``name``); an
    entry built without a ``slug`` key gets none, for collections that have
    no slug attribute.
    """

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    title: Optional[str] = None
    name: Optional[str] = None
    slug: Optional[str] = None

    @field_validator("slug", mode="before")
    @classmethod
    def _ensure_slug(cls, v: Optional[str], info):  # type: ignore[override]
        if v is not None and str(v).strip():
            return str(v).strip()
        for key in ("title", "name"):
            value = info.data.get(key)
            if isinstance(value, str) and value.strip():
                return _slugify(value)
        return v

    def to_strapi_payload(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        for key, value in list(data.items()):
            if isinstance(value, list) and all(isinstance(v, (int, str)) for v in value):
                data[key] = _dedup(value)
        return {"data": data}


def _dedup(values: list[Any]) -> list[Any]:
    seen = set()
    deduped = []
    for item in values:
        if item not in seen:
            seen.add(item)
            deduped.append(item)
    return deduped
