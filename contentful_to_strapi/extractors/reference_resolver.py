"""
Resolution of Contentful links against the inclusion side-table.

The Delivery API returns linked entries and assets once, in the
``includes`` section of a response, and leaves ``{"sys": {"type": "Link"}}``
stubs in the fields that reference them.  :class:`InclusionIndex` turns
that side-table into a lookup by id; the functions below resolve rich-text
embedded assets, top-level media fields and relation fields through it.

Nothing here raises for a missing reference: the id is logged and the
caller receives ``None`` for it, so the rest of the record can still be
migrated.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from contentful_to_strapi.models.media import MediaReference
from contentful_to_strapi.parsers.rich_text_schema import DocumentNode, NodeType, walk

logger = logging.getLogger(__name__)

ASSET = "Asset"
ENTRY = "Entry"


class InclusionIndex:
    """Read-only lookup of included entries and assets by ``sys.id``."""

    def __init__(self, assets: Optional[Mapping[str, Dict[str, Any]]] = None,
                 entries: Optional[Mapping[str, Dict[str, Any]]] = None) -> None:
        self._by_type: Dict[str, Dict[str, Dict[str, Any]]] = {
            ASSET: dict(assets or {}),
            ENTRY: dict(entries or {}),
        }

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "InclusionIndex":
        """Index ``includes.Asset``, ``includes.Entry`` and the page's own items.

        Items are indexed as entries too: an entry linked from another item
        of the same page is not repeated inside ``includes``.
        """
        includes = payload.get("includes") or {}
        assets = _index_by_id(includes.get(ASSET) or [])
        entries = _index_by_id(payload.get("items") or [])
        entries.update(_index_by_id(includes.get(ENTRY) or []))
        return cls(assets=assets, entries=entries)

    def get(self, link_type: str, sys_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not sys_id:
            return None
        return self._by_type.get(link_type, {}).get(sys_id)

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_type.values())


def _index_by_id(objects: Iterable[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for obj in objects:
        sys_id = (obj.get("sys") or {}).get("id")
        if sys_id:
            out[sys_id] = dict(obj)
    return out


def collect_embedded_asset_ids(root: Optional[DocumentNode]) -> List[str]:
    """Ids of every embedded asset block in ``root``, in document order, without duplicates."""
    if root is None:
        return []
    seen: Dict[str, None] = {}
    for node in walk(root):
        if node.node_type == NodeType.EMBEDDED_ASSET.value and node.target_id:
            seen.setdefault(node.target_id, None)
    return list(seen)


def resolve_embedded(root: Optional[DocumentNode], index: InclusionIndex) -> Dict[str, Optional[MediaReference]]:
    """Map each embedded asset id of ``root`` to its resolved reference.

    Unresolved ids are kept in the result with a ``None`` value.
    """
    resolved: Dict[str, Optional[MediaReference]] = {}
    for asset_id in collect_embedded_asset_ids(root):
        asset = index.get(ASSET, asset_id)
        reference = MediaReference.from_asset(asset) if asset else None
        if reference is None:
            logger.warning("Embedded asset %s not found in includes", asset_id)
        resolved[asset_id] = reference
    return resolved


def _link_id(value: Mapping[str, Any]) -> Optional[str]:
    return (value.get("sys") or {}).get("id")


def resolve_linked_entity(link: Optional[Mapping[str, Any]], index: InclusionIndex,
                          entity_type: str = ENTRY) -> Optional[Dict[str, Any]]:
    """Resolve a link stub (or pass through an already-resolved object)."""
    if not link:
        return None
    if link.get("fields") is not None:
        return dict(link)
    sys_id = _link_id(link)
    entity = index.get(entity_type, sys_id)
    if entity is None:
        logger.warning("%s link %s not found in includes", entity_type, sys_id)
    return entity


def resolve_asset_field(value: Optional[Mapping[str, Any]], index: InclusionIndex) -> Optional[MediaReference]:
    """Resolve a top-level single media field to a :class:`MediaReference`."""
    asset = resolve_linked_entity(value, index, ASSET)
    if asset is None:
        return None
    reference = MediaReference.from_asset(asset)
    if reference is None:
        logger.warning("Asset %s has no file payload", _link_id(asset))
    return reference


def resolve_asset_list(values: Optional[Iterable[Mapping[str, Any]]], index: InclusionIndex) -> List[MediaReference]:
    """Resolve a gallery field, dropping unresolved assets while keeping order."""
    out: List[MediaReference] = []
    for value in values or []:
        reference = resolve_asset_field(value, index)
        if reference is not None:
            out.append(reference)
    return out
