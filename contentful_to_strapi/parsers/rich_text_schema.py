from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class NodeType(str, Enum):
    DOCUMENT = "document"
    PARAGRAPH = "paragraph"
    HEADING_1 = "heading-1"
    HEADING_2 = "heading-2"
    HEADING_3 = "heading-3"
    HEADING_4 = "heading-4"
    HEADING_5 = "heading-5"
    HEADING_6 = "heading-6"
    UNORDERED_LIST = "unordered-list"
    ORDERED_LIST = "ordered-list"
    LIST_ITEM = "list-item"
    BLOCKQUOTE = "blockquote"
    EMBEDDED_ASSET = "embedded-asset-block"
    HYPERLINK = "hyperlink"
    TEXT = "text"


HEADING_TYPES = {
    NodeType.HEADING_1.value: 1,
    NodeType.HEADING_2.value: 2,
    NodeType.HEADING_3.value: 3,
    NodeType.HEADING_4.value: 4,
    NodeType.HEADING_5.value: 5,
    NodeType.HEADING_6.value: 6,
}


class DocumentNode(BaseModel):
    """One node of a Contentful rich-text tree.

    ``node_type`` is kept as a plain string so that node kinds this project
    does not render (tables, embedded entries, ...) still parse and can be
    reported by the converter instead of failing validation.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    node_type: str = Field(..., alias="nodeType")
    content: Tuple["DocumentNode", ...] = ()
    value: Optional[str] = None
    marks: FrozenSet[str] = frozenset()
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("marks", mode="before")
    @classmethod
    def _mark_types(cls, v: Any) -> Any:
        if not v:
            return frozenset()
        out = set()
        for mark in v:
            if isinstance(mark, Mapping):
                mark = mark.get("type")
            if mark:
                out.add(str(mark))
        return frozenset(out)

    @field_validator("content", mode="before")
    @classmethod
    def _null_content(cls, v: Any) -> Any:
        return v or ()

    @model_validator(mode="after")
    def _text_is_leaf(self) -> "DocumentNode":
        if self.node_type == NodeType.TEXT.value and self.content:
            raise ValueError("text nodes cannot have children")
        return self

    @property
    def is_text(self) -> bool:
        return self.node_type == NodeType.TEXT.value

    @property
    def target_id(self) -> Optional[str]:
        """Id of the linked asset/entry (``data.target.sys.id``), if any."""
        target = self.data.get("target") or {}
        sys = target.get("sys") if isinstance(target, Mapping) else None
        if isinstance(sys, Mapping):
            return sys.get("id")
        return None

    @property
    def uri(self) -> str:
        return str(self.data.get("uri") or "")


DocumentNode.model_rebuild()


def parse_document(raw: Optional[Mapping[str, Any]]) -> Optional[DocumentNode]:
    """Build a :class:`DocumentNode` tree from Contentful rich-text JSON."""
    if not raw:
        return None
    return DocumentNode.model_validate(raw)


# --- Builders for common rich-text nodes ---

def document(nodes: Iterable[DocumentNode]) -> DocumentNode:
    return DocumentNode(node_type=NodeType.DOCUMENT.value, content=tuple(nodes))


def paragraph(nodes: Optional[Iterable[DocumentNode]] = None) -> DocumentNode:
    return DocumentNode(node_type=NodeType.PARAGRAPH.value, content=tuple(nodes or ()))


def heading(level: int, nodes: Optional[Iterable[DocumentNode]] = None) -> DocumentNode:
    lvl = max(1, min(6, int(level or 1)))
    return DocumentNode(node_type=f"heading-{lvl}", content=tuple(nodes or ()))


def text(value: str, marks: Iterable[str] = ()) -> DocumentNode:
    return DocumentNode(node_type=NodeType.TEXT.value, value=value or "", marks=frozenset(marks))


def hyperlink(uri: str, label: str = "") -> DocumentNode:
    return DocumentNode(
        node_type=NodeType.HYPERLINK.value,
        content=(text(label),),
        data={"uri": uri},
    )


def list_item(nodes: Iterable[DocumentNode]) -> DocumentNode:
    return DocumentNode(node_type=NodeType.LIST_ITEM.value, content=tuple(nodes))


def list_container(ordered: bool, items: Iterable[DocumentNode]) -> DocumentNode:
    kind = NodeType.ORDERED_LIST if ordered else NodeType.UNORDERED_LIST
    return DocumentNode(node_type=kind.value, content=tuple(items))


def blockquote(nodes: Iterable[DocumentNode]) -> DocumentNode:
    return DocumentNode(node_type=NodeType.BLOCKQUOTE.value, content=tuple(nodes))


def embedded_asset(asset_id: str) -> DocumentNode:
    return DocumentNode(
        node_type=NodeType.EMBEDDED_ASSET.value,
        data={"target": {"sys": {"id": asset_id, "type": "Link", "linkType": "Asset"}}},
    )


def walk(node: DocumentNode) -> List[DocumentNode]:
    """Depth-first, pre-order list of ``node`` and all its descendants."""
    out = [node]
    for child in node.content:
        out.extend(walk(child))
    return out
