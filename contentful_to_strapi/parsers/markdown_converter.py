"""
Contentful rich text → Strapi Markdown.

Strapi's ``richtext`` attribute stores Markdown, not JSON blocks, so every
Contentful block node becomes one Markdown line and blocks are separated by
a blank line.  Embedded assets are looked up in a map of already uploaded
media (Contentful asset id → :class:`UploadResult`) and rendered as
``![fileName](url)``; an asset that is missing from the map, or that has no
URL, is left out of the output instead of producing a broken image.

All functions in this module are pure apart from diagnostic logging: the
same document and media map always produce the same Markdown.

Known limitation: only the first paragraph of a list item is rendered.
Nested lists and other blocks inside list items are dropped.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from contentful_to_strapi.models.media import UploadResult
from .rich_text_schema import HEADING_TYPES, DocumentNode, NodeType, parse_document

__all__ = [
    "convert",
    "convert_rich_text",
    "render_inline",
    "apply_marks",
    "count_markdown_images",
]

logger = logging.getLogger(__name__)

ResolvedMedia = Mapping[str, Optional[UploadResult]]

# Strapi's editor only knows h1-h4
MAX_HEADING_LEVEL = 4

# Delimiters are applied innermost first
_MARK_DELIMITERS = (
    ("bold", "**"),
    ("italic", "*"),
    ("code", "`"),
)

_MULTI_WS = re.compile(r"\s{2,}")
_ANY_WS = re.compile(r"\s+")
_MARKDOWN_IMAGE = re.compile(r"!\[.*?\]\(.*?\)")


###############################################################################
# Inline rendering
###############################################################################

def apply_marks(value: str, marks: Iterable[str]) -> str:
    """Wrap the trimmed ``value`` in Markdown delimiters for ``marks``."""
    formatted = value.strip()
    active = set(marks)
    for mark, delimiter in _MARK_DELIMITERS:
        if mark in active:
            formatted = f"{delimiter}{formatted}{delimiter}"
    return formatted


def _render_text_run(node: DocumentNode) -> str:
    raw = node.value or ""
    if not raw:
        return ""
    trimmed = raw.strip()
    if not trimmed:
        return " "
    leading = raw[: len(raw) - len(raw.lstrip())]
    trailing = raw[len(raw.rstrip()):]
    return f"{leading}{apply_marks(trimmed, node.marks)}{trailing}"


def _render_link(node: DocumentNode, *, fallback_to_url: bool) -> str:
    label = "".join(child.value or "" for child in node.content if child.is_text).strip()
    url = node.uri
    if label and url:
        return f"[{label}]({url})"
    if url and fallback_to_url:
        return f"[{url}]({url})"
    return ""


def render_inline(node: DocumentNode, *, link_fallback: bool = False) -> str:
    """Render the inline children (text runs and hyperlinks) of ``node``.

    Whitespace between runs is kept as it was in Contentful, whitespace
    inside mark delimiters is pushed outside them, and runs of two or more
    whitespace characters are collapsed once all delimiters are in place.
    """
    parts: List[str] = []
    for child in node.content:
        if child.is_text:
            parts.append(_render_text_run(child))
        elif child.node_type == NodeType.HYPERLINK.value:
            parts.append(_render_link(child, fallback_to_url=link_fallback))
        else:
            logger.debug("Skipping inline node %s inside %s", child.node_type, node.node_type)
    return _MULTI_WS.sub(" ", "".join(parts)).strip()


def _single_line(text: str) -> str:
    # Headings, list items and quotes must stay on one Markdown line
    return _ANY_WS.sub(" ", text).strip()


###############################################################################
# Block rendering
###############################################################################

def _render_document(node: DocumentNode, media: ResolvedMedia) -> List[str]:
    lines: List[str] = []
    for child in node.content:
        lines.extend(render_block(child, media))
    return lines


def _render_paragraph(node: DocumentNode, media: ResolvedMedia) -> List[str]:
    content = render_inline(node)
    return [content] if content else []


def _render_heading(node: DocumentNode, media: ResolvedMedia) -> List[str]:
    level = min(HEADING_TYPES[node.node_type], MAX_HEADING_LEVEL)
    content = _single_line(render_inline(node, link_fallback=True))
    if not content:
        return []
    return [f"{'#' * level} {content}"]


def _render_embedded_asset(node: DocumentNode, media: ResolvedMedia) -> List[str]:
    asset_id = node.target_id
    uploaded = media.get(asset_id) if asset_id else None
    if uploaded is None:
        logger.warning("Embedded asset %s not found or not uploaded", asset_id)
        return []
    if not uploaded.url:
        logger.warning("Embedded asset %s has no URL", asset_id)
        return []
    file_name = uploaded.file_name or f"image-{uploaded.destination_id}"
    return [f"![{file_name}]({uploaded.url})"]


def _render_list(node: DocumentNode, media: ResolvedMedia) -> List[str]:
    ordered = node.node_type == NodeType.ORDERED_LIST.value
    lines: List[str] = []
    counter = 1
    for item in node.content:
        if item.node_type != NodeType.LIST_ITEM.value:
            logger.debug("Skipping %s directly inside %s", item.node_type, node.node_type)
            continue
        paragraphs = [c for c in item.content if c.node_type == NodeType.PARAGRAPH.value]
        if len(item.content) > 1:
            logger.debug("List item has %d blocks; only the first paragraph is kept", len(item.content))
        if not paragraphs:
            continue
        content = _single_line(render_inline(paragraphs[0]))
        if not content:
            continue
        prefix = f"{counter}. " if ordered else "- "
        lines.append(f"{prefix}{content}")
        if ordered:
            counter += 1
    return lines


def _render_blockquote(node: DocumentNode, media: ResolvedMedia) -> List[str]:
    parts = [
        render_inline(child)
        for child in node.content
        if child.node_type == NodeType.PARAGRAPH.value
    ]
    content = _single_line(" ".join(p for p in parts if p))
    return [f"> {content}"] if content else []


def _render_hyperlink(node: DocumentNode, media: ResolvedMedia) -> List[str]:
    link = _render_link(node, fallback_to_url=False)
    return [link] if link else []


_BLOCK_RENDERERS: Dict[str, Callable[[DocumentNode, ResolvedMedia], List[str]]] = {
    NodeType.DOCUMENT.value: _render_document,
    NodeType.PARAGRAPH.value: _render_paragraph,
    NodeType.EMBEDDED_ASSET.value: _render_embedded_asset,
    NodeType.UNORDERED_LIST.value: _render_list,
    NodeType.ORDERED_LIST.value: _render_list,
    NodeType.BLOCKQUOTE.value: _render_blockquote,
    NodeType.HYPERLINK.value: _render_hyperlink,
}
_BLOCK_RENDERERS.update({kind: _render_heading for kind in HEADING_TYPES})


def render_block(node: DocumentNode, media: ResolvedMedia) -> List[str]:
    """Render one block node (and its subtree) to Markdown lines."""
    renderer = _BLOCK_RENDERERS.get(node.node_type)
    if renderer is None:
        logger.warning("Unhandled node type: %s", node.node_type)
        return []
    return renderer(node, media)


###############################################################################
# Public entry points
###############################################################################

def convert(root: Optional[DocumentNode], resolved_media: Optional[ResolvedMedia] = None) -> str:
    """Convert a rich-text tree to a Strapi Markdown string.

    :param root: The document root (usually ``nodeType == "document"``).
    :param resolved_media: Contentful asset id → upload result (or ``None``
        when the upload failed).  Missing entries are omitted from the output.
    :return: Markdown with one block per line and blank lines between blocks.
    """
    if root is None:
        return ""
    return "\n\n".join(render_block(root, resolved_media or {}))


def convert_rich_text(raw: Optional[Mapping[str, Any]], resolved_media: Optional[ResolvedMedia] = None) -> str:
    """Parse raw Contentful rich-text JSON and convert it in one step."""
    return convert(parse_document(raw), resolved_media)


def count_markdown_images(markdown: str) -> int:
    return len(_MARKDOWN_IMAGE.findall(markdown or ""))
