"""
Rich-text model and converters used by the migration pipeline.

This subpackage exposes ``convert`` and ``convert_rich_text`` from
:mod:`contentful_to_strapi.parsers.markdown_converter` and the
``DocumentNode`` tree model from
:mod:`contentful_to_strapi.parsers.rich_text_schema`.
"""

from .markdown_converter import convert, convert_rich_text
from .rich_text_schema import DocumentNode, parse_document

__all__ = ["convert", "convert_rich_text", "DocumentNode", "parse_document"]
