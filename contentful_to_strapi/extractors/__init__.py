"""
Extractors for Contentful content.

This subpackage provides the Delivery API client used to page through the
entries of a content type, and the resolver that turns the links inside
those entries into concrete assets and entries through the ``includes``
side-table of each response.
"""
