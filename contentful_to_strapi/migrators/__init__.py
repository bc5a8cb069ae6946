"""
Strapi migrators and helpers.

This subpackage provides functions to interact with the Strapi REST API
for creating entries and looking them up, plus the media pipeline that
downloads Contentful assets, re-encodes large images and uploads them to
the Strapi media library with retries, backoff and per-attempt timeouts.
"""
