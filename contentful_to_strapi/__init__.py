"""
Top-level package for the Contentful → Strapi migration utility.

This package bundles all components required to read entries from the
Contentful Delivery API, resolve their linked assets and entries, convert
rich text to Strapi Markdown, upload media to the Strapi media library and
create the destination entries.  Modules are split into subpackages:

* :mod:`contentful_to_strapi.extractors` – Contentful client and link resolution
* :mod:`contentful_to_strapi.parsers` – rich text model and Markdown converter
* :mod:`contentful_to_strapi.migrators` – Strapi API interactions and the media pipeline
* :mod:`contentful_to_strapi.models` – pydantic value objects and payloads
* :mod:`contentful_to_strapi.utils` – error reporting, field mappers and checks

Each layer has no direct knowledge of configuration or execution strategy;
orchestration is handled in :mod:`contentful_to_strapi.migration_tool`.
"""
