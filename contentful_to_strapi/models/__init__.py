"""
Typed models shared by the extractors, parsers and migrators.

:mod:`contentful_to_strapi.models.media` holds the asset/upload/transcode
value objects; :mod:`contentful_to_strapi.models.strapi_entry` holds the
payload model sent to the Strapi collection APIs.
"""

from .media import MediaReference, TranscodeDecision, UploadResult
from .strapi_entry import StrapiEntry

__all__ = ["MediaReference", "TranscodeDecision", "UploadResult", "StrapiEntry"]
