"""
Contentful Delivery API client.

Only the read side of the Delivery API is needed by the migration: listing
the entries of one content type, with linked entries and assets returned in
the ``includes`` side-table.  Each page is returned together with its
:class:`~contentful_to_strapi.extractors.reference_resolver.InclusionIndex`
so that links can be resolved without further requests.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests

from contentful_to_strapi.migrators.strapi_migrator import RateLimiter, with_retries
from .reference_resolver import InclusionIndex

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_INCLUDE_DEPTH = 10


@dataclasses.dataclass
class ContentfulPage:
    items: List[Dict[str, Any]]
    index: InclusionIndex
    total: int
    skip: int = 0
    limit: int = DEFAULT_PAGE_SIZE


class ContentfulClient:
    """
    Minimal Contentful Delivery API client.

    :param space_id: Contentful space id.
    :param access_token: Delivery (or Preview) API token.
    :param environment: Environment id, ``master`` by default.
    :param host: ``cdn.contentful.com``, or ``preview.contentful.com`` for drafts.
    :param session: Optional ``requests``-compatible object.
    """

    def __init__(
        self,
        space_id: str,
        access_token: str,
        environment: str = "master",
        host: str = "cdn.contentful.com",
        session: Optional[requests.Session] = None,
        rpm: int = 3000,
    ) -> None:
        self.space_id = space_id
        self.access_token = access_token
        self.environment = environment
        self.host = host
        self.session = session
        self._limiter = RateLimiter(rpm)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], session: Optional[requests.Session] = None) -> "ContentfulClient":
        return cls(
            cfg["space_id"],
            cfg["access_token"],
            environment=cfg.get("environment", "master"),
            host=cfg.get("host", "cdn.contentful.com"),
            session=session,
        )

    @property
    def base_url(self) -> str:
        return f"https://{self.host}/spaces/{self.space_id}/environments/{self.environment}"

    def get_entries(
        self,
        content_type: str,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        include: int = MAX_INCLUDE_DEPTH,
        filters: Optional[Dict[str, Any]] = None,
    ) -> ContentfulPage:
        """
        Fetch one page of entries of ``content_type``.

        :param filters: Extra query parameters, e.g. ``{"fields.slug": "spring-notes"}``.
        :raises requests.HTTPError: when the Delivery API rejects the request.
        """
        params: Dict[str, Any] = {
            "content_type": content_type,
            "limit": limit,
            "skip": skip,
            "include": min(include, MAX_INCLUDE_DEPTH),
        }
        params.update(filters or {})
        http = self.session or requests
        self._limiter.wait()

        def do_request() -> requests.Response:
            return http.get(
                f"{self.base_url}/entries",
                headers={"Authorization": f"Bearer {self.access_token}"},
                params=params,
                timeout=30,
            )

        payload = with_retries(do_request).json()
        items = payload.get("items") or []
        logger.info("Fetched %d %s entries (skip=%d, total=%s)", len(items), content_type, skip, payload.get("total"))
        return ContentfulPage(
            items=items,
            index=InclusionIndex.from_response(payload),
            total=int(payload.get("total") or 0),
            skip=skip,
            limit=limit,
        )

    def iter_entries(
        self,
        content_type: str,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        include: int = MAX_INCLUDE_DEPTH,
        filters: Optional[Dict[str, Any]] = None,
        max_items: Optional[int] = None,
    ) -> Iterator[Tuple[Dict[str, Any], InclusionIndex]]:
        """Yield ``(entry, index)`` pairs across all pages."""
        skip = 0
        yielded = 0
        while True:
            page = self.get_entries(content_type, limit=page_size, skip=skip, include=include, filters=filters)
            for item in page.items:
                if max_items is not None and yielded >= max_items:
                    return
                yield item, page.index
                yielded += 1
            skip += len(page.items)
            if not page.items or skip >= page.total:
                return
