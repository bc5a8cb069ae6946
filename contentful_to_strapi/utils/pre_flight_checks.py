import logging
from typing import Iterable, Optional

import requests

from .errors import PreFlightCheckError

logger = logging.getLogger(__name__)


def _check(session, url: str, headers: dict, *, what: str, not_found: str, params: Optional[dict] = None) -> None:
    http = session or requests
    try:
        response = http.get(url, headers=headers, params=params, timeout=10)
        response.raise_for_status()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        if status in (401, 403):
            raise PreFlightCheckError(f"The {what} token is invalid, expired or lacks permissions.")
        if status == 404:
            raise PreFlightCheckError(not_found)
        raise PreFlightCheckError(f"Unexpected error while checking {what}: {e}")
    except requests.RequestException as e:
        raise PreFlightCheckError(f"Network error while connecting to {what}: {e}")


def run_contentful_pre_flight_checks(config: dict, session=None) -> None:
    """
    Verifies that the Contentful space is reachable with the configured token.

    Args:
        config: The application configuration dictionary.
        session: Optional ``requests``-compatible object.

    Raises:
        PreFlightCheckError: If any check fails.
    """
    cf = config.get("contentful", {})
    space_id = cf.get("space_id")
    access_token = cf.get("access_token")
    if not space_id or not access_token:
        raise PreFlightCheckError("Contentful space id or access token missing from the configuration.")

    host = cf.get("host", "cdn.contentful.com")
    environment = cf.get("environment", "master")
    _check(
        session,
        f"https://{host}/spaces/{space_id}/environments/{environment}/content_types",
        {"Authorization": f"Bearer {access_token}"},
        what="Contentful",
        not_found=f"Contentful space {space_id!r} or environment {environment!r} not found.",
        params={"limit": 1},
    )


def run_strapi_pre_flight_checks(config: dict, collections: Iterable[str] = (), session=None) -> None:
    """
    Verifies that the Strapi instance is correctly configured for migration.

    Checks the API token against the upload plugin and that every
    destination collection is exposed through the REST API.

    Raises:
        PreFlightCheckError: If any check fails.
    """
    logger.info("Running pre-flight checks...")

    strapi = config.get("strapi", {})
    base_url = (strapi.get("base_url") or "").rstrip("/")
    api_token = strapi.get("api_token")
    if not base_url or not api_token:
        raise PreFlightCheckError("Strapi URL or API token missing from the configuration.")

    headers = {"Authorization": f"Bearer {api_token}"}

    # Check 1: token and upload plugin
    _check(
        session,
        f"{base_url}/api/upload/files",
        headers,
        what="Strapi",
        not_found="The Strapi upload plugin is not reachable at /api/upload.",
        params={"pagination[limit]": 1},
    )

    # Check 2: destination collections
    for plural in collections:
        _check(
            session,
            f"{base_url}/api/{plural}",
            headers,
            what="Strapi",
            not_found=(
                f"Collection {plural!r} does not exist or is not exposed; create the content type "
                "and enable find/create for the API token before migrating."
            ),
            params={"pagination[limit]": 1},
        )

    logger.info("Pre-flight checks passed successfully.")
