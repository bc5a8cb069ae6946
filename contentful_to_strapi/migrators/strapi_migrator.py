"""
Strapi REST API helper functions for Contentful → Strapi migration.

This module implements the low-level interactions with a Strapi v5
instance: creating and updating collection entries, looking entries up by a
natural key, fetching uploaded media metadata and posting multipart media
uploads.  A simple rate limiter keeps the request rate conservative, and a
generic retry wrapper handles transient network errors and server-side
throttling (429 or 5xx) for the JSON endpoints.

Media uploads are *not* wrapped by :func:`with_retries`; their retry,
backoff and timeout policy lives in
:mod:`contentful_to_strapi.migrators.media_uploader`.

Usage example::

    from contentful_to_strapi.migrators.strapi_migrator import create_entry, find_entry_by_field

    cfg = {"base_url": "https://cms.example.com", "api_token": "..."}
    if not find_entry_by_field(cfg, "journals", "slug", "spring-notes"):
        entry = create_entry(cfg, "journals", {"title": "Spring notes", "slug": "spring-notes"})
        print(entry["id"])
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

import requests

logger = logging.getLogger(__name__)

###############################################################################
# Rate limiting and retry utilities
###############################################################################

class RateLimiter:
    """
    Simple time-based rate limiter.  Ensures that no more than ``rpm``
    requests are dispatched per minute against the Strapi instance.
    """

    def __init__(self, rpm: int = 200) -> None:
        self.rpm = max(1, rpm)
        self.interval = 60.0 / float(self.rpm)
        self._last = 0.0

    def wait(self, time_fn: Callable[[], float] = time.time, sleep_fn: Callable[[float], None] = time.sleep) -> None:
        now = time_fn()
        dt = now - self._last
        if dt < self.interval:
            sleep_fn(self.interval - dt)
        self._last = time_fn()


_limiter = RateLimiter(180)  # Use a conservative default

RETRYABLE_JSON_STATUSES = (429, 500, 502, 503, 504)


def strapi_headers(cfg: Dict[str, Any], token: Optional[str] = None) -> Dict[str, str]:
    """
    Construct the default headers required for Strapi API requests.

    :param cfg: A configuration dictionary with the ``api_token``.
    :param token: Optional token overriding ``cfg["api_token"]``.
    :return: A dictionary of headers including Authorization.
    """
    return {
        "Authorization": f"Bearer {token or cfg.get('api_token', '')}",
    }


def upload_token(cfg: Dict[str, Any]) -> str:
    """Token used for ``/api/upload``: the admin token when configured, else the API token."""
    return cfg.get("admin_token") or cfg.get("api_token", "")


class AdminAuth:
    """
    Admin credentials for one migration run.

    A configured ``admin_token`` is used as-is.  Otherwise, when
    ``admin_email`` and ``admin_password`` are set, one login against
    ``/admin/login`` is made and the JWT is cached on the instance.  Without
    either, uploads fall back to the API token.
    """

    def __init__(self, cfg: Dict[str, Any], session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.session = session
        self._token: Optional[str] = cfg.get("admin_token") or None
        self._attempted = bool(self._token)

    def token(self) -> Optional[str]:
        if self._attempted:
            return self._token
        self._attempted = True
        email, password = self.cfg.get("admin_email"), self.cfg.get("admin_password")
        if not (email and password):
            return None
        http = self.session or requests
        try:
            resp = http.request(
                "POST",
                f"{self.cfg['base_url'].rstrip('/')}/admin/login",
                json={"email": email, "password": password},
                timeout=self.cfg.get("request_timeout", 30),
            )
            resp.raise_for_status()
            body = resp.json() or {}
        except (requests.RequestException, ValueError) as e:
            logger.warning("Strapi admin login failed, uploads will use the API token: %s", e)
            return None
        self._token = (body.get("data") or {}).get("token") or body.get("token")
        return self._token

    def upload_token(self) -> str:
        return self.token() or self.cfg.get("api_token", "")


def with_retries(
    fn: Callable[[], requests.Response],
    *,
    max_attempts: int = 5,
    base_delay: float = 0.7,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    Execute a function returning a ``requests.Response``, retrying on
    transient HTTP errors.  Retries are attempted on status codes 429
    (too many requests) and 5xx server errors.  Backoff is exponential.

    :param fn: A zero-argument callable that performs the HTTP request.
    :param max_attempts: Maximum number of attempts before giving up.
    :param base_delay: Base delay in seconds for exponential backoff.
    :return: The successful ``requests.Response``.
    :raises requests.HTTPError: if all attempts fail.
    """
    attempt = 0
    while True:
        try:
            resp = fn()
            resp.raise_for_status()
            return resp
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status not in RETRYABLE_JSON_STATUSES or attempt >= max_attempts - 1:
                raise
            # Use Retry-After header if provided, otherwise exponential backoff
            retry_after = e.response.headers.get("Retry-After")
            if retry_after:
                wait = float(retry_after)
            else:
                wait = base_delay * (2 ** attempt)
            logger.warning("Strapi returned %s, retrying in %.1fs", status, wait)
            sleep_fn(wait)
            attempt += 1
        except requests.RequestException:
            if attempt >= max_attempts - 1:
                raise
            sleep_fn(base_delay * (2 ** attempt))
            attempt += 1


def strapi_request(
    cfg: Dict[str, Any],
    method: str,
    endpoint: str,
    *,
    json_body: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, Any]] = None,
    session: Optional[requests.Session] = None,
) -> Any:
    """
    Perform one JSON request against Strapi and return the decoded body.

    :raises requests.HTTPError: on a non-2xx response after retries.
    """
    http = session or requests
    url = f"{cfg['base_url'].rstrip('/')}{endpoint}"
    _limiter.wait()

    def do_request() -> requests.Response:
        return http.request(
            method,
            url,
            headers={**strapi_headers(cfg), "Content-Type": "application/json"},
            json=json_body,
            params=params,
            timeout=cfg.get("request_timeout", 30),
        )

    resp = with_retries(do_request)
    if not resp.content:
        return {}
    return resp.json()


###############################################################################
# Entry helpers
###############################################################################

def _singular(plural_name: str) -> str:
    return plural_name[:-1] if plural_name.endswith("s") else plural_name


def create_entry(
    cfg: Dict[str, Any],
    plural_name: str,
    data: Dict[str, Any],
    *,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """
    Create a collection entry.  The Content Manager API
    (``api::{singular}.{singular}``) is tried first; the public REST API
    (``/api/{plural}``) is the fallback.

    :param cfg: Strapi configuration dictionary.
    :param plural_name: Plural API id of the collection, e.g. ``"journals"``.
    :param data: Entry attributes.
    :return: The created entry (``id`` and, on v5, ``documentId``).
    :raises requests.HTTPError: when both APIs reject the entry.
    """
    singular = _singular(plural_name)
    cm_endpoint = f"/content-manager/collection-types/api::{singular}.{singular}"
    try:
        resp = strapi_request(cfg, "POST", cm_endpoint, json_body={"data": data}, session=session)
        entry = resp.get("data") or resp
        logger.info("Created %s entry via Content Manager API (ID: %s)", plural_name, entry.get("id"))
        return entry
    except requests.RequestException as e:
        logger.info("Content Manager API failed for %s (%s), trying REST API", plural_name, e)

    try:
        resp = strapi_request(cfg, "POST", f"/api/{plural_name}", json_body={"data": data}, session=session)
    except requests.HTTPError as e:
        if e.response is not None and e.response.status_code == 404:
            logger.error(
                "Collection %r not found or REST access disabled; enable it under "
                "Settings > Users & Permissions before migrating.", plural_name,
            )
        raise
    entry = resp.get("data") or {}
    logger.info("Created %s entry via REST API (ID: %s)", plural_name, entry.get("id"))
    return entry


def update_entry(
    cfg: Dict[str, Any],
    api_name: str,
    entry_id: Optional[Union[int, str]],
    data: Dict[str, Any],
    *,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """
    Replace the attributes of an entry through the REST API.

    With ``entry_id`` set to ``None`` the single type ``/api/{api_name}``
    is written, which is how single types such as a home page are filled.
    """
    endpoint = f"/api/{api_name}" if entry_id is None else f"/api/{api_name}/{entry_id}"
    resp = strapi_request(cfg, "PUT", endpoint, json_body={"data": data}, session=session)
    return resp.get("data") or {}


def _entries_params(
    filters: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    start: Optional[int] = None,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for key, value in (filters or {}).items():
        if isinstance(value, dict) and "$eq" in value:
            params[f"filters[{key}][$eq]"] = value["$eq"]
        else:
            params[f"filters[{key}]"] = value
    if limit:
        params["pagination[limit]"] = limit
    if start:
        params["pagination[start]"] = start
    return params


def get_entries(
    cfg: Dict[str, Any],
    plural_name: str,
    *,
    filters: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    start: Optional[int] = None,
    session: Optional[requests.Session] = None,
) -> List[Dict[str, Any]]:
    """
    List entries of a collection.  Errors are logged and yield an empty
    list, since lookups are only used for best-effort existence checks.
    """
    params = _entries_params(filters, limit, start)
    try:
        resp = strapi_request(cfg, "GET", f"/api/{plural_name}", params=params, session=session)
    except requests.RequestException as e:
        logger.error("Error fetching %s entries: %s", plural_name, e)
        return []
    return resp.get("data") or []


def find_entry_by_field(
    cfg: Dict[str, Any],
    plural_name: str,
    field: str,
    value: Any,
    *,
    session: Optional[requests.Session] = None,
) -> Optional[Dict[str, Any]]:
    """Return the first entry whose ``field`` equals ``value``, if any."""
    if value is None or value == "":
        return None
    found = get_entries(cfg, plural_name, filters={field: {"$eq": value}}, limit=1, session=session)
    return found[0] if found else None


###############################################################################
# Media helpers
###############################################################################

def get_media_file(
    cfg: Dict[str, Any],
    file_id: Union[int, str],
    *,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """Fetch the metadata (``url``, ``name``, ...) of an uploaded file."""
    return strapi_request(cfg, "GET", f"/api/upload/files/{file_id}", session=session)


UPLOAD_CONNECT_TIMEOUT_S = 10.0
UPLOAD_CHUNK_SIZE = 64 * 1024


class DeadlineBody:
    """
    Upload body that can only be read until a wall-clock deadline.

    The ``timeout`` of ``requests`` bounds each socket operation, not the
    whole exchange, so a server that keeps taking bytes slowly would never
    be cut off.  Reading this body after ``deadline`` raises
    :class:`requests.Timeout`, which aborts the request mid-send.
    """

    def __init__(
        self,
        payload: bytes,
        deadline: float,
        clock: Callable[[], float] = time.monotonic,
        chunk_size: int = UPLOAD_CHUNK_SIZE,
    ) -> None:
        self.payload = payload
        self.deadline = deadline
        self.clock = clock
        self.chunk_size = chunk_size
        self._pos = 0

    def __len__(self) -> int:
        return len(self.payload)

    def remaining(self) -> float:
        return self.deadline - self.clock()

    def check(self) -> None:
        if self.clock() > self.deadline:
            raise requests.Timeout("Upload did not complete before its deadline")

    def read(self, size: int = -1) -> bytes:
        self.check()
        if size is None or size < 0:
            size = len(self.payload) - self._pos
        chunk = self.payload[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk

    def __iter__(self):
        while True:
            chunk = self.read(self.chunk_size)
            if not chunk:
                return
            yield chunk


def post_upload(
    cfg: Dict[str, Any],
    file_name: str,
    data: bytes,
    content_type: Optional[str],
    *,
    timeout: float,
    token: Optional[str] = None,
    attach: Optional[Dict[str, Any]] = None,
    session: Optional[requests.Session] = None,
    clock: Callable[[], float] = time.monotonic,
) -> requests.Response:
    """
    Send one multipart upload to ``/api/upload``.

    The response is returned as-is, without raising on error statuses, so
    that the caller can classify it.  ``attach`` may carry ``ref``,
    ``refId`` and ``field`` to link the file to an existing entry.

    :param timeout: Total seconds allowed for sending the file and reading
        the response.  Past it the attempt raises :class:`requests.Timeout`.
    :param token: Bearer token; defaults to :func:`upload_token`.
    :raises requests.RequestException: on connection failures and timeouts.
    """
    http = session or requests
    url = f"{cfg['base_url'].rstrip('/')}/api/upload"
    form: Dict[str, str] = {}
    if attach and attach.get("ref") and attach.get("refId") and attach.get("field"):
        form = {"ref": str(attach["ref"]), "refId": str(attach["refId"]), "field": str(attach["field"])}
    prepared = requests.Request(
        "POST",
        url,
        files={"files": (file_name, data, content_type or "application/octet-stream")},
        data=form,
    ).prepare()
    _limiter.wait()
    body = DeadlineBody(prepared.body, clock() + timeout, clock=clock)
    resp = http.request(
        "POST",
        url,
        headers={**strapi_headers(cfg, token or upload_token(cfg)), "Content-Type": prepared.headers["Content-Type"]},
        data=body,
        timeout=(min(UPLOAD_CONNECT_TIMEOUT_S, timeout), max(body.remaining(), 0.001)),
        stream=True,
    )
    chunks: List[bytes] = []
    try:
        for chunk in resp.iter_content(8192):
            body.check()
            chunks.append(chunk)
        body.check()
    except requests.Timeout:
        resp.close()
        raise
    resp._content = b"".join(chunks)
    return resp
