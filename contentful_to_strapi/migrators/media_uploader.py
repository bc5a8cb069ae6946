"""
Download → transcode → upload pipeline for Contentful media.

:class:`MediaUploader` moves one remote asset into Strapi's media library.
The asset is downloaded into a per-call temporary directory (one redirect
hop allowed), raster images are passed through
:mod:`contentful_to_strapi.migrators.media_transcoder`, and the result is
posted to ``/api/upload`` with up to three attempts.

Each attempt ends in one of three outcomes:

* ``SUCCESS``: Strapi returned the uploaded file.
* ``RETRYABLE``: 5xx, 408, connection failure or timeout.  The next attempt
  waits ``min(30 s, 3 s * 2 ** (attempt - 1))``.
* ``TERMINAL``: any other status, or an empty upload response.

Failures never raise; the caller receives ``None`` and the record is
migrated without that media.  Temporary files are removed before
``upload`` returns, whatever the outcome.

Usage example::

    uploader = MediaUploader(cfg)
    result = uploader.upload_asset(reference, "cover")
    if result:
        print(result.destination_id, result.url)
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import os
import re
import shutil
import tempfile
import time
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urljoin

import requests

from contentful_to_strapi.models.media import MediaReference, UploadResult, bytes_to_mb
from contentful_to_strapi.utils.errors import report_error
from .media_transcoder import is_raster_image, transcode_image
from .strapi_migrator import AdminAuth, get_media_file, post_upload

logger = logging.getLogger(__name__)

MAX_UPLOAD_ATTEMPTS = 3
BASE_BACKOFF_MS = 3000
MAX_BACKOFF_MS = 30000

MIN_UPLOAD_TIMEOUT_MS = 30000
MAX_UPLOAD_TIMEOUT_MS = 120000

FAILED_UPLOAD_DELAY_MS = 3000

_REDIRECT_STATUSES = (301, 302, 303, 307, 308)
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


###############################################################################
# Pure policy helpers
###############################################################################

def backoff_delay_ms(attempt: int) -> int:
    """Delay before the attempt following ``attempt`` (1-based)."""
    return min(MAX_BACKOFF_MS, BASE_BACKOFF_MS * 2 ** (max(1, attempt) - 1))


def upload_timeout_ms(size_mb: float) -> int:
    """Per-attempt upload timeout: 30 s, plus 3 s per MB above 5 MB, capped at 120 s."""
    return int(min(MAX_UPLOAD_TIMEOUT_MS, max(MIN_UPLOAD_TIMEOUT_MS, 30000 + 3000 * (size_mb - 5))))


def inter_upload_delay_ms(uploads_in_record: int, size_mb: float) -> int:
    """
    Pause after a successful upload.  Grows with ``uploads_in_record``, the
    number of uploads attempted for the record so far, this one and failed
    ones included.
    """
    base = 5000 if size_mb > 5 else 3000
    progressive = min(uploads_in_record * 2000, 10000)
    return min(base + progressive, 15000)


def large_file_delay_ms(size_mb: float) -> int:
    """Pause after a singular media field, longer for files above 5 MB."""
    if size_mb > 5:
        return int(5000 + 1500 * size_mb)
    return 3000


def sanitize_file_name(name: str) -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name or "")
    return cleaned or "file"


def adjust_extension(name: str, output_format: Optional[str]) -> str:
    """Replace the extension of ``name`` to match a transcoded format."""
    if output_format == "PNG":
        ext = ".png"
    elif output_format == "JPEG":
        ext = ".jpg"
    else:
        return name
    stem, _ = os.path.splitext(name)
    return f"{stem}{ext}"


###############################################################################
# Retry state machine
###############################################################################

class AttemptOutcome(enum.Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclasses.dataclass
class RetryState:
    """Attempt bookkeeping for one upload.

    ``attempt`` never exceeds ``max_attempts`` and ``delay_ms`` never
    decreases between retries.
    """

    max_attempts: int = MAX_UPLOAD_ATTEMPTS
    attempt: int = 0
    last_error: Optional[str] = None
    delay_ms: int = 0

    def start_attempt(self) -> int:
        if self.attempt >= self.max_attempts:
            raise RuntimeError("upload attempts exhausted")
        self.attempt += 1
        return self.attempt

    def record(self, outcome: AttemptOutcome, error: Optional[str] = None) -> bool:
        """Register the outcome of the current attempt.

        :return: True when another attempt should be made after ``delay_ms``.
        """
        if outcome is AttemptOutcome.SUCCESS:
            self.last_error = None
            return False
        self.last_error = error
        if outcome is AttemptOutcome.TERMINAL or self.attempt >= self.max_attempts:
            return False
        self.delay_ms = backoff_delay_ms(self.attempt)
        return True


def classify_status(status_code: int) -> AttemptOutcome:
    if 200 <= status_code < 300:
        return AttemptOutcome.SUCCESS
    if status_code >= 500 or status_code == 408:
        return AttemptOutcome.RETRYABLE
    return AttemptOutcome.TERMINAL


def classify_exception(exc: BaseException) -> AttemptOutcome:
    if isinstance(exc, (requests.Timeout, requests.ConnectionError, requests.exceptions.ChunkedEncodingError)):
        return AttemptOutcome.RETRYABLE
    return AttemptOutcome.TERMINAL


def _uploaded_file(resp: requests.Response) -> Optional[Dict[str, Any]]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, list):
        body = body[0] if body else None
    if not isinstance(body, dict) or body.get("id") is None:
        return None
    return body


###############################################################################
# Pipeline
###############################################################################

class MediaUploader:
    """
    Uploads remote media to Strapi.

    :param cfg: Strapi configuration dictionary (``base_url``, ``api_token``,
        optional ``admin_token`` / ``admin_email`` / ``admin_password``,
        ``download_timeout``).
    :param session: ``requests``-compatible object used for every HTTP call.
    :param sleep_fn: Called with seconds between attempts.
    :param temp_root: Parent directory for the per-call temporary directory.
    :param admin_auth: Shared :class:`AdminAuth` for the run.
    :param deadline: Object with a ``check()`` method raising when the run
        budget is spent; checked before each upload.
    :param clock: Monotonic clock bounding each upload attempt.
    """

    def __init__(
        self,
        cfg: Dict[str, Any],
        session: Optional[requests.Session] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        temp_root: Optional[str] = None,
        admin_auth: Optional[AdminAuth] = None,
        deadline: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cfg = cfg
        self.session = session
        self.sleep_fn = sleep_fn
        self.temp_root = temp_root
        self.admin_auth = admin_auth or AdminAuth(cfg, session=session)
        self.deadline = deadline
        self.clock = clock

    # -- download -----------------------------------------------------------

    def _get(self, url: str) -> requests.Response:
        http = self.session or requests
        return http.get(url, allow_redirects=False, timeout=self.cfg.get("download_timeout", 60))

    def download(self, source_url: str) -> Optional[Tuple[bytes, Optional[str]]]:
        """Fetch ``source_url`` following at most one redirect.  ``None`` on any failure."""
        if source_url.startswith("//"):
            source_url = f"https:{source_url}"
        try:
            resp = self._get(source_url)
            if resp.status_code in _REDIRECT_STATUSES:
                location = resp.headers.get("Location") or resp.headers.get("location")
                if not location:
                    logger.error("Redirect without Location while downloading %s", source_url)
                    return None
                resp = self._get(urljoin(source_url, location))
                if resp.status_code in _REDIRECT_STATUSES:
                    logger.error("Too many redirects while downloading %s", source_url)
                    return None
            if not 200 <= resp.status_code < 300:
                logger.error("Download of %s failed with HTTP %s", source_url, resp.status_code)
                return None
        except requests.RequestException as e:
            logger.error("Download of %s failed: %s", source_url, e)
            return None
        return resp.content, resp.headers.get("Content-Type")

    # -- upload -------------------------------------------------------------

    def _attempt(self, file_name: str, data: bytes, content_type: Optional[str], timeout_s: float,
                 attach: Optional[Dict[str, Any]]) -> Tuple[AttemptOutcome, Optional[str], Optional[Dict[str, Any]]]:
        try:
            resp = post_upload(
                self.cfg, file_name, data, content_type,
                timeout=timeout_s, token=self.admin_auth.upload_token(),
                attach=attach, session=self.session, clock=self.clock,
            )
        except requests.RequestException as e:
            return classify_exception(e), f"{type(e).__name__}: {e}", None
        outcome = classify_status(resp.status_code)
        if outcome is not AttemptOutcome.SUCCESS:
            return outcome, f"HTTP {resp.status_code}: {resp.text[:200]}", None
        uploaded = _uploaded_file(resp)
        if uploaded is None:
            return AttemptOutcome.TERMINAL, "empty upload response", None
        return AttemptOutcome.SUCCESS, None, uploaded

    def _resolve_url(self, uploaded: Dict[str, Any]) -> str:
        url = uploaded.get("url") or ""
        if url:
            return url
        try:
            info = get_media_file(self.cfg, uploaded["id"], session=self.session)
        except requests.RequestException as e:
            logger.warning("Could not fetch URL of uploaded file %s: %s", uploaded["id"], e)
            return ""
        return (info or {}).get("url") or ""

    def upload(
        self,
        source_url: str,
        file_name: str,
        declared_content_type: Optional[str],
        destination_field_hint: str,
        attach: Optional[Dict[str, Any]] = None,
    ) -> Optional[UploadResult]:
        """
        Download, transcode and upload one file.

        :param source_url: Remote URL of the asset.
        :param file_name: Original file name; sanitized before upload.
        :param declared_content_type: Content type declared by Contentful.
        :param destination_field_hint: Destination field name, used in logs and reports.
        :param attach: Optional ``ref`` / ``refId`` / ``field`` form fields.
        :return: The upload result, or ``None`` when the media could not be moved.
        """
        if self.deadline is not None:
            self.deadline.check()

        tmpdir = tempfile.mkdtemp(prefix="c2s-media-", dir=self.temp_root)
        try:
            downloaded = self.download(source_url)
            if downloaded is None:
                report_error("MEDIA_DOWNLOAD", {"url": source_url, "field": destination_field_hint})
                return None
            data, served_type = downloaded
            content_type = declared_content_type or served_type
            safe_name = sanitize_file_name(file_name)
            original_path = os.path.join(tmpdir, safe_name)
            with open(original_path, "wb") as fh:
                fh.write(data)
            logger.info("Downloaded %s (%.2f MB) for %s", safe_name, bytes_to_mb(len(data)), destination_field_hint)

            if is_raster_image(content_type):
                result = transcode_image(data, content_type)
                if result.transcoded:
                    if result.content_type != content_type:
                        safe_name = adjust_extension(safe_name, result.decision.output_format)
                    stem, ext = os.path.splitext(safe_name)
                    with open(os.path.join(tmpdir, f"{stem}_compressed{ext}"), "wb") as fh:
                        fh.write(result.data)
                    data, content_type = result.data, result.content_type

            return self._upload_with_retries(safe_name, data, content_type, destination_field_hint, attach)
        finally:
            try:
                shutil.rmtree(tmpdir)
            except OSError as e:
                logger.debug("Could not remove temporary directory %s: %s", tmpdir, e)

    def _upload_with_retries(self, file_name: str, data: bytes, content_type: Optional[str],
                             hint: str, attach: Optional[Dict[str, Any]]) -> Optional[UploadResult]:
        size_mb = bytes_to_mb(len(data))
        timeout_s = upload_timeout_ms(size_mb) / 1000.0
        state = RetryState()
        while True:
            attempt = state.start_attempt()
            logger.info("Uploading %s (%.2f MB), attempt %d/%d", file_name, size_mb, attempt, state.max_attempts)
            outcome, error, uploaded = self._attempt(file_name, data, content_type, timeout_s, attach)
            retry = state.record(outcome, error)
            if outcome is AttemptOutcome.SUCCESS:
                return UploadResult(
                    destination_id=uploaded["id"],
                    size_mb=size_mb,
                    url=self._resolve_url(uploaded),
                    file_name=uploaded.get("name") or file_name,
                )
            if not retry:
                break
            logger.warning(
                "Upload of %s failed (%s), retrying in %d ms", file_name, error, state.delay_ms,
            )
            self.sleep_fn(state.delay_ms / 1000.0)

        logger.error("Upload of %s for %s failed after %d attempt(s): %s", file_name, hint, state.attempt, state.last_error)
        report_error("MEDIA_UPLOAD", {"file": file_name, "field": hint, "attempts": state.attempt}, state.last_error)
        return None

    def upload_asset(self, reference: MediaReference, destination_field_hint: str,
                     attach: Optional[Dict[str, Any]] = None) -> Optional[UploadResult]:
        """Upload a resolved Contentful asset."""
        if not reference.url:
            logger.warning("Asset %s has no URL, skipping", reference.asset_id)
            return None
        return self.upload(reference.url, reference.file_name, reference.content_type, destination_field_hint, attach)
