"""
Structured logging helpers for migration errors and successes.

The :mod:`contentful_to_strapi.utils.errors` module centralizes the writing
of report entries for both failed and successful operations during the
migration.  Each entry is appended to a JSON Lines file under
``reports/migration`` so that the information can be reviewed or parsed
after a run.

Two public functions are provided:

``report_error``
    Record an error for a record or media file.  An optional exception (or
    error message) is serialized to the report.

``report_ok``
    Record a successful step.  Additional key/value information can be
    attached to the entry via the ``extra`` parameter.

The ``ERRORS`` dictionary maps error or event codes to human readable
messages.  Codes not present in the dictionary fall back to the code itself.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

# Event codes used by report_error and report_ok.
ERRORS: Dict[str, str] = {
    "MEDIA_DOWNLOAD": "Failed to download media from Contentful",
    "MEDIA_UPLOAD": "Failed to upload media to Strapi",
    "MEDIA_UNRESOLVED": "Linked media not found in Contentful includes",
    "ENTRY_CREATE": "Failed to create Strapi entry",
    "ENTRY_EXISTS": "Entry already exists in Strapi",
    "ENTRY_CREATED": "Entry created successfully",
    "ENTRY_UPDATED": "Single type updated successfully",
    "RUN_TIMEOUT": "Migration run budget exceeded",
}

_REPORT_DIR = os.path.join("reports", "migration")
_ERROR_LOG = os.path.join(_REPORT_DIR, "errors.jsonl")
_OK_LOG = os.path.join(_REPORT_DIR, "success.jsonl")


class MigrationTimeoutError(RuntimeError):
    """Raised when a run exceeds its wall-clock budget."""


class PreFlightCheckError(Exception):
    """Raised when a pre-flight check fails."""


def _write_jsonl(path: str, data: Dict[str, Any]) -> None:
    """Append ``data`` as a JSON object followed by a newline to ``path``."""
    os.makedirs(_REPORT_DIR, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, default=str)
        f.write("\n")


def _label(record: Dict[str, Any]) -> str:
    return str(record.get("slug") or record.get("file") or record.get("id") or "")


def report_error(code: str, record: Dict[str, Any], exc: Optional[Union[Exception, str]] = None) -> None:
    """Log an error event for ``record``.

    Parameters
    ----------
    code:
        A key identifying the type of error.  If ``code`` is present in
        :data:`ERRORS` its value will be used as the message.
    record:
        Small context dictionary (``slug``, ``id``, ``file``, ``field``...)
        copied into the entry.
    exc:
        Optional exception instance or message that triggered the error.
    """
    message = ERRORS.get(code, code)
    entry: Dict[str, Any] = {"code": code, "message": message, **record}
    if exc is not None:
        entry["error"] = str(exc)
    logger.error("%s - %s", message, _label(record))
    _write_jsonl(_ERROR_LOG, entry)


def report_ok(code: str, record: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> None:
    """Log a successful event for ``record``."""
    message = ERRORS.get(code, code)
    entry: Dict[str, Any] = {"code": code, "message": message, **record}
    if extra:
        entry.update(extra)
    logger.info("%s - %s", message, _label(record))
    _write_jsonl(_OK_LOG, entry)
