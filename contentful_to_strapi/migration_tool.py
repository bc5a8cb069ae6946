"""
High-level orchestration of the Contentful → Strapi migration.

This module defines a :class:`ContentfulToStrapiMigrationTool` class that
ties together the extractors, parsers, migrators and utilities into a
complete pipeline.  For each declared :class:`~contentful_to_strapi.steps.MigrationStep`
it pages through the Contentful entries, skips records that already exist
in Strapi, uploads the media each record references, converts rich text to
Markdown and creates the Strapi entry.

Within a record, media is uploaded one file at a time: assets embedded in
rich text first, then single media fields in declared order, then gallery
fields.  Records are migrated one at a time with a pause between them, and
the whole run is bounded by a wall-clock budget.

Configuration is supplied via a JSON file path or directly as a
dictionary.  The ``contentful`` section must include ``space_id`` and
``access_token``; the ``strapi`` section ``base_url`` and ``api_token``.
Optional migration settings (dry-run, limit, budget) can be provided under
the ``migration`` key.
"""

from __future__ import annotations

import dataclasses
import json
import os
import time
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

import requests

from contentful_to_strapi.extractors.contentful_extractor import ContentfulClient
from contentful_to_strapi.extractors.reference_resolver import (
    InclusionIndex,
    resolve_asset_field,
    resolve_asset_list,
    resolve_embedded,
)
from contentful_to_strapi.migrators.media_uploader import (
    FAILED_UPLOAD_DELAY_MS,
    MediaUploader,
    inter_upload_delay_ms,
    large_file_delay_ms,
)
from contentful_to_strapi.migrators.strapi_migrator import (
    AdminAuth,
    create_entry,
    find_entry_by_field,
    get_entries,
    update_entry,
)
from contentful_to_strapi.models.media import MediaReference, UploadResult
from contentful_to_strapi.models.strapi_entry import StrapiEntry
from contentful_to_strapi.parsers.markdown_converter import convert, count_markdown_images
from contentful_to_strapi.parsers.rich_text_schema import parse_document
from contentful_to_strapi.steps import STEPS, MigrationStep, select_steps
from contentful_to_strapi.utils.errors import MigrationTimeoutError, report_error, report_ok
from contentful_to_strapi.utils.field_mapping import get_path, map_reference, nest_dotted
from contentful_to_strapi.utils.lookups import (
    build_label_lookup,
    destination_id,
    freeze,
    lookup_key,
    normalize_label,
)

EXISTING_PAGE_SIZE = 100


class RunDeadline:
    """Wall-clock budget of one run.  ``check`` raises once it is spent."""

    def __init__(self, budget_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.budget_seconds = budget_seconds
        self.clock = clock
        self.started = clock()

    def elapsed(self) -> float:
        return self.clock() - self.started

    def expired(self) -> bool:
        return self.elapsed() > self.budget_seconds

    def check(self) -> None:
        if self.expired():
            raise MigrationTimeoutError(
                f"Run budget of {self.budget_seconds:.0f}s exceeded after {self.elapsed():.1f}s"
            )


@dataclasses.dataclass
class MigrationSummary:
    step: str
    success: int = 0
    errors: int = 0
    skipped: int = 0
    id_mapping: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.success + self.errors + self.skipped


@dataclasses.dataclass
class RecordMedia:
    """Media moved for one record: results by source asset id, and upload attempts so far."""

    results: Dict[str, Optional[UploadResult]] = dataclasses.field(default_factory=dict)
    attempts: int = 0


class ContentfulToStrapiMigrationTool:
    """
    Encapsulates all state and behavior required to migrate Contentful
    entries to Strapi.  This class is responsible for reading
    configuration, fetching entries, performing transformations and
    migrating them.  Detailed success and failure information is recorded
    using the :mod:`contentful_to_strapi.utils.errors` module.

    ``session``, ``sleep_fn`` and ``clock`` are injectable so the tool can
    run against fakes.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        *,
        config_file: Optional[str] = None,
        session: Optional[requests.Session] = None,
        contentful: Optional[ContentfulClient] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if config_file and os.path.exists(config_file):
            with open(config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        elif config is None:
            # Default configuration
            config = {}

        # Ensure essential keys exist to prevent KeyErrors
        config.setdefault("contentful", {})
        config["contentful"].setdefault("space_id", os.getenv("CONTENTFUL_SPACE_ID", ""))
        config["contentful"].setdefault("access_token", os.getenv("CONTENTFUL_ACCESS_TOKEN", ""))
        config["contentful"].setdefault("environment", os.getenv("CONTENTFUL_ENVIRONMENT", "master"))
        config["contentful"].setdefault("host", "cdn.contentful.com")

        config.setdefault("strapi", {})
        config["strapi"].setdefault("base_url", os.getenv("STRAPI_URL", "http://localhost:1337"))
        config["strapi"].setdefault("api_token", os.getenv("STRAPI_API_TOKEN", ""))
        config["strapi"].setdefault("admin_token", os.getenv("STRAPI_ADMIN_TOKEN", ""))
        config["strapi"].setdefault("admin_email", os.getenv("STRAPI_ADMIN_EMAIL", ""))
        config["strapi"].setdefault("admin_password", os.getenv("STRAPI_ADMIN_PASSWORD", ""))

        config.setdefault("migration", {})
        config["migration"].setdefault("dry_run", False)
        config["migration"].setdefault("limit", None)
        config["migration"].setdefault("run_budget_seconds", 240)
        config["migration"].setdefault("record_delay_ms", 1500)
        config["migration"].setdefault("steps", [])

        self.config = config
        self.session = session
        self.sleep_fn = sleep_fn
        self.clock = clock
        self.contentful = contentful or ContentfulClient.from_config(config["contentful"], session=session)
        self.admin_auth = AdminAuth(config["strapi"], session=session)
        self.deadline: Optional[RunDeadline] = None
        self.id_mappings: Dict[str, Mapping[str, Any]] = {}

    def log_message(self, message: str, level: str = "INFO") -> None:
        print(f"[{level}] {message}")
        # Append to log file
        os.makedirs("reports/migration", exist_ok=True)
        with open("reports/migration/migration.log", "a", encoding="utf-8") as f:
            f.write(f"{level}: {message}\n")

    @property
    def dry_run(self) -> bool:
        return bool(self.config["migration"].get("dry_run"))

    def _pause(self, milliseconds: float) -> None:
        if milliseconds > 0:
            self.sleep_fn(milliseconds / 1000.0)

    def _check_deadline(self) -> None:
        if self.deadline is not None:
            self.deadline.check()

    def new_uploader(self) -> MediaUploader:
        return MediaUploader(
            self.config["strapi"],
            session=self.session,
            sleep_fn=self.sleep_fn,
            admin_auth=self.admin_auth,
            deadline=self.deadline,
            clock=self.clock,
        )

    # -- existence check ----------------------------------------------------

    def existing_lookup(self, step: MigrationStep) -> Mapping[str, Any]:
        """Natural key → destination id of the entries already in the collection."""
        if not step.natural_key:
            return freeze({})
        entries: List[Dict[str, Any]] = []
        start = 0
        while True:
            batch = get_entries(
                self.config["strapi"], step.collection,
                limit=EXISTING_PAGE_SIZE, start=start, session=self.session,
            )
            entries.extend(batch)
            if len(batch) < EXISTING_PAGE_SIZE:
                break
            start += EXISTING_PAGE_SIZE
        return build_label_lookup(entries, step.natural_key)

    # -- source records -----------------------------------------------------

    def records(self, step: MigrationStep) -> Iterator[Tuple[Dict[str, Any], InclusionIndex]]:
        """
        Source records of ``step`` with the inclusion index of their page.

        A label step yields one synthetic record per distinct label of
        ``step.label_source``, keyed by its lookup key, in first-seen order.
        """
        limit = 1 if step.single else self.config["migration"].get("limit")
        entries = self.contentful.iter_entries(
            step.content_type, include=step.include, max_items=None if step.label_source else limit,
        )
        if not step.label_source:
            yield from entries
            return

        labels: Dict[str, str] = {}
        for item, _ in entries:
            for value in (item.get("fields") or {}).get(step.label_source) or []:
                label = normalize_label(value)
                key = lookup_key(label)
                if key and key not in labels:
                    labels[key] = label
        self.log_message(f"Found {len(labels)} distinct {step.label_source} label(s) in {step.content_type}")
        index = InclusionIndex()
        for n, (key, label) in enumerate(labels.items()):
            if limit and n >= limit:
                return
            yield {"sys": {"id": key}, "fields": {"title": label}}, index

    # -- per-record media ---------------------------------------------------

    def _upload(self, uploader: MediaUploader, reference: MediaReference, hint: str,
                media: RecordMedia) -> Optional[UploadResult]:
        if self.dry_run:
            self.log_message(f"Dry-run: would upload {reference.file_name} for {hint}")
            return None
        media.attempts += 1
        result = uploader.upload_asset(reference, hint)
        if result is None:
            self._pause(FAILED_UPLOAD_DELAY_MS)
        else:
            self._pause(inter_upload_delay_ms(media.attempts, result.size_mb))
        return result

    def _convert_rich_text(self, step: MigrationStep, fields: Dict[str, Any], index: InclusionIndex,
                           uploader: MediaUploader, media: RecordMedia, context: Dict[str, Any]) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for dest, src in step.rich_text_fields.items():
            root = parse_document(get_path(fields, src))
            if root is None:
                continue
            embedded = resolve_embedded(root, index)
            for asset_id, reference in embedded.items():
                if asset_id in media.results:
                    continue
                if reference is None:
                    report_error("MEDIA_UNRESOLVED", {**context, "field": dest, "asset": asset_id})
                    media.results[asset_id] = None
                    continue
                media.results[asset_id] = self._upload(uploader, reference, dest, media)
            markdown = convert(root, media.results)
            if embedded:
                self.log_message(
                    f"Converted {dest}: {count_markdown_images(markdown)} of {len(embedded)} embedded image(s) rendered"
                )
            data[dest] = markdown or None
        return data

    def _upload_media_fields(self, step: MigrationStep, fields: Dict[str, Any], index: InclusionIndex,
                             uploader: MediaUploader, media: RecordMedia, context: Dict[str, Any]) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for dest, src in step.media_fields.items():
            value = get_path(fields, src)
            if not value:
                continue
            reference = resolve_asset_field(value, index)
            if reference is None:
                report_error("MEDIA_UNRESOLVED", {**context, "field": dest})
                continue
            result = media.results.get(reference.asset_id)
            if reference.asset_id not in media.results:
                result = self._upload_single(uploader, reference, dest, media)
                media.results[reference.asset_id] = result
            data[dest] = result.destination_id if result else None

        for dest, src in step.gallery_fields.items():
            values = get_path(fields, src) or []
            references = resolve_asset_list(values, index)
            if len(references) < len(values):
                report_error("MEDIA_UNRESOLVED", {**context, "field": dest})
            ids = []
            for reference in references:
                if reference.asset_id not in media.results:
                    media.results[reference.asset_id] = self._upload(uploader, reference, dest, media)
                result = media.results[reference.asset_id]
                if result is not None:
                    ids.append(result.destination_id)
            data[dest] = ids or None
        return data

    def _upload_single(self, uploader: MediaUploader, reference: MediaReference, hint: str,
                       media: RecordMedia) -> Optional[UploadResult]:
        if self.dry_run:
            self.log_message(f"Dry-run: would upload {reference.file_name} for {hint}")
            return None
        media.attempts += 1
        result = uploader.upload_asset(reference, hint)
        if result is None:
            self._pause(FAILED_UPLOAD_DELAY_MS)
        else:
            self._pause(large_file_delay_ms(result.size_mb))
        return result

    # -- records ------------------------------------------------------------

    def map_scalars(self, step: MigrationStep, fields: Dict[str, Any]) -> Dict[str, Any]:
        data = {dest: mapper(get_path(fields, src)) for dest, (src, mapper) in step.fields.items()}
        for dest, (src, dependency) in step.reference_fields.items():
            data[dest] = map_reference(get_path(fields, src), self.id_mappings.get(dependency, {}))
        return data

    def _find_duplicate(self, step: MigrationStep, natural_value: Any,
                        error: requests.HTTPError) -> Optional[Dict[str, Any]]:
        """The entry holding ``natural_value`` when ``error`` is a unique-constraint rejection of it."""
        response = error.response
        if not (step.natural_key and natural_value) or response is None or "must be unique" not in response.text:
            return None
        return find_entry_by_field(
            self.config["strapi"], step.collection, step.natural_key, natural_value, session=self.session,
        )

    def migrate_record(self, step: MigrationStep, item: Dict[str, Any], index: InclusionIndex,
                       existing: Mapping[str, Any], uploader: MediaUploader) -> Tuple[str, Any]:
        """
        Migrate one Contentful entry.

        :return: ``("skipped" | "created", destination id)``.
        :raises Exception: when the Strapi entry cannot be built or created.
        """
        source_id = (item.get("sys") or {}).get("id")
        fields = item.get("fields") or {}
        entry = StrapiEntry(**self.map_scalars(step, fields))
        natural_value = getattr(entry, step.natural_key, None) if step.natural_key else None
        if natural_value is None and step.natural_key and entry.model_extra:
            natural_value = entry.model_extra.get(step.natural_key)
        context = {"id": source_id, "slug": natural_value, "step": step.name}

        key = lookup_key(natural_value)
        if key and key in existing:
            self.log_message(f"Entry '{natural_value}' already exists in {step.collection}, skipping")
            report_ok("ENTRY_EXISTS", context)
            return "skipped", existing[key]

        media = RecordMedia()
        data = entry.model_dump(exclude_none=True)
        data.update(self._convert_rich_text(step, fields, index, uploader, media, context))
        data.update(self._upload_media_fields(step, fields, index, uploader, media, context))
        payload = nest_dotted(StrapiEntry(**data).to_strapi_payload()["data"])

        if self.dry_run:
            verb = "update" if step.single else "create"
            self.log_message(f"Dry-run: would {verb} {step.collection} entry '{natural_value or source_id}'")
            return "created", f"dry-{natural_value or source_id}"

        if step.single:
            updated = update_entry(self.config["strapi"], step.collection, None, payload, session=self.session)
            new_id = destination_id(updated)
            report_ok("ENTRY_UPDATED", context, {"destination_id": new_id})
            return "created", new_id

        try:
            created = create_entry(self.config["strapi"], step.collection, payload, session=self.session)
        except requests.HTTPError as e:
            found = self._find_duplicate(step, natural_value, e)
            if found is None:
                raise
            self.log_message(f"Entry '{natural_value}' was created meanwhile in {step.collection}, skipping")
            report_ok("ENTRY_EXISTS", context)
            return "skipped", destination_id(found)
        new_id = destination_id(created)
        report_ok("ENTRY_CREATED", context, {"destination_id": new_id})
        return "created", new_id

    def migrate_step(self, step: MigrationStep) -> MigrationSummary:
        """
        Migrate every entry of ``step.content_type``.

        A record that fails is reported and counted, and the loop moves on
        to the next record.  :class:`MigrationTimeoutError` aborts the step.
        """
        summary = MigrationSummary(step=step.name)
        migration = self.config["migration"]
        self.log_message(f"Starting step '{step.name}': {step.content_type} -> {step.collection}")
        for dependency in step.depends_on:
            if dependency not in self.id_mappings:
                self.log_message(
                    f"Step '{dependency}' has not run; relations to it will be left empty", "WARNING",
                )

        existing = freeze({}) if self.dry_run else self.existing_lookup(step)
        uploader = self.new_uploader()
        first = True
        for item, index in self.records(step):
            if not first:
                self._pause(migration.get("record_delay_ms", 1500))
            first = False
            self._check_deadline()

            source_id = (item.get("sys") or {}).get("id")
            title = (item.get("fields") or {}).get("title") or source_id
            self.log_message(f"[{step.name}] Processing {title}")
            try:
                status, new_id = self.migrate_record(step, item, index, existing, uploader)
            except MigrationTimeoutError:
                raise
            except Exception as e:
                error_details = e.response.text if getattr(e, "response", None) is not None else str(e)
                report_error("ENTRY_CREATE", {"id": source_id, "step": step.name}, e)
                self.log_message(f"Error migrating {step.content_type} '{title}': {error_details}", "ERROR")
                summary.errors += 1
                continue

            if source_id and new_id is not None:
                summary.id_mapping[source_id] = new_id
            if status == "skipped":
                summary.skipped += 1
            else:
                summary.success += 1

        self.id_mappings[step.name] = freeze(summary.id_mapping)
        self.log_message(
            f"Step '{step.name}' completed: {summary.success} created, "
            f"{summary.skipped} skipped, {summary.errors} errors"
        )
        return summary

    def run(self, steps: Optional[List[MigrationStep]] = None) -> List[MigrationSummary]:
        """
        Run ``steps`` (by default the ones named in ``migration.steps``, or
        every declared step) in order under one run budget.
        """
        if steps is None:
            steps = select_steps(self.config["migration"].get("steps"), STEPS)
        self.deadline = RunDeadline(float(self.config["migration"]["run_budget_seconds"]), clock=self.clock)
        summaries: List[MigrationSummary] = []
        try:
            for step in steps:
                summaries.append(self.migrate_step(step))
        except MigrationTimeoutError as e:
            report_error("RUN_TIMEOUT", {"step": step.name}, e)
            self.log_message(str(e), "ERROR")
            raise
        finally:
            total_ok = sum(s.success for s in summaries)
            total_errors = sum(s.errors for s in summaries)
            total_skipped = sum(s.skipped for s in summaries)
            self.log_message(
                f"Migration summary: {len(summaries)} step(s), {total_ok} created, "
                f"{total_skipped} skipped, {total_errors} errors"
            )
        return summaries
