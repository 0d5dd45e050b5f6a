"""
Backfill worker that copies records from a legacy deployment.

The legacy API pages through every stored item with ``limit``/``offset``
and returns values as base64 strings (the v1 ``getObject`` shape). Each
page is written through the backend's multi-store batch path, so a page
either lands completely or not at all.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import requests
from pydantic import BaseModel, TypeAdapter, ValidationError, field_validator

from vss.config import Settings
from vss.db import VssBackend, VssItem

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
REQUEST_TIMEOUT = 60
LEGACY_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class MigrationError(Exception):
    """Fatal failure that aborts a backfill run."""


class MigrationState(str, Enum):
    RUNNING = "RUNNING"
    DONE = "DONE"


class LegacyItem(BaseModel):
    store_id: str
    key: str
    value: str = ""
    version: int
    created_date: Optional[datetime] = None
    updated_date: Optional[datetime] = None

    @field_validator("created_date", "updated_date", mode="before")
    @classmethod
    def _parse_legacy_date(cls, value):
        if isinstance(value, str):
            return datetime.strptime(value, LEGACY_DATE_FORMAT).replace(
                tzinfo=timezone.utc
            )
        return value


_PAGE_ADAPTER = TypeAdapter(list[LegacyItem])


@dataclass
class MigrationReport:
    pages_fetched: int = 0
    records_written: int = 0
    records_dropped: int = 0
    offset: int = 0


class MigrationWorker:
    """
    Pulls pages from the legacy endpoint until a short page is returned.

    Timestamps are not carried over; the backend stamps records as they
    are written.
    """

    def __init__(
        self,
        backend: VssBackend,
        url: str,
        admin_key: str,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        if offset < 0:
            raise ValueError("offset must not be negative")
        self.backend = backend
        self.url = url
        self.admin_key = admin_key
        self.page_size = page_size
        self.session = session or requests.Session()
        self.timeout = timeout
        self.state = MigrationState.RUNNING
        self.report = MigrationReport(offset=offset)

    @property
    def offset(self) -> int:
        return self.report.offset

    def fetch_page(self) -> list[LegacyItem]:
        payload = {"limit": self.page_size, "offset": self.offset}
        try:
            response = self.session.post(
                self.url,
                json=payload,
                headers={"x-api-key": self.admin_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise MigrationError(
                f"failed to fetch page at offset {self.offset}: {exc}"
            ) from exc
        except ValueError as exc:
            raise MigrationError(
                f"page at offset {self.offset} is not valid JSON: {exc}"
            ) from exc

        try:
            return _PAGE_ADAPTER.validate_python(body)
        except ValidationError as exc:
            raise MigrationError(
                f"malformed page at offset {self.offset}: {exc}"
            ) from exc

    def decode_items(self, items: list[LegacyItem]) -> list[VssItem]:
        decoded: list[VssItem] = []
        for item in items:
            try:
                value = base64.b64decode(item.value, validate=True)
            except binascii.Error:
                logger.warning(
                    "Failed to decode value during migration: store=%s key=%s",
                    item.store_id,
                    item.key,
                )
                self.report.records_dropped += 1
                continue
            decoded.append(
                VssItem(
                    store_id=item.store_id,
                    key=item.key,
                    value=value,
                    version=item.version,
                )
            )
        return decoded

    def step(self) -> MigrationState:
        """Fetch, decode and store one page."""
        if self.state is MigrationState.DONE:
            return self.state

        logger.info("Fetching %d items from offset %d", self.page_size, self.offset)
        items = self.fetch_page()
        self.report.pages_fetched += 1

        batch = self.decode_items(items)
        if batch:
            self.backend.put_items(batch)
        self.report.records_written += len(batch)

        if len(items) < self.page_size:
            self.state = MigrationState.DONE
        else:
            self.report.offset += self.page_size
        return self.state

    def run(self) -> MigrationReport:
        logger.info("Starting migration from %s at offset %d", self.url, self.offset)
        while self.step() is MigrationState.RUNNING:
            pass
        logger.info(
            "Migration complete! pages=%d written=%d dropped=%d",
            self.report.pages_fetched,
            self.report.records_written,
            self.report.records_dropped,
        )
        return self.report


def run_migration_task(backend: VssBackend, settings: Settings) -> None:
    """
    Background entry point for the /migration trigger.

    Failures are only logged: nothing waits on this task.
    """
    if not settings.migration_url:
        logger.error("Migration failed: MIGRATION_URL not set")
        return
    worker = MigrationWorker(
        backend,
        settings.migration_url,
        settings.admin_key or "",
        page_size=settings.migration_batch_size,
        offset=settings.migration_start_index,
    )
    try:
        worker.run()
    except Exception:
        logger.exception("Migration failed at offset %d", worker.offset)
