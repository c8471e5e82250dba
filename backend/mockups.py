"""
Mockup task polling.

Every pending mockup shares one APScheduler interval job. Each tick walks the
pending list back to front (so entries can be dropped mid-walk) and queries
task status one entry at a time. The job is removed as soon as the list is
empty, or when the tick ceiling is hit.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import MOCKUP_MAX_TICKS, MOCKUP_POLL_INTERVAL, MOCKUP_RETRY_EVERY_TICKS

logger = logging.getLogger(__name__)


@dataclass
class PendingMockup:
    product_id: str
    card: Any = None
    task_id: Optional[Any] = None
    retry_payload: Optional[dict] = None
    is_retry: bool = False
    rate_limited: bool = False
    last_retry_tick: int = 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "task_id": self.task_id,
            "is_retry": self.is_retry,
            "rate_limited": self.rate_limited,
        }


@dataclass
class PendingMockups:
    """Mockups still rendering. Owned by the publish orchestrator."""
    entries: List[PendingMockup] = field(default_factory=list)

    def add(self, entry: PendingMockup):
        self.entries.append(entry)

    def remove(self, entry: PendingMockup) -> bool:
        """Remove by identity. False if something else already removed it."""
        for i, existing in enumerate(self.entries):
            if existing is entry:
                del self.entries[i]
                return True
        return False

    def clear(self) -> List[PendingMockup]:
        dropped, self.entries = self.entries, []
        return dropped

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(list(self.entries))

    def __bool__(self):
        return bool(self.entries)


def extract_mockup_urls(task: dict) -> List[dict]:
    """Flatten catalog_variant_mockups[].mockups[] into a list of {url, placement, style_id}."""
    urls = []
    for variant in task.get("catalog_variant_mockups") or []:
        for mockup in (variant or {}).get("mockups") or []:
            url = (mockup or {}).get("mockup_url")
            if url:
                urls.append({
                    "url": url,
                    "placement": mockup.get("placement"),
                    "style_id": mockup.get("style_id"),
                })
    return urls


def task_from_response(response: dict) -> dict:
    """The status endpoint wraps the task in data/result, sometimes as a one-item list."""
    for key in ("data", "result"):
        value = response.get(key)
        if isinstance(value, list) and value:
            return value[0]
        if isinstance(value, dict):
            return value
    return response


class MockupPoller:
    JOB_ID = "mockup_poll"

    def __init__(
        self,
        api,
        pending: PendingMockups,
        scheduler=None,
        interval: float = MOCKUP_POLL_INTERVAL,
        max_ticks: int = MOCKUP_MAX_TICKS,
        retry_every: int = MOCKUP_RETRY_EVERY_TICKS,
        on_ready: Optional[Callable[[PendingMockup, List[dict]], None]] = None,
        on_failed: Optional[Callable[[PendingMockup, str], None]] = None,
    ):
        self.api = api
        self.pending = pending
        self.scheduler = scheduler if scheduler is not None else AsyncIOScheduler()
        self.interval = interval
        self.max_ticks = max_ticks
        self.retry_every = retry_every
        self.on_ready = on_ready
        self.on_failed = on_failed
        self.ticks = 0
        self.active = False

    def track(self, entry: PendingMockup):
        self.pending.add(entry)
        self.ensure_running()

    def ensure_running(self):
        if self.active or not self.pending:
            return
        self.ticks = 0
        self.scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.interval,
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        self.active = True
        logger.info("Mockup poller started for %d pending mockups", len(self.pending))

    def stop(self):
        if not self.active:
            return
        try:
            self.scheduler.remove_job(self.JOB_ID)
        except JobLookupError:
            pass
        self.active = False
        logger.info("Mockup poller stopped after %d ticks", self.ticks)

    def shutdown(self):
        self.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def tick(self):
        self.ticks += 1
        entries = self.pending.entries
        for index in range(len(entries) - 1, -1, -1):
            if index >= len(entries):
                continue
            entry = entries[index]
            if entry.task_id is None:
                await self._retry_submission(entry)
            else:
                await self._check(entry)

        if not self.pending:
            self.stop()
        elif self.ticks >= self.max_ticks:
            logger.warning(
                "Mockup polling timed out after %d ticks; abandoning %d entries",
                self.ticks, len(self.pending),
            )
            for entry in self.pending.clear():
                if self.on_failed:
                    self.on_failed(entry, "timeout")
            self.stop()

    async def _check(self, entry: PendingMockup):
        try:
            response = await self.api.mockup_task_status(entry.task_id)
        except Exception as e:
            logger.debug("Mockup status for task %s failed: %s", entry.task_id, e)
            return

        task = task_from_response(response)
        status = str(task.get("status") or response.get("status") or "").lower()
        if status == "completed":
            urls = extract_mockup_urls(task)
            if self.pending.remove(entry):
                logger.info("Mockups ready for %s (%d images)", entry.product_id, len(urls))
                if self.on_ready:
                    self.on_ready(entry, urls)
        elif status == "failed" or response.get("success") is False:
            if self.pending.remove(entry):
                reason = task.get("failure_reasons") or response.get("error") or "failed"
                logger.warning("Mockup task %s failed: %s", entry.task_id, reason)
                if self.on_failed:
                    self.on_failed(entry, str(reason))

    async def _retry_submission(self, entry: PendingMockup):
        """Resubmit a task the provider refused for rate limiting, spaced out by retry_every ticks."""
        if not (entry.rate_limited and entry.retry_payload):
            return
        if entry.last_retry_tick and self.ticks - entry.last_retry_tick < self.retry_every:
            return
        entry.last_retry_tick = self.ticks
        try:
            response = await self.api.retry_mockup_task(entry.retry_payload)
        except Exception as e:
            logger.debug("Mockup resubmission for %s failed: %s", entry.product_id, e)
            return

        task_id = response.get("task_id")
        if task_id:
            entry.task_id = task_id
            entry.is_retry = True
            entry.rate_limited = False
            logger.info("Mockup task resubmitted for %s: %s", entry.product_id, task_id)
        elif response.get("success") is False:
            if self.pending.remove(entry):
                logger.warning("Mockup resubmission for %s rejected: %s", entry.product_id, response.get("error"))
                if self.on_failed:
                    self.on_failed(entry, str(response.get("error") or "resubmission failed"))
