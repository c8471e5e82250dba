"""
Per-placement generation: AI copy (once per product) and artwork (once per job).

Jobs run strictly one after another so a run never bursts the rate limiter,
and one job's failure never stops its siblings.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import (
    IMAGE_MAX_SIDE,
    IMAGE_POLL_FIRST_DELAY,
    IMAGE_POLL_INTERVAL,
    IMAGE_POLL_MAX_ATTEMPTS,
)
from jobs import GenerationJob, JobStatus, build_jobs
from session_state import ProductContent
from sizes import derive_generation_size

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """A collaborator answered but reported failure."""


@dataclass
class DesignBrief:
    prompt: str
    style: str = ""
    colors: str = ""
    audience: str = ""

    def __post_init__(self):
        self.prompt = (self.prompt or "").strip()
        if not self.prompt:
            raise ValueError("Please enter a design prompt.")


def first_image_url(images) -> Optional[str]:
    """Images come back as [{url}] or as bare URL strings."""
    if not isinstance(images, list) or not images:
        return None
    first = images[0]
    if isinstance(first, str):
        return first or None
    if isinstance(first, dict):
        return first.get("url") or None
    return None


class GenerationRunner:
    def __init__(
        self,
        controller,
        api,
        sleep=asyncio.sleep,
        max_side: int = IMAGE_MAX_SIDE,
        poll_attempts: int = IMAGE_POLL_MAX_ATTEMPTS,
        poll_first_delay: float = IMAGE_POLL_FIRST_DELAY,
        poll_interval: float = IMAGE_POLL_INTERVAL,
    ):
        self.controller = controller
        self.api = api
        self._sleep = sleep
        self.max_side = max_side
        self.poll_attempts = poll_attempts
        self.poll_first_delay = poll_first_delay
        self.poll_interval = poll_interval
        self.jobs: Dict[str, GenerationJob] = {}
        self.running = False

    @property
    def events(self):
        return self.controller.events

    @property
    def state(self):
        return self.controller.state

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def prepare(self) -> List[GenerationJob]:
        """(Re)build the job rows from the current selections. Idempotent."""
        jobs = build_jobs(
            self.state.product_designs,
            self.state.generated_images,
            existing=self.jobs.values(),
        )
        self.jobs = {job.job_id: job for job in jobs}
        self.events.emit("jobs_built", jobs=[j.to_dict() for j in jobs])
        return jobs

    def clear(self):
        self.jobs = {}

    def _alive(self, job: GenerationJob) -> bool:
        return self.jobs.get(job.job_id) is job

    def _wanted(self, product_id: str, position: Optional[str] = None) -> bool:
        """Whether the product (and placement) is still part of the current selection."""
        placements = self.state.product_designs.get(product_id)
        if not placements:
            return False
        return position is None or any(p.position == position for p in placements)

    def _update(self, job: GenerationJob, status: Optional[JobStatus] = None, error: Optional[str] = None) -> bool:
        """Apply a row change if the row still exists (the session may have moved on mid-await)."""
        if not self._alive(job):
            logger.debug("Row %s is gone, dropping update", job.job_id)
            return False
        if status is not None:
            job.mark(status, error)
        self.events.emit("row_updated", job=job.to_dict())
        return True

    def cancel_job(self, job_id: str) -> bool:
        """Skip a job that has not started. In-flight calls are not interrupted."""
        job = self.jobs.get(job_id)
        if job is None or job.is_finished or job.status == JobStatus.CANCELLED:
            return False
        if job.status != JobStatus.PENDING:
            logger.info("Job %s is already running; it will finish normally", job_id)
            return False
        self._update(job, JobStatus.CANCELLED)
        return True

    def summary(self) -> dict:
        counts: Dict[str, int] = {}
        for job in self.jobs.values():
            counts[job.status.value] = counts.get(job.status.value, 0) + 1
        return {
            "total": len(self.jobs),
            "completed": counts.get(JobStatus.COMPLETED.value, 0),
            "failed": counts.get(JobStatus.FAILED.value, 0) + counts.get(JobStatus.ERROR.value, 0),
            "cancelled": counts.get(JobStatus.CANCELLED.value, 0),
            "running": self.running,
            "statuses": counts,
        }

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run_all(self, brief: DesignBrief) -> dict:
        """Generate every pending job in order."""
        if self.running:
            raise RuntimeError("Generation already running")
        self.running = True
        started = time.time()
        try:
            jobs = self.prepare()
            logger.info("Generating %d jobs", len(jobs))
            for job in jobs:
                if not self._alive(job):
                    break
                if not self._wanted(job.product_id, job.placement.position):
                    logger.info("Skipping %s, no longer selected", job.job_id)
                    continue
                if job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
                    continue
                await self.run_job(job, brief)
        finally:
            self.running = False

        result = self.summary()
        logger.info(
            "Generation finished in %.1fs: %d completed, %d failed",
            time.time() - started, result["completed"], result["failed"],
        )
        self.events.emit("generation_finished", summary=result)
        return result

    async def run_job(self, job: GenerationJob, brief: DesignBrief):
        job.started_at = time.time()
        job.error = None
        try:
            self._update(job, JobStatus.GENERATING_CONTENT)
            content = await self.ensure_content(job.product_id, brief)
            if not self._wanted(job.product_id, job.placement.position):
                logger.info("Stopping %s, no longer selected", job.job_id)
                return
            job.content_title = content.title
            job.content_tags = list(content.tags)

            self._update(job, JobStatus.GENERATING_IMAGE)
            url = await self.generate_image(job, brief)
        except Exception as e:
            logger.warning("Job %s failed: %s", job.job_id, e)
            self._update(job, JobStatus.ERROR, str(e))
            return

        if not self._alive(job):
            return
        if not self._wanted(job.product_id, job.placement.position):
            logger.info("Dropping image for %s, no longer selected", job.job_id)
            return
        if url:
            job.image_url = url
            self.state.generated_images[job.job_id] = url
            self.controller.save()
            self._update(job, JobStatus.COMPLETED)
            logger.info("Image stored for %s in %.1fs", job.job_id, time.time() - job.started_at)
        else:
            self._update(job, JobStatus.FAILED, "Image generation failed")

    async def ensure_content(self, product_id: str, brief: DesignBrief) -> ProductContent:
        """Copy is generated once per product and shared by all its placements."""
        cached = self.state.product_content.get(product_id)
        if cached is not None:
            logger.debug("Using cached content for product %s", product_id)
            return cached

        catalog = self.controller.catalog.get(product_id)
        product_info = [catalog.info()] if catalog else [{"id": product_id}]
        response = await self.api.generate_content(
            brief.prompt,
            product_id=product_id,
            product_info=product_info,
            style=brief.style,
            colors=brief.colors,
            audience=brief.audience,
        )
        if not response.get("success"):
            raise GenerationError(response.get("error") or "Content generation failed")

        content = ProductContent.from_response(response)
        if not self._wanted(product_id):
            logger.info("Dropping content for %s, no longer selected", product_id)
            return content
        self.state.product_content[product_id] = content
        self.controller.save()
        return content

    async def generate_image(self, job: GenerationJob, brief: DesignBrief) -> Optional[str]:
        placement = job.placement
        size = derive_generation_size(placement.width, placement.height, max_side=self.max_side)
        job.generation_size = size.label
        logger.info(
            "Generating image for %s (print %s, generation %s)",
            job.job_id, placement.size_label, size.label,
        )

        response = await self.api.generate_image(
            brief.prompt,
            size=size.label,
            style=brief.style,
            colors=brief.colors,
            audience=brief.audience,
        )
        if not response.get("success"):
            raise GenerationError(response.get("error") or "Image generation failed")

        url = first_image_url(response.get("images"))
        if url:
            return url
        if response.get("pending") and response.get("request_id"):
            return await self.poll_image_result(response["request_id"], response.get("model"))

        logger.warning("Unexpected image response for %s: %s", job.job_id, sorted(response))
        return None

    async def poll_image_result(self, request_id: str, model: Optional[str]) -> Optional[str]:
        """Poll a pending image request. Returns the URL, or None on failure/timeout."""
        attempts = self.poll_attempts
        for i in range(attempts):
            await self._sleep(self.poll_first_delay if i == 0 else self.poll_interval)
            try:
                response = await self.api.poll_image(request_id, model)
            except Exception as e:
                logger.warning("Poll %d/%d for %s failed: %s", i + 1, attempts, request_id, e)
                if i >= attempts - 2:
                    return None
                continue

            if response.get("success"):
                url = first_image_url(response.get("images"))
                if url:
                    logger.info("Image %s ready after %d polls", request_id, i + 1)
                    return url
            if not response.get("pending"):
                logger.error("Image %s failed: %s", request_id, response.get("error"))
                return None
            logger.debug("Image %s still pending (poll %d)", request_id, i + 1)

        logger.error("Image %s timed out after %d polls", request_id, attempts)
        return None
