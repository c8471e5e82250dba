"""Generation jobs: one per (product, placement)."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from session_state import PlacementSelection, image_key


class JobStatus(str, Enum):
    PENDING = "pending"
    GENERATING_CONTENT = "generating_content"
    GENERATING_IMAGE = "generating_image"
    COMPLETED = "completed"
    FAILED = "failed"        # image generation returned nothing
    ERROR = "error"          # content/image call raised
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


FINISHED = {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ERROR, JobStatus.SKIPPED}


@dataclass
class GenerationJob:
    job_id: str
    product_id: str
    placement: PlacementSelection
    status: JobStatus = JobStatus.PENDING
    image_url: Optional[str] = None
    generation_size: Optional[str] = None
    content_title: Optional[str] = None
    content_tags: List[str] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    @property
    def print_size(self) -> str:
        return self.placement.size_label

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED

    def mark(self, status: JobStatus, error: Optional[str] = None):
        self.status = status
        if error is not None:
            self.error = error
        if status in FINISHED:
            self.completed_at = time.time()

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "product_id": self.product_id,
            "position": self.placement.position,
            "print_size": self.print_size,
            "technique": self.placement.technique,
            "generation_size": self.generation_size,
            "status": self.status.value,
            "title": (self.content_title or "")[:50],
            "tags": self.content_tags[:3],
            "image_url": self.image_url,
            "error": self.error,
        }


def job_id_for(product_id: str, position: str) -> str:
    return image_key(product_id, position)


def build_jobs(
    product_designs: Dict[str, List[PlacementSelection]],
    generated_images: Optional[Dict[str, str]] = None,
    existing: Optional[Iterable[GenerationJob]] = None,
) -> List[GenerationJob]:
    """Expand selections into jobs. Deterministic ids; safe to call repeatedly.

    Existing rows are reused as-is so their status survives a rebuild, and
    placements that already have an image come back completed, never pending.
    """
    generated_images = generated_images or {}
    previous = {job.job_id: job for job in existing or []}

    jobs: List[GenerationJob] = []
    seen = set()
    for product_id, placements in product_designs.items():
        for placement in placements:
            job_id = job_id_for(str(product_id), placement.position)
            if job_id in seen:
                continue
            seen.add(job_id)

            job = previous.get(job_id)
            if job is None or job.placement != placement:
                job = GenerationJob(job_id=job_id, product_id=str(product_id), placement=placement)

            cached = generated_images.get(job_id)
            if cached and job.status != JobStatus.COMPLETED:
                job.image_url = cached
                job.mark(JobStatus.COMPLETED)
            jobs.append(job)
    return jobs
