import time, random, logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from pydantic.alias_generators import to_camel

from . import settings
from .kv_storage import get_job_store
from .models import VideoJob

logger = logging.getLogger(__name__)

BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
UPDATABLE_FIELDS = ("status", "progress", "download_url", "error", "estimated_time_remaining")
FINISHED_STATUSES = ("completed", "error")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def new_job_id() -> str:
    suffix = "".join(random.choices(BASE36, k=7))
    return f"video_{int(time.time() * 1000)}_{suffix}"


def _to_job(data: Optional[dict]) -> Optional[VideoJob]:
    return VideoJob.model_validate(data) if data is not None else None


async def create_video_job(story_id: str, story_title: str) -> VideoJob:
    now = _now_iso()
    job = VideoJob(id=new_job_id(), story_id=story_id, story_title=story_title,
                   created_at=now, updated_at=now)
    await get_job_store().set_job(job.id, job.model_dump(by_alias=True))
    logger.info(f"Created video job {job.id} for story {story_id}")
    return job


async def update_job_status(job_id: str, only_if_status: Optional[Sequence[str]] = None,
                            **updates) -> Optional[VideoJob]:
    ignored = [k for k in updates if k not in UPDATABLE_FIELDS]
    if ignored:
        logger.warning(f"Ignoring non-updatable job fields: {', '.join(ignored)}")
    fields = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
    # Stored documents use the camelCase wire names
    data = {to_camel(k): v for k, v in fields.items()}
    data["updatedAt"] = _now_iso()

    updated = await get_job_store().update_job(job_id, data, only_if_status)
    if updated is None:
        logger.warning(f"Video job {job_id} not found for update")
        return None
    return _to_job(updated)


async def get_job(job_id: str) -> Optional[VideoJob]:
    return _to_job(await get_job_store().get_job(job_id))


async def get_jobs_for_story(story_id: str) -> List[VideoJob]:
    jobs = [_to_job(j) for j in await get_job_store().list_jobs(story_id)]
    return sorted(jobs, key=lambda j: j.created_at, reverse=True)


async def cleanup_old_jobs(max_age_hours: Optional[int] = None) -> int:
    hours = settings.JOB_RETENTION_HOURS if max_age_hours is None else max_age_hours
    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)

    def _expired(job: dict) -> bool:
        if job.get("status") not in FINISHED_STATUSES:
            return False
        try:
            return _parse_iso(job["createdAt"]) < cutoff
        except (KeyError, ValueError):
            return False

    removed = await get_job_store().delete_where(_expired)
    if removed:
        logger.info(f"Cleaned up {removed} video jobs older than {hours} hours")
    return removed


async def get_latest_completed_job(story_id: str) -> Optional[VideoJob]:
    for job in await get_jobs_for_story(story_id):
        if job.status == "completed" and job.download_url:
            return job
    return None
