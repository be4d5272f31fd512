"""
Job state storage.

FileJobStore keeps every video job in one JSON document on local disk.
KVJobStore keeps them in a REST key-value service so that several
server instances see the same jobs. Both expose the same async methods.
"""
import os
import json
import httpx
import logging
import tempfile
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import settings
from .errors import ProviderError

logger = logging.getLogger(__name__)

JobData = Dict[str, Any]

_file_locks: Dict[str, threading.Lock] = {}
_file_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    with _file_locks_guard:
        return _file_locks.setdefault(os.path.abspath(path), threading.Lock())


class FileJobStore:
    def __init__(self, path: str):
        self.path = path
        self._lock = _lock_for(path)

    def _read(self) -> Dict[str, JobData]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read job file {self.path}, treating it as empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Job file {self.path} does not hold an object, treating it as empty")
            return {}
        return data

    def _write(self, jobs: Dict[str, JobData]):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".video-jobs-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(jobs, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    async def get_job(self, job_id: str) -> Optional[JobData]:
        with self._lock:
            return self._read().get(job_id)

    async def set_job(self, job_id: str, job_data: JobData) -> bool:
        with self._lock:
            jobs = self._read()
            jobs[job_id] = job_data
            self._write(jobs)
        return True

    async def update_job(self, job_id: str, updates: JobData,
                         only_if_status: Optional[Sequence[str]] = None) -> Optional[JobData]:
        """
        Read-modify-write under the store lock. A job whose status is not in
        only_if_status is returned unchanged.
        """
        with self._lock:
            jobs = self._read()
            job = jobs.get(job_id)
            if job is None:
                return None
            if only_if_status is not None and job.get("status") not in only_if_status:
                return job
            job.update(updates)
            self._write(jobs)
            return job

    async def list_jobs(self, story_id: Optional[str] = None) -> List[JobData]:
        with self._lock:
            jobs = list(self._read().values())
        if story_id is None:
            return jobs
        return [j for j in jobs if j.get("storyId") == story_id]

    async def delete_where(self, predicate: Callable[[JobData], bool]) -> int:
        with self._lock:
            jobs = self._read()
            keep = {k: v for k, v in jobs.items() if not predicate(v)}
            removed = len(jobs) - len(keep)
            if removed:
                self._write(keep)
        return removed


class KVJobStore:
    """One key per job, plus index keys listing job ids overall and per story."""

    ALL_INDEX = "video_jobs:index"

    def __init__(self, url: str, token: str):
        self.url = url.rstrip("/")
        self.token = token

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json"
        }

    @staticmethod
    def _job_key(job_id: str) -> str:
        return f"video_job:{job_id}"

    @staticmethod
    def _story_key(story_id: str) -> str:
        return f"video_jobs:story:{story_id}"

    async def _command(self, command: str, *args) -> Any:
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                response = await client.post(f"{self.url}/{command}", headers=self._headers(), json=list(args))
                response.raise_for_status()
                return response.json().get("result")
        except httpx.HTTPError as e:
            logger.error(f"KV {command} failed: {e}")
            raise ProviderError("kv", f"{command} failed: {e}")

    async def _get_json(self, key: str, default=None):
        raw = await self._command("get", key)
        if not raw:
            return default
        return json.loads(raw)

    async def _add_to_index(self, key: str, job_id: str):
        ids = await self._get_json(key, [])
        if job_id not in ids:
            ids.append(job_id)
            await self._command("set", key, json.dumps(ids))

    async def get_job(self, job_id: str) -> Optional[JobData]:
        return await self._get_json(self._job_key(job_id))

    async def set_job(self, job_id: str, job_data: JobData) -> bool:
        await self._command("set", self._job_key(job_id), json.dumps(job_data))
        await self._add_to_index(self.ALL_INDEX, job_id)
        if job_data.get("storyId"):
            await self._add_to_index(self._story_key(job_data["storyId"]), job_id)
        logger.info(f"Stored job {job_id} in KV")
        return True

    async def update_job(self, job_id: str, updates: JobData,
                         only_if_status: Optional[Sequence[str]] = None) -> Optional[JobData]:
        job = await self.get_job(job_id)
        if job is None:
            logger.error(f"Cannot update job {job_id} - not found in KV")
            return None
        if only_if_status is not None and job.get("status") not in only_if_status:
            return job
        job.update(updates)
        await self._command("set", self._job_key(job_id), json.dumps(job))
        return job

    async def list_jobs(self, story_id: Optional[str] = None) -> List[JobData]:
        key = self.ALL_INDEX if story_id is None else self._story_key(story_id)
        jobs = []
        for job_id in await self._get_json(key, []):
            job = await self.get_job(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    async def delete_where(self, predicate: Callable[[JobData], bool]) -> int:
        removed = []
        for job in await self.list_jobs():
            if predicate(job):
                await self._command("del", self._job_key(job["id"]))
                removed.append(job)
        if removed:
            gone = {j["id"] for j in removed}
            ids = await self._get_json(self.ALL_INDEX, [])
            await self._command("set", self.ALL_INDEX, json.dumps([i for i in ids if i not in gone]))
            for story_id in {j.get("storyId") for j in removed if j.get("storyId")}:
                key = self._story_key(story_id)
                ids = await self._get_json(key, [])
                await self._command("set", key, json.dumps([i for i in ids if i not in gone]))
        return len(removed)


def get_job_store():
    if settings.KV_REST_API_URL and settings.KV_REST_API_TOKEN:
        return KVJobStore(settings.KV_REST_API_URL, settings.KV_REST_API_TOKEN)
    return FileJobStore(settings.VIDEO_JOBS_FILE)
