"""
Video assembly for a story: downloads the images and narration, lays them
out with `timeline.organize_scenes` and renders an MP4 with ffmpeg, either
locally or on the remote render worker. Progress goes to the video job.
"""
import os, json, base64, shutil, asyncio, tempfile, logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from . import settings
from . import video_jobs
from .errors import JobNotFoundError, JobStateError, RenderCancelledError, RenderError
from .media import (
    ffmpeg_audio_track, ffmpeg_concat, ffmpeg_mux_audio, ffmpeg_scene_clip,
    image_dimensions, pcm_to_wav, safe_filename, safe_path_segment, sniff_audio,
    write_bytes, write_concat_list,
)
from .models import GeneratedImage, NarrationChunk, RenderVideoRequest
from .narration import estimate_audio_duration
from .timeline import Scene, choose_render_geometry, organize_scenes

logger = logging.getLogger(__name__)

# 1x1 transparent PNG used when an image cannot be fetched
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
CANCEL_MESSAGE = "Render cancelled by user."
ACTIVE_STATUSES = ("pending", "processing")

# job id -> running ffmpeg process
ACTIVE_PROCESSES: Dict[str, asyncio.subprocess.Process] = {}
_cancelled = set()

ProgressCallback = Callable[[int], Awaitable[None]]


def _image_url(image) -> str:
    return image.image_url if isinstance(image, GeneratedImage) else str(image)


def validate_render_request(req: RenderVideoRequest) -> Optional[str]:
    """Return the problem with a render request, or None when it can be rendered."""
    if req.images is None:
        return "Missing or invalid images array"
    if not req.images:
        return "No images provided for rendering"
    if req.audio_chunks is None:
        return "Missing or invalid audioChunks array"
    if not req.audio_chunks:
        return "No audio chunks provided for rendering"
    if not any(c.audio_url for c in req.audio_chunks):
        return "No audio chunks with valid audio URLs provided"
    if not req.story_title:
        return "Missing story title"
    if not req.story_id:
        return "Missing story ID"
    return None


async def fetch_bytes(url: str) -> bytes:
    """Read a data: URI, a /media/ path served by this app, or an http(s) URL."""
    if url.startswith("data:"):
        _, _, payload = url.partition(",")
        return base64.b64decode(payload)
    if url.startswith("/media/"):
        root = os.path.realpath(settings.MEDIA_DIR)
        path = os.path.realpath(os.path.join(root, url[len("/media/"):]))
        if not path.startswith(root + os.sep):
            raise RenderError(f"Media path escapes the media directory: {url}")
        with open(path, "rb") as f:
            return f.read()
    if url.startswith(("http://", "https://")):
        async with httpx.AsyncClient(timeout=60, follow_redirects=True) as client:
            r = await client.get(url)
            r.raise_for_status()
            return r.content
    raise RenderError(f"Unsupported media URL: {url[:80]}")


async def download_images(urls: Sequence[str], work_dir: str) -> Tuple[List[str], Optional[Tuple[int, int]]]:
    """Save every image locally; failures become a placeholder. Returns paths and the first image's size."""
    paths = []
    first_size = None
    for i, url in enumerate(urls):
        try:
            data = await fetch_bytes(url)
            if i == 0:
                first_size = image_dimensions(data)
        except (httpx.HTTPError, OSError, ValueError, RenderError) as e:
            logger.warning(f"Image {i} could not be downloaded, using placeholder: {e}")
            data = PLACEHOLDER_PNG
        path = os.path.join(work_dir, f"image-{i}.png")
        write_bytes(path, data)
        paths.append(path)
    return paths, first_size


async def download_audio(chunks: Sequence[NarrationChunk], work_dir: str) -> List[NarrationChunk]:
    """Save narration locally. Chunks without audio or whose audio fails to download are dropped."""
    local = []
    for chunk in chunks:
        if not chunk.audio_url:
            continue
        try:
            data = await fetch_bytes(chunk.audio_url)
        except (httpx.HTTPError, OSError, ValueError, RenderError) as e:
            logger.warning(f"Audio for chunk {chunk.index} could not be downloaded, dropping it: {e}")
            continue
        kind = sniff_audio(data)
        if kind == "pcm":
            data, kind = pcm_to_wav(data), "wav"
        path = os.path.join(work_dir, f"audio-{chunk.index}.{kind}")
        write_bytes(path, data)
        duration = chunk.duration or estimate_audio_duration(data)
        local.append(chunk.model_copy(update={"audio_url": path, "duration": duration}))
    return local


def render_commands(scenes: Sequence[Scene], width: int, height: int, fps: int,
                    work_dir: str, out_path: str) -> List[List[str]]:
    """ffmpeg invocations for a timeline: one clip per image, then concat, audio track and mux."""
    commands = []
    clips = []
    for s, scene in enumerate(scenes):
        for i, image in enumerate(scene.images):
            clip = os.path.join(work_dir, f"clip-{s:03d}-{i:02d}.mp4")
            commands.append(ffmpeg_scene_clip(image.src, clip, image.frames, width, height, fps))
            clips.append(clip)

    list_path = os.path.join(work_dir, "clips.txt")
    write_concat_list(clips, list_path)
    video_path = os.path.join(work_dir, "video-only.mp4")
    audio_path = os.path.join(work_dir, "narration.m4a")
    commands.append(ffmpeg_concat(list_path, video_path))
    commands.append(ffmpeg_audio_track([(sc.audio_url, sc.frames / fps) for sc in scenes], audio_path))
    commands.append(ffmpeg_mux_audio(video_path, audio_path, out_path))
    return commands


async def _run_process(job_id: str, cmd: Sequence[str], timeout: float):
    proc = await asyncio.create_subprocess_exec(
        *cmd, stdout=asyncio.subprocess.DEVNULL, stderr=asyncio.subprocess.PIPE,
    )
    ACTIVE_PROCESSES[job_id] = proc
    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=max(1, timeout))
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise RenderError(f"Rendering timed out after {settings.RENDER_TIMEOUT_S} seconds")
    finally:
        ACTIVE_PROCESSES.pop(job_id, None)
    if job_id in _cancelled:
        raise RenderCancelledError(CANCEL_MESSAGE)
    if proc.returncode != 0:
        error_msg = stderr.decode("utf-8", errors="ignore")
        logger.error(f"FFmpeg exited with {proc.returncode} for job {job_id}: {error_msg[-2000:]}")
        raise RenderError(f"FFmpeg failed: {error_msg[-500:]}")


async def render_local(job_id: str, scenes: Sequence[Scene], width: int, height: int, fps: int,
                       work_dir: str, out_path: str, on_progress: ProgressCallback):
    commands = render_commands(scenes, width, height, fps, work_dir, out_path)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + settings.RENDER_TIMEOUT_S
    last = None
    for n, cmd in enumerate(commands, start=1):
        _check_cancelled(job_id)
        await _run_process(job_id, cmd, deadline - loop.time())
        progress = 40 + (30 * n) // len(commands)
        if progress != last:
            await on_progress(progress)
            last = progress


def _timeline_payload(scenes: Sequence[Scene], width: int, height: int, fps: int) -> dict:
    remote = []
    for scene in scenes:
        data = scene.model_dump()
        data["audio_url"] = os.path.basename(scene.audio_url) if scene.audio_url else None
        for image in data["images"]:
            image["src"] = os.path.basename(image["src"])
        remote.append(data)
    return {"width": width, "height": height, "fps": fps, "scenes": remote}


async def render_remote(job_id: str, scenes: Sequence[Scene], width: int, height: int, fps: int,
                        out_path: str, on_progress: ProgressCallback):
    """POST the timeline and its files to the render worker and save the returned MP4."""
    paths = {img.src for sc in scenes for img in sc.images} | {sc.audio_url for sc in scenes if sc.audio_url}
    payload = _timeline_payload(scenes, width, height, fps)
    await on_progress(40)
    handles = [open(p, "rb") for p in sorted(paths)]
    try:
        files = [("files", (os.path.basename(h.name), h)) for h in handles]
        async with httpx.AsyncClient(timeout=settings.RENDER_TIMEOUT_S) as client:
            async with client.stream("POST", f"{settings.RENDER_WORKER_URL.rstrip('/')}/render",
                                     data={"timeline": json.dumps(payload)}, files=files) as r:
                if r.status_code >= 400:
                    body = (await r.aread()).decode("utf-8", errors="ignore")
                    raise RenderError(f"Render worker failed {r.status_code}: {body[:500]}")
                with open(out_path, "wb") as f:
                    async for chunk in r.aiter_bytes():
                        f.write(chunk)
    except httpx.HTTPError as e:
        raise RenderError(f"Render worker unreachable: {e}")
    finally:
        for h in handles:
            h.close()
    _check_cancelled(job_id)
    await on_progress(70)


def _check_cancelled(job_id: str):
    if job_id in _cancelled:
        raise RenderCancelledError(CANCEL_MESSAGE)


async def _progress(job_id: str, progress: int, **fields):
    _check_cancelled(job_id)
    await video_jobs.update_job_status(job_id, progress=progress, **fields)


async def render_video_in_background(job_id: str, req: RenderVideoRequest):
    work_dir = None
    try:
        logger.info(f"Starting background render for job {job_id}")
        await _progress(job_id, 10, status="processing")
        os.makedirs(settings.RENDER_TMP_DIR, exist_ok=True)
        work_dir = tempfile.mkdtemp(prefix=f"{job_id}-", dir=settings.RENDER_TMP_DIR)

        await _progress(job_id, 20)
        image_paths, first_size = await download_images([_image_url(i) for i in req.images], work_dir)
        chunks = await download_audio(req.audio_chunks, work_dir)
        await _progress(job_id, 30)

        width, height, fps = choose_render_geometry(first_size, settings.VIDEO_WIDTH, settings.VIDEO_HEIGHT, settings.FPS)
        scenes = organize_scenes(image_paths, chunks, fps)
        logger.info(f"Rendering job {job_id}: {len(scenes)} scenes at {width}x{height}@{fps}")

        out_path = os.path.join(work_dir, "story.mp4")
        on_progress = lambda p: _progress(job_id, p)
        if settings.RENDER_WORKER_URL:
            await render_remote(job_id, scenes, width, height, fps, out_path, on_progress)
        else:
            await render_local(job_id, scenes, width, height, fps, work_dir, out_path, on_progress)

        if not os.path.exists(out_path) or os.path.getsize(out_path) == 0:
            raise RenderError("Renderer finished without producing a video file")
        await _progress(job_id, 80)

        story_dir = safe_path_segment(req.story_id)
        file_name = f"{safe_filename(req.story_title)}.mp4"
        dest = os.path.join(settings.DOWNLOADS_DIR, story_dir, file_name)
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        shutil.copyfile(out_path, dest)
        await _progress(job_id, 90)

        await _progress(job_id, 100, status="completed", download_url=f"/downloads/{story_dir}/{file_name}")
        logger.info(f"Background render completed successfully for job {job_id}")
    except RenderCancelledError:
        logger.info(f"Render for job {job_id} stopped after cancellation")
    except Exception as e:
        # Failures belong on the job; nothing is awaiting this task
        logger.exception(f"Background render failed for job {job_id}: {str(e)}")
        await video_jobs.update_job_status(job_id, status="error", error=str(e))
    finally:
        _cancelled.discard(job_id)
        ACTIVE_PROCESSES.pop(job_id, None)
        if work_dir:
            shutil.rmtree(work_dir, ignore_errors=True)


async def cancel_render(job_id: str) -> str:
    job = await video_jobs.get_job(job_id)
    if job is None:
        raise JobNotFoundError(f"Job {job_id} not found")
    if job.status not in ACTIVE_STATUSES:
        raise JobStateError("Job is not currently rendering or pending, cannot cancel.")

    _cancelled.add(job_id)
    # The render may have finished since the read above
    updated = await video_jobs.update_job_status(
        job_id, only_if_status=ACTIVE_STATUSES, status="error", error=CANCEL_MESSAGE, progress=job.progress,
    )
    if updated is None or updated.error != CANCEL_MESSAGE:
        _cancelled.discard(job_id)
        if updated is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        raise JobStateError("Job is not currently rendering or pending, cannot cancel.")

    proc = ACTIVE_PROCESSES.pop(job_id, None)
    if proc is not None and proc.returncode is None:
        logger.info(f"Sending SIGTERM to render process {proc.pid} for job {job_id}")
        proc.terminate()
        return "Video rendering cancellation initiated."
    return "No active rendering process to cancel, or already stopped. Marked as cancelled."
