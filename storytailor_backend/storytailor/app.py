import os, asyncio, logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

# Ensure .env is loaded before importing modules that read settings
from . import settings
from . import llm, orchestrator, renderer, video_jobs
from .elevenlabs_client import list_voices
from .errors import (
    ConfigurationError, GenerationError, JobNotFoundError, JobStateError,
    ProviderError, StoryTailorError,
)
from .images import generate_image
from .models import (
    DetailPrompts, DetailPromptsRequest, ImagePromptsRequest, ImageRequest,
    NarrationRequest, RenderVideoRequest, ScriptChunksRequest, ScriptRequest,
    StoryRequest, TitleRequest, TranslateRequest,
)
from .narration import generate_narration
from .styles import list_styles

logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (ConfigurationError, 500),
    (ProviderError, 502),
    (GenerationError, 502),
    (JobNotFoundError, 404),
    (JobStateError, 400),
]

# Strong references so fire-and-forget tasks are not garbage collected
_background_tasks = set()


def _spawn(coro):
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    for d in (settings.MEDIA_DIR, settings.DOWNLOADS_DIR):
        os.makedirs(d, exist_ok=True)
    removed = await video_jobs.cleanup_old_jobs()
    logger.info(f"Startup cleanup removed {removed} old video jobs")
    yield


app = FastAPI(title="StoryTailor Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.mount("/media", StaticFiles(directory=settings.MEDIA_DIR, check_dir=False), name="media")
app.mount("/downloads", StaticFiles(directory=settings.DOWNLOADS_DIR, check_dir=False), name="downloads")


@app.exception_handler(StoryTailorError)
async def storytailor_error_handler(request: Request, exc: StoryTailorError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def _require(value, message: str):
    if not value or (isinstance(value, str) and not value.strip()):
        raise HTTPException(400, message)


@app.get("/health")
def health():
    missing = settings.missing_keys()
    logger.info(f"Health check: API keys present = {not missing}")
    return {"ok": True, "has_keys": not missing, "missing": missing}


@app.get("/v1/styles")
def styles():
    return {"styles": list_styles()}


# --- text generation ---

@app.post("/v1/stories:title")
def story_title(req: TitleRequest):
    _require(req.user_prompt, "userPrompt is required")
    return {"title": llm.generate_title(req.user_prompt, req.ai_provider, req.model)}


@app.post("/v1/stories:script")
def story_script(req: ScriptRequest):
    _require(req.prompt, "prompt is required")
    return {"script": llm.generate_script(req.prompt, req.ai_provider, req.model)}


@app.post("/v1/stories:chunks")
def story_chunks(req: ScriptChunksRequest):
    _require(req.script, "script is required")
    return {"chunks": llm.prepare_script_chunks(req.script, req.ai_provider, req.model)}


@app.post("/v1/stories:details")
def story_details(req: DetailPromptsRequest):
    _require(req.script, "script is required")
    return llm.generate_detail_prompts(req.script, req.chunks, req.image_style_id, req.ai_provider, req.model)


@app.post("/v1/stories:image-prompts")
def story_image_prompts(req: ImagePromptsRequest):
    _require(req.script, "script is required")
    details = DetailPrompts(
        character_prompts=req.character_prompts,
        location_prompts=req.location_prompts,
        item_prompts=req.item_prompts,
    )
    image_prompts, action_prompts = llm.generate_image_prompts(
        req.script, details, req.audio_duration_seconds, req.narration_chunks, req.ai_provider, req.model,
    )
    return {"imagePrompts": image_prompts, "actionPrompts": action_prompts}


@app.post("/v1/stories:translate")
def story_translate(req: TranslateRequest):
    _require(req.chunks, "chunks are required")
    return {"chunks": llm.translate_chunks(req.chunks, req.language, req.ai_provider, req.model)}


# --- narration and images ---

@app.get("/v1/voices")
async def voices():
    return {"voices": await list_voices()}


@app.post("/v1/narration")
async def narration(req: NarrationRequest):
    _require(req.text, "text is required")
    return await generate_narration(
        req.text, tts_model=req.tts_model, voice_id=req.voice_id, story_id=req.story_id,
        chunk_id=req.chunk_id, google_api_model=req.google_api_model, language_code=req.language_code,
    )


@app.post("/v1/images")
async def images(req: ImageRequest):
    _require(req.prompt, "prompt is required")
    return await generate_image(
        req.prompt, provider=req.provider, style_id=req.style_id, details=req.details,
        story_id=req.story_id, scene_index=req.scene_index, chunk_id=req.chunk_id,
        chunk_index=req.chunk_index,
    )


# --- full pipeline ---

@app.post("/v1/stories:start")
async def start_story(req: StoryRequest):
    _require(req.user_prompt, "userPrompt is required")
    if not settings.has_all_keys(text_provider=req.ai_provider, image_provider=req.image_provider,
                                 tts_model=req.tts_model, voice_id=req.voice_id):
        logger.error("API keys missing, cannot start job")
        raise HTTPException(500, "Server configuration error: missing required API keys")
    job_id = orchestrator.create_story_job(req)
    _spawn(orchestrator.run_story_job(job_id, req))
    return {"job_id": job_id, "status": "queued"}


@app.get("/v1/stories/jobs/{job_id}")
def story_job(job_id: str):
    record = orchestrator.STORY_JOBS.get(job_id)
    if not record:
        raise HTTPException(404, "job not found")
    result = record["result"]
    return {
        "job_id": record["job_id"],
        "status": record["status"],
        "step": record["step"],
        "error": record["error"],
        "result": result.model_dump(by_alias=True) if result else None,
    }


# --- video rendering ---

@app.post("/v1/render-video")
async def render_video(req: RenderVideoRequest):
    logger.info(f"Render video request: {len(req.images or [])} images, {len(req.audio_chunks or [])} audio chunks")
    problem = renderer.validate_render_request(req)
    if problem:
        raise HTTPException(400, problem)
    job = await video_jobs.create_video_job(req.story_id, req.story_title)
    _spawn(renderer.render_video_in_background(job.id, req))
    return {"jobId": job.id, "message": "Video rendering started in background", "status": "processing"}


@app.get("/v1/video-jobs/story/{story_id}")
async def story_video_jobs(story_id: str):
    return await video_jobs.get_jobs_for_story(story_id)


@app.get("/v1/video-jobs/story/{story_id}/latest")
async def latest_story_video(story_id: str):
    job = await video_jobs.get_latest_completed_job(story_id)
    if job is None:
        raise HTTPException(404, "No completed video for this story")
    return job


@app.get("/v1/video-jobs/{job_id}")
async def video_job(job_id: str):
    job = await video_jobs.get_job(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    return job


@app.delete("/v1/video-jobs/{job_id}")
async def cancel_video_job(job_id: str):
    return {"message": await renderer.cancel_render(job_id)}
