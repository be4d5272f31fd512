import uuid, asyncio, logging
from typing import Dict, List, Optional

from langgraph.graph import StateGraph, END

from . import llm
from .images import generate_image
from .models import ActionPrompt, NarrationChunk, PipelineState, StoryRequest, TimedChunk
from .narration import generate_narration
from .script_splitter import calculate_total_narration_duration

logger = logging.getLogger(__name__)

# In-memory registry of full-pipeline jobs: job id -> status record
STORY_JOBS: Dict[str, dict] = {}


def _mark_step(state: PipelineState, step: str):
    record = STORY_JOBS.get(state.job_id)
    if record is not None:
        record["step"] = step
    logger.info(f"Job {state.job_id}: {step}")


async def node_title(state: PipelineState) -> dict:
    _mark_step(state, "title")
    req = state.request
    if req.title:
        return {"title": req.title}
    title = await asyncio.to_thread(llm.generate_title, req.user_prompt, req.ai_provider, req.model)
    return {"title": title}


async def node_script(state: PipelineState) -> dict:
    _mark_step(state, "script")
    req = state.request
    script = await asyncio.to_thread(llm.generate_script, req.user_prompt, req.ai_provider, req.model)
    return {"script": script}


async def node_chunks(state: PipelineState) -> dict:
    _mark_step(state, "chunks")
    req = state.request
    chunks = await asyncio.to_thread(llm.prepare_script_chunks, state.script, req.ai_provider, req.model)
    logger.info(f"Script split into {len(chunks)} chunks")
    return {"chunks": chunks}


async def node_details(state: PipelineState) -> dict:
    _mark_step(state, "details")
    req = state.request
    details = await asyncio.to_thread(
        llm.generate_detail_prompts, state.script, [c.text for c in state.chunks],
        req.image_style_id, req.ai_provider, req.model,
    )
    return {"details": details}


async def node_narration(state: PipelineState) -> dict:
    _mark_step(state, "narration")
    req = state.request
    narrated: List[NarrationChunk] = []
    # One chunk at a time to stay under TTS rate limits
    for chunk in state.chunks:
        result = await generate_narration(
            chunk.text, tts_model=req.tts_model, voice_id=req.voice_id,
            story_id=state.story_id, chunk_id=chunk.id,
        )
        narrated.append(chunk.model_copy(update={"audio_url": result.audio_url, "duration": result.duration}))
    return {"chunks": narrated}


def _owner(chunks: List[NarrationChunk], position: Optional[int]) -> Optional[NarrationChunk]:
    if position is None or not 0 <= position < len(chunks):
        return None
    return chunks[position]


async def node_image_prompts(state: PipelineState) -> dict:
    _mark_step(state, "image_prompts")
    req = state.request
    timed = [TimedChunk(text=c.text, duration=c.duration or 0, audio_url=c.audio_url) for c in state.chunks]
    image_prompts, actions, positions = await asyncio.to_thread(
        llm.generate_scene_prompts, state.script, state.details,
        calculate_total_narration_duration(state.chunks), timed, req.ai_provider, req.model,
    )
    owners = [_owner(state.chunks, p) for p in positions]
    action_prompts = [
        ActionPrompt(
            scene_index=i,
            original_prompt=image_prompts[i],
            action_description=actions[i],
            chunk_text=owner.text if owner else "",
            chunk_id=owner.id if owner else None,
            chunk_index=owner.index if owner else None,
        )
        for i, owner in enumerate(owners)
    ]
    return {"image_prompts": image_prompts, "action_prompts": action_prompts}


async def node_images(state: PipelineState) -> dict:
    _mark_step(state, "images")
    req = state.request
    images = []
    for action in state.action_prompts:
        logger.info(f"Generating image {action.scene_index + 1}/{len(state.action_prompts)}")
        images.append(await generate_image(
            action.original_prompt, provider=req.image_provider, style_id=req.image_style_id,
            details=state.details, story_id=state.story_id, scene_index=action.scene_index,
            chunk_id=action.chunk_id, chunk_index=action.chunk_index,
        ))
    return {"images": images}


def build_graph():
    g = StateGraph(PipelineState)
    g.add_node("title", node_title)
    g.add_node("script", node_script)
    g.add_node("chunks", node_chunks)
    g.add_node("details", node_details)
    g.add_node("narration", node_narration)
    g.add_node("image_prompts", node_image_prompts)
    g.add_node("images", node_images)
    g.set_entry_point("title")
    g.add_edge("title", "script")
    g.add_edge("script", "chunks")
    g.add_edge("chunks", "details")
    g.add_edge("details", "narration")
    g.add_edge("narration", "image_prompts")
    g.add_edge("image_prompts", "images")
    g.add_edge("images", END)
    return g.compile()


GRAPH = build_graph()


async def run_story_pipeline(req: StoryRequest, job_id: Optional[str] = None) -> PipelineState:
    state = PipelineState(
        job_id=job_id or str(uuid.uuid4()),
        story_id=req.story_id or str(uuid.uuid4()),
        request=req,
    )
    logger.info(f"Starting story pipeline {state.job_id} for story {state.story_id}")
    final_state = await GRAPH.ainvoke(state)
    # LangGraph hands back a dict of channel values
    return PipelineState.model_validate(final_state)


def create_story_job(req: StoryRequest) -> str:
    job_id = str(uuid.uuid4())
    STORY_JOBS[job_id] = {"job_id": job_id, "status": "queued", "step": None, "error": None, "result": None}
    return job_id


async def run_story_job(job_id: str, req: StoryRequest):
    record = STORY_JOBS[job_id]
    record["status"] = "running"
    try:
        final_state = await run_story_pipeline(req, job_id)
        record["result"] = final_state
        record["status"] = "succeeded"
        record["step"] = "done"
        logger.info(f"Story job {job_id} completed with {len(final_state.images)} images")
    except Exception as e:
        logger.exception(f"Story job {job_id} failed: {str(e)}")
        record["status"] = "failed"
        record["error"] = str(e)
