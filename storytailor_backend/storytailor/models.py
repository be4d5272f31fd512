from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional, Union

JobStatus = Literal["pending", "processing", "completed", "error"]


class CamelModel(BaseModel):
    # Wire format is camelCase, attributes stay snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NarrationChunk(CamelModel):
    id: str
    text: str
    index: int
    audio_url: Optional[str] = None
    duration: Optional[float] = None


class TimedChunk(CamelModel):
    text: str
    duration: float
    audio_url: Optional[str] = None


class DetailPrompts(CamelModel):
    character_prompts: str = ""
    item_prompts: str = ""
    location_prompts: str = ""


class GeneratedImage(CamelModel):
    scene_index: int
    original_prompt: str
    request_prompt: str
    image_url: str
    width: Optional[int] = None
    height: Optional[int] = None
    chunk_id: Optional[str] = None
    chunk_index: Optional[int] = None


class ActionPrompt(CamelModel):
    scene_index: int
    original_prompt: str
    action_description: str
    chunk_text: str = ""
    chunk_id: Optional[str] = None
    chunk_index: Optional[int] = None


class VideoJob(CamelModel):
    id: str
    status: JobStatus = "pending"
    progress: int = 0
    story_id: str
    story_title: str
    created_at: str
    updated_at: str
    download_url: Optional[str] = None
    error: Optional[str] = None
    estimated_time_remaining: Optional[int] = None


# --- request bodies ---

class TextOptions(CamelModel):
    ai_provider: Optional[str] = None
    model: Optional[str] = None


class TitleRequest(TextOptions):
    user_prompt: str


class ScriptRequest(TextOptions):
    prompt: str


class ScriptChunksRequest(TextOptions):
    script: str


class DetailPromptsRequest(TextOptions):
    script: str
    chunks: List[str] = Field(default_factory=list)
    image_style_id: Optional[str] = None
    image_provider: Optional[str] = None


class ImagePromptsRequest(TextOptions):
    script: str
    character_prompts: str = ""
    location_prompts: str = ""
    item_prompts: str = ""
    audio_duration_seconds: float = 0
    narration_chunks: Optional[List[TimedChunk]] = None


class TranslateRequest(TextOptions):
    chunks: List[NarrationChunk]
    language: str = "Spanish"


class NarrationRequest(CamelModel):
    text: str
    voice_id: Optional[str] = None
    tts_model: Optional[str] = None
    google_api_model: Optional[str] = None
    language_code: Optional[str] = None
    story_id: Optional[str] = None
    chunk_id: Optional[str] = None


class NarrationResult(CamelModel):
    audio_url: str
    duration: float
    service: str
    model: str


class ImageRequest(CamelModel):
    prompt: str
    provider: Optional[str] = None
    style_id: Optional[str] = None
    details: Optional[DetailPrompts] = None
    story_id: Optional[str] = None
    scene_index: int = 0
    chunk_id: Optional[str] = None
    chunk_index: Optional[int] = None


class RenderVideoRequest(CamelModel):
    images: Optional[List[Union[GeneratedImage, str]]] = None
    audio_chunks: Optional[List[NarrationChunk]] = None
    story_title: Optional[str] = None
    story_id: Optional[str] = None


class StoryRequest(CamelModel):
    user_prompt: str
    title: Optional[str] = None
    story_id: Optional[str] = None
    image_style_id: Optional[str] = None
    ai_provider: Optional[str] = None
    model: Optional[str] = None
    image_provider: Optional[str] = None
    tts_model: Optional[str] = None
    voice_id: Optional[str] = None


class PipelineState(CamelModel):
    job_id: str
    story_id: str
    request: StoryRequest
    title: Optional[str] = None
    script: Optional[str] = None
    chunks: List[NarrationChunk] = Field(default_factory=list)
    details: Optional[DetailPrompts] = None
    image_prompts: List[str] = Field(default_factory=list)
    action_prompts: List[ActionPrompt] = Field(default_factory=list)
    images: List[GeneratedImage] = Field(default_factory=list)
