"""
Lays narration chunks and images out on a frame timeline.

Each scene is one audio chunk; the images are spread across chunks in
order, and each scene's frames are split evenly over its images.
"""
import math
import logging
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .models import NarrationChunk

logger = logging.getLogger(__name__)

DEFAULT_SECONDS_PER_IMAGE = 3
SMALL_IMAGE_FPS = 12

class SceneImage(BaseModel):
    src: str
    frames: int

class Scene(BaseModel):
    audio_url: Optional[str] = None
    text: str = ""
    duration: float
    frames: int
    images: List[SceneImage] = Field(default_factory=list)

def _split_frames(total: int, count: int) -> List[int]:
    per_image = max(1, total // count)
    extra = total - per_image * count
    return [per_image + (1 if i < extra else 0) for i in range(count)]

def organize_scenes(images: Sequence[str], audio_chunks: Sequence[NarrationChunk], fps: int) -> List[Scene]:
    valid = [c for c in audio_chunks if c.duration and c.duration > 0]
    if not valid:
        logger.warning("No audio chunks with a duration, creating a default scene with images")
        srcs = list(images) or ["placeholder"]
        frames_each = DEFAULT_SECONDS_PER_IMAGE * fps
        return [Scene(
            duration=len(srcs) * DEFAULT_SECONDS_PER_IMAGE,
            frames=len(srcs) * frames_each,
            images=[SceneImage(src=s, frames=frames_each) for s in srcs],
        )]

    padded = list(images)
    while len(padded) < len(valid):
        padded.append(padded[-1] if padded else "placeholder")

    per_chunk = max(1, len(padded) // len(valid))
    extra = len(padded) % len(valid)

    scenes = []
    pos = 0
    for i, chunk in enumerate(valid):
        count = per_chunk + (1 if i < extra else 0)
        srcs = padded[pos:pos + count]
        pos += count
        if not srcs:
            srcs = [padded[i % len(padded)]]
        total = math.ceil(chunk.duration * fps)
        scenes.append(Scene(
            audio_url=chunk.audio_url,
            text=chunk.text,
            duration=chunk.duration,
            frames=total,
            images=[SceneImage(src=s, frames=f) for s, f in zip(srcs, _split_frames(total, len(srcs)))],
        ))

    logger.info(f"Organized {len(scenes)} scenes, {total_frames(scenes) / fps:.1f} seconds")
    return scenes

def total_frames(scenes: Sequence[Scene]) -> int:
    return sum(s.frames for s in scenes)

def choose_render_geometry(detected: Optional[Tuple[int, int]], default_w: int, default_h: int,
                           default_fps: int) -> Tuple[int, int, int]:
    """(width, height, fps) for the render; small source images render at a lower frame rate."""
    if not detected:
        return default_w, default_h, default_fps
    w, h = detected
    fps = SMALL_IMAGE_FPS if w <= 640 and h <= 360 else default_fps
    # libx264 needs even dimensions of at least 2
    return max(2, w - w % 2), max(2, h - h % 2), fps
