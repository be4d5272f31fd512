import os, time, httpx, logging
from typing import Optional

from . import settings
from . import picsart_client, replicate_client
from .entities import expand_entity_references
from .errors import ConfigurationError, ProviderError
from .media import image_dimensions, safe_path_segment, write_bytes
from .models import DetailPrompts, GeneratedImage
from .styles import apply_style_to_prompt

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXT = {"image/jpeg": "jpg", "image/webp": "webp", "image/png": "png"}


def build_request_prompt(prompt: str, details: Optional[DetailPrompts], style_id: Optional[str]) -> str:
    """Expand @references, then append the style descriptor."""
    expanded = expand_entity_references(prompt, details) or "high quality image"
    return apply_style_to_prompt(expanded, style_id)


async def _call_provider(provider: str, request_prompt: str) -> str:
    if provider == "picsart":
        return await picsart_client.text2image(request_prompt)
    if provider == "replicate":
        return await replicate_client.create_and_wait_image(request_prompt)
    raise ConfigurationError(f"Unsupported image provider: {provider}")


async def _download(url: str):
    try:
        async with httpx.AsyncClient(timeout=60, follow_redirects=True) as client:
            r = await client.get(url)
            r.raise_for_status()
            return r.content, r.headers.get("content-type", "").split(";")[0]
    except httpx.HTTPError as e:
        raise ProviderError("image-download", f"Could not fetch generated image: {str(e)}")


async def generate_image(prompt: str, provider: Optional[str] = None, style_id: Optional[str] = None,
                         details: Optional[DetailPrompts] = None, story_id: Optional[str] = None,
                         scene_index: int = 0, chunk_id: Optional[str] = None,
                         chunk_index: Optional[int] = None) -> GeneratedImage:
    provider = (provider or settings.IMAGE_PROVIDER).lower()
    request_prompt = build_request_prompt(prompt, details, style_id)
    logger.info(f"Generating scene {scene_index} image with {provider}")

    try:
        remote_url = await _call_provider(provider, request_prompt)
    except httpx.HTTPError as e:
        raise ProviderError(provider, str(e))
    data, content_type = await _download(remote_url)

    ext = CONTENT_TYPE_EXT.get(content_type, "png")
    name = f"{int(time.time() * 1000)}_scene_{scene_index}.{ext}"
    path = os.path.join(settings.MEDIA_DIR, safe_path_segment(story_id), "images", name)
    write_bytes(path, data)
    size = image_dimensions(data)

    rel = os.path.relpath(path, settings.MEDIA_DIR).replace(os.sep, "/")
    return GeneratedImage(
        scene_index=scene_index,
        original_prompt=prompt,
        request_prompt=request_prompt,
        image_url=f"/media/{rel}",
        width=size[0] if size else None,
        height=size[1] if size else None,
        chunk_id=chunk_id,
        chunk_index=chunk_index,
    )
