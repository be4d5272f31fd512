import httpx, asyncio, logging
from typing import Optional

from . import settings
from .errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

API_URL = "https://genai-api.picsart.io/v1/text2image"
NEGATIVE_PROMPT = (
    "ugly, tiling, poorly drawn hands, poorly drawn feet, poorly drawn face, out of frame, extra limbs, "
    "disfigured, deformed, body out of frame, blurry, bad anatomy, blurred, watermark, grainy, signature, "
    "cut off, draft, low quality, worst quality, SFW, text, words, letters, nsfw, nude"
)
WIDTH, HEIGHT = 1024, 576


def _headers():
    api_key = settings.PICSART_API_KEY
    if not api_key:
        raise ConfigurationError("PICSART_API_KEY is not set; please configure your .env")
    return {"x-picsart-api-key": api_key, "Content-Type": "application/json"}


async def _asleep(sec: float):
    await asyncio.sleep(sec)


def _image_url(body: dict) -> Optional[str]:
    data = body.get("data")
    if isinstance(data, dict) and data.get("url"):
        return data["url"]
    if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get("url"):
        return data[0]["url"]
    return body.get("url")


async def _poll(client: httpx.AsyncClient, inference_id: str) -> str:
    url = f"{API_URL}/inferences/{inference_id}"
    for attempt in range(1, settings.PICSART_POLL_ATTEMPTS + 1):
        r = await client.get(url, headers=_headers())
        if r.status_code == 200:
            image_url = _image_url(r.json())
            if not image_url:
                raise ProviderError("picsart", "Image ready (200 OK) but no URL found")
            return image_url
        if r.status_code != 202:
            raise ProviderError("picsart", f"Polling failed with status {r.status_code}: {r.text}", r.status_code)
        logger.info(f"Picsart inference {inference_id} still running (attempt {attempt}/{settings.PICSART_POLL_ATTEMPTS})")
        if attempt < settings.PICSART_POLL_ATTEMPTS:
            await _asleep(settings.PICSART_POLL_INTERVAL_S)
    raise ProviderError("picsart", "Image generation timed out after polling")


async def text2image(prompt: str) -> str:
    """Generate one image and return its URL."""
    body = {"prompt": prompt or "high quality image", "negativePrompt": NEGATIVE_PROMPT,
            "width": WIDTH, "height": HEIGHT, "count": 1}
    logger.info(f"Starting Picsart image generation for prompt: {prompt[:100]}...")
    async with httpx.AsyncClient(timeout=60) as client:
        try:
            r = await client.post(API_URL, headers=_headers(), json=body)
            if r.status_code >= 400:
                detail = r.text
                try:
                    err = r.json()
                    detail = err.get("message") or err.get("title") or detail
                except ValueError:
                    pass
                raise ProviderError("picsart", f"Request failed: {detail}", r.status_code)

            result = r.json()
            if r.status_code == 202 and result.get("status") == "ACCEPTED" and result.get("inference_id"):
                return await _poll(client, result["inference_id"])
            image_url = _image_url(result)
            if not image_url:
                raise ProviderError("picsart", f"Unexpected response format: {result}")
            return image_url
        except httpx.HTTPError as e:
            raise ProviderError("picsart", str(e))
