import httpx, asyncio, logging
from typing import List, Optional

from . import settings
from .errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

API_BASE = "https://api.elevenlabs.io/v1"
VOICE_CATEGORIES = ("premade", "professional")


async def _asleep(sec: float):
    await asyncio.sleep(sec)


def _voice_id(voice_id: Optional[str] = None) -> str:
    vid = voice_id or settings.ELEVENLABS_VOICE_ID
    if not vid:
        raise ConfigurationError("ELEVENLABS_VOICE_ID is not set and no voice was requested")
    return vid


def _headers(accept: str = "audio/mpeg"):
    api_key = settings.ELEVENLABS_API_KEY
    if not api_key:
        raise ConfigurationError("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Accept": accept,
        "Content-Type": "application/json"
    }


async def tts_to_bytes(text: str, voice_id: Optional[str] = None, max_retries: int = 3) -> bytes:
    payload = {
        "text": text,
        "model_id": "eleven_multilingual_v2",
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }
    url = f"{API_BASE}/text-to-speech/{_voice_id(voice_id)}"
    params = {"output_format": settings.ELEVENLABS_OUTPUT_FORMAT}
    headers = _headers()

    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=60) as client:
                r = await client.post(url, headers=headers, params=params, json=payload)
                r.raise_for_status()
                return r.content
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 and attempt < max_retries:
                # Exponential backoff: 1, 2, 4 seconds
                wait_time = 2 ** attempt
                logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... (attempt {attempt + 1}/{max_retries + 1})")
                await _asleep(wait_time)
                continue
            if status == 429:
                logger.error(f"ElevenLabs rate limit exceeded after {max_retries + 1} attempts")
            raise ProviderError("elevenlabs", f"TTS API error: {status} - {e.response.text}", status)
        except httpx.HTTPError as e:
            raise ProviderError("elevenlabs", f"Failed to generate audio: {str(e)}")


async def list_voices() -> List[dict]:
    """Voices usable for narration: premade, professional or uncategorised."""
    async with httpx.AsyncClient(timeout=30) as client:
        try:
            r = await client.get(f"{API_BASE}/voices", headers=_headers("application/json"))
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError("elevenlabs", f"Voices API error: {e.response.status_code} - {e.response.text}",
                                e.response.status_code)
        except httpx.HTTPError as e:
            raise ProviderError("elevenlabs", f"Failed to list voices: {str(e)}")
    voices = r.json().get("voices") or []
    return [v for v in voices if not v.get("category") or v.get("category") in VOICE_CATEGORIES]
