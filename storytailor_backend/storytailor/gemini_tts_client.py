import base64, httpx, logging
from typing import Optional

from . import settings
from .errors import ConfigurationError, ProviderError
from .media import pcm_to_wav

logger = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


async def tts_to_bytes(text: str, voice: Optional[str] = None, model: Optional[str] = None,
                       language_code: Optional[str] = None) -> bytes:
    """Gemini speech generation. Returns WAV bytes (the API answers with raw 24 kHz PCM)."""
    api_key = settings.GOOGLE_API_KEY
    if not api_key:
        raise ConfigurationError("GOOGLE_API_KEY is not set; please configure your .env")
    if not text or not text.strip():
        raise ProviderError("google-tts", "Script is empty or contains only whitespace")

    model = model or settings.GOOGLE_TTS_MODEL
    voice_config = {"prebuiltVoiceConfig": {"voiceName": voice or settings.GOOGLE_TTS_VOICE}}
    speech_config = {"voiceConfig": voice_config}
    if language_code:
        speech_config["languageCode"] = language_code

    # Quoting keeps the model from answering the text instead of reading it
    escaped = text.replace('"', '\\"')
    body = {
        "contents": [{"parts": [{"text": f'"{escaped}"'}]}],
        "generationConfig": {"responseModalities": ["AUDIO"], "speechConfig": speech_config},
    }

    logger.info(f"Calling Google TTS ({model}) for {len(text)} characters")
    async with httpx.AsyncClient(timeout=120) as client:
        r = await client.post(f"{API_BASE}/{model}:generateContent", params={"key": api_key}, json=body)
    if r.status_code >= 400:
        detail = r.text
        try:
            detail = r.json().get("error", {}).get("message") or detail
        except ValueError:
            pass
        raise ProviderError("google-tts", f"API error: {r.status_code} - {detail}", r.status_code)

    candidate = (r.json().get("candidates") or [{}])[0]
    finish_reason = candidate.get("finishReason")
    if finish_reason and finish_reason != "STOP":
        raise ProviderError("google-tts", f"generation failed: {finish_reason}")
    parts = (candidate.get("content") or {}).get("parts") or [{}]
    audio_b64 = (parts[0].get("inlineData") or {}).get("data")
    if not audio_b64:
        raise ProviderError("google-tts", "No audio content in response")
    return pcm_to_wav(base64.b64decode(audio_b64))
