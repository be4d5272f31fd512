"""
Narration audio: picks the TTS engine, stores the audio next to the story's
other media and works out how long it plays.
"""
import os, re, uuid, logging
from typing import Optional

from . import settings
from . import elevenlabs_client, gemini_tts_client
from .errors import ConfigurationError
from .media import safe_path_segment, sniff_audio, wav_duration, write_bytes
from .models import NarrationResult

logger = logging.getLogger(__name__)

DEFAULT_MP3_BITRATE_KBPS = 128
UNKNOWN_FORMAT_DURATION = 30.0
TINY_PAYLOAD_BYTES = 1000


def _mp3_bitrate_kbps(output_format: Optional[str]) -> int:
    # "mp3_44100_128" -> 128
    m = re.match(r"mp3_\d+_(\d+)$", output_format or "")
    return int(m.group(1)) if m else DEFAULT_MP3_BITRATE_KBPS


def estimate_audio_duration(data: bytes, mime: Optional[str] = None) -> float:
    kind = "wav" if mime == "audio/wav" else "mp3" if mime == "audio/mpeg" else sniff_audio(data)
    if kind == "wav":
        duration = wav_duration(data)
        if duration is None:
            duration = UNKNOWN_FORMAT_DURATION
    elif kind == "mp3":
        bytes_per_second = _mp3_bitrate_kbps(settings.ELEVENLABS_OUTPUT_FORMAT) * 1000 / 8
        duration = len(data) / bytes_per_second
    else:
        logger.warning(f"Unknown audio format ({len(data)} bytes), assuming {UNKNOWN_FORMAT_DURATION}s")
        duration = UNKNOWN_FORMAT_DURATION

    if len(data) < TINY_PAYLOAD_BYTES and duration < 1:
        duration = 1
    return round(max(1.0, duration), 2)


def _media_url(path: str) -> str:
    rel = os.path.relpath(path, settings.MEDIA_DIR).replace(os.sep, "/")
    return f"/media/{rel}"


async def generate_narration(text: str, tts_model: Optional[str] = None, voice_id: Optional[str] = None,
                             story_id: Optional[str] = None, chunk_id: Optional[str] = None,
                             google_api_model: Optional[str] = None,
                             language_code: Optional[str] = None) -> NarrationResult:
    engine = (tts_model or "elevenlabs").lower()
    if engine not in settings.TTS_MODELS:
        raise ConfigurationError(f"Unsupported TTS model: {engine}")

    if engine == "google":
        model = google_api_model or settings.GOOGLE_TTS_MODEL
        audio = await gemini_tts_client.tts_to_bytes(text, voice=voice_id, model=model, language_code=language_code)
        ext, mime = "wav", "audio/wav"
    else:
        model = "eleven_multilingual_v2"
        audio = await elevenlabs_client.tts_to_bytes(text, voice_id=voice_id)
        ext, mime = "mp3", "audio/mpeg"

    duration = estimate_audio_duration(audio, mime)
    name = safe_path_segment(chunk_id or uuid.uuid4().hex)
    path = os.path.join(settings.MEDIA_DIR, safe_path_segment(story_id), "narration", f"{name}.{ext}")
    write_bytes(path, audio)
    logger.info(f"Saved {engine} narration ({duration}s) to {path}")
    return NarrationResult(audio_url=_media_url(path), duration=duration, service=engine, model=model)
