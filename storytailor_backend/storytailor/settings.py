import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

# Text generation. Google and Perplexity are reached through their OpenAI compatible endpoints.
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
PERPLEXITY_API_KEY = os.getenv("PERPLEXITY_API_KEY", "")
TEXT_PROVIDER = os.getenv("TEXT_PROVIDER", "google").lower()
GOOGLE_SCRIPT_MODEL = os.getenv("GOOGLE_SCRIPT_MODEL", "gemini-2.5-flash")
PERPLEXITY_MODEL = os.getenv("PERPLEXITY_MODEL", "sonar-reasoning-pro")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

# Text to speech
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "")
ELEVENLABS_OUTPUT_FORMAT = os.getenv("ELEVENLABS_OUTPUT_FORMAT", "mp3_44100_128")
GOOGLE_TTS_MODEL = os.getenv("GOOGLE_TTS_MODEL", "gemini-2.5-flash-preview-tts")
GOOGLE_TTS_VOICE = os.getenv("GOOGLE_TTS_VOICE", "Zephyr")

# Text to image
PICSART_API_KEY = os.getenv("PICSART_API_KEY", "")
REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_MODEL_VERSION = os.getenv("REPLICATE_MODEL_VERSION", "")
IMAGE_PROVIDER = os.getenv("IMAGE_PROVIDER", "picsart").lower()

PICSART_POLL_INTERVAL_S = float(os.getenv("PICSART_POLL_INTERVAL_S", "6"))
PICSART_POLL_ATTEMPTS = int(os.getenv("PICSART_POLL_ATTEMPTS", "20"))
REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

# Local storage
DATA_DIR = os.path.abspath(os.getenv("DATA_DIR", os.path.join(os.getcwd(), "temp")))
VIDEO_JOBS_FILE = os.getenv("VIDEO_JOBS_FILE", os.path.join(DATA_DIR, "video-jobs.json"))
MEDIA_DIR = os.getenv("MEDIA_DIR", os.path.join(DATA_DIR, "media"))
DOWNLOADS_DIR = os.getenv("DOWNLOADS_DIR", os.path.join(DATA_DIR, "downloads"))
RENDER_TMP_DIR = os.getenv("RENDER_TMP_DIR", os.path.join(DATA_DIR, "render"))
JOB_RETENTION_HOURS = int(os.getenv("JOB_RETENTION_HOURS", "24"))

# Optional: REST key-value service for job state (shared between instances)
KV_REST_API_URL = os.getenv("KV_REST_API_URL", "").rstrip("/")
KV_REST_API_TOKEN = os.getenv("KV_REST_API_TOKEN", "")

# Optional: External render worker URL
RENDER_WORKER_URL = os.getenv("RENDER_WORKER_URL", "").strip()
RENDER_TIMEOUT_S = int(os.getenv("RENDER_TIMEOUT_S", "600"))

VIDEO_WIDTH = int(os.getenv("VIDEO_WIDTH", "1920"))
VIDEO_HEIGHT = int(os.getenv("VIDEO_HEIGHT", "1080"))
FPS = int(os.getenv("FPS", "15"))

# Comma-separated list of allowed origins for CORS (e.g., "https://app.example.com,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

TEXT_PROVIDERS = ("google", "perplexity", "openai")
IMAGE_PROVIDERS = ("picsart", "replicate")
TTS_MODELS = ("elevenlabs", "google")


def text_api_key(provider: str) -> str:
    return {
        "google": GOOGLE_API_KEY,
        "perplexity": PERPLEXITY_API_KEY,
        "openai": OPENAI_API_KEY,
    }.get(provider, "")


def missing_keys(text_provider: str = None, image_provider: str = None,
                 tts_model: str = None, voice_id: str = None) -> list:
    """Keys needed by the given providers, falling back to the configured defaults."""
    text_provider = (text_provider or TEXT_PROVIDER).lower()
    image_provider = (image_provider or IMAGE_PROVIDER).lower()
    tts_model = (tts_model or "elevenlabs").lower()

    missing = []
    if not text_api_key(text_provider):
        missing.append(f"{text_provider.upper()}_API_KEY")
    if image_provider == "picsart" and not PICSART_API_KEY:
        missing.append("PICSART_API_KEY")
    if image_provider == "replicate" and not REPLICATE_API_TOKEN:
        missing.append("REPLICATE_API_TOKEN")
    if tts_model == "elevenlabs":
        if not ELEVENLABS_API_KEY:
            missing.append("ELEVENLABS_API_KEY")
        if not voice_id and not ELEVENLABS_VOICE_ID:
            missing.append("ELEVENLABS_VOICE_ID")
    if tts_model == "google" and not GOOGLE_API_KEY and "GOOGLE_API_KEY" not in missing:
        missing.append("GOOGLE_API_KEY")
    return missing


def has_all_keys(**providers) -> bool:
    missing = missing_keys(**providers)
    if missing:
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return not missing
