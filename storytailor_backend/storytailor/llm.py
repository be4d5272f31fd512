import re, json, logging
from typing import List, Optional, Sequence, Tuple

from . import settings
from .errors import ConfigurationError, GenerationError, ProviderError
from .models import DetailPrompts, NarrationChunk, TimedChunk
from .prompts import (
    TITLE_PROMPT, SCRIPT_PROMPT, SCRIPT_CHUNKS_SYSTEM, SCRIPT_CHUNKS_PROMPT,
    DETAIL_PROMPTS_PROMPT, DETAIL_STYLE_BLOCK, IMAGE_PROMPTS_SYSTEM, IMAGE_PROMPTS_PROMPT,
    CHUNK_INSTRUCTIONS_HEADER, CHUNK_INSTRUCTIONS_ITEM, FALLBACK_INSTRUCTIONS,
    TRANSLATE_SYSTEM, TRANSLATE_PROMPT,
)
from .script_splitter import (
    batch_chunks, fallback_image_count, image_prompt_count,
    prepare_script_chunks_simple, to_narration_chunks,
)
from .styles import get_style_prompt

logger = logging.getLogger(__name__)

BASE_URLS = {
    "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "perplexity": "https://api.perplexity.ai",
    "openai": None,
}

_clients = {}

THINK_RE = re.compile(r"</think>\s*([\s\S]*)")
FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
OPEN_FENCE_RE = re.compile(r"```(?:json)?\s*")
OBJECT_RE = re.compile(r"\{[\s\S]*\}")
LIST_SPLIT_RE = re.compile(r"\n\d+:\s*|\n-\s*|\n\n")


def _resolve_provider(provider: Optional[str]) -> str:
    provider = (provider or settings.TEXT_PROVIDER).lower()
    if provider not in BASE_URLS:
        raise ConfigurationError(f"Unsupported text provider: {provider}")
    return provider


def _default_model(provider: str) -> str:
    return {
        "google": settings.GOOGLE_SCRIPT_MODEL,
        "perplexity": settings.PERPLEXITY_MODEL,
        "openai": settings.OPENAI_MODEL,
    }[provider]


def _get_client(provider: str):
    if provider not in _clients:
        from openai import OpenAI
        api_key = settings.text_api_key(provider)
        if not api_key:
            raise ConfigurationError(f"{provider.upper()}_API_KEY is not set; please configure your .env")
        _clients[provider] = OpenAI(api_key=api_key, base_url=BASE_URLS[provider])
    return _clients[provider]


def extract_json(text: str) -> str:
    """Pull the JSON object out of a reply that may carry reasoning tags or code fences."""
    cleaned = text or ""
    if "<think>" in cleaned and "</think>" in cleaned:
        m = THINK_RE.search(cleaned)
        if m and m.group(1):
            cleaned = m.group(1).strip()
    if "```" in cleaned:
        m = FENCE_RE.search(cleaned)
        if m and m.group(1):
            cleaned = m.group(1).strip()
        else:
            cleaned = OPEN_FENCE_RE.sub("", cleaned, count=1).strip()
    m = OBJECT_RE.search(cleaned)
    if m:
        return m.group(0)
    return cleaned


def complete_json(prompt: str, system: Optional[str] = None, provider: Optional[str] = None,
                  model: Optional[str] = None, temperature: float = 0.4,
                  max_tokens: Optional[int] = None) -> dict:
    provider = _resolve_provider(provider)
    model = model or _default_model(provider)
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    kwargs = {"model": model, "messages": messages, "temperature": temperature}
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    # Perplexity only accepts json_schema response formats
    if provider != "perplexity":
        kwargs["response_format"] = {"type": "json_object"}

    logger.info(f"Calling {provider} ({model}) for JSON completion")
    client = _get_client(provider)
    try:
        resp = client.chat.completions.create(**kwargs)
    except Exception as e:
        logger.error(f"{provider} API call failed: {str(e)}")
        raise ProviderError(provider, str(e), getattr(e, "status_code", None))

    content = resp.choices[0].message.content or ""
    try:
        data = json.loads(extract_json(content))
    except json.JSONDecodeError:
        logger.error(f"{provider} returned non-JSON output: {content[:200]}")
        raise GenerationError(f"{provider} output was not valid JSON")
    if not isinstance(data, dict):
        raise GenerationError(f"{provider} output was not a JSON object")
    return data


def generate_title(user_prompt: str, provider: Optional[str] = None, model: Optional[str] = None) -> str:
    title = ""
    try:
        data = complete_json(TITLE_PROMPT.format(user_prompt=user_prompt), provider=provider, model=model)
        title = str(data.get("title") or "").strip()
    except GenerationError as e:
        logger.warning(f"Title generation returned unusable output: {e}")
    if not title:
        words = " ".join(user_prompt.split()[:5])
        return f"{words}... (Draft)"
    return title


def generate_script(prompt: str, provider: Optional[str] = None, model: Optional[str] = None) -> str:
    data = complete_json(SCRIPT_PROMPT.format(prompt=prompt), provider=provider, model=model, temperature=0.7)
    script = str(data.get("script") or "").strip()
    if not script:
        raise GenerationError("The model did not return a script")
    return script


def generate_script_chunks(script: str, provider: Optional[str] = None, model: Optional[str] = None) -> List[str]:
    data = complete_json(
        SCRIPT_CHUNKS_PROMPT.format(script=script), system=SCRIPT_CHUNKS_SYSTEM,
        provider=provider, model=model, temperature=0.3, max_tokens=2048,
    )
    if data.get("error"):
        raise GenerationError(str(data["error"]))
    chunks = data.get("scriptChunks")
    if not isinstance(chunks, list):
        raise GenerationError("The model did not return a scriptChunks array")
    chunks = [str(c).strip() for c in chunks if str(c).strip()]
    if not chunks:
        raise GenerationError("The model returned no script chunks or only empty chunks")
    return chunks


def prepare_script_chunks(script: str, provider: Optional[str] = None,
                          model: Optional[str] = None) -> List[NarrationChunk]:
    """AI chunking with the sentence splitter as fallback. Missing keys are not masked."""
    if not script:
        return []
    try:
        return to_narration_chunks(generate_script_chunks(script, provider, model))
    except ConfigurationError:
        raise
    except (ProviderError, GenerationError) as e:
        logger.warning(f"AI script chunking failed, falling back to simple chunking: {e}")
        return prepare_script_chunks_simple(script)


def generate_detail_prompts(script: str, chunks: Optional[Sequence[str]] = None,
                            style_id: Optional[str] = None, provider: Optional[str] = None,
                            model: Optional[str] = None) -> DetailPrompts:
    style_block = DETAIL_STYLE_BLOCK.format(style_prompt=get_style_prompt(style_id)) if style_id else ""
    chunks_block = ""
    if chunks:
        lines = "\n".join(f'Chunk {i}: "{c}"' for i, c in enumerate(chunks))
        chunks_block = f"\nNarration chunks (extract entities from these too):\n{lines}\n"
    prompt = DETAIL_PROMPTS_PROMPT.format(script=script, style_block=style_block, chunks_block=chunks_block)
    data = complete_json(prompt, provider=provider, model=model, temperature=0.5)

    fields = {}
    for key, attr in (("characterPrompts", "character_prompts"),
                      ("itemPrompts", "item_prompts"),
                      ("locationPrompts", "location_prompts")):
        value = data.get(key)
        if not isinstance(value, str):
            logger.error(f"Detail prompt output is missing {key}")
            value = ""
        fields[attr] = value
    return DetailPrompts(**fields)


def _coerce_prompt_list(value) -> Optional[List[str]]:
    if isinstance(value, list):
        return [str(p).strip() for p in value if str(p).strip()]
    if isinstance(value, str):
        parts = (p.strip() for p in LIST_SPLIT_RE.split("\n" + value))
        return [p for p in parts if p and not re.fullmatch(r"\d+:|-", p)]
    return None


def _pair_prompts(image_prompts: List[str], action_prompts: Optional[List[str]], offset: int) -> List[str]:
    actions = list(action_prompts or [])
    if len(actions) != len(image_prompts):
        logger.warning(f"Action prompts ({len(actions)}) do not match image prompts ({len(image_prompts)}), adjusting")
    while len(actions) < len(image_prompts):
        actions.append(f"Character performs action in scene {offset + len(actions) + 1}.")
    return actions[:len(image_prompts)]


def _batch_owners(offset: int, batch: list, n_prompts: int) -> List[int]:
    """Chunk position of each prompt in a batch; extra prompts stay with the batch's last chunk."""
    owners: List[int] = []
    for i, (_, n) in enumerate(batch):
        owners.extend([offset + i] * n)
    last = offset + len(batch) - 1
    return [owners[j] if j < len(owners) else last for j in range(n_prompts)]


def generate_image_prompts(script: str, details: Optional[DetailPrompts], audio_duration_seconds: float,
                           narration_chunks: Optional[Sequence[TimedChunk]] = None,
                           provider: Optional[str] = None,
                           model: Optional[str] = None) -> Tuple[List[str], List[str]]:
    """Return (image_prompts, action_prompts) of equal length."""
    image_prompts, action_prompts, _ = generate_scene_prompts(
        script, details, audio_duration_seconds, narration_chunks, provider, model,
    )
    return image_prompts, action_prompts


def generate_scene_prompts(script: str, details: Optional[DetailPrompts], audio_duration_seconds: float,
                           narration_chunks: Optional[Sequence[TimedChunk]] = None,
                           provider: Optional[str] = None,
                           model: Optional[str] = None) -> Tuple[List[str], List[str], List[Optional[int]]]:
    """
    Like generate_image_prompts, plus the position in narration_chunks each prompt
    was written for (None when no chunks were given).
    """
    details = details or DetailPrompts()
    if narration_chunks:
        planned = [(c, image_prompt_count(c.text, c.duration)) for c in narration_chunks]
        batches = batch_chunks(planned)
        logger.info(f"Generating {sum(n for _, n in planned)} prompts for {len(planned)} chunks in {len(batches)} batch(es)")
    else:
        batches = [(0, None)]

    image_prompts: List[str] = []
    action_prompts: List[str] = []
    owners: List[Optional[int]] = []
    for offset, batch in batches:
        if batch is None:
            num_images = fallback_image_count(audio_duration_seconds)
            instructions = FALLBACK_INSTRUCTIONS.format(num_images=num_images)
        else:
            num_images = sum(n for _, n in batch)
            items = [
                CHUNK_INSTRUCTIONS_ITEM.format(index=offset + i, duration=c.duration, prompt_count=n, text=c.text)
                for i, (c, n) in enumerate(batch)
            ]
            instructions = "\n\n".join([CHUNK_INSTRUCTIONS_HEADER] + items)

        prompt = IMAGE_PROMPTS_PROMPT.format(
            character_prompts=details.character_prompts,
            location_prompts=details.location_prompts,
            item_prompts=details.item_prompts,
            script=script,
            instructions=instructions,
            num_images=num_images,
        )
        try:
            data = complete_json(prompt, system=IMAGE_PROMPTS_SYSTEM, provider=provider, model=model,
                                 temperature=0.7, max_tokens=4096)
        except GenerationError as e:
            if len(batches) == 1:
                raise
            logger.warning(f"Image prompt batch at chunk {offset} failed, skipping: {e}")
            continue

        batch_images = _coerce_prompt_list(data.get("imagePrompts"))
        if not batch_images:
            logger.warning(f"Image prompt batch at chunk {offset} returned no usable prompts: {data}")
            continue
        batch_actions = _coerce_prompt_list(data.get("actionPrompts"))
        image_prompts.extend(batch_images)
        action_prompts.extend(_pair_prompts(batch_images, batch_actions, len(action_prompts)))
        if batch is None:
            owners.extend([None] * len(batch_images))
        else:
            owners.extend(_batch_owners(offset, batch, len(batch_images)))

    if not image_prompts:
        raise GenerationError("Failed to generate a valid list of image prompts")
    return image_prompts, action_prompts, owners


def translate_chunks(chunks: Sequence[NarrationChunk], language: str, provider: Optional[str] = None,
                     model: Optional[str] = None) -> List[NarrationChunk]:
    if not chunks:
        return []
    payload = json.dumps([{"id": c.id, "text": c.text} for c in chunks], ensure_ascii=False)
    data = complete_json(
        TRANSLATE_PROMPT.format(language=language, chunks_json=payload), system=TRANSLATE_SYSTEM,
        provider=provider, model=model, temperature=0.3,
    )
    translated = data.get("chunks")
    if not isinstance(translated, list):
        raise GenerationError("The model did not return a chunks array")

    by_id = {str(t.get("id")): str(t.get("text") or "").strip() for t in translated if isinstance(t, dict)}
    result = []
    for pos, chunk in enumerate(chunks):
        text = by_id.get(chunk.id)
        if not text and len(translated) == len(chunks) and isinstance(translated[pos], dict):
            text = str(translated[pos].get("text") or "").strip()
        if not text:
            raise GenerationError(f"No {language} translation returned for chunk {chunk.index}")
        result.append(NarrationChunk(id=chunk.id, text=text, index=chunk.index))
    return result
