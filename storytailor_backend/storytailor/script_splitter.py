"""
Deterministic helpers for splitting a story script into narration chunks
and for the duration arithmetic that drives image prompt counts.
"""
import math
import re
import uuid
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import NarrationChunk

SENTENCE_RE = re.compile(r"[^.!?]+[.!?](?:\s|\Z)")
PARAGRAPH_RE = re.compile(r"\n\s*\n")

WORDS_PER_SECOND = 2.6
IMAGES_PER_MINUTE = 5
BATCH_THRESHOLD = 12
BATCH_SIZE = 8


def split_script_into_chunks(script: Optional[str]) -> List[str]:
    """Split a script into sentences, falling back to paragraphs."""
    if not script or not isinstance(script, str):
        return []
    normalized = script.replace("\r\n", "\n")
    chunks = [s.strip() for s in SENTENCE_RE.findall(normalized)]
    chunks = [c for c in chunks if c]
    if not chunks:
        return [p for p in PARAGRAPH_RE.split(normalized) if p.strip()]
    return chunks


def combine_script_chunks(chunks: Optional[Sequence[str]]) -> str:
    if not chunks:
        return ""
    return " ".join(chunks)


def split_script_with_target_chunks(script: Optional[str], target_chunks: int) -> List[str]:
    """Group sentences so the script yields roughly `target_chunks` chunks."""
    if not script or not isinstance(script, str) or target_chunks <= 0:
        return []
    sentences = split_script_into_chunks(script)
    if len(sentences) <= target_chunks:
        return sentences
    per_chunk = math.ceil(len(sentences) / target_chunks)
    return [
        " ".join(sentences[i:i + per_chunk])
        for i in range(0, len(sentences), per_chunk)
    ]


def to_narration_chunks(texts: Iterable[str]) -> List[NarrationChunk]:
    return [
        NarrationChunk(id=str(uuid.uuid4()), text=text, index=i)
        for i, text in enumerate(texts)
    ]


def prepare_script_chunks_simple(script: Optional[str]) -> List[NarrationChunk]:
    if not script:
        return []
    texts = [s.strip() for s in script.split(". ")]
    return to_narration_chunks(t for t in texts if t)


def estimate_chunk_duration(text: Optional[str]) -> float:
    if not text:
        return 0
    word_count = len(text.split())
    return max(1, word_count / WORDS_PER_SECOND)


def calculate_total_narration_duration(chunks: Optional[Sequence[NarrationChunk]]) -> float:
    if not chunks:
        return 0
    return sum(c.duration or estimate_chunk_duration(c.text) for c in chunks)


def image_prompt_count(text: str, duration: float) -> int:
    # Longer narration gets more illustrations
    if duration <= 5:
        return 1
    if duration <= 10:
        return 2 if len(text) > 100 else 1
    if duration <= 15:
        return 2
    return 3


def fallback_image_count(audio_duration_seconds: float) -> int:
    return max(1, math.ceil(audio_duration_seconds * IMAGES_PER_MINUTE / 60))


def batch_chunks(chunks: Sequence, batch_size: int = BATCH_SIZE,
                 threshold: int = BATCH_THRESHOLD) -> List[Tuple[int, list]]:
    """Return (offset, batch) pairs; short lists stay in a single batch."""
    if len(chunks) <= threshold:
        return [(0, list(chunks))]
    return [
        (i, list(chunks[i:i + batch_size]))
        for i in range(0, len(chunks), batch_size)
    ]
