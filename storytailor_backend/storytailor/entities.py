"""
Character, item and location prompts and the @Placeholder references that
image prompts use to point at them.
"""
import logging
import re
from typing import Dict, List, Optional

from pydantic import BaseModel

from .models import DetailPrompts

logger = logging.getLogger(__name__)

HEADING_RE = re.compile(r"^(Character Prompts:|Item Prompts:|Location Prompts:)\s*\n*", re.IGNORECASE)
ENTRY_SPLIT_RE = re.compile(r"\n\s*\n")
REFERENCE_RE = re.compile(r"@([A-Za-z0-9]+)")


class ParsedPrompt(BaseModel):
    name: Optional[str] = None
    description: str
    original_index: int


def parse_named_prompts(raw_prompts: Optional[str]) -> List[ParsedPrompt]:
    """Parse a "Name\\ndescription" block list as produced by the detail prompt flow."""
    if not raw_prompts:
        return []
    normalized = raw_prompts.replace("\\n", "\n")
    clean = HEADING_RE.sub("", normalized, count=1).strip()
    if not clean:
        return []

    parsed = []
    for index, block in enumerate(ENTRY_SPLIT_RE.split(clean)):
        lines = [l.strip() for l in block.strip().split("\n") if l.strip()]
        if not lines:
            continue
        name = None
        if len(lines) > 1:
            first_is_name = (
                len(lines[0]) < 60
                and not lines[0].endswith((".", "?", "!"))
                and len(" ".join(lines[1:])) > 0
            )
            if first_is_name:
                name = lines[0]
                description = "\n".join(lines[1:])
            else:
                description = "\n".join(lines)
        else:
            description = lines[0]
        parsed.append(ParsedPrompt(name=name, description=description, original_index=index))
    return parsed


def to_placeholder(name: str) -> str:
    """"Zara's Backyard" -> "ZarasBackyard"."""
    words = (re.sub(r"[^A-Za-z0-9]", "", w) for w in name.split())
    return "".join(w[:1].upper() + w[1:] for w in words if w)


def build_entity_index(details: Optional[DetailPrompts]) -> Dict[str, str]:
    index: Dict[str, str] = {}
    if not details:
        return index
    for raw in (details.character_prompts, details.location_prompts, details.item_prompts):
        for entry in parse_named_prompts(raw):
            if not entry.name:
                continue
            index.setdefault(to_placeholder(entry.name), entry.description)
    return index


def expand_entity_references(prompt: str, details: Optional[DetailPrompts]) -> str:
    """Replace @Placeholder references with the matching entity descriptions."""
    index = build_entity_index(details)
    if not index:
        return prompt

    def _replace(match):
        description = index.get(match.group(1))
        if description is None:
            logger.info(f"No description found for @{match.group(1)}, keeping reference")
            return match.group(0)
        return description

    return REFERENCE_RE.sub(_replace, prompt)
