TITLE_PROMPT = """You are an expert at creating catchy and concise titles for stories.
Based on the user's story prompt, generate a short title (ideally 3-7 words, maximum 10 words) that captures the essence of the story.
The title should be engaging and appropriate for a children's story.

User Prompt:
"{user_prompt}"

Return ONLY valid JSON: {{"title": "<title>"}}"""


SCRIPT_PROMPT = """You are a script writer for animated videos. Your task is to generate a script based on the user's prompt.
The script should be engaging for both children and adults, and should follow the themes, character descriptions, and story twists provided in the prompt.
The entire script must be written from the perspective of a single narrator. Do not include character dialogues unless the narrator is quoting them.
Keep the script to a length that can be narrated in a few minutes.

User Prompt: {prompt}

Return ONLY valid JSON: {{"script": "<the full script for a single narrator>"}}"""


SCRIPT_CHUNKS_SYSTEM = """You are a movie director and script editor. Follow the instructions precisely to split the script into meaningful visual chunks. Return a JSON object with a single key "scriptChunks" which is an array of strings."""

SCRIPT_CHUNKS_PROMPT = """Split the following story script into meaningful visual scenes. Each chunk will get its own narration clip and its own illustration, so think like you are creating an animated storybook.

Instructions:
1. Visualize the script as an animated story with scenes.
2. Split into chunks that represent distinct visual moments, NOT sentence by sentence.
3. Each chunk must paint one clear picture that a single image can show.
4. Group related sentences together if they describe the same scene, character introduction, or visual moment.
5. Each chunk should be 1-3 sentences; visual coherence wins over sentence count.
6. Keep the original wording. Do not add numbering or formatting inside the chunks.

Script to split:
{script}

Return ONLY valid JSON: {{"scriptChunks": ["chunk 1", "chunk 2"]}}"""


DETAIL_PROMPTS_PROMPT = """You are an expert prompt engineer writing descriptions for text-to-image models.
Based on the story script below, write visual descriptions for ALL characters, items and locations mentioned, including background characters, creatures, groups, objects and places.
{style_block}
Script:
{script}
{chunks_block}
Rules for every entity:
- First line: the exact name in plain text (no asterisks or other symbols). Names must convert cleanly to @references ("Old Man Grumbles" -> @OldManGrumbles).
- Next line: one single sentence, entirely lowercase, not ending in punctuation, describing the entity visually.
- For characters always include hair color and style, eye color, skin tone where relevant, age, and key clothing or accessories so images stay consistent.
- Exactly one blank line between entities.

Each category starts with its heading on its own line: "Character Prompts:", "Item Prompts:", "Location Prompts:".

Example:
Character Prompts:
Ember
a tiny house cat-sized dragon with dull smoky grey scales, large hopeful bright orange eyes and small crumpled wings

Return ONLY valid JSON: {{"characterPrompts": "Character Prompts:\\n...", "itemPrompts": "Item Prompts:\\n...", "locationPrompts": "Location Prompts:\\n..."}}"""

DETAIL_STYLE_BLOCK = """
Artistic style: incorporate these characteristics into every description: {style_prompt}
"""


IMAGE_PROMPTS_SYSTEM = """You are an expert at creating detailed image prompts. Follow the instructions precisely. Return a JSON object with "imagePrompts" and "actionPrompts" arrays."""

IMAGE_PROMPTS_PROMPT = """Write image prompts that VISUALIZE a children's story.

CHARACTER REFERENCE:
{character_prompts}

LOCATION REFERENCE:
{location_prompts}

ITEM REFERENCE:
{item_prompts}

FULL STORY SCRIPT (for context):
{script}

{instructions}

Rules for every image prompt:
- Structure: "[Camera shot] of @CharacterName [action/emotion] in @LocationName. [Lighting or weather]. [Mood from the narration]. [Key visual detail]."
- Always include one @LocationName from the LOCATION REFERENCE; never invent locations.
- Use @Placeholders (PascalCase, e.g. "Zara's Backyard" -> @ZarasBackyard) for every referenced entity instead of its name or description. At most 4 placeholders per prompt.
- No artistic style words ("3D rendered", "cartoon style", "watercolor"). Style is applied separately.
- Present tense, one moment per prompt, one line per prompt.

For every image prompt also write an action prompt: a short animation-oriented description of the movement in that scene (e.g. "@Rusty is walking").

Return ONLY valid JSON with exactly {num_images} entries in each array:
{{"imagePrompts": ["..."], "actionPrompts": ["..."]}}"""

CHUNK_INSTRUCTIONS_HEADER = """Generate prompts that DIRECTLY VISUALIZE each narration chunk below, and only that chunk."""

CHUNK_INSTRUCTIONS_ITEM = """Narration Chunk {index} (Duration: {duration}s, Required prompts: {prompt_count}):
"{text}"
Generate {prompt_count} image prompt(s) showing only what happens in THIS chunk.
---"""

FALLBACK_INSTRUCTIONS = """Analyze the full story script and identify {num_images} key scenes that need visualization. Generate one image prompt and one action prompt per scene."""


TRANSLATE_SYSTEM = """You are a professional translator of children's stories. Translate faithfully, keep the tone warm and simple, and keep names unchanged."""

TRANSLATE_PROMPT = """Translate each narration chunk below into {language}. Keep the same ids and the same order.

Chunks (JSON):
{chunks_json}

Return ONLY valid JSON: {{"chunks": [{{"id": "<same id>", "text": "<translation>"}}]}}"""
