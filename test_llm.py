"""
Tests for the text generation flows, with the OpenAI client replaced by fakes
"""
import sys
import os
import json
from types import SimpleNamespace

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'storytailor_backend'))

import pytest

from storytailor import llm, settings
from storytailor.errors import ConfigurationError, GenerationError, ProviderError
from storytailor.models import DetailPrompts, NarrationChunk, TimedChunk


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(monkeypatch, **kwargs):
    completions = FakeCompletions(**kwargs)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(llm, "_get_client", lambda provider: client)
    return completions


def scripted(monkeypatch, *responses):
    """Replace complete_json with a function returning the given responses in order."""
    calls = []
    queue = list(responses)

    def complete_json(prompt, **kwargs):
        calls.append((prompt, kwargs))
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(llm, "complete_json", complete_json)
    return calls


# --- extract_json ---

def test_extract_json_after_reasoning_and_fence():
    text = '<think>maybe {"x": 1}</think>\n```json\n{"title": "A"}\n```'
    assert llm.extract_json(text) == '{"title": "A"}'


def test_extract_json_unclosed_fence():
    assert llm.extract_json('```json\n{"a": 1}') == '{"a": 1}'


def test_extract_json_outermost_object():
    assert llm.extract_json('Sure! {"a": {"b": 2}} done') == '{"a": {"b": 2}}'
    assert llm.extract_json("no json here") == "no json here"


# --- complete_json ---

def test_complete_json_requests_json_object(monkeypatch):
    completions = fake_client(monkeypatch, content='{"title": "The Brave Dragon"}')
    assert llm.complete_json("prompt", provider="google") == {"title": "The Brave Dragon"}
    call = completions.calls[0]
    assert call["model"] == settings.GOOGLE_SCRIPT_MODEL
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][-1] == {"role": "user", "content": "prompt"}


def test_complete_json_perplexity_without_response_format(monkeypatch):
    completions = fake_client(monkeypatch, content='<think>hmm</think>{"script": "x"}')
    assert llm.complete_json("p", system="sys", provider="perplexity") == {"script": "x"}
    assert "response_format" not in completions.calls[0]
    assert completions.calls[0]["messages"][0] == {"role": "system", "content": "sys"}


def test_complete_json_invalid_output(monkeypatch):
    fake_client(monkeypatch, content="I cannot help with that")
    with pytest.raises(GenerationError):
        llm.complete_json("p", provider="openai")


def test_complete_json_provider_failure(monkeypatch):
    error = RuntimeError("rate limited")
    error.status_code = 429
    fake_client(monkeypatch, error=error)
    with pytest.raises(ProviderError) as exc:
        llm.complete_json("p", provider="google")
    assert exc.value.status_code == 429
    assert exc.value.provider == "google"


def test_missing_key_is_configuration_error(monkeypatch):
    monkeypatch.setattr(llm, "_clients", {})
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    with pytest.raises(ConfigurationError):
        llm._get_client("openai")


def test_unknown_provider(monkeypatch):
    with pytest.raises(ConfigurationError):
        llm.complete_json("p", provider="mystery")


# --- flows ---

def test_title_falls_back_to_draft(monkeypatch):
    scripted(monkeypatch, {})
    assert llm.generate_title("A brave little dragon learns to fly") == "A brave little dragon learns... (Draft)"


def test_title_provider_errors_propagate(monkeypatch):
    scripted(monkeypatch, ProviderError("google", "down"))
    with pytest.raises(ProviderError):
        llm.generate_title("anything")


def test_script_requires_content(monkeypatch):
    scripted(monkeypatch, {"script": "Once upon a time."}, {"script": ""})
    assert llm.generate_script("a dragon") == "Once upon a time."
    with pytest.raises(GenerationError):
        llm.generate_script("a dragon")


def test_script_chunks_drop_empty_strings(monkeypatch):
    scripted(monkeypatch, {"scriptChunks": ["One.", "  ", "Two."]}, {"scriptChunks": []})
    assert llm.generate_script_chunks("One. Two.") == ["One.", "Two."]
    with pytest.raises(GenerationError):
        llm.generate_script_chunks("One. Two.")


def test_prepare_chunks_falls_back_to_simple_split(monkeypatch):
    scripted(monkeypatch, GenerationError("bad output"))
    chunks = llm.prepare_script_chunks("First one. Second one.")
    assert [c.text for c in chunks] == ["First one", "Second one."]


def test_prepare_chunks_does_not_hide_missing_keys(monkeypatch):
    scripted(monkeypatch, ConfigurationError("GOOGLE_API_KEY is not set"))
    with pytest.raises(ConfigurationError):
        llm.prepare_script_chunks("First one. Second one.")


def test_detail_prompts_missing_fields_become_empty(monkeypatch):
    calls = scripted(monkeypatch, {"characterPrompts": "Character Prompts:\nZara\na girl", "itemPrompts": None})
    details = llm.generate_detail_prompts("script", ["chunk one"], style_id="ghibli")
    assert details.character_prompts.startswith("Character Prompts:")
    assert details.item_prompts == ""
    assert details.location_prompts == ""
    prompt = calls[0][0]
    assert "studio ghibli style" in prompt
    assert 'Chunk 0: "chunk one"' in prompt


def test_image_prompts_fallback_mode_pads_actions(monkeypatch):
    calls = scripted(monkeypatch, {"imagePrompts": ["p1", " ", "p2"], "actionPrompts": ["a1"]})
    images, actions = llm.generate_image_prompts("script", DetailPrompts(), 30)
    assert images == ["p1", "p2"]
    assert actions == ["a1", "Character performs action in scene 2."]
    assert "exactly 3 entries" in calls[0][0]


def test_image_prompts_truncate_extra_actions(monkeypatch):
    scripted(monkeypatch, {"imagePrompts": ["p1"], "actionPrompts": ["a1", "a2", "a3"]})
    images, actions = llm.generate_image_prompts("script", None, 10)
    assert (images, actions) == (["p1"], ["a1"])


def test_image_prompts_accept_numbered_string(monkeypatch):
    scripted(monkeypatch, {"imagePrompts": "1: a fox\n2: a hen", "actionPrompts": ["runs", "flaps"]})
    images, _ = llm.generate_image_prompts("script", None, 10)
    assert images == ["a fox", "a hen"]


def test_image_prompts_batch_long_narration(monkeypatch):
    chunks = [TimedChunk(text=f"Chunk text {i}.", duration=3) for i in range(13)]
    calls = scripted(
        monkeypatch,
        {"imagePrompts": [f"first {i}" for i in range(8)], "actionPrompts": [f"act {i}" for i in range(8)]},
        {"imagePrompts": [f"second {i}" for i in range(5)], "actionPrompts": []},
    )
    images, actions = llm.generate_image_prompts("script", None, 39, narration_chunks=chunks)
    assert len(calls) == 2
    assert 'Narration Chunk 8 (Duration: 3.0s, Required prompts: 1)' in calls[1][0]
    assert "Narration Chunk 7 " not in calls[1][0]
    assert len(images) == len(actions) == 13
    assert actions[8] == "Character performs action in scene 9."


def test_scene_prompts_report_owning_chunk(monkeypatch):
    chunks = [TimedChunk(text="Short.", duration=3), TimedChunk(text="Longer.", duration=12)]
    scripted(monkeypatch, {"imagePrompts": ["p1", "p2", "p3", "p4"], "actionPrompts": ["a1", "a2", "a3", "a4"]})
    images, actions, owners = llm.generate_scene_prompts("script", None, 15, narration_chunks=chunks)
    # 1 + 2 prompts were asked for; the extra one stays with the last chunk
    assert owners == [0, 1, 1, 1]

    scripted(monkeypatch, {"imagePrompts": ["p1"], "actionPrompts": ["a1"]})
    assert llm.generate_scene_prompts("script", None, 10)[2] == [None]


def test_image_prompts_none_survive(monkeypatch):
    scripted(monkeypatch, {"imagePrompts": ["", "  "]})
    with pytest.raises(GenerationError):
        llm.generate_image_prompts("script", None, 10)


def test_translate_keeps_ids_and_indexes(monkeypatch):
    chunks = [NarrationChunk(id="a", text="Hello.", index=0, audio_url="/media/x.mp3"),
              NarrationChunk(id="b", text="Goodbye.", index=1)]
    calls = scripted(monkeypatch, {"chunks": [{"id": "b", "text": "Adiós."}, {"id": "a", "text": "Hola."}]})
    translated = llm.translate_chunks(chunks, "Spanish")
    assert [(c.id, c.index, c.text, c.audio_url) for c in translated] == [
        ("a", 0, "Hola.", None), ("b", 1, "Adiós.", None),
    ]
    assert json.loads(calls[0][0].split("Chunks (JSON):\n")[1].split("\n\nReturn")[0]) == [
        {"id": "a", "text": "Hello."}, {"id": "b", "text": "Goodbye."},
    ]


def test_translate_missing_chunk(monkeypatch):
    chunks = [NarrationChunk(id="a", text="Hello.", index=0), NarrationChunk(id="b", text="Bye.", index=1)]
    scripted(monkeypatch, {"chunks": [{"id": "a", "text": "Hola."}]})
    with pytest.raises(GenerationError):
        llm.translate_chunks(chunks, "Spanish")
