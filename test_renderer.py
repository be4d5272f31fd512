"""
Background rendering: request validation, downloads, progress, cancellation
and the remote worker hand-off. FFmpeg itself is never started here.
"""
import sys
import os
import io
import json
import base64
import asyncio
from types import SimpleNamespace
from unittest.mock import Mock

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'storytailor_backend'))

import httpx
import pytest
from PIL import Image

from storytailor import renderer, settings, video_jobs
from storytailor.errors import JobNotFoundError, JobStateError, RenderError
from storytailor.models import RenderVideoRequest
from storytailor.timeline import Scene, SceneImage

MP3 = b"ID3" + b"\x00" * 31997

def png(w=320, h=180):
    buf = io.BytesIO()
    Image.new("RGB", (w, h), (10, 80, 160)).save(buf, format="PNG")
    return buf.getvalue()

def data_uri(data, mime):
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"

def request(images=None, chunks=None, **overrides):
    body = {
        "images": images if images is not None else [data_uri(png(), "image/png")],
        "audioChunks": chunks if chunks is not None else [
            {"id": "c0", "text": "Once.", "index": 0, "audioUrl": data_uri(MP3, "audio/mpeg"), "duration": 2.0},
        ],
        "storyTitle": "The Brave Dragon",
        "storyId": "story-1",
    }
    body.update(overrides)
    return RenderVideoRequest.model_validate(body)

@pytest.fixture(autouse=True)
def fresh_render_state(monkeypatch):
    monkeypatch.setattr(renderer, "_cancelled", set())
    monkeypatch.setattr(renderer, "ACTIVE_PROCESSES", {})

@pytest.fixture
def fake_local_render(monkeypatch):
    """Replace the ffmpeg run with one that writes a small file and reports progress."""
    calls = []

    async def render_local(job_id, scenes, width, height, fps, work_dir, out_path, on_progress):
        with open(scenes[0].images[0].src, "rb") as f:
            first_image = f.read()
        calls.append(SimpleNamespace(scenes=scenes, width=width, height=height, fps=fps, first_image=first_image))
        await on_progress(55)
        with open(out_path, "wb") as f:
            f.write(b"mp4" * 100)
        await on_progress(70)

    monkeypatch.setattr(renderer, "render_local", render_local)
    return calls

def run_job(req):
    job = asyncio.run(video_jobs.create_video_job(req.story_id or "story-1", req.story_title or "Untitled"))
    asyncio.run(renderer.render_video_in_background(job.id, req))
    return asyncio.run(video_jobs.get_job(job.id))

# --- validation ---

@pytest.mark.parametrize("overrides,message", [
    ({"images": []}, "No images provided for rendering"),
    ({"audioChunks": []}, "No audio chunks provided for rendering"),
    ({"audioChunks": [{"id": "c", "text": "t", "index": 0}]}, "No audio chunks with valid audio URLs provided"),
    ({"storyTitle": ""}, "Missing story title"),
    ({"storyId": None}, "Missing story ID"),
])
def test_validation_messages(overrides, message):
    assert renderer.validate_render_request(request(**overrides)) == message

def test_validation_missing_arrays():
    assert renderer.validate_render_request(RenderVideoRequest()) == "Missing or invalid images array"
    assert renderer.validate_render_request(request()) is None

# --- fetch ---

def test_fetch_media_path(data_dirs):
    path = data_dirs / "media" / "story-1" / "images" / "a.png"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"png")
    assert asyncio.run(renderer.fetch_bytes("/media/story-1/images/a.png")) == b"png"

def test_fetch_rejects_escaping_paths():
    with pytest.raises(RenderError):
        asyncio.run(renderer.fetch_bytes("/media/../video-jobs.json"))
    with pytest.raises(RenderError):
        asyncio.run(renderer.fetch_bytes("ftp://example.com/a.png"))

# --- background render ---

def test_render_completes_and_publishes_download(fake_local_render, data_dirs):
    job = run_job(request())
    assert job.status == "completed"
    assert job.progress == 100
    assert job.download_url == "/downloads/story-1/The_Brave_Dragon.mp4"
    assert (data_dirs / "downloads" / "story-1" / "The_Brave_Dragon.mp4").read_bytes() == b"mp4" * 100

    call = fake_local_render[0]
    assert (call.width, call.height, call.fps) == (320, 180, 12)
    assert call.scenes[0].frames == 24
    # working files are removed once the render is done
    assert os.listdir(data_dirs / "render") == []

def test_render_uses_media_files(fake_local_render, data_dirs):
    audio = data_dirs / "media" / "story-1" / "narration" / "c0.mp3"
    audio.parent.mkdir(parents=True)
    audio.write_bytes(MP3)
    chunks = [{"id": "c0", "text": "Once.", "index": 0, "audioUrl": "/media/story-1/narration/c0.mp3"}]

    job = run_job(request(chunks=chunks))
    assert job.status == "completed"
    # duration estimated from the 128 kbps payload
    assert fake_local_render[0].scenes[0].duration == 2.0

def test_broken_image_becomes_placeholder(fake_local_render, mock_http):
    mock_http(lambda request: httpx.Response(404))
    job = run_job(request(images=["https://images.example.com/gone.png", data_uri(png(), "image/png")]))
    assert job.status == "completed"
    call = fake_local_render[0]
    # geometry comes from settings when the first image is missing
    assert (call.width, call.height, call.fps) == (settings.VIDEO_WIDTH, settings.VIDEO_HEIGHT, settings.FPS)
    assert call.first_image == renderer.PLACEHOLDER_PNG

def test_broken_audio_chunk_is_dropped(fake_local_render, mock_http):
    mock_http(lambda request: httpx.Response(500))
    chunks = [
        {"id": "c0", "text": "Once.", "index": 0, "audioUrl": data_uri(MP3, "audio/mpeg"), "duration": 2.0},
        {"id": "c1", "text": "Twice.", "index": 1, "audioUrl": "https://audio.example.com/c1.mp3", "duration": 3.0},
    ]
    run_job(request(chunks=chunks))
    assert [s.text for s in fake_local_render[0].scenes] == ["Once."]

def test_render_failure_marks_job(monkeypatch, data_dirs):
    async def render_local(*args, **kwargs):
        raise RenderError("FFmpeg failed: moov atom not found")

    monkeypatch.setattr(renderer, "render_local", render_local)
    job = run_job(request())
    assert job.status == "error"
    assert job.error == "FFmpeg failed: moov atom not found"
    assert os.listdir(data_dirs / "render") == []

def test_empty_output_is_an_error(monkeypatch):
    async def render_local(job_id, scenes, width, height, fps, work_dir, out_path, on_progress):
        open(out_path, "wb").close()

    monkeypatch.setattr(renderer, "render_local", render_local)
    job = run_job(request())
    assert job.status == "error"
    assert "without producing a video file" in job.error

def test_remote_worker(monkeypatch, mock_http, data_dirs):
    monkeypatch.setattr(settings, "RENDER_WORKER_URL", "http://worker.internal:8080/")
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=b"\x00" * 4096, headers={"content-type": "video/mp4"})

    mock_http(handler)
    job = run_job(request())
    assert job.status == "completed"
    assert str(seen[0].url) == "http://worker.internal:8080/render"
    body = seen[0].content
    assert b'name="timeline"' in body
    assert b'filename="image-0.png"' in body
    assert b'filename="audio-0.mp3"' in body
    assert (data_dirs / "downloads" / "story-1" / "The_Brave_Dragon.mp4").stat().st_size == 4096

def test_remote_worker_error(monkeypatch, mock_http):
    monkeypatch.setattr(settings, "RENDER_WORKER_URL", "http://worker.internal:8080")
    mock_http(lambda request: httpx.Response(500, json={"detail": "FFmpeg failed"}))
    job = run_job(request())
    assert job.status == "error"
    assert job.error.startswith("Render worker failed 500")

def test_timeline_payload_uses_file_names():
    scenes = [Scene(audio_url="/tmp/w/audio-0.mp3", text="a", duration=1, frames=15,
                    images=[SceneImage(src="/tmp/w/image-0.png", frames=15)])]
    payload = renderer._timeline_payload(scenes, 640, 360, 12)
    assert payload["scenes"][0]["audio_url"] == "audio-0.mp3"
    assert payload["scenes"][0]["images"][0]["src"] == "image-0.png"
    assert json.loads(json.dumps(payload))["fps"] == 12

def test_render_commands(tmp_path):
    scenes = [
        Scene(audio_url="a0.mp3", duration=2, frames=30,
              images=[SceneImage(src=f"i{i}.png", frames=10) for i in range(3)]),
        Scene(audio_url=None, duration=1, frames=15, images=[SceneImage(src="i3.png", frames=15)]),
    ]
    out = str(tmp_path / "story.mp4")
    commands = renderer.render_commands(scenes, 640, 360, 15, str(tmp_path), out)
    assert len(commands) == 4 + 3
    assert commands[-1][-1] == out
    assert "anullsrc=r=44100:cl=stereo" in commands[-2]
    assert (tmp_path / "clips.txt").read_text().count("file ") == 4

# --- cancellation ---

def test_cancel_unknown_job():
    with pytest.raises(JobNotFoundError):
        asyncio.run(renderer.cancel_render("video_nope"))

def test_cancel_finished_job():
    job = asyncio.run(video_jobs.create_video_job("story-1", "Done"))
    asyncio.run(video_jobs.update_job_status(job.id, status="completed", progress=100))
    with pytest.raises(JobStateError):
        asyncio.run(renderer.cancel_render(job.id))

def test_cancel_without_process_keeps_progress():
    job = asyncio.run(video_jobs.create_video_job("story-1", "Pending"))
    asyncio.run(video_jobs.update_job_status(job.id, status="processing", progress=30))
    message = asyncio.run(renderer.cancel_render(job.id))
    assert message.startswith("No active rendering process")
    cancelled = asyncio.run(video_jobs.get_job(job.id))
    assert (cancelled.status, cancelled.error, cancelled.progress) == ("error", renderer.CANCEL_MESSAGE, 30)

def test_cancel_terminates_running_process():
    job = asyncio.run(video_jobs.create_video_job("story-1", "Running"))
    proc = SimpleNamespace(pid=4242, returncode=None, terminate=Mock())
    renderer.ACTIVE_PROCESSES[job.id] = proc
    assert asyncio.run(renderer.cancel_render(job.id)) == "Video rendering cancellation initiated."
    proc.terminate.assert_called_once()
    assert job.id not in renderer.ACTIVE_PROCESSES

def test_cancel_during_render_stops_progress(monkeypatch, data_dirs):
    async def render_local(job_id, scenes, width, height, fps, work_dir, out_path, on_progress):
        await renderer.cancel_render(job_id)
        await on_progress(60)

    monkeypatch.setattr(renderer, "render_local", render_local)
    job = run_job(request())
    assert (job.status, job.error, job.progress) == ("error", renderer.CANCEL_MESSAGE, 30)
    assert job.download_url is None
    assert not (data_dirs / "downloads" / "story-1").exists()
    assert renderer._cancelled == set()

def test_cancel_loses_to_render_that_just_finished(monkeypatch):
    job = asyncio.run(video_jobs.create_video_job("story-1", "Racing"))
    stale = job.model_copy(update={"status": "processing", "progress": 90})
    asyncio.run(video_jobs.update_job_status(job.id, status="completed", progress=100,
                                             download_url="/downloads/story-1/Racing.mp4"))

    async def get_job(job_id):
        return stale

    real_get_job = video_jobs.get_job

    # the cancel sees the job as it was just before the render completed
    monkeypatch.setattr(video_jobs, "get_job", get_job)
    proc = SimpleNamespace(pid=4242, returncode=None, terminate=Mock())
    renderer.ACTIVE_PROCESSES[job.id] = proc
    with pytest.raises(JobStateError):
        asyncio.run(renderer.cancel_render(job.id))
    proc.terminate.assert_not_called()
    assert job.id not in renderer._cancelled

    finished = asyncio.run(real_get_job(job.id))
    assert (finished.status, finished.download_url, finished.error) == (
        "completed", "/downloads/story-1/Racing.mp4", None)
