"""
Render worker endpoints, with ffmpeg replaced by a fake that writes its output file
"""
import sys
import os
import json
from types import SimpleNamespace

# Add the backend and the worker to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'storytailor_backend'))
sys.path.insert(0, os.path.dirname(__file__))

import pytest
from fastapi.testclient import TestClient

import render_worker.app as worker

client = TestClient(worker.app)

TIMELINE = {
    "width": 640, "height": 360, "fps": 12,
    "scenes": [
        {"audio_url": "audio-0.mp3", "text": "Once.", "duration": 2.0, "frames": 24,
         "images": [{"src": "image-0.png", "frames": 12}, {"src": "image-1.png", "frames": 12}]},
        {"audio_url": None, "text": "", "duration": 1.0, "frames": 12,
         "images": [{"src": "image-1.png", "frames": 12}]},
    ],
}

FILES = [
    ("files", ("image-0.png", b"png0", "image/png")),
    ("files", ("image-1.png", b"png1", "image/png")),
    ("files", ("audio-0.mp3", b"ID3audio", "audio/mpeg")),
]


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    commands = []

    def run_ffmpeg(cmd, timeout=None):
        commands.append(cmd)
        with open(cmd[-1], "wb") as f:
            f.write(b"\x00" * 2048)

    monkeypatch.setattr(worker, "run_ffmpeg", run_ffmpeg)
    return commands


def test_health(monkeypatch):
    monkeypatch.setattr(worker.subprocess, "run",
                        lambda *a, **kw: SimpleNamespace(returncode=0, stdout="ffmpeg version 6.1\nbuilt with gcc"))
    body = client.get("/health").json()
    assert body["ok"] is True
    assert body["ffmpeg_available"] is True
    assert body["ffmpeg_version"] == "ffmpeg version 6.1"


def test_health_without_ffmpeg(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(worker.subprocess, "run", missing)
    body = client.get("/health").json()
    assert body["ffmpeg_available"] is False


def test_render_streams_video(fake_ffmpeg):
    r = client.post("/render", data={"timeline": json.dumps(TIMELINE)}, files=FILES)
    assert r.status_code == 200
    assert r.headers["content-type"] == "video/mp4"
    assert len(r.content) == 2048

    clips = [c for c in fake_ffmpeg if "-loop" in c]
    assert len(clips) == 3
    assert os.path.basename(clips[0][clips[0].index("-i") + 1]) == "image-0.png"
    # the silent second scene gets generated silence instead of an input file
    assert "anullsrc=r=44100:cl=stereo" in fake_ffmpeg[-2]


def test_render_missing_upload(fake_ffmpeg):
    r = client.post("/render", data={"timeline": json.dumps(TIMELINE)}, files=FILES[:1])
    assert r.status_code == 400
    assert "missing file" in r.json()["detail"]
    assert fake_ffmpeg == []


@pytest.mark.parametrize("timeline", ["not json", json.dumps({"width": 1}), json.dumps({**TIMELINE, "scenes": []})])
def test_render_invalid_timeline(fake_ffmpeg, timeline):
    r = client.post("/render", data={"timeline": timeline}, files=FILES)
    assert r.status_code == 400


def test_render_rejects_tiny_output(monkeypatch):
    def run_ffmpeg(cmd, timeout=None):
        with open(cmd[-1], "wb") as f:
            f.write(b"\x00" * 100)

    monkeypatch.setattr(worker, "run_ffmpeg", run_ffmpeg)
    r = client.post("/render", data={"timeline": json.dumps(TIMELINE)}, files=FILES)
    assert r.status_code == 500
    assert "too small" in r.json()["detail"]
