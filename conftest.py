import os
import sys

import httpx
import pytest

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'storytailor_backend'))

from storytailor import settings


@pytest.fixture(autouse=True)
def data_dirs(tmp_path, monkeypatch):
    """Every test gets its own job file, media and downloads folders."""
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "VIDEO_JOBS_FILE", str(tmp_path / "video-jobs.json"))
    monkeypatch.setattr(settings, "MEDIA_DIR", str(tmp_path / "media"))
    monkeypatch.setattr(settings, "DOWNLOADS_DIR", str(tmp_path / "downloads"))
    monkeypatch.setattr(settings, "RENDER_TMP_DIR", str(tmp_path / "render"))
    monkeypatch.setattr(settings, "KV_REST_API_URL", "")
    monkeypatch.setattr(settings, "KV_REST_API_TOKEN", "")
    monkeypatch.setattr(settings, "RENDER_WORKER_URL", "")
    return tmp_path


@pytest.fixture
def mock_http(monkeypatch):
    """mock_http(handler) routes every httpx.AsyncClient through httpx.MockTransport(handler)."""
    real_client = httpx.AsyncClient

    def install(handler):
        def factory(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(handler)
            return real_client(*args, **kwargs)
        monkeypatch.setattr(httpx, "AsyncClient", factory)

    return install
