import os, json, shutil, asyncio, tempfile, subprocess, logging
from typing import List

from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from storytailor.errors import RenderError
from storytailor.media import run_ffmpeg, safe_path_segment
from storytailor.renderer import render_commands
from storytailor.timeline import Scene

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="StoryTailor Render Worker")


@app.get("/health")
def health():
    try:
        result = subprocess.run(["ffmpeg", "-version"], capture_output=True, text=True, timeout=5)
        ffmpeg_ok = result.returncode == 0
        ffmpeg_version = result.stdout.split('\n')[0] if ffmpeg_ok else "Not available"
    except (OSError, subprocess.TimeoutExpired) as e:
        ffmpeg_ok = False
        ffmpeg_version = f"Error: {str(e)}"

    return {
        "ok": True,
        "ffmpeg_available": ffmpeg_ok,
        "ffmpeg_version": ffmpeg_version,
        "temp_dir": tempfile.gettempdir(),
    }


def _local_name(name: str) -> str:
    base, ext = os.path.splitext(os.path.basename(name or ""))
    return safe_path_segment(base) + ext.lower()


def _parse_timeline(raw: str):
    try:
        timeline = json.loads(raw)
        scenes = [Scene.model_validate(s) for s in timeline["scenes"]]
        width, height, fps = int(timeline["width"]), int(timeline["height"]), int(timeline["fps"])
    except (ValueError, KeyError, TypeError, ValidationError) as e:
        raise HTTPException(400, f"invalid timeline json: {e}")
    if not scenes:
        raise HTTPException(400, "timeline has no scenes")
    return scenes, width, height, fps


def _run_all(commands):
    for cmd in commands:
        run_ffmpeg(cmd)


@app.post("/render")
async def render(
    timeline: str = Form(...),
    # image-<n>.* and audio-<n>.* uploads referenced by name from the timeline
    files: List[UploadFile] = File(None),
):
    scenes, width, height, fps = _parse_timeline(timeline)

    tmp = tempfile.mkdtemp(prefix="render-worker-")
    try:
        saved = {}
        for uf in files or []:
            name = _local_name(uf.filename)
            path = os.path.join(tmp, name)
            with open(path, "wb") as f:
                f.write(await uf.read())
            saved[name] = path

        def _resolve(name):
            path = saved.get(_local_name(name))
            if not path:
                raise HTTPException(400, f"missing file {name}")
            return path

        local_scenes = []
        for scene in scenes:
            images = [img.model_copy(update={"src": _resolve(img.src)}) for img in scene.images]
            audio = _resolve(scene.audio_url) if scene.audio_url else None
            local_scenes.append(scene.model_copy(update={"images": images, "audio_url": audio}))

        final_path = os.path.join(tmp, "final.mp4")
        await asyncio.to_thread(_run_all, render_commands(local_scenes, width, height, fps, tmp, final_path))

        file_size = os.path.getsize(final_path)
        if file_size <= 1024:
            raise RenderError(f"Generated video file is too small ({file_size} bytes), likely corrupted")
        logger.info(f"Rendered {len(local_scenes)} scenes into {file_size} bytes")
    except RenderError as e:
        shutil.rmtree(tmp, ignore_errors=True)
        raise HTTPException(500, str(e))
    except BaseException:
        shutil.rmtree(tmp, ignore_errors=True)
        raise

    def iterfile():
        try:
            with open(final_path, "rb") as f:
                for chunk in iter(lambda: f.read(64 * 1024), b""):
                    yield chunk
        finally:
            shutil.rmtree(tmp, ignore_errors=True)

    headers = {
        "Content-Disposition": 'attachment; filename="story.mp4"',
        "Content-Length": str(file_size)
    }
    return StreamingResponse(iterfile(), media_type="video/mp4", headers=headers)
