import io, os, re, shlex, subprocess, wave, logging
from typing import List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from .errors import RenderError

logger = logging.getLogger(__name__)

# Gemini TTS answers with 24 kHz, 16 bit, mono PCM
PCM_SAMPLE_RATE = 24000
PCM_SAMPLE_WIDTH = 2
PCM_CHANNELS = 1


def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def write_text(path: str, text: str):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def safe_filename(title: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", title or "") or "story"


def safe_path_segment(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]", "_", value or "") or "unsorted"


def image_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not read image dimensions: {e}")
        return None


def sniff_audio(data: bytes) -> str:
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "wav"
    if data[:3] == b"ID3" or (len(data) > 1 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0):
        return "mp3"
    return "pcm"


def pcm_to_wav(data: bytes, sample_rate: int = PCM_SAMPLE_RATE,
               channels: int = PCM_CHANNELS, sample_width: int = PCM_SAMPLE_WIDTH) -> bytes:
    """Wrap raw PCM in a WAV header. Data that already is WAV is returned unchanged."""
    if sniff_audio(data) == "wav":
        return data
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(sample_width)
        w.setframerate(sample_rate)
        w.writeframes(data)
    return buf.getvalue()


def wav_duration(data: bytes) -> Optional[float]:
    try:
        with wave.open(io.BytesIO(data), "rb") as w:
            rate = w.getframerate()
            return w.getnframes() / float(rate) if rate else None
    except (wave.Error, EOFError) as e:
        logger.warning(f"Could not parse WAV header: {e}")
        return None


# --- ffmpeg command builders ---

def ffmpeg_scene_clip(img_path: str, out_path: str, frames: int, w: int, h: int, fps: int) -> List[str]:
    """Still image shown for `frames` frames, letterboxed to w x h."""
    vf = (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,format=yuv420p"
    )
    return [
        "ffmpeg", "-y", "-loop", "1", "-i", img_path,
        "-vf", vf, "-r", str(fps), "-frames:v", str(max(1, frames)),
        "-c:v", "libx264", "-preset", "veryfast", "-pix_fmt", "yuv420p", out_path,
    ]


def write_concat_list(paths: Sequence[str], list_path: str):
    write_text(list_path, "".join(f"file '{p}'\n" for p in paths))


def ffmpeg_concat(list_path: str, out_path: str) -> List[str]:
    return ["ffmpeg", "-y", "-f", "concat", "-safe", "0", "-i", list_path, "-c", "copy", out_path]


def ffmpeg_audio_track(tracks: Sequence[Tuple[Optional[str], float]], out_path: str) -> List[str]:
    """One audio track out of (path, seconds) pairs; each piece is padded or cut to its scene length.

    A missing path becomes silence of the same length.
    """
    cmd = ["ffmpeg", "-y"]
    filters = []
    for i, (path, seconds) in enumerate(tracks):
        if path:
            cmd += ["-i", path]
        else:
            cmd += ["-f", "lavfi", "-t", f"{seconds:.3f}", "-i", "anullsrc=r=44100:cl=stereo"]
        filters.append(
            f"[{i}:a]aresample=44100,aformat=channel_layouts=stereo,apad,"
            f"atrim=0:{seconds:.3f},asetpts=PTS-STARTPTS[a{i}]"
        )
    labels = "".join(f"[a{i}]" for i in range(len(tracks)))
    filters.append(f"{labels}concat=n={len(tracks)}:v=0:a=1[out]")
    cmd += ["-filter_complex", ";".join(filters), "-map", "[out]", "-c:a", "aac", "-b:a", "128k", out_path]
    return cmd


def ffmpeg_mux_audio(video_path: str, audio_path: str, out_path: str) -> List[str]:
    return [
        "ffmpeg", "-y", "-i", video_path, "-i", audio_path,
        "-map", "0:v", "-map", "1:a", "-c:v", "copy", "-c:a", "copy",
        "-shortest", "-movflags", "+faststart", out_path,
    ]


def run_ffmpeg(cmd: Sequence[str], timeout: Optional[float] = None):
    logger.info(f"Running FFmpeg command: {shlex.join(cmd)}")
    try:
        proc = subprocess.run(list(cmd), stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise RenderError(f"FFmpeg timed out after {timeout} seconds")
    if proc.returncode != 0:
        error_msg = proc.stderr.decode("utf-8", errors="ignore")
        logger.error(f"FFmpeg command failed with return code {proc.returncode}: {error_msg[-2000:]}")
        raise RenderError(f"FFmpeg failed: {error_msg[-500:]}")
