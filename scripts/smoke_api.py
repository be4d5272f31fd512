#!/usr/bin/env python3
"""
Smoke test against a running backend: health, the full story pipeline and a
video render of its result. Uses real provider keys, so it costs credits.

    uvicorn storytailor.app:app --app-dir storytailor_backend --port 8000
    python3 scripts/smoke_api.py "a small dragon who is afraid of flying"
"""

import os
import sys
import time

import requests

BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
MAX_WAIT_S = 600


def check_health():
    try:
        response = requests.get(f"{BACKEND_URL}/health", timeout=5)
    except requests.exceptions.RequestException as e:
        print(f"❌ Backend connection failed: {e}")
        return False
    data = response.json()
    print(f"✅ Backend is running at {BACKEND_URL}")
    if data.get("missing"):
        print(f"❌ Missing API keys: {', '.join(data['missing'])}")
    return data.get("has_keys", False)


def poll(url, done, failed, interval=5):
    start_time = time.time()
    while time.time() - start_time < MAX_WAIT_S:
        response = requests.get(url, timeout=10)
        if response.status_code == 200:
            data = response.json()
            if done(data):
                return data
            if failed(data):
                print(f"❌ Job failed: {data.get('error', 'Unknown error')}")
                return None
            print(f"   {data.get('status')} {data.get('step') or data.get('progress') or ''}")
        time.sleep(interval)
    print("⏰ Job timeout - taking longer than expected")
    return None


def run_story(user_prompt):
    print("📝 Starting story pipeline...")
    response = requests.post(f"{BACKEND_URL}/v1/stories:start", json={"userPrompt": user_prompt}, timeout=10)
    if response.status_code != 200:
        print(f"❌ Job creation failed: {response.status_code} {response.text}")
        return None
    job_id = response.json()["job_id"]
    print(f"✅ Job created with ID: {job_id}")

    record = poll(f"{BACKEND_URL}/v1/stories/jobs/{job_id}",
                  done=lambda d: d["status"] == "succeeded",
                  failed=lambda d: d["status"] == "failed")
    return record["result"] if record else None


def render(story):
    print("🎬 Rendering video...")
    body = {
        "images": story["images"],
        "audioChunks": story["chunks"],
        "storyTitle": story["title"],
        "storyId": story["storyId"],
    }
    response = requests.post(f"{BACKEND_URL}/v1/render-video", json=body, timeout=30)
    if response.status_code != 200:
        print(f"❌ Render request failed: {response.status_code} {response.text}")
        return None
    job_id = response.json()["jobId"]
    job = poll(f"{BACKEND_URL}/v1/video-jobs/{job_id}",
               done=lambda d: d["status"] == "completed",
               failed=lambda d: d["status"] == "error")
    return job["downloadUrl"] if job else None


def main():
    user_prompt = " ".join(sys.argv[1:]) or "a small dragon who is afraid of flying"
    if not check_health():
        return 1

    story = run_story(user_prompt)
    if not story:
        return 1
    print(f"✅ \"{story['title']}\": {len(story['chunks'])} chunks, {len(story['images'])} images")

    download_url = render(story)
    if not download_url:
        return 1
    print(f"🎉 Video ready at {BACKEND_URL}{download_url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
