import time, httpx, asyncio, logging

from . import settings
from .errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

API_BASE = "https://api.replicate.com/v1"


def _headers():
    token = settings.REPLICATE_API_TOKEN
    if not token:
        raise ConfigurationError("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}"}


def _model_selector() -> str:
    # An explicit version pins the model; otherwise use the public alias (latest)
    return settings.REPLICATE_MODEL_VERSION or "black-forest-labs/flux-schnell"


def _parse_selector(selector: str):
    # ("version", {"version": hash}) or ("model", {"owner": ..., "name": ...})
    owner_name, _, _version_alias = selector.partition(":")
    if "/" in owner_name:
        owner, name = owner_name.split("/", 1)
        return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}


async def _asleep(sec: float):
    await asyncio.sleep(sec)


async def _latest_version(client: httpx.AsyncClient, owner: str, name: str) -> str:
    resp = await client.get(f"{API_BASE}/models/{owner}/{name}", headers=_headers())
    if resp.status_code >= 400:
        raise ProviderError("replicate", f"Model lookup failed {resp.status_code}: {resp.text}", resp.status_code)
    version_id = (resp.json().get("latest_version") or {}).get("id")
    if not version_id:
        raise ProviderError("replicate", f"Could not resolve latest version for {owner}/{name}")
    return version_id


async def create_and_wait_image(prompt: str) -> str:
    logger.info(f"Starting Replicate image generation for prompt: {prompt[:100]}...")
    selector = _model_selector()
    mode, data = _parse_selector(selector)
    json_body = {"input": {"prompt": prompt, "num_outputs": 1, "aspect_ratio": "16:9"}}
    if mode == "version":
        json_body["version"] = data["version"]
        url = f"{API_BASE}/predictions"
    else:
        url = f"{API_BASE}/models/{data['owner']}/{data['name']}/predictions"

    async with httpx.AsyncClient(timeout=30) as client:
        headers = {**_headers(), "Content-Type": "application/json"}
        logger.info(f"Sending request to Replicate: {url}")
        r = await client.post(url, headers=headers, json=json_body)
        if r.status_code == 404 and mode == "model":
            # Model endpoint unavailable for this alias; retry against the generic endpoint
            logger.info("Falling back to latest version resolution for model")
            version_id = await _latest_version(client, data["owner"], data["name"])
            logger.info(f"Resolved latest version: {version_id}")
            r = await client.post(f"{API_BASE}/predictions", headers=headers, json={**json_body, "version": version_id})
        if r.status_code >= 400:
            logger.error(f"Replicate create failed {r.status_code}: {r.text}")
            raise ProviderError("replicate", f"create failed {r.status_code}: {r.text}", r.status_code)

        pred_id = r.json()["id"]
        logger.info(f"Replicate prediction created with ID: {pred_id}")

        start = time.time()
        while True:
            s = await client.get(f"{API_BASE}/predictions/{pred_id}", headers=_headers())
            if s.status_code >= 400:
                raise ProviderError("replicate", f"status failed {s.status_code}: {s.text}", s.status_code)
            body = s.json()
            status = body.get("status")
            logger.info(f"Replicate prediction {pred_id} status: {status}")

            if status in ("succeeded", "failed", "canceled"):
                if status != "succeeded":
                    raise ProviderError("replicate", f"prediction {status}. logs={body.get('logs')} error={body.get('error')}")
                output = body.get("output")
                if isinstance(output, list) and output:
                    return output[0]
                if isinstance(output, str) and output:
                    return output
                raise ProviderError("replicate", "prediction succeeded but no output URL")
            if time.time() - start > settings.REPLICATE_POLL_TIMEOUT_S:
                raise ProviderError("replicate", "polling timeout")
            await _asleep(settings.REPLICATE_POLL_INTERVAL_MS / 1000.0)
