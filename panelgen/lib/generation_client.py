# panelgen/lib/generation_client.py
"""
Client for the image provider's asynchronous job API.

A generation is a remote job: `submit` creates it, `get_status` reads its
state once, `poll_until_done` waits for a terminal state, and `fetch_encoded`
downloads the finished image. Each step fails with its own error type so
callers can tell a refused request from a flaky network.
"""
from __future__ import annotations

import asyncio
import json
import random
from typing import Any, Dict, List, Optional, Sequence

import httpx

from panelgen.config import Config
from panelgen.lib.errors import JobFailedError, JobTimeoutError, ProviderRejectedError, TransportError
from panelgen.lib.imaging import decode_image_b64, is_inline_image, to_data_url, verify_image
from panelgen.logger import get_logger
from panelgen.schemas import GeneratedImage, GenerationJob, GenerationOptions, JobHandle, JobState

log = get_logger(__name__)

MAX_REFERENCE_IMAGES = 8

_STATE_MAP = {
    "waiting": JobState.PENDING,
    "queuing": JobState.PENDING,
    "generating": JobState.PROCESSING,
    "success": JobState.COMPLETED,
    "fail": JobState.FAILED,
    "failed": JobState.FAILED,
}

# 4xx statuses worth retrying; every other 4xx means the request itself is bad
_RETRYABLE_4XX = {408, 425, 429}


def _is_rejection(status: int) -> bool:
    return 400 <= status < 500 and status not in _RETRYABLE_4XX


def _result_urls(result_json: Any) -> List[str]:
    if not result_json:
        return []
    if isinstance(result_json, str):
        try:
            result_json = json.loads(result_json)
        except ValueError:
            log.warning(f"unparseable resultJson: {result_json[:200]}")
            return []
    urls = result_json.get("resultUrls") if isinstance(result_json, dict) else None
    return [u for u in (urls or []) if isinstance(u, str) and u]


class GenerationClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.kie.ai/api/v1/jobs",
        http: Optional[httpx.AsyncClient] = None,
        default_model: str = "nano-banana-pro",
        aspect_ratio: str = "1:1",
        resolution: str = "1K",
        output_format: str = "jpg",
        negative_prompt: Optional[str] = None,
        poll_interval: float = 5.0,
        job_timeout: float = 300.0,
        http_timeout: float = 60.0,
        fetch_retries: int = 3,
        fetch_retry_delay: float = 1.0,
        max_reference_images: int = MAX_REFERENCE_IMAGES,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=http_timeout)
        self.default_model = default_model
        self.aspect_ratio = aspect_ratio
        self.resolution = resolution
        self.output_format = output_format
        self.negative_prompt = negative_prompt
        self.poll_interval = poll_interval
        self.job_timeout = job_timeout
        self.fetch_retries = max(1, fetch_retries)
        self.fetch_retry_delay = fetch_retry_delay
        self.max_reference_images = max_reference_images

    @classmethod
    def from_config(cls, cfg: Config, http: Optional[httpx.AsyncClient] = None) -> "GenerationClient":
        return cls(
            api_key=cfg.kie_api_key,
            base_url=cfg.kie_base_url,
            http=http,
            default_model=cfg.image_model,
            aspect_ratio=cfg.aspect_ratio,
            resolution=cfg.resolution,
            output_format=cfg.output_format,
            negative_prompt=cfg.negative_prompt or None,
            poll_interval=cfg.poll_interval_seconds,
            job_timeout=cfg.job_timeout_seconds,
            http_timeout=cfg.http_timeout_seconds,
            fetch_retries=cfg.fetch_retries,
            max_reference_images=min(cfg.max_reference_images, MAX_REFERENCE_IMAGES),
        )

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    # ---------------------------------------------------------------
    # submit / status
    # ---------------------------------------------------------------

    def _normalize_refs(self, refs: Sequence[str]) -> List[str]:
        out: List[str] = []
        for ref in refs:
            if not ref:
                continue
            if is_inline_image(ref) and not ref.startswith("data:"):
                data, ctype = decode_image_b64(ref)
                ref = to_data_url(data, ctype)
            out.append(ref)
        if len(out) > self.max_reference_images:
            log.warning(f"{len(out)} reference images given; sending the first {self.max_reference_images}")
            out = out[: self.max_reference_images]
        return out

    async def submit(
        self,
        prompt: str,
        reference_image_urls: Sequence[str] = (),
        options: Optional[GenerationOptions] = None,
    ) -> JobHandle:
        opts = options or GenerationOptions()
        model = opts.model or self.default_model
        payload_input: Dict[str, Any] = {
            "prompt": prompt,
            "image_input": self._normalize_refs(reference_image_urls),
            "aspect_ratio": opts.aspect_ratio or self.aspect_ratio,
            "resolution": opts.resolution or self.resolution,
            "output_format": opts.output_format or self.output_format,
        }
        negative = opts.negative_prompt if opts.negative_prompt is not None else self.negative_prompt
        if negative:
            payload_input["negative_prompt"] = negative

        log.info(f"submitting {model} job with {len(payload_input['image_input'])} reference image(s)")
        try:
            resp = await self._http.post(
                f"{self.base_url}/createTask",
                headers=self._headers(),
                json={"model": model, "input": payload_input},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"createTask failed: {e}") from e

        if _is_rejection(resp.status_code):
            raise ProviderRejectedError(f"createTask rejected: HTTP {resp.status_code} {resp.text[:300]}",
                                        status_code=resp.status_code)
        if resp.status_code >= 300:
            raise TransportError(f"createTask failed: HTTP {resp.status_code}", status_code=resp.status_code)

        body = self._json(resp, "createTask")
        code = body.get("code")
        if code != 200:
            msg = body.get("msg") or "no message"
            if isinstance(code, int) and code >= 500:
                raise TransportError(f"createTask failed: {code} {msg}", status_code=code)
            raise ProviderRejectedError(f"createTask rejected: {code} {msg}", status_code=code)

        task_id = (body.get("data") or {}).get("taskId")
        if not task_id:
            raise ProviderRejectedError(f"createTask returned no taskId: {body}")
        log.debug(f"created job {task_id}")
        return JobHandle(job_id=str(task_id), model=model)

    async def get_status(self, handle: JobHandle) -> GenerationJob:
        try:
            resp = await self._http.get(
                f"{self.base_url}/recordInfo",
                headers=self._headers(),
                params={"taskId": handle.job_id},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"recordInfo failed for {handle.job_id}: {e}") from e

        if _is_rejection(resp.status_code):
            raise ProviderRejectedError(f"recordInfo rejected for {handle.job_id}: HTTP {resp.status_code}",
                                        status_code=resp.status_code)
        if resp.status_code >= 300:
            raise TransportError(f"recordInfo failed for {handle.job_id}: HTTP {resp.status_code}",
                                 status_code=resp.status_code)

        data = self._json(resp, "recordInfo").get("data") or {}
        raw_state = str(data.get("state") or "").lower()
        state = _STATE_MAP.get(raw_state)
        if state is None:
            log.warning(f"job {handle.job_id}: unknown provider state {raw_state!r}, treating as pending")
            state = JobState.PENDING

        urls = _result_urls(data.get("resultJson")) if state is JobState.COMPLETED else []
        return GenerationJob(
            job_id=handle.job_id,
            state=state,
            raw_state=raw_state or None,
            result_image_url=urls[0] if urls else None,
            error_message=data.get("failMsg") if state is JobState.FAILED else None,
        )

    @staticmethod
    def _json(resp: httpx.Response, what: str) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as e:
            raise TransportError(f"{what}: response is not JSON") from e
        if not isinstance(body, dict):
            raise TransportError(f"{what}: unexpected response {body!r}")
        return body

    # ---------------------------------------------------------------
    # waiting / fetching
    # ---------------------------------------------------------------

    async def poll_until_done(self, handle: JobHandle, timeout: Optional[float] = None) -> GenerationJob:
        """
        Poll at a fixed interval until the job completes. Raises JobFailedError with the
        provider's message on failure and JobTimeoutError once `timeout` seconds pass.
        Timing out only stops the local wait; the remote job is left alone.
        """
        limit = self.job_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit
        polls = 0
        while True:
            job = await self.get_status(handle)
            polls += 1
            if job.state is JobState.COMPLETED:
                if not job.result_image_url:
                    raise JobFailedError(handle.job_id, "job completed without any result image")
                log.info(f"job {handle.job_id} completed after {polls} poll(s)")
                return job
            if job.state is JobState.FAILED:
                log.warning(f"job {handle.job_id} failed: {job.error_message}")
                raise JobFailedError(handle.job_id, job.error_message)

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise JobTimeoutError(handle.job_id, limit)
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def fetch_encoded(self, url: str) -> str:
        """Download the result image and return it as a data URL. Retries with backoff."""
        delay = self.fetch_retry_delay
        last_err: Optional[Exception] = None
        for attempt in range(1, self.fetch_retries + 1):
            try:
                resp = await self._http.get(url)
                if resp.status_code >= 400:
                    raise TransportError(f"image download failed: HTTP {resp.status_code}",
                                         status_code=resp.status_code,
                                         retryable=not _is_rejection(resp.status_code))
                data = resp.content
                try:
                    ctype = verify_image(data)
                except ValueError as e:
                    raise TransportError(f"downloaded result is not an image: {e}", retryable=False) from e
                return to_data_url(data, ctype)
            except httpx.HTTPError as e:
                last_err = TransportError(f"image download failed: {e}")
            except TransportError as e:
                if not e.retryable:
                    raise
                last_err = e
            if attempt < self.fetch_retries:
                sleep_for = (delay * (2 ** (attempt - 1))) + random.uniform(0, delay / 2)
                log.warning(f"fetch {attempt}/{self.fetch_retries} failed: {last_err}; retrying in {sleep_for:.2f}s")
                await asyncio.sleep(sleep_for)
        assert last_err is not None
        raise last_err

    async def generate(
        self,
        prompt: str,
        reference_image_urls: Sequence[str] = (),
        options: Optional[GenerationOptions] = None,
    ) -> GeneratedImage:
        handle = await self.submit(prompt, reference_image_urls, options)
        job = await self.poll_until_done(handle)
        data_url = await self.fetch_encoded(job.result_image_url)
        return GeneratedImage(url=job.result_image_url, data_url=data_url)
