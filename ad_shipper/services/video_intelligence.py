from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import os
import tempfile
import time
from typing import Any, Optional

import google.generativeai as genai
from pydantic import ValidationError

from ad_shipper.config import settings
from ad_shipper.llm.json_extract import MalformedResponseError, strip_code_fences
from ad_shipper.schemas.video_analysis import VideoAnalysis
from ad_shipper.services.media_storage import MediaStorage
from ad_shipper.services.prompts import load_prompt
from ad_shipper.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

FRAMES_PER_SECOND = 1
TOKENS_PER_FRAME = 258
ESTIMATED_OUTPUT_TOKENS = 1000
# USD per 1M tokens: (input, output)
_FLASH_PRICING = (0.30, 2.50)
_DEFAULT_PRICING = (1.25, 10.00)

_GEMINI_CONFIGURED = False

# Gemini file uploads are serialized process-wide; analyses are capped separately.
_UPLOAD_SEMAPHORE = asyncio.Semaphore(1)
_ANALYSIS_SEMAPHORE = asyncio.Semaphore(settings.GEMINI_MAX_CONCURRENT_ANALYSES)


class CostExceededError(RuntimeError):
    def __init__(self, *, estimated_cost: float, max_cost: float, duration_seconds: float) -> None:
        super().__init__(
            f"Estimated analysis cost (${estimated_cost:.4f}) exceeds maximum (${max_cost}). "
            f"Video duration: {duration_seconds}s. Raise GEMINI_MAX_COST_PER_ANALYSIS or trim the video."
        )
        self.estimated_cost = estimated_cost
        self.max_cost = max_cost
        self.duration_seconds = duration_seconds


class GeminiFileProcessingError(RuntimeError):
    pass


def estimate_analysis_cost(duration_seconds: float, model: str) -> float:
    input_tokens = duration_seconds * FRAMES_PER_SECOND * TOKENS_PER_FRAME
    input_price, output_price = _FLASH_PRICING if "flash" in model.lower() else _DEFAULT_PRICING
    return (input_tokens / 1_000_000) * input_price + (ESTIMATED_OUTPUT_TOKENS / 1_000_000) * output_price


def parse_analysis_response(text: Optional[str]) -> VideoAnalysis:
    if not text or not text.strip():
        raise MalformedResponseError("Gemini returned an empty analysis response")
    cleaned = strip_code_fences(text)
    try:
        payload = json.loads(cleaned)
    except ValueError as exc:
        raise MalformedResponseError(f"Gemini analysis is not valid JSON: {exc}", raw_text=text) from exc
    try:
        return VideoAnalysis.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Gemini analysis failed schema validation: {exc.error_count()} error(s)",
            raw_text=text,
        ) from exc


def _ensure_gemini_configured(api_key: Optional[str]) -> None:
    global _GEMINI_CONFIGURED
    if _GEMINI_CONFIGURED:
        return
    key = api_key or os.getenv("GEMINI_API_KEY")
    if not key:
        raise RuntimeError("GEMINI_API_KEY not configured")
    genai.configure(api_key=key)
    _GEMINI_CONFIGURED = True


class VideoIntelligenceClient:
    """
    Structured video analysis backed by Gemini.

    Cost is checked before anything touches storage or the network. Uploads go through a
    process-wide single-slot semaphore and whole analyses through a bounded one; transient
    failures are retried with exponential backoff and every call is time-boxed.
    """

    def __init__(
        self,
        storage: MediaStorage,
        *,
        model: str,
        api_key: Optional[str] = None,
        max_cost_per_analysis: float = 0.50,
        request_timeout_seconds: float = 300.0,
        poll_interval_seconds: float = 2.0,
        retry_policy: Optional[RetryPolicy] = None,
        upload_semaphore: Optional[asyncio.Semaphore] = None,
        analysis_semaphore: Optional[asyncio.Semaphore] = None,
    ) -> None:
        self.storage = storage
        self.model = model
        self.api_key = api_key
        self.max_cost_per_analysis = max_cost_per_analysis
        self.request_timeout_seconds = request_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=2.0)
        self._upload_semaphore = upload_semaphore or _UPLOAD_SEMAPHORE
        self._analysis_semaphore = analysis_semaphore or _ANALYSIS_SEMAPHORE

    @classmethod
    def from_settings(cls, storage: MediaStorage) -> "VideoIntelligenceClient":
        return cls(
            storage,
            model=settings.GEMINI_MODEL,
            api_key=settings.GEMINI_API_KEY,
            max_cost_per_analysis=settings.GEMINI_MAX_COST_PER_ANALYSIS,
            request_timeout_seconds=settings.GEMINI_REQUEST_TIMEOUT_SECONDS,
            poll_interval_seconds=settings.GEMINI_FILE_POLL_INTERVAL_SECONDS,
            retry_policy=RetryPolicy(max_attempts=3, base_delay=settings.GEMINI_RETRY_BASE_DELAY_SECONDS),
        )

    def check_cost(self, duration_seconds: Optional[float]) -> Optional[float]:
        if duration_seconds is None:
            return None
        estimated = estimate_analysis_cost(duration_seconds, self.model)
        if estimated > self.max_cost_per_analysis:
            raise CostExceededError(
                estimated_cost=estimated,
                max_cost=self.max_cost_per_analysis,
                duration_seconds=duration_seconds,
            )
        return estimated

    async def analyze(
        self,
        staged_path: str,
        duration_seconds: Optional[float] = None,
        *,
        content_type: Optional[str] = None,
    ) -> VideoAnalysis:
        estimated = self.check_cost(duration_seconds)
        mime_type = content_type or mimetypes.guess_type(staged_path)[0] or "video/mp4"
        logger.info(
            "video_intelligence.analyze",
            extra={"staged_path": staged_path, "model": self.model, "estimated_cost": estimated},
        )
        started = time.monotonic()
        async with self._analysis_semaphore:
            data = await self.storage.read(staged_path)
            uploaded = await self.retry_policy.run(
                lambda: self._upload_serialized(data, mime_type),
                label="gemini.upload",
            )
            try:
                analysis = await self.retry_policy.run(
                    lambda: asyncio.wait_for(self._generate(uploaded), self.request_timeout_seconds),
                    label="gemini.generate",
                )
            finally:
                await self._delete_uploaded(uploaded)
        logger.info(
            "video_intelligence.completed",
            extra={
                "staged_path": staged_path,
                "scenes": len(analysis.scenes),
                "text_overlays": len(analysis.text_overlays),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return analysis

    async def _upload_serialized(self, data: bytes, mime_type: str) -> Any:
        async with self._upload_semaphore:
            upload = asyncio.ensure_future(asyncio.to_thread(self._upload_file, data, mime_type))
            done, _ = await asyncio.wait({upload}, timeout=self.request_timeout_seconds)
            if upload in done:
                return upload.result()
            # The worker thread cannot be interrupted, so the slot stays held until it returns.
            logger.warning(
                "video_intelligence.upload_timed_out",
                extra={"timeout_seconds": self.request_timeout_seconds},
            )
            await asyncio.wait({upload})
            if upload.exception() is None:
                await self._delete_uploaded(upload.result())
            raise asyncio.TimeoutError(f"Gemini upload exceeded {self.request_timeout_seconds}s")

    def _upload_file(self, data: bytes, mime_type: str) -> Any:
        _ensure_gemini_configured(self.api_key)
        deadline = time.monotonic() + self.request_timeout_seconds
        suffix = mimetypes.guess_extension(mime_type) or ".mp4"
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=True) as tmp:
            tmp.write(data)
            tmp.flush()
            uploaded = genai.upload_file(path=tmp.name, mime_type=mime_type)
        while getattr(uploaded.state, "name", None) == "PROCESSING":
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Gemini file {uploaded.name} still processing after {self.request_timeout_seconds}s")
            time.sleep(self.poll_interval_seconds)
            uploaded = genai.get_file(uploaded.name)
        if getattr(uploaded.state, "name", None) == "FAILED":
            raise GeminiFileProcessingError(f"Gemini failed to process uploaded file {uploaded.name}")
        return uploaded

    async def _generate(self, uploaded: Any) -> VideoAnalysis:
        prompt, _ = load_prompt("video_analysis", "analysis")
        model = genai.GenerativeModel(self.model)
        response = await model.generate_content_async(
            [uploaded, prompt],
            generation_config={"response_mime_type": "application/json", "temperature": 0.2},
        )
        try:
            text = response.text
        except ValueError as exc:
            # Raised by the SDK when the candidate was blocked or has no text parts.
            raise MalformedResponseError(f"Gemini returned no analysis text: {exc}") from exc
        return parse_analysis_response(text)

    async def _delete_uploaded(self, uploaded: Any) -> None:
        name = getattr(uploaded, "name", None)
        if not name:
            return
        try:
            await asyncio.to_thread(genai.delete_file, name)
        except Exception as exc:  # noqa: BLE001
            logger.warning("video_intelligence.delete_failed", extra={"file_name": name, "error": str(exc)})
