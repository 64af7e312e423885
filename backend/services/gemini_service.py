"""
Generation Gateway — the only module that talks to Gemini.

Uses google-genai's async client (client.aio) so a slow model never blocks the
event loop.

  generate_text(prompt, image=None)      → GenerationResult (text models, fallback chain)
  generate_image(prompt, image=None)     → GenerationResult (image model, inline PNG)
  generate_structured_text(prompt)       → StructuredResult (narrative + trailing JSON)

Model choice is delegated to an injected RateLimiter. A 429 from the API pauses
the offending model (RetryInfo delay, or 30 minutes for a daily quota) and the
request is retried on whichever model is still available. When nothing is
available the call raises ModelUnavailableError.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from config import settings
from models.game import GenerationResult, StructuredResult
from services.rate_limiter import RateLimiter
from utils.images import decode_image_b64, encode_image_bytes

logger = logging.getLogger(__name__)

_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
_QUOTA_FAILURE_TYPE = "type.googleapis.com/google.rpc.QuotaFailure"
_DAILY_QUOTA_ID = "GenerateRequestsPerDayPerProjectPerModel"
_RETRY_DELAY_RE = re.compile(r"^(\d+)s$")
_JSON_OBJECT_RE = re.compile(r"\{[^{}]*\}")


class GenerationError(Exception):
    """Any failure to produce usable model output."""


class ModelUnavailableError(GenerationError):
    """Every candidate model is rate limited or paused."""


class EmptyGenerationError(GenerationError):
    """The model answered but returned nothing usable."""


# ── Quota error helpers ───────────────────────────────────────────────────────

def _error_details(exc: Exception) -> List[Dict[str, Any]]:
    details = getattr(exc, "details", None)
    if isinstance(details, dict):
        inner = details.get("error", details)
        details = inner.get("details", []) if isinstance(inner, dict) else []
    return details if isinstance(details, list) else []


def quota_pause_seconds(exc: Exception, default_seconds: float, daily_seconds: float) -> float:
    """How long a model should rest after a 429."""
    delay = default_seconds
    for detail in _error_details(exc):
        if not isinstance(detail, dict):
            continue
        kind = detail.get("@type")
        if kind == _RETRY_INFO_TYPE:
            match = _RETRY_DELAY_RE.match(str(detail.get("retryDelay", "")))
            if match:
                delay = float(match.group(1))
        elif kind == _QUOTA_FAILURE_TYPE:
            for violation in detail.get("violations", [])[:1]:
                if _DAILY_QUOTA_ID in str(violation.get("quotaId", "")):
                    return daily_seconds
    return delay


def parse_structured_text(text: str) -> StructuredResult:
    """Split "narrative ... {json}" into the narrative and the last JSON object."""
    data: Dict[str, Any] = {}
    narrative = text
    for match in reversed(list(_JSON_OBJECT_RE.finditer(text))):
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            data = parsed
            narrative = (text[:match.start()] + text[match.end():]).strip()
            break
    narrative = narrative.replace("```json", "").replace("```", "").strip()
    return StructuredResult(text=narrative, data=data)


# ── Gateway ───────────────────────────────────────────────────────────────────

class GeminiService:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        client: Optional[Any] = None,
        text_models: Optional[List[str]] = None,
        image_model: Optional[str] = None,
    ):
        self._limiter = rate_limiter
        self._client = client
        self._text_models = list(text_models or settings.text_models)
        self._image_model = image_model or settings.image_model

    def _get_client(self):
        if self._client is None:
            from google import genai

            if not settings.gemini_api_key:
                raise GenerationError("GEMINI_API_KEY not set")
            self._client = genai.Client(api_key=settings.gemini_api_key)
        return self._client

    def _pick_model(self, text_only: bool) -> Optional[str]:
        candidates = self._text_models if text_only else [self._image_model]
        for model in candidates:
            if self._limiter.try_acquire(model):
                return model
        return None

    @staticmethod
    def _build_contents(prompt: str, image: Optional[str]) -> List[Any]:
        from google.genai import types

        if not image:
            return [prompt]
        raw = decode_image_b64(image)
        if raw is None:
            raise GenerationError("Invalid image data format")
        return [prompt, types.Part.from_bytes(data=raw, mime_type="image/png")]

    async def _request(self, prompt: str, image: Optional[str], text_only: bool) -> GenerationResult:
        from google.genai import errors, types

        contents = self._build_contents(prompt, image)
        config = None if text_only else types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
        )

        while True:
            model = self._pick_model(text_only)
            if model is None:
                kind = "text" if text_only else "image"
                raise ModelUnavailableError(f"No {kind} generation models available due to rate limits")

            try:
                response = await self._get_client().aio.models.generate_content(
                    model=model,
                    contents=contents,
                    config=config,
                )
            except errors.APIError as exc:
                if exc.code == 429:
                    pause = quota_pause_seconds(
                        exc, settings.quota_retry_seconds, settings.daily_quota_pause_seconds
                    )
                    self._limiter.pause_for(model, pause)
                    logger.warning("Model %s hit quota; paused %.0fs, retrying on another model", model, pause)
                    continue
                logger.error("Gemini API error on %s: %s", model, exc)
                raise GenerationError(str(exc)) from exc

            return self._parse_response(response, text_only)

    @staticmethod
    def _parse_response(response: Any, text_only: bool) -> GenerationResult:
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            raise EmptyGenerationError("No candidates returned by the model")
        candidate = candidates[0]
        finish_reason = getattr(candidate.finish_reason, "name", candidate.finish_reason)
        if finish_reason == "RECITATION":
            raise GenerationError("Model rejected input due to content safety policy")
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) if content else None
        if not parts:
            raise EmptyGenerationError("Invalid response structure from model")

        texts = [part.text for part in parts if isinstance(getattr(part, "text", None), str)]
        result = GenerationResult(
            text=" ".join(texts).strip(),
            finish_reason=str(finish_reason) if finish_reason else None,
        )
        if not text_only:
            for part in parts:
                inline = getattr(part, "inline_data", None)
                if inline and inline.data:
                    result.image_data = encode_image_bytes(inline.data)
                    break
        return result

    # ── Public API ───────────────────────────────────────────────────────────

    async def generate_text(self, prompt: str, image: Optional[str] = None) -> GenerationResult:
        return await self._request(prompt, image, text_only=True)

    async def generate_image(self, prompt: str, image: Optional[str] = None) -> GenerationResult:
        return await self._request(prompt, image, text_only=False)

    async def generate_structured_text(self, prompt: str) -> StructuredResult:
        result = await self._request(prompt, None, text_only=True)
        if not result.text:
            raise EmptyGenerationError("Empty structured response")
        return parse_structured_text(result.text)


_gemini_service: Optional[GeminiService] = None


def get_gemini_service() -> GeminiService:
    global _gemini_service
    if _gemini_service is None:
        limiter = RateLimiter(
            settings.model_rpm,
            default_limit=settings.default_rpm,
            window_seconds=settings.rate_window_seconds,
        )
        _gemini_service = GeminiService(limiter)
    return _gemini_service
