import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import errors

from services.gemini_service import (
    EmptyGenerationError, GeminiService, GenerationError, ModelUnavailableError,
    parse_structured_text, quota_pause_seconds,
)
from services.rate_limiter import RateLimiter
from utils.images import fallback_image_b64


def _quota_error(details):
    return errors.APIError(429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED",
                                           "details": details}})


def _response(text="hello", image_bytes=None, finish_reason="STOP"):
    parts = [SimpleNamespace(text=text, inline_data=None)]
    if image_bytes is not None:
        parts.append(SimpleNamespace(text=None, inline_data=SimpleNamespace(data=image_bytes)))
    candidate = SimpleNamespace(
        finish_reason=SimpleNamespace(name=finish_reason),
        content=SimpleNamespace(parts=parts),
    )
    return SimpleNamespace(candidates=[candidate])


def _service(side_effect, limits=None):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(side_effect=side_effect)
    limiter = RateLimiter(limits or {}, default_limit=10)
    service = GeminiService(limiter, client=client, text_models=["m1", "m2"], image_model="img")
    return service, client, limiter


# ── Quota parsing ─────────────────────────────────────────────────────────────

def test_retry_delay_is_read_from_retry_info():
    exc = _quota_error([{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "12s"}])
    assert quota_pause_seconds(exc, 30, 1800) == 12


def test_daily_quota_pauses_for_long():
    exc = _quota_error([{
        "@type": "type.googleapis.com/google.rpc.QuotaFailure",
        "violations": [{"quotaId": "GenerateRequestsPerDayPerProjectPerModel-FreeTier"}],
    }])
    assert quota_pause_seconds(exc, 30, 1800) == 1800


def test_unknown_quota_error_uses_default():
    assert quota_pause_seconds(RuntimeError("nope"), 30, 1800) == 30


# ── Structured text ───────────────────────────────────────────────────────────

def test_structured_text_splits_narrative_and_json():
    text = (
        "You open the mailbox and find a leaflet.\n\n"
        '```json\n{"items_added": ["leaflet"], "items_removed": []}\n```'
    )
    result = parse_structured_text(text)
    assert result.text == "You open the mailbox and find a leaflet."
    assert result.data == {"items_added": ["leaflet"], "items_removed": []}


def test_structured_text_without_json_keeps_everything():
    result = parse_structured_text("Nothing happens {not json}.")
    assert result.text == "Nothing happens {not json}."
    assert result.data == {}


# ── Gateway ───────────────────────────────────────────────────────────────────

def test_text_request_returns_joined_parts():
    service, client, _ = _service([_response("a taco")])
    result = asyncio.run(service.generate_text("guess"))
    assert result.text == "a taco"
    assert client.aio.models.generate_content.await_args.kwargs["model"] == "m1"


def test_quota_error_pauses_model_and_falls_back():
    exc = _quota_error([{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "20s"}])
    service, client, limiter = _service([exc, _response("second try")])
    result = asyncio.run(service.generate_text("hi"))
    assert result.text == "second try"
    assert limiter.is_paused("m1")
    assert client.aio.models.generate_content.await_args.kwargs["model"] == "m2"


def test_no_model_available_raises():
    service, client, _ = _service([], limits={"m1": 0, "m2": 0})
    with pytest.raises(ModelUnavailableError):
        asyncio.run(service.generate_text("hi"))
    client.aio.models.generate_content.assert_not_called()


def test_image_request_returns_base64_payload():
    service, client, _ = _service([_response("", image_bytes=b"\x89PNG")])
    result = asyncio.run(service.generate_image("draw", fallback_image_b64()))
    assert result.image_data == "iVBORw=="
    kwargs = client.aio.models.generate_content.await_args.kwargs
    assert kwargs["model"] == "img"
    assert list(kwargs["config"].response_modalities) == ["TEXT", "IMAGE"]


def test_recitation_is_rejected():
    service, _, _ = _service([_response("copied", finish_reason="RECITATION")])
    with pytest.raises(GenerationError):
        asyncio.run(service.generate_text("hi"))


def test_empty_structured_response_raises():
    service, _, _ = _service([_response("")])
    with pytest.raises(EmptyGenerationError):
        asyncio.run(service.generate_structured_text("hi"))


def test_invalid_image_input_is_rejected():
    service, client, _ = _service([])
    with pytest.raises(GenerationError):
        asyncio.run(service.generate_image("draw", "data:image/png;base64,@@@"))
    client.aio.models.generate_content.assert_not_called()
