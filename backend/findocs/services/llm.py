"""Client for the external text-generation service (Gemini ``generateContent``).

One user-role prompt in, plain text out. No retries: a failed call surfaces as
``UpstreamServiceError`` and each caller decides whether to degrade or fail.
"""
from typing import Optional

import httpx
from loguru import logger

from findocs.core.config import get_settings
from findocs.core import runtime_state
from findocs.core.errors import UpstreamServiceError

settings = get_settings()

GEMINI_GEN_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def _model_path(model: str) -> str:
    return model.split("/")[-1] if model.startswith("models/") else model


async def generate_text(prompt: str, *, max_tokens: int = 2048, model: Optional[str] = None) -> str:
    if not settings.gemini_api_key:
        runtime_state.set_generation_failure("no_api_key")
        raise UpstreamServiceError("Text generation service is not configured")
    model_name = _model_path(model or settings.generation_model)
    url = GEMINI_GEN_URL.format(model=model_name)
    payload = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {"maxOutputTokens": max_tokens},
    }
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][GENERATE][start] model={model_name} prompt_chars={len(prompt)} max_tokens={max_tokens}")
    try:
        async with httpx.AsyncClient(timeout=settings.generation_timeout_seconds) as client:
            r = await client.post(url, json=payload, headers={"x-goog-api-key": settings.gemini_api_key})
            r.raise_for_status()
            data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        runtime_state.set_generation_failure(f"gen_error: {e}")
        logger.warning(f"Generation request failed for {model_name}: {e}")
        raise UpstreamServiceError("Text generation request failed") from e
    try:
        parts = data["candidates"][0]["content"]["parts"]
        text = "".join(p.get("text", "") for p in parts)
    except (KeyError, IndexError, TypeError) as e:
        runtime_state.set_generation_failure(f"bad_shape: {e}")
        raise UpstreamServiceError("Unexpected response type from text generation service") from e
    runtime_state.set_generation_success()
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][GENERATE][done] model={model_name} response_chars={len(text)}")
    return text
