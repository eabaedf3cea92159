"""Narration proxy: forwards a prompt to the configured LLM under usage limits."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from anomady import llm, storage
from anomady.usage import UsageLimiter

from .deps import caller_key, get_usage_limiter
from .models import NarrationBody

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/narration")
async def narrate(
    body: NarrationBody,
    request: Request,
    limiter: UsageLimiter = Depends(get_usage_limiter),
):
    """Generate narration text. Usage is counted only for successful calls."""
    config = storage.get_config()
    model = body.model_name or config["default_model"]
    key = caller_key(request)
    limiter.check(key, model)

    client = llm.from_config(config, model=model)
    try:
        text = await client("narration", body.prompt)
    except llm.LLMError as e:
        logger.error("narration failed for %s with model %s: %s", key, model, e)
        raise HTTPException(502, str(e))

    return {"text": text, "api_usage": limiter.record(key, model)}
