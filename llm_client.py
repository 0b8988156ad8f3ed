#!/usr/bin/env python3
"""Async OpenAI helper providing `chat_completion` with a per-call time limit, retry with
backoff for transient failures, quota and content-filter detection, and normalized content
extraction. Returns `None` when no usable text is produced; raises `QuotaExhaustedError` or
`ContentFilterError` for the two failures callers must act on rather than retry."""
from __future__ import annotations
from asyncio import sleep, wait_for, TimeoutError
from typing import Any, Callable, Dict, List, Optional

from openai import AsyncAzureOpenAI, AsyncOpenAI

from config import config, get_logger
from errors import ContentFilterError, QuotaExhaustedError
from telemetry import trace_span

logger = get_logger("llm_client")

QUOTA_CODES = {"insufficient_quota", "quota_exceeded", "billing_hard_limit_reached", "billing_not_active"}
QUOTA_PHRASES = ("exceeded your current quota", "quota exceeded", "insufficient_quota")

_client: Any = None


def _get_client() -> Optional[Any]:
    """Instantiate and cache the async client if a credential is configured."""
    global _client
    if _client is not None:
        return _client
    if not config.HAS_AI_CREDENTIALS:
        logger.debug("No AI credential configured; client will not initialize")
        return None
    if config.AZURE_ENDPOINT and config.OPENAI_API_VERSION:
        _client = AsyncAzureOpenAI(
            api_key=config.OPENAI_API_KEY,
            api_version=config.OPENAI_API_VERSION,
            azure_endpoint=f"https://{config.AZURE_ENDPOINT}",
            max_retries=0,
        )
    else:
        _client = AsyncOpenAI(
            api_key=config.OPENAI_API_KEY,
            base_url=config.OPENAI_BASE_URL,
            max_retries=0,
        )
    return _client


def error_payload(error: BaseException) -> Dict[str, Any]:
    """Return the provider's `error` object from an SDK exception body, or {}."""
    body = getattr(error, "body", None)
    if not isinstance(body, dict):
        return {}
    inner = body.get("error")
    return inner if isinstance(inner, dict) else body


def is_quota_exhausted(error_obj: Dict[str, Any], message: str = "") -> bool:
    """Whether an error payload or message indicates the account quota is used up."""
    code = str(error_obj.get("code") or "").lower()
    etype = str(error_obj.get("type") or "").lower()
    if code in QUOTA_CODES or etype in QUOTA_CODES:
        return True
    text = f"{error_obj.get('message') or ''} {message}".lower()
    return any(phrase in text for phrase in QUOTA_PHRASES)


def is_content_filtered(error_obj: Dict[str, Any]) -> bool:
    inner = error_obj.get("innererror") if isinstance(error_obj.get("innererror"), dict) else {}
    return error_obj.get("code") == "content_filter" or inner.get("code") == "ResponsibleAIPolicyViolation"


def _extract_text(choice: Any) -> str:
    """Pull text out of a choice's message, tolerating dict or object messages and part lists."""
    message = getattr(choice, "message", None)
    if message is None and isinstance(choice, dict):
        message = choice.get("message")
    message = message or {}
    refusal = message.get("refusal") if isinstance(message, dict) else getattr(message, "refusal", None)
    if refusal:
        logger.warning("Refusal detected in response: %s", refusal)
        return ""
    content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        texts: List[str] = []
        for part in content:
            txt = part.get("text") if isinstance(part, dict) else None
            if isinstance(txt, str) and txt.strip():
                texts.append(txt.strip())
        return "\n".join(texts).strip()
    return ""


@trace_span(
    "chat_completion",
    tracer_name="llm_client",
    attr_from_args=lambda messages=None, **kwargs: {
        "ai.purpose": kwargs.get("purpose", "generic"),
    },
)
async def chat_completion(
    messages: List[Dict[str, str]] = None,
    *,
    purpose: str = "generic",
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
    retries: Optional[int] = None,
    postprocess: Optional[Callable[[str], str]] = None,
    client_override: Optional[Any] = None,
) -> Optional[str]:
    """Execute a chat completion.

    Raises `QuotaExhaustedError` when the service reports quota exhaustion and
    `ContentFilterError` on policy blocks. Neither is retried.
    """
    if not messages:
        logger.error("chat_completion called without messages list")
        return None

    client = client_override or _get_client()
    if client is None:
        logger.warning("AI client unavailable; skipping %s", purpose)
        return None

    remaining = retries if retries is not None else config.AI_MAX_RETRIES
    time_limit = timeout if timeout is not None else config.AI_TIMEOUT
    params: Dict[str, Any] = {
        "model": model or config.OPENAI_MODEL,
        "messages": messages,
        "temperature": config.AI_TEMPERATURE if temperature is None else temperature,
        "max_tokens": max_tokens or config.AI_MAX_TOKENS,
    }
    attempt = 0

    while attempt <= remaining:
        try:
            resp = await wait_for(client.chat.completions.create(**params), timeout=time_limit)
            choices = getattr(resp, "choices", None) or []
            if not choices:
                logger.error("No choices in %s response", purpose)
                return None
            raw = "\n".join(t for t in (_extract_text(ch) for ch in choices) if t).strip()
            if not raw:
                finish_reasons = {getattr(c, "finish_reason", None) for c in choices}
                logger.warning("Empty content in %s response (finish_reasons=%s)", purpose, finish_reasons)
                return None
            return postprocess(raw) if postprocess else raw
        except TimeoutError:
            attempt += 1
            failure = f"timed out after {time_limit:g}s"
        except Exception as e:  # SDK and transport errors share this path
            error_obj = error_payload(e)
            if is_quota_exhausted(error_obj, str(e)):
                raise QuotaExhaustedError(
                    message=error_obj.get("message") or "AI service quota exhausted", details=error_obj
                ) from e
            if is_content_filtered(error_obj):
                raise ContentFilterError(message=error_obj.get("message", "Content filtered"), details=error_obj) from e
            attempt += 1
            failure = f"{e.__class__.__name__}: {e}"

        if attempt > remaining:
            logger.error("%s request failed after %d retries: %s", purpose, remaining, failure)
            return None
        delay = config.AI_RETRY_DELAY_BASE * (2 ** (attempt - 1))
        logger.warning("%s transient AI error: %s. Backoff %ss (attempt %d/%d)", purpose, failure, delay, attempt, remaining)
        await sleep(delay)

    return None


__all__ = ["chat_completion", "error_payload", "is_quota_exhausted"]
