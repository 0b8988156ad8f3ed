#!/usr/bin/env python3
"""
AI-powered article summarizer.

Produces a short structured summary for one article from its title, url and
extracted text. Summarization is best-effort: every failure yields an empty string.
When the AI service reports quota exhaustion, the summarizer trips the cycle's
circuit breaker so the remaining items of that cycle skip the AI call entirely.
"""

from typing import Any, Dict, List, Optional
import re

import yaml

from config import config, get_logger
from errors import ContentFilterError, QuotaExhaustedError
from llm_client import chat_completion as ai_chat_completion
from models import CycleContext
from telemetry import trace_span
from utils import mask_secret, truncate_string

logger = get_logger("summarizer")

DEFAULT_PROMPTS: Dict[str, str] = {
    "summarize": (
        "Summarize the article for a senior product design & research leader. "
        "Output 2 crisp bullets (≤35 words each). Avoid hype. "
        "Mention why it matters for product/UX."
    ),
    "chat": (
        "You are an expert tutor for a senior product design and user research leader. "
        "Use the resource context if provided; be concise and actionable."
    ),
}

# Leading/trailing code fences some models wrap short answers in
CODE_FENCE_PATTERN = re.compile(r'^```[a-z]*\s*|\s*```$')


def load_prompts(prompt_path: Optional[str] = None) -> Dict[str, str]:
    """Load prompts from prompt.yaml, falling back to the built-in prompts per key."""
    prompts = dict(DEFAULT_PROMPTS)
    prompt_path = prompt_path or config.PROMPT_CONFIG_PATH
    try:
        with open(prompt_path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.info(f"Prompt configuration file not found at {prompt_path}; using built-in prompts")
        return prompts
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Could not read prompt configuration {prompt_path}: {e}")
        return prompts
    if not isinstance(loaded, dict):
        logger.warning(f"Prompt configuration {prompt_path} must be a mapping; using built-in prompts")
        return prompts
    for key, value in loaded.items():
        if isinstance(value, str) and value.strip():
            prompts[str(key)] = value.strip()
    return prompts


class Summarizer:
    """Generates AI summaries, honouring the per-cycle circuit breaker."""

    def __init__(
        self,
        enabled: Optional[bool] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_input_chars: Optional[int] = None,
        timeout: Optional[float] = None,
        prompts: Optional[Dict[str, str]] = None,
        client: Optional[Any] = None,
    ) -> None:
        self.enabled = config.SUMMARIZE if enabled is None else enabled
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.model = model or config.OPENAI_MODEL
        self.max_input_chars = max_input_chars or config.SUMMARY_INPUT_MAX_CHARS
        self.timeout = timeout if timeout is not None else config.AI_TIMEOUT
        self.prompts = prompts or load_prompts()
        self.client = client

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def active(self) -> bool:
        return self.enabled and self.has_credentials

    def describe(self) -> str:
        if not self.enabled:
            return "summarization disabled by configuration"
        if not self.has_credentials:
            return "summarization disabled (no AI credential configured)"
        return f"summarization enabled (model={self.model}, key={mask_secret(self.api_key)})"

    def build_messages(self, title: str, url: str, text: str) -> List[Dict[str, str]]:
        excerpt = truncate_string(text or "", self.max_input_chars, suffix="")
        return [
            {"role": "system", "content": self.prompts["summarize"]},
            {"role": "user", "content": f"Title: {title}\nURL: {url}\nContent preview:\n{excerpt}"},
        ]

    @trace_span(
        "summarize_item",
        tracer_name="summarizer",
        attr_from_args=lambda self, title, url, text, context: {
            "entry.url": url,
            "summaries.disabled": context.summaries_disabled,
        },
    )
    async def summarize(self, title: str, url: str, text: str, context: CycleContext) -> str:
        """Return a trimmed AI summary, or "" when none is produced."""
        if not self.active or context.summaries_disabled:
            return ""

        context.ai_calls += 1
        try:
            summary = await ai_chat_completion(
                self.build_messages(title, url, text),
                purpose="summary",
                model=self.model,
                timeout=self.timeout,
                postprocess=self._clean_summary,
                client_override=self.client,
            )
        except QuotaExhaustedError as e:
            if not context.summaries_disabled:
                logger.warning(f"AI quota exhausted; skipping summaries for the rest of this cycle: {e}")
            context.disable_summaries(str(e))
            return ""
        except ContentFilterError as e:
            logger.warning(f"Summary for {url} blocked by content filter: {e}")
            return ""

        if not summary:
            logger.info(f"No summary produced for {url}")
            return ""
        context.ai_summaries += 1
        return summary

    def _clean_summary(self, raw: str) -> str:
        return CODE_FENCE_PATTERN.sub('', raw.strip()).strip()
