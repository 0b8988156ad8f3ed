#!/usr/bin/env python3
"""
HTTP surface over the snapshot cache.

Routes:
  GET  /api/resources[?refresh=1]  current snapshot; refresh=1 runs or joins a cycle first
  POST /api/chat                   tutor chat about a cached resource
  GET  /healthz                    scheduler and snapshot status

Handlers only read the cache or ask the aggregator for a refresh; they never build
or mutate a snapshot themselves.
"""

from typing import Any, Dict, List, Optional

from aiohttp import web

from aggregator import FeedAggregator
from config import config, get_logger
from errors import RefreshError, SummarizationError
from llm_client import chat_completion
from models import EnrichedItem
from scheduler import RefreshScheduler
from summarizer import load_prompts

logger = get_logger("api")

NO_KEY_REPLY = "Add OPENAI_API_KEY to enable chat."
CHAT_TEMPERATURE = 0.2

AGGREGATOR_KEY = web.AppKey("aggregator", FeedAggregator)
SCHEDULER_KEY = web.AppKey("scheduler", RefreshScheduler)
CHAT_SETTINGS_KEY = web.AppKey("chat_settings", dict)


def build_chat_messages(system_prompt: str, message: str, resource: Optional[EnrichedItem]) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": system_prompt}]
    if resource is not None:
        context = (
            f"TITLE: {resource.title}\nURL: {resource.url}\n"
            f"SUMMARY: {resource.summary}\nTRACK: {resource.track.value}"
        )
        messages.append({"role": "system", "content": f"RESOURCE:\n{context}"})
    messages.append({"role": "user", "content": message})
    return messages


async def get_resources(request: web.Request) -> web.Response:
    aggregator = request.app[AGGREGATOR_KEY]
    if request.query.get("refresh") == "1":
        try:
            await aggregator.refresh()
        except RefreshError as e:
            logger.error(f"On-demand refresh failed: {e}")
            return web.json_response({"error": "Refresh failed", "details": str(e)}, status=500)
    return web.json_response(aggregator.cache.current().to_dict())


async def post_chat(request: web.Request) -> web.Response:
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        return web.json_response({"error": "message required"}, status=400)

    settings = request.app[CHAT_SETTINGS_KEY]
    if not settings["enabled"]:
        return web.json_response({"reply": {"role": "assistant", "content": NO_KEY_REPLY}})

    resource = request.app[AGGREGATOR_KEY].cache.current().find(body.get("resourceId"))
    messages = build_chat_messages(settings["system_prompt"], message, resource)
    try:
        reply = await chat_completion(
            messages,
            purpose="chat",
            temperature=CHAT_TEMPERATURE,
            max_tokens=config.CHAT_MAX_TOKENS,
            retries=0,
            client_override=settings["client"],
        )
    except SummarizationError as e:
        logger.warning(f"Chat request rejected by AI service: {e}")
        return web.json_response({"error": "AI service error", "details": str(e)}, status=500)
    except Exception as e:  # the client gets a JSON error instead of a bare 500
        logger.error(f"Chat proxy failed: {e}")
        return web.json_response({"error": "Chat proxy failed", "details": str(e)}, status=500)

    if reply is None:
        return web.json_response({"error": "AI service error", "details": "No reply produced"}, status=500)
    return web.json_response({"reply": {"role": "assistant", "content": reply}})


async def healthz(request: web.Request) -> web.Response:
    scheduler = request.app.get(SCHEDULER_KEY)
    if scheduler is not None:
        status = scheduler.get_schedule_status()
    else:
        snapshot = request.app[AGGREGATOR_KEY].cache.current()
        status = {"generation": snapshot.generation, "items": len(snapshot.items)}
    return web.json_response({"status": "ok", **status})


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    if request.method == "OPTIONS":
        response = web.Response()
    else:
        response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    return response


def create_app(
    aggregator: FeedAggregator,
    scheduler: Optional[RefreshScheduler] = None,
    chat_enabled: Optional[bool] = None,
    chat_client: Optional[Any] = None,
    prompts: Optional[Dict[str, str]] = None,
) -> web.Application:
    """Build the aiohttp application around an aggregator (and optionally its scheduler)."""
    app = web.Application(middlewares=[cors_middleware])
    app[AGGREGATOR_KEY] = aggregator
    if scheduler is not None:
        app[SCHEDULER_KEY] = scheduler
    app[CHAT_SETTINGS_KEY] = {
        "enabled": config.HAS_AI_CREDENTIALS if chat_enabled is None else chat_enabled,
        "client": chat_client,
        "system_prompt": (prompts or load_prompts())["chat"],
    }
    app.router.add_get("/api/resources", get_resources)
    app.router.add_post("/api/chat", post_chat)
    app.router.add_get("/healthz", healthz)
    return app
