"""
OpenAI-compatible API server for FitCoach.

Implements the endpoints chat frontends need:
- GET  /v1/models
- POST /v1/chat/completions   (streaming via SSE or blocking)
- POST /v1/actions/{id}/confirm
- POST /v1/actions/{id}/reject

History travels with each request; pending actions are returned as `x_actions`
and must be confirmed explicitly before anything is persisted.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from actions.parser import display_text, extract_all, strip
from conversation.session import load_snapshot
from main import Runtime
from shared.models import Action, AgentContext, DispatchResult
from shared.response_formatter import describe_action
from shared.settings import load_settings

MODEL_ID_DEFAULT = "fitcoach"
OPENAI_API_DEBUG_TRACE = os.getenv("OPENAI_API_DEBUG_TRACE", "false").strip().lower() in (
    "1",
    "true",
    "yes",
    "on",
)
REPLACEMENT_SEPARATOR = "\n\n"


class ChatMessage(BaseModel):
    role: str
    content: str | list[dict[str, Any]] | None = None


class ChatCompletionRequest(BaseModel):
    model: str = Field(default=MODEL_ID_DEFAULT)
    messages: list[ChatMessage]
    stream: bool = False
    user: str | None = None
    x_domain: str | None = None


def _message_text(message: ChatMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        return " ".join(str(item.get("text", "")) for item in content if item.get("type") == "text").strip()
    return ""


def _split_request(messages: list[ChatMessage]) -> tuple[str, list[dict[str, str]]]:
    """Last user text plus the prior user/assistant turns."""
    turns = [
        {"role": message.role, "content": _message_text(message)}
        for message in messages
        if message.role in ("user", "assistant") and _message_text(message)
    ]
    if turns and turns[-1]["role"] == "user":
        return turns[-1]["content"], turns[:-1]
    return "", turns


def _sse_line(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _chunk_payload(
    completion_id: str,
    model: str,
    created: int,
    delta: dict[str, Any],
    finish_reason: str | None = None,
) -> dict[str, Any]:
    return {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": delta,
                "finish_reason": finish_reason,
            }
        ],
    }


def display_delta(shown: str, snapshot: str) -> str:
    """
    Increment to send after `shown` for a new cumulative snapshot.

    Snapshots normally extend the text already shown; a replacement (grounded
    follow-up) is appended after a blank line.
    """
    if not snapshot or snapshot.startswith(shown):
        return snapshot[len(shown):]
    return REPLACEMENT_SEPARATOR + snapshot


def _action_view(action: Action, language: str) -> dict[str, Any]:
    display = describe_action(action.directive, language)
    return {
        "id": action.id,
        "type": action.directive.type,
        "status": action.status,
        "error": action.error,
        "icon": display.icon,
        "title": display.title,
        "summary": display.summary,
        "payload": action.directive.payload,
    }


def _register_actions(result: DispatchResult, message_id: str) -> list[Action]:
    if result.status != "success":
        return []
    return app.state.runtime.controller.register(message_id, extract_all(result.content))


def _build_context(history: list[dict[str, str]]) -> AgentContext:
    runtime: Runtime = app.state.runtime
    prefs = runtime.settings.preferences
    return AgentContext(
        preferences=prefs,
        snapshot=load_snapshot(runtime.health_store, prefs.user_id),
        history=history[-runtime.settings.history_turns:],
        now=datetime.now(),
    )


def _debug(result: DispatchResult) -> dict[str, Any]:
    if not OPENAI_API_DEBUG_TRACE:
        return {}
    return {
        "routing": result.routing.model_dump(),
        "tokens_used": result.tokens_used,
        "lookup": result.lookup.model_dump() if result.lookup else None,
        "error": result.error,
    }


@asynccontextmanager
async def lifespan(_app: FastAPI):
    runtime = Runtime(load_settings(), session_id=f"api-{uuid.uuid4().hex[:8]}")
    _app.state.runtime = runtime
    yield
    await runtime.close()


app = FastAPI(
    title="FitCoach OpenAI API",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/v1/models")
def list_models() -> dict[str, Any]:
    return {
        "object": "list",
        "data": [
            {
                "id": MODEL_ID_DEFAULT,
                "object": "model",
                "created": int(time.time()),
                "owned_by": "fitcoach",
            }
        ],
    }


@app.post("/v1/chat/completions")
async def chat_completions(request: ChatCompletionRequest) -> Any:
    runtime: Runtime = app.state.runtime
    language = runtime.settings.preferences.language
    user_text, history = _split_request(request.messages)
    if not user_text:
        raise HTTPException(status_code=400, detail="No user message in request.")

    completion_id = f"chatcmpl-{uuid.uuid4().hex}"
    created = int(time.time())
    context = _build_context(history)

    if request.stream:
        async def event_stream():
            yield _sse_line(_chunk_payload(completion_id, request.model, created, {"role": "assistant"}))
            channel = runtime.dispatcher.stream(user_text, context, domain=request.x_domain)
            shown = ""
            async for snapshot in channel:
                display = display_text(snapshot)
                delta = display_delta(shown, display)
                if delta:
                    yield _sse_line(_chunk_payload(completion_id, request.model, created, {"content": delta}))
                shown = display

            result: DispatchResult = channel.result
            if result.status == "failure":
                yield _sse_line(
                    _chunk_payload(completion_id, request.model, created, {"content": display_delta(shown, result.content)})
                )
            actions = _register_actions(result, completion_id)
            yield _sse_line(_chunk_payload(completion_id, request.model, created, {}, finish_reason="stop"))
            yield _sse_line(
                {
                    "id": completion_id,
                    "object": "chat.completion.meta",
                    "created": created,
                    "model": request.model,
                    "x_actions": [_action_view(action, language) for action in actions],
                    "x_debug": _debug(result),
                }
            )
            yield "data: [DONE]\n\n"

        return StreamingResponse(event_stream(), media_type="text/event-stream")

    result = await runtime.dispatcher.dispatch(user_text, context, domain=request.x_domain)
    actions = _register_actions(result, completion_id)
    primary = result.primary
    return {
        "id": completion_id,
        "object": "chat.completion",
        "created": created,
        "model": request.model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": strip(result.content) if result.status == "success" else result.content,
                },
                "finish_reason": "stop" if result.status == "success" else "error",
            }
        ],
        "x_actions": [_action_view(action, language) for action in actions],
        "x_agent": primary.attribution().model_dump() if primary else None,
        "x_debug": _debug(result),
        "usage": {
            "prompt_tokens": 0,
            "completion_tokens": result.tokens_used,
            "total_tokens": result.tokens_used,
        },
        "system_fingerprint": "fitcoach-v1",
    }


def _known_action(action_id: str) -> None:
    if app.state.runtime.controller.get(action_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown action '{action_id}'")


@app.post("/v1/actions/{action_id}/confirm")
async def confirm_action(action_id: str) -> dict[str, Any]:
    _known_action(action_id)
    runtime: Runtime = app.state.runtime
    action = await runtime.controller.confirm(action_id)
    return _action_view(action, runtime.settings.preferences.language)


@app.post("/v1/actions/{action_id}/reject")
def reject_action(action_id: str) -> dict[str, Any]:
    _known_action(action_id)
    runtime: Runtime = app.state.runtime
    action = runtime.controller.reject(action_id)
    return _action_view(action, runtime.settings.preferences.language)
