"""
Model Layer — LLM Abstraction & Policy Enforcement.

Responsibility:
- Abstract provider client details (Ollama, OpenAI-compatible, Anthropic)
- Blocking and streaming chat calls with a uniform GenerationResult
- Enforce timeouts and retries
- JSON extraction helpers

This is the ONLY place where LLMs are called.
"""

import inspect
import json
import logging
import os
from typing import Any, Awaitable, Callable

import httpx

from observability.logger import Observability
from shared.models import GenerationResult, ModelPolicy

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Awaitable[None] | None]


def parse_first_json_object(text: str) -> dict[str, Any] | None:
    """Return the first well-formed JSON object embedded in text, if any."""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            return value
        index = text.find("{", index + 1)
    return None


class ModelSelector:
    """Manages LLM calls with reliability policies."""

    def __init__(self, base_url: str = "http://localhost:11434", provider: str | None = None, api_key: str | None = None):
        configured_base_url = os.getenv("MODEL_BASE_URL", "").strip()
        self.base_url = (configured_base_url or base_url).rstrip("/")
        provider_raw = (provider or os.getenv("MODEL_PROVIDER", "auto")).strip().lower()
        if provider_raw not in {"auto", "ollama", "openai_compatible", "anthropic"}:
            provider_raw = "auto"
        self.provider = self._resolve_provider(provider_raw, self.base_url)
        self.api_key = (api_key or os.getenv("MODEL_API_KEY", "")).strip()
        if not self.api_key:
            if self.provider == "anthropic":
                self.api_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
            elif self.provider == "openai_compatible":
                self.api_key = os.getenv("OPENAI_API_KEY", "").strip()

        base_headers: dict[str, str] = {}
        if self.provider == "openai_compatible" and self.api_key:
            base_headers["Authorization"] = f"Bearer {self.api_key}"
        if self.provider == "anthropic":
            base_headers["x-api-key"] = self.api_key
            base_headers["anthropic-version"] = os.getenv("ANTHROPIC_VERSION", "2023-06-01")

        # Persistent client with connection pooling
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(120.0, connect=15.0),  # default, overridden by policy
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers=base_headers,
        )

    # ─── Public API ───────────────────────────────────────────

    async def generate(
        self,
        messages: list[dict],
        policy: ModelPolicy,
        session_id: str | None = None,
    ) -> GenerationResult:
        """Blocking generation with retry/timeout policy."""
        obs = Observability(session_id)
        self._require_credentials()
        attempt = 0
        last_error: Exception | None = None

        while attempt < policy.max_retries:
            attempt += 1
            try:
                with obs.measure(
                    "model_call",
                    {"model": policy.model_name, "attempt": attempt, "provider": self.provider, "stream": False},
                ):
                    return await self._call_model(messages, policy)
            except Exception as e:
                last_error = e
                logger.warning("Model call failed (attempt %d/%d): %s", attempt, policy.max_retries, e)
                if attempt >= policy.max_retries:
                    obs.log_event(
                        "model_failure",
                        {"error": str(e), "policy": policy.model_dump()},
                        level="ERROR",
                    )
                    raise

        raise last_error or RuntimeError("Unknown model failure")

    async def generate_json(
        self,
        messages: list[dict],
        policy: ModelPolicy,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        result = await self.generate(messages, policy.model_copy(update={"json_mode": True}), session_id=session_id)
        return self._parse_json(result.content)

    async def stream(
        self,
        messages: list[dict],
        policy: ModelPolicy,
        on_chunk: ChunkCallback | None = None,
        session_id: str | None = None,
    ) -> GenerationResult:
        """
        Streaming generation. on_chunk receives the accumulated text after every
        increment. Retries only happen while nothing has been emitted yet.
        """
        obs = Observability(session_id)
        self._require_credentials()
        attempt = 0
        last_error: Exception | None = None

        while attempt < policy.max_retries:
            attempt += 1
            emitted = {"count": 0}

            async def forward(text: str) -> None:
                emitted["count"] += 1
                if on_chunk is None:
                    return
                outcome = on_chunk(text)
                if inspect.isawaitable(outcome):
                    await outcome

            try:
                with obs.measure(
                    "model_call",
                    {"model": policy.model_name, "attempt": attempt, "provider": self.provider, "stream": True},
                ):
                    return await self._stream_model(messages, policy, forward)
            except Exception as e:
                last_error = e
                logger.warning("Model stream failed (attempt %d/%d): %s", attempt, policy.max_retries, e)
                if emitted["count"] or attempt >= policy.max_retries:
                    obs.log_event(
                        "model_failure",
                        {"error": str(e), "policy": policy.model_dump(), "stream": True},
                        level="ERROR",
                    )
                    raise

        raise last_error or RuntimeError("Unknown model failure")

    async def close(self) -> None:
        """Close persistent connections."""
        await self._client.aclose()

    # ─── Provider dispatch ────────────────────────────────────

    def _resolve_provider(self, provider_raw: str, base_url: str) -> str:
        if provider_raw != "auto":
            return provider_raw

        lowered = (base_url or "").strip().lower()
        if "anthropic.com" in lowered:
            return "anthropic"
        if "openai.com" in lowered or lowered.endswith("/v1"):
            return "openai_compatible"
        return "ollama"

    def _require_credentials(self) -> None:
        if self.provider == "anthropic" and not self.api_key:
            raise RuntimeError(
                "ANTHROPIC_API_KEY (or MODEL_API_KEY) is required when MODEL_PROVIDER=anthropic."
            )

    def _timeout(self, policy: ModelPolicy) -> httpx.Timeout:
        return httpx.Timeout(policy.timeout_seconds, connect=policy.connect_timeout_seconds)

    async def _call_model(self, messages: list[dict], policy: ModelPolicy) -> GenerationResult:
        path, payload = self._build_request(messages, policy, stream=False)
        response = await self._client.post(path, json=payload, timeout=self._timeout(policy))
        response.raise_for_status()
        data = response.json()
        if self.provider == "anthropic":
            return self._anthropic_result(data, policy)
        if self.provider == "openai_compatible":
            return self._openai_result(data, policy)
        message = data.get("message") or {}
        tokens = int(data.get("prompt_eval_count") or 0) + int(data.get("eval_count") or 0)
        return GenerationResult(content=str(message.get("content", "")), tokens_used=tokens, model=policy.model_name)

    async def _stream_model(
        self,
        messages: list[dict],
        policy: ModelPolicy,
        forward: Callable[[str], Awaitable[None]],
    ) -> GenerationResult:
        path, payload = self._build_request(messages, policy, stream=True)
        accumulated = ""
        tokens = 0

        async with self._client.stream("POST", path, json=payload, timeout=self._timeout(policy)) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                delta, line_tokens, done = self._parse_stream_line(line)
                if line_tokens:
                    tokens = max(tokens, line_tokens) if self.provider != "anthropic" else tokens + line_tokens
                if delta:
                    accumulated += delta
                    await forward(accumulated)
                if done:
                    break

        return GenerationResult(content=accumulated, tokens_used=tokens, model=policy.model_name)

    # ─── Request building ─────────────────────────────────────

    def _build_request(self, messages: list[dict], policy: ModelPolicy, stream: bool) -> tuple[str, dict[str, Any]]:
        if self.provider == "anthropic":
            return "/v1/messages", self._anthropic_payload(messages, policy, stream)
        if self.provider == "openai_compatible":
            payload: dict[str, Any] = {
                "model": policy.model_name,
                "messages": messages,
                "temperature": policy.temperature,
                "top_p": policy.top_p,
                "max_tokens": policy.max_tokens,
                "stream": stream,
            }
            if stream:
                payload["stream_options"] = {"include_usage": True}
            if policy.json_mode:
                payload["response_format"] = {"type": "json_object"}
            return "/v1/chat/completions", payload

        payload = {
            "model": policy.model_name,
            "messages": messages,
            "stream": stream,
            "keep_alive": "10m",
            "options": {
                "temperature": policy.temperature,
                "top_p": policy.top_p,
                "num_predict": policy.max_tokens,
            },
        }
        if policy.json_mode:
            payload["format"] = "json"
        return "/api/chat", payload

    def _anthropic_payload(self, messages: list[dict], policy: ModelPolicy, stream: bool) -> dict[str, Any]:
        payload_messages: list[dict[str, str]] = []
        system_parts: list[str] = []
        for message in messages:
            role = str(message.get("role", "user")).strip().lower()
            text = str(message.get("content", "")).strip()
            if not text:
                continue
            if role == "system":
                system_parts.append(text)
                continue
            if role not in {"user", "assistant"}:
                role = "user"
            payload_messages.append({"role": role, "content": text})

        if not payload_messages:
            payload_messages = [{"role": "user", "content": "Hello"}]

        system_prompt = "\n\n".join(system_parts).strip()
        if policy.json_mode:
            json_guard = "Return ONLY a valid JSON object."
            system_prompt = f"{system_prompt}\n\n{json_guard}".strip() if system_prompt else json_guard

        payload: dict[str, Any] = {
            "model": policy.model_name,
            "messages": payload_messages,
            "temperature": policy.temperature,
            "max_tokens": policy.max_tokens,
            "stream": stream,
        }
        if system_prompt:
            payload["system"] = system_prompt
        return payload

    # ─── Response parsing ─────────────────────────────────────

    def _anthropic_result(self, data: dict[str, Any], policy: ModelPolicy) -> GenerationResult:
        text_parts: list[str] = []
        for block in data.get("content") or []:
            if not isinstance(block, dict) or str(block.get("type", "")).strip() != "text":
                continue
            text_value = str(block.get("text", "")).strip()
            if text_value:
                text_parts.append(text_value)
        if not text_parts:
            raise ValueError("Anthropic response missing text content")
        usage = data.get("usage") or {}
        tokens = int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
        return GenerationResult(content="\n".join(text_parts), tokens_used=tokens, model=str(data.get("model") or policy.model_name))

    def _openai_result(self, data: dict[str, Any], policy: ModelPolicy) -> GenerationResult:
        choices = data.get("choices") or []
        if not choices:
            raise ValueError("OpenAI-compatible response missing choices")
        message = choices[0].get("message") or {}
        usage = data.get("usage") or {}
        return GenerationResult(
            content=str(message.get("content", "")),
            tokens_used=int(usage.get("total_tokens") or 0),
            model=str(data.get("model") or policy.model_name),
        )

    def _parse_stream_line(self, line: str) -> tuple[str, int, bool]:
        """Return (text increment, token count, done) for one stream line."""
        line = (line or "").strip()
        if not line:
            return "", 0, False

        if self.provider == "ollama":
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                return "", 0, False
            delta = str((chunk.get("message") or {}).get("content", ""))
            if chunk.get("done"):
                tokens = int(chunk.get("prompt_eval_count") or 0) + int(chunk.get("eval_count") or 0)
                return delta, tokens, True
            return delta, 0, False

        if not line.startswith("data:"):
            return "", 0, False
        data = line[5:].strip()
        if data == "[DONE]":
            return "", 0, True
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            return "", 0, False

        if self.provider == "anthropic":
            event_type = chunk.get("type")
            if event_type == "content_block_delta":
                return str((chunk.get("delta") or {}).get("text", "")), 0, False
            if event_type == "message_start":
                usage = (chunk.get("message") or {}).get("usage") or {}
                return "", int(usage.get("input_tokens") or 0), False
            if event_type == "message_delta":
                return "", int((chunk.get("usage") or {}).get("output_tokens") or 0), False
            return "", 0, event_type == "message_stop"

        delta = ""
        choices = chunk.get("choices") or []
        if choices:
            delta = str((choices[0].get("delta") or {}).get("content") or "")
        usage = chunk.get("usage") or {}
        return delta, int(usage.get("total_tokens") or 0), False

    def _parse_json(self, text: str) -> dict[str, Any]:
        """Parse JSON response, handling common markdown issues."""
        clean_text = text.strip()
        if clean_text.startswith("```"):
            clean_text = clean_text.split("\n", 1)[1].rsplit("\n", 1)[0]

        try:
            parsed = json.loads(clean_text)
        except json.JSONDecodeError as e:
            embedded = parse_first_json_object(clean_text)
            if embedded is None:
                raise ValueError(f"Invalid JSON from model: {e}") from e
            return embedded
        if not isinstance(parsed, dict):
            raise ValueError("Model returned non-object JSON")
        return parsed
