"""
Multi-Agent Dispatcher — one conversation turn across one or more domain agents.

Responsibility:
- Resolve target domains (router, or a forced thread domain)
- Stream the primary agent, then run secondaries one at a time
- Resolve product searches and ground the primary agent with the result
- Merge outputs with per-agent attribution
- Fire-and-forget usage telemetry

Prohibitions:
- No persistence of health data
- No directive execution (actions are confirmed by the user)
- Never raises for provider failures; returns DispatchResult(status="failure")
"""

import asyncio
import inspect
import logging
import uuid

from actions.parser import extract_all, strip
from domains.handler import AgentRunner
from intent.router import IntentRouter
from lookup.product_lookup import ProductLookup
from models.selector import ChunkCallback
from observability.logger import Observability
from observability.usage import UsageRecorder, usage_rows
from orchestrator.channel import ChunkChannel
from shared.models import (
    AgentContext,
    AgentResult,
    DispatchResult,
    LookupResult,
    MultiRoutingDecision,
    RoutingDecision,
)
from shared.response_formatter import format_merged_response

logger = logging.getLogger(__name__)

_ERROR_MESSAGES = {
    "de": "Verbindungsfehler: {error}. Bitte versuche es gleich noch einmal.",
    "en": "Connection error: {error}. Please try again in a moment.",
}

_GROUNDING_NOTES = {
    "de": (
        "Produktrecherche für \"{query}\" abgeschlossen. Nutze ausschließlich diese Werte, "
        "gib KEINEN weiteren ACTION:search_product Block aus:\n{summary}"
    ),
    "en": (
        "Product search for \"{query}\" finished. Use only these values and do NOT emit "
        "another ACTION:search_product block:\n{summary}"
    ),
}


def failure_message(language: str, error: Exception) -> str:
    return _ERROR_MESSAGES.get(language, _ERROR_MESSAGES["de"]).format(error=error)


class MultiAgentDispatcher:
    """Routes a user message to agents and merges their answers."""

    def __init__(
        self,
        router: IntentRouter,
        runner: AgentRunner,
        lookup: ProductLookup | None = None,
        usage_recorder: UsageRecorder | None = None,
        multi_agent_enabled: bool = True,
        session_id: str | None = None,
    ):
        self.router = router
        self.runner = runner
        self.lookup = lookup
        self.usage_recorder = usage_recorder
        self.multi_agent_enabled = multi_agent_enabled
        self.session_id = session_id or uuid.uuid4().hex
        self._background: set[asyncio.Task] = set()

    # ─── Routing ──────────────────────────────────────────────

    def route(self, text: str, domain: str | None = None) -> MultiRoutingDecision:
        if domain is not None:
            forced = RoutingDecision(domain=domain, confidence=1.0, reasoning="Forced by active thread")
            return MultiRoutingDecision(decisions=[forced], primary=domain)
        if self.multi_agent_enabled:
            return self.router.classify_multi(text)
        decision = self.router.classify(text)
        return MultiRoutingDecision(decisions=[decision], primary=decision.domain)

    # ─── Entry points ─────────────────────────────────────────

    async def dispatch(
        self,
        text: str,
        context: AgentContext,
        on_chunk: ChunkCallback | None = None,
        domain: str | None = None,
    ) -> DispatchResult:
        obs = Observability(self.session_id)
        routing = self.route(text, domain)
        obs.log_routing(text, routing.domains, [d.confidence for d in routing.decisions])
        language = context.preferences.language

        turn_context = context.model_copy(
            update={"history": [*context.history, {"role": "user", "content": text}]}
        )

        try:
            primary = await self.runner.execute_stream(
                routing.primary, turn_context, on_chunk, session_id=self.session_id
            )
        except Exception as e:
            logger.exception("Primary agent %s failed", routing.primary)
            return DispatchResult(
                status="failure",
                content=failure_message(language, e),
                routing=routing,
                error=str(e),
            )

        primary, lookup_result = await self._ground_product_search(primary, turn_context, on_chunk)

        secondary: list[AgentResult] = []
        for secondary_domain in routing.domains[1:]:
            try:
                secondary.append(
                    await self.runner.execute(secondary_domain, turn_context, session_id=self.session_id)
                )
            except Exception:
                logger.exception("Secondary agent %s failed; excluded from answer", secondary_domain)

        content = format_merged_response(primary, secondary)
        if secondary:
            await _emit(on_chunk, content)

        results = [primary, *secondary]
        self._record_usage(results, context.preferences.user_id)

        return DispatchResult(
            status="success",
            content=content,
            routing=routing,
            primary=primary,
            secondary=secondary,
            tokens_used=sum(result.tokens_used for result in results),
            lookup=lookup_result,
        )

    def stream(self, text: str, context: AgentContext, domain: str | None = None) -> ChunkChannel:
        """
        Start a dispatch and return the channel receiving its cumulative chunks.

        The channel closes with the DispatchResult attached as `channel.result`.
        Must be called from a running event loop.
        """
        channel = ChunkChannel()

        async def produce() -> None:
            try:
                result = await self.dispatch(text, context, on_chunk=channel.send, domain=domain)
            except Exception as e:
                channel.close(error=e)
                raise
            channel.close(result=result)

        self._track(asyncio.create_task(produce()))
        return channel

    async def drain(self) -> None:
        """Wait for background work (streams, telemetry) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ─── Product search grounding ─────────────────────────────

    async def _ground_product_search(
        self,
        primary: AgentResult,
        context: AgentContext,
        on_chunk: ChunkCallback | None,
    ) -> tuple[AgentResult, LookupResult | None]:
        if self.lookup is None:
            return primary, None
        searches = [d for d in extract_all(primary.content) if d.type == "search_product"]
        if not searches:
            return primary, None

        query = str(searches[0].payload.get("query", ""))
        try:
            lookup_result = await self.lookup.resolve(query)
        except Exception:
            logger.exception("Product lookup for '%s' failed; keeping first answer", query)
            return primary, None

        language = context.preferences.language
        note = _GROUNDING_NOTES.get(language, _GROUNDING_NOTES["de"]).format(
            query=query, summary=lookup_result.summary
        )
        grounded = context.model_copy(
            update={
                "history": [*context.history, {"role": "assistant", "content": strip(primary.content)}],
                "session_notes": [*context.session_notes, note],
            }
        )
        try:
            followup = await self.runner.execute(primary.domain, grounded, session_id=self.session_id)
        except Exception:
            logger.exception("Grounded follow-up for %s failed; keeping first answer", primary.domain)
            return primary, lookup_result

        await _emit(on_chunk, followup.content)
        combined = followup.model_copy(update={"tokens_used": primary.tokens_used + followup.tokens_used})
        return combined, lookup_result

    # ─── Telemetry ────────────────────────────────────────────

    def _record_usage(self, results: list[AgentResult], user_id: str) -> None:
        if self.usage_recorder is None:
            return
        rows = usage_rows(results, user_id, self.session_id)
        self._track(asyncio.create_task(asyncio.to_thread(self.usage_recorder.record, rows)))

    def _track(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_task_failure)


async def _emit(on_chunk: ChunkCallback | None, text: str) -> None:
    if on_chunk is None:
        return
    outcome = on_chunk(text)
    if inspect.isawaitable(outcome):
        await outcome


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Background task failed: %s", error)
