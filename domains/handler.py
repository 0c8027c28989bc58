"""
Agent Runner — executes one domain agent against the Model Layer.

Responsibility:
- Resolve the agent record for a domain
- Assemble provider input (instruction + recent turns)
- Blocking and streaming calls returning an AgentResult with attribution

Performance:
- Uses ModelSelector for connection pooling, retries, and reliability
"""

import logging
import uuid

from domains.instructions import build_messages
from domains.knowledge import version_map
from domains.registry import AgentConfig, get_agent_config, knowledge_ids
from models.selector import ChunkCallback, ModelSelector
from shared.models import AgentContext, AgentResult, GenerationResult, ModelPolicy

logger = logging.getLogger(__name__)


class AgentRunner:
    """Runs registry-configured agents through the shared ModelSelector."""

    def __init__(
        self,
        model_selector: ModelSelector,
        policy: ModelPolicy,
        history_turns: int = 8,
    ):
        self.model_selector = model_selector
        self.policy = policy
        self.history_turns = history_turns

    async def execute(self, domain: str, context: AgentContext, session_id: str | None = None) -> AgentResult:
        """Non-streaming call; used for secondary agents and grounded follow-ups."""
        config = get_agent_config(domain)
        messages = build_messages(config, context, self.history_turns)
        generation = await self.model_selector.generate(
            messages=messages,
            policy=self.policy,
            session_id=session_id or uuid.uuid4().hex,
        )
        return self._result(config, context, generation)

    async def execute_stream(
        self,
        domain: str,
        context: AgentContext,
        on_chunk: ChunkCallback | None = None,
        session_id: str | None = None,
    ) -> AgentResult:
        """Streaming call; on_chunk receives the accumulated text."""
        config = get_agent_config(domain)
        messages = build_messages(config, context, self.history_turns)
        generation = await self.model_selector.stream(
            messages=messages,
            policy=self.policy,
            on_chunk=on_chunk,
            session_id=session_id or uuid.uuid4().hex,
        )
        return self._result(config, context, generation)

    def _result(self, config: AgentConfig, context: AgentContext, generation: GenerationResult) -> AgentResult:
        language = context.preferences.language
        logger.debug("Agent %s produced %d tokens", config.domain, generation.tokens_used)
        return AgentResult(
            content=generation.content.strip(),
            domain=config.domain,
            agent_name=config.display_name(language),
            agent_icon=config.icon,
            knowledge_versions=version_map(knowledge_ids(config, context.preferences.training_mode)),
            tokens_used=generation.tokens_used,
            model=generation.model or self.policy.model_name,
        )
