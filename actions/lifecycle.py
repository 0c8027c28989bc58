"""
Action Lifecycle Controller.

State machine per action:

    pending ──confirm──▶ executing ──▶ executed
       │                    │
       │                    └────────▶ failed ──confirm (retry)──▶ executing
       └──reject──▶ rejected

Responsibility:
- Register validated directives as pending actions on their message
- Run exactly one persistence call per confirmation
- Mirror every transition into the owning message (terminal states drop it)

Prohibitions:
- No automatic retries
- Never raises for persistence failures; the action carries the error
"""

from __future__ import annotations

import inspect
import logging
from collections import OrderedDict
from typing import Any, Protocol

from observability.logger import Observability
from shared.models import Action, Directive

logger = logging.getLogger(__name__)

CONFIRMABLE = frozenset({"pending", "failed"})
NON_ACTIONABLE_TYPES = frozenset({"search_product"})
FINISHED_LIMIT = 200


class Executor(Protocol):
    def execute(self, directive: Directive) -> Any: ...


class ActionSink(Protocol):
    def update_action(self, action: Action) -> None: ...


class ActionLifecycleController:
    """Tracks actions by id and drives their transitions."""

    def __init__(
        self,
        executor: Executor,
        sink: ActionSink | None = None,
        observability: Observability | None = None,
        finished_limit: int = FINISHED_LIMIT,
    ):
        self.executor = executor
        self.sink = sink
        self.observability = observability or Observability()
        self.finished_limit = finished_limit
        self._actions: dict[str, Action] = {}
        # executed/rejected actions, oldest first, capped at finished_limit
        self._finished: OrderedDict[str, Action] = OrderedDict()

    def register(self, message_id: str, directives: list[Directive]) -> list[Action]:
        """Wrap directives as pending actions; search directives are not actionable."""
        actions: list[Action] = []
        for directive in directives:
            if directive.type in NON_ACTIONABLE_TYPES:
                continue
            action = Action(message_id=message_id, directive=directive)
            self._actions[action.id] = action
            actions.append(action)
        return actions

    def get(self, action_id: str) -> Action | None:
        return self._actions.get(action_id) or self._finished.get(action_id)

    def pending(self) -> list[Action]:
        return [action for action in self._actions.values() if not action.is_terminal]

    async def confirm(self, action_id: str) -> Action:
        """pending|failed → executing → executed|failed. Other states are a no-op."""
        action = self._require(action_id)
        if action.status not in CONFIRMABLE:
            logger.info("Ignoring confirm for action %s in state %s", action_id, action.status)
            return action

        # Set before the first suspension point so a repeated confirm is a no-op.
        action = self._transition(action, "executing", error=None)
        try:
            with self.observability.measure("action_execute", {"action_type": action.directive.type}):
                outcome = self.executor.execute(action.directive)
                if inspect.isawaitable(outcome):
                    await outcome
        except Exception as e:
            logger.warning("Action %s (%s) failed: %s", action.id, action.directive.type, e)
            return self._transition(self._require(action.id), "failed", error=str(e) or e.__class__.__name__)
        return self._transition(self._require(action.id), "executed", error=None)

    def reject(self, action_id: str) -> Action:
        """pending → rejected; no persistence call."""
        action = self._require(action_id)
        if action.status != "pending":
            logger.info("Ignoring reject for action %s in state %s", action_id, action.status)
            return action
        return self._transition(action, "rejected", error=None)

    def _require(self, action_id: str) -> Action:
        action = self.get(action_id)
        if action is None:
            raise KeyError(f"Unknown action '{action_id}'")
        return action

    def _transition(self, action: Action, status: str, error: str | None) -> Action:
        updated = action.model_copy(update={"status": status, "error": error})
        if updated.is_terminal:
            self._actions.pop(action.id, None)
            self._finished[action.id] = updated
            while len(self._finished) > self.finished_limit:
                self._finished.popitem(last=False)
        else:
            self._actions[action.id] = updated
        self.observability.log_action_transition(action.id, action.directive.type, action.status, status, error)
        if self.sink is not None:
            self.sink.update_action(updated)
        return updated
