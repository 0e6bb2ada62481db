"""
Conversation activation state machine.

    dormant -> active -> {paused, deactivated_permanently}
    paused  -> active            (paused_until expired, or no deadline)
    deactivated_permanently      terminal

A conversation with no state row behaves like ``dormant``. Dormant rows are
never written: a conversation either stays stateless or becomes active.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from ..constants import (
    SKIP_AGENT_INACTIVE,
    SKIP_AGENT_PAUSED,
    SKIP_CONVERSATION_PAUSED,
    SKIP_DEACTIVATED,
    SKIP_WAITING_TRIGGER,
    STATUS_ACTIVE,
    STATUS_DEACTIVATED,
    STATUS_PAUSED,
)
from .models import AgentProfile, ConversationState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_future(value: Optional[datetime], now: datetime) -> bool:
    return value is not None and _aware(value) > now


def trigger_matches(triggers: Sequence[str], text: Optional[str]) -> bool:
    """Case-insensitive substring match of any trimmed trigger in ``text``."""
    normalized = (text or "").lower().strip()
    for trigger in triggers:
        needle = (trigger or "").lower().strip()
        if needle and needle in normalized:
            return True
    return False


@dataclass
class ActivationDecision:
    proceed: bool
    reason: Optional[str] = None
    state: Optional[ConversationState] = None
    created: bool = False
    """A new state row was written for this turn."""
    was_active: bool = False
    """The conversation was already active before this turn."""


class ActivationStateMachine:
    """
    Decides whether a turn proceeds and persists activation transitions.

    Args:
        states: ConversationStateRepository
        agents: AgentRepository (needed by resolve_effective_agent)
        clock: returns the current aware datetime
    """

    def __init__(self, states, agents=None, clock: Callable[[], datetime] = _utcnow):
        self._states = states
        self._agents = agents
        self._clock = clock

    def check_agent(self, agent: AgentProfile) -> Optional[str]:
        """Agent-level gate. Returns a skip reason, or None when the agent may answer."""
        if not agent.is_active:
            return SKIP_AGENT_INACTIVE
        if is_future(agent.paused_until, self._clock()):
            return SKIP_AGENT_PAUSED
        return None

    async def evaluate(
        self,
        agent: AgentProfile,
        conversation_id: str,
        state: Optional[ConversationState],
        message_text: Optional[str],
    ) -> ActivationDecision:
        status = state.status if state else None

        if status == STATUS_DEACTIVATED:
            return ActivationDecision(proceed=False, reason=SKIP_DEACTIVATED, state=state)

        if status == STATUS_ACTIVE:
            # Already active: trigger checks are skipped for the rest of the conversation
            return ActivationDecision(proceed=True, state=state, was_active=True)

        if status == STATUS_PAUSED:
            if is_future(state.paused_until, self._clock()):
                logger.info(f"Conversation {conversation_id} paused until {state.paused_until}")
                return ActivationDecision(
                    proceed=False, reason=SKIP_CONVERSATION_PAUSED, state=state,
                )
            logger.info(f"Conversation {conversation_id} pause expired, resuming")
            resumed = await self._states.activate(conversation_id, agent.id)
            return ActivationDecision(proceed=True, state=resumed or state)

        # No row, or a dormant one
        if agent.require_activation_trigger and agent.activation_triggers:
            if not trigger_matches(agent.activation_triggers, message_text):
                logger.info(f"Conversation {conversation_id}: no activation trigger, staying dormant")
                return ActivationDecision(proceed=False, reason=SKIP_WAITING_TRIGGER, state=state)
            logger.info(f"Conversation {conversation_id}: activation trigger found")

        if state is None:
            created = await self._states.create_active(conversation_id, agent.id)
            logger.info(f"Conversation {conversation_id} activated (new state)")
            return ActivationDecision(proceed=True, state=created, created=True)

        activated = await self._states.activate(conversation_id, agent.id)
        logger.info(f"Conversation {conversation_id} activated (was {status})")
        return ActivationDecision(proceed=True, state=activated or state)

    async def resolve_effective_agent(
        self,
        primary: AgentProfile,
        state: Optional[ConversationState],
    ) -> AgentProfile:
        """
        The agent that answers this turn.

        With an active sub-agent on the state, script fields come from the
        sub-agent and connection settings stay from the primary unless the
        sub-agent sets them. A missing or inactive sub-agent is cleared from
        the state and the primary answers.
        """
        sub_agent_id = state.current_sub_agent_id if state else None
        if not sub_agent_id or sub_agent_id == primary.id:
            return primary

        sub_agent = await self._agents.get(sub_agent_id) if self._agents else None
        if sub_agent is None or not sub_agent.is_active:
            logger.warning(
                f"Sub-agent {sub_agent_id} missing or inactive, "
                f"falling back to {primary.name} for conversation {state.conversation_id}"
            )
            await self._states.set_sub_agent(state.conversation_id, None)
            state.current_sub_agent_id = None
            return primary

        logger.info(f"Sub-agent {sub_agent.name} answers for {primary.name}")
        return primary.with_sub_agent(sub_agent)
