"""
Turn pipeline.

One inbound batch for one conversation goes through:

    agent gates -> idempotency -> activation -> effective agent
    -> media URL recovery + audio transcription -> history, memory, tools
    -> LLM invocation -> command execution (+ hand-off continuation)
    -> memory extraction/merge -> state, log -> response payload

Skips come back as TurnSkip. Hard failures raise ChatPilotError subclasses
after an ``response_error`` row is written to the interaction log.
"""

import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..background import BackgroundTasks
from ..cache.idempotency import IdempotencyGuard
from ..constants import MSG_AUDIO, MSG_TEXT, MULTIMODAL_TYPES, SKIP_DUPLICATE, SKIP_NO_AGENT
from ..errors import ChatPilotError, RequestValidationError
from ..protocols import LLMClientProtocol, TranscriberProtocol, UrlSignerProtocol
from .activation import ActivationStateMachine
from .commands import CommandContext, CommandExecutor, ExecutionReport
from .config import EngineConfig
from .context import (
    ContextExtractor,
    ContextStore,
    ConversationContext,
    format_context,
    merge_context,
    record_actions,
)
from .handoff import HandoffContinuator
from .invocation import AudioTranscriber, InvocationRequest, InvocationResult, LLMInvoker
from .models import AgentProfile, InboundMessage, TurnRequest, TurnResponse, TurnSkip
from .prompts import build_system_prompt, render_history
from .tools import CatalogLoader, ToolSchemaBuilder

if TYPE_CHECKING:
    from ..db import Repositories

logger = logging.getLogger(__name__)

ACTION_RESPONSE_GENERATED = "response_generated"
ACTION_RESPONSE_ERROR = "response_error"


def should_generate_audio(agent: AgentProfile, inbound_has_audio: bool) -> bool:
    """Audio reply when enabled, and either always or mirroring an audio inbound."""
    if not agent.audio_enabled:
        return False
    if agent.audio_always_respond_audio:
        return True
    return bool(agent.audio_respond_with_audio) and inbound_has_audio


class TurnEngine:
    """
    Processes one inbound batch end to end.

    Args:
        repos: repository bundle (chatpilot.db.Repositories or a fake with the same attributes)
        llm_client: main chat client (LiteLLMClient)
        guard: duplicate-batch protection
        config: turn tunables
        transcriber: audio-to-text (MediaAnalyzer); None disables transcription
        signer: signs agent media URLs; None sends stored URLs as-is
        background: fire-and-forget task tracker
        invoker: override of the default strategy list
    """

    def __init__(
        self,
        repos: "Repositories",
        llm_client: LLMClientProtocol,
        guard: IdempotencyGuard,
        config: Optional[EngineConfig] = None,
        transcriber: Optional[TranscriberProtocol] = None,
        signer: Optional[UrlSignerProtocol] = None,
        background: Optional[BackgroundTasks] = None,
        invoker: Optional[LLMInvoker] = None,
        extraction_client: Optional[LLMClientProtocol] = None,
    ):
        self.repos = repos
        self.config = config or EngineConfig()
        self.guard = guard
        self.background = background or BackgroundTasks()

        self.activation = ActivationStateMachine(repos.states, repos.agents)
        self.contexts = ContextStore(repos.states)
        self.catalogs = CatalogLoader(repos)
        self.tool_builder = ToolSchemaBuilder()
        self.invoker = invoker or LLMInvoker(llm_client, self.config)
        self.audio = AudioTranscriber(transcriber)
        self.executor = CommandExecutor(repos, signer=signer, background=self.background)
        self.handoff = HandoffContinuator(llm_client, max_tokens=self.config.handoff_max_tokens)
        self.extractor = ContextExtractor(
            extraction_client or llm_client,
            temperature=self.config.extraction_temperature,
            max_tokens=self.config.extraction_max_tokens,
        )

    async def process(self, request: TurnRequest) -> Union[TurnResponse, TurnSkip]:
        if not request.connection_id or not request.conversation_id:
            raise RequestValidationError("connectionId and conversationId required")

        started = time.monotonic()
        conversation_id = request.conversation_id
        logger.info(
            f"Turn for conversation {conversation_id}: {len(request.messages)} message(s), "
            f"latest type={request.latest.type if request.latest else None}"
        )

        primary = await self.repos.agents.get_for_connection(request.connection_id)
        if primary is None:
            return TurnSkip(SKIP_NO_AGENT)
        gate = self.activation.check_agent(primary)
        if gate:
            return TurnSkip(gate)

        claim = await self.guard.begin_processing(conversation_id, request.messages)
        if claim.already_in_flight:
            return TurnSkip(SKIP_DUPLICATE)

        state = await self.repos.states.get(conversation_id)
        decision = await self.activation.evaluate(primary, conversation_id, state, request.text)
        if not decision.proceed:
            logger.info(f"Skipping conversation {conversation_id}: {decision.reason}")
            return TurnSkip(decision.reason)
        state = decision.state

        agent = await self.activation.resolve_effective_agent(primary, state)
        conversation = await self.repos.conversations.get(conversation_id) or {}
        company_id = agent.company_id or str(conversation.get("company_id") or "")

        messages = await self._recover_media_urls(conversation_id, request.messages)
        messages = await self.audio.transcribe_batch(messages, company_id)
        current_text = "\n".join(m.content.strip() for m in messages if m.content and m.content.strip())

        try:
            return await self._respond(
                request=request,
                agent=agent,
                company_id=company_id,
                conversation=conversation,
                state=state,
                messages=messages,
                current_text=current_text,
                was_active=decision.was_active,
                started=started,
            )
        except ChatPilotError as e:
            await self._log_error(agent, conversation_id, current_text, e, request)
            raise

    async def _respond(
        self,
        request: TurnRequest,
        agent: AgentProfile,
        company_id: str,
        conversation: Dict[str, Any],
        state,
        messages: List[InboundMessage],
        current_text: str,
        was_active: bool,
        started: float,
    ) -> TurnResponse:
        conversation_id = request.conversation_id
        latest = messages[-1] if messages else None

        rows = await self.repos.messages.recent(conversation_id, self.config.history_limit)
        history = render_history(rows)
        context = await self.contexts.load(conversation_id, state)
        catalog = await self.catalogs.load(company_id, request.connection_id, agent.id)
        tools = self.tool_builder.build(catalog)

        system_prompt = build_system_prompt(
            agent,
            contact_name=request.contact_name,
            contact_phone=request.contact_phone,
            context_block=format_context(context),
            directive_guide=self.tool_builder.directive_guide(tools, catalog),
        )
        temperature = agent.temperature if agent.temperature is not None else self.config.default_temperature
        invocation = InvocationRequest(
            system_prompt=system_prompt,
            history=history,
            current_message=current_text,
            tools=tools,
            temperature=temperature,
            max_tokens=self.config.max_output_tokens,
            message_type=latest.type if latest else MSG_TEXT,
            media_url=latest.media_url if latest else None,
            file_name=latest.file_name if latest else None,
            caption=(latest.content or "").strip() if latest else "",
        )
        result = await self.invoker.invoke(invocation)

        report = await self.executor.execute(
            result.tool_calls,
            result.content,
            CommandContext(
                company_id=company_id,
                connection_id=request.connection_id,
                conversation_id=conversation_id,
                agent=agent,
                catalog=catalog,
                contact_id=str(conversation["contact_id"]) if conversation.get("contact_id") else None,
                contact_name=request.contact_name,
            ),
        )
        reply_text = report.text

        responding_agent = agent
        if report.handoff_agent is not None:
            responding_agent = self._primary_with(agent, report.handoff_agent)
            continuation = await self.handoff.continue_with(
                report.handoff_agent, context, request.contact_name, current_text,
            )
            if continuation:
                reply_text = continuation

        await self._update_context(conversation_id, context, current_text, reply_text, report)

        messages_processed = (state.messages_processed if state else 0) + 1
        await self.repos.states.record_response(conversation_id, messages_processed)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        await self._log_success(
            agent, conversation_id, current_text, reply_text, result, report, request,
            was_active, elapsed_ms,
        )

        cfg = self.config
        return TurnResponse(
            response=reply_text,
            agent_id=responding_agent.id,
            agent_name=responding_agent.name,
            delay_seconds=responding_agent.delay_seconds or 0,
            voice_name=responding_agent.voice_name,
            should_generate_audio=should_generate_audio(responding_agent, request.has_audio),
            speech_speed=responding_agent.speech_speed or cfg.default_speech_speed,
            audio_temperature=responding_agent.audio_temperature or cfg.default_audio_temperature,
            language_code=responding_agent.language_code or cfg.default_language_code,
            medias_to_send=report.media,
            executed_commands=report.executed_names,
            model=result.model,
        )

    @staticmethod
    def _primary_with(current: AgentProfile, target: AgentProfile) -> AgentProfile:
        """Delivery profile after a hand-off: the target's script, the current connection settings."""
        return current.with_sub_agent(target) if target.id != current.id else current

    async def _recover_media_urls(
        self, conversation_id: str, messages: List[InboundMessage],
    ) -> List[InboundMessage]:
        """Fill a missing media URL from the newest stored inbound message of the same type."""
        result = []
        for message in messages:
            if message.type in MULTIMODAL_TYPES + (MSG_AUDIO,) and not message.media_url:
                try:
                    url = await self.repos.messages.latest_media_url(conversation_id, message.type)
                except Exception as e:
                    logger.warning(f"Media URL lookup failed for {conversation_id}: {e}")
                    url = None
                if url:
                    logger.info(f"Recovered {message.type} URL from stored message")
                    message = replace(message, media_url=url)
            result.append(message)
        return result

    async def _update_context(
        self,
        conversation_id: str,
        context: ConversationContext,
        user_message: str,
        reply_text: str,
        report: ExecutionReport,
    ) -> None:
        updated = context
        if self.config.context_extraction_enabled and reply_text:
            extracted = await self.extractor.extract(user_message, reply_text, context)
            if extracted is not None:
                updated = merge_context(updated, extracted)
        updated = record_actions(updated, report.actions)
        if updated is context:
            return
        try:
            await self.contexts.save(conversation_id, updated)
        except Exception as e:
            logger.error(f"Failed to save context for {conversation_id}: {e}", exc_info=True)

    async def _log_success(
        self,
        agent: AgentProfile,
        conversation_id: str,
        input_text: str,
        output_text: str,
        result: InvocationResult,
        report: ExecutionReport,
        request: TurnRequest,
        was_active: bool,
        elapsed_ms: int,
    ) -> None:
        latest = request.latest
        try:
            await self.repos.agent_logs.log(
                agent_id=agent.id,
                conversation_id=conversation_id,
                action_type=ACTION_RESPONSE_GENERATED,
                input_text=input_text,
                output_text=output_text,
                tokens_used=result.usage.total_tokens if result.usage else 0,
                processing_time_ms=elapsed_ms,
                metadata={
                    "model": result.model,
                    "strategy": result.strategy,
                    "temperature": result.temperature,
                    "contactName": request.contact_name,
                    "wasAlreadyActive": was_active,
                    "messageType": latest.type if latest else MSG_TEXT,
                    "hasMedia": result.multimodal,
                    "wasTranscribed": request.has_audio,
                    "executedCommands": report.executed_names,
                    "failedCommands": report.failed,
                    "handoffAgentId": report.handoff_agent.id if report.handoff_agent else None,
                },
            )
        except Exception as e:
            logger.error(f"Failed to write interaction log: {e}")

    async def _log_error(
        self,
        agent: AgentProfile,
        conversation_id: str,
        input_text: str,
        error: Exception,
        request: TurnRequest,
    ) -> None:
        latest = request.latest
        try:
            await self.repos.agent_logs.log(
                agent_id=agent.id,
                conversation_id=conversation_id,
                action_type=ACTION_RESPONSE_ERROR,
                input_text=input_text,
                error_message=str(error),
                metadata={
                    "errorType": type(error).__name__,
                    "messageType": latest.type if latest else MSG_TEXT,
                    "attempts": getattr(error, "attempts", None),
                },
            )
        except Exception as e:
            logger.error(f"Failed to write error log: {e}")
