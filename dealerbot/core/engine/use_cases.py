# dealerbot/core/engine/use_cases.py
import asyncio
import logging
from contextlib import asynccontextmanager

from dealerbot.core.dealer.texts import get_text
from dealerbot.core.engine.commands import (
    CommandKind,
    PendingConfirmations,
    detect_command,
    parse_confirmation,
)
from dealerbot.core.engine.domain import (
    ConversationState,
    ConversationStatus,
    GraphState,
    HandleResult,
    MutationKind,
    NodeId,
    QuizState,
    StateMutation,
    utcnow,
)
from dealerbot.core.engine.graph import ConversationGraph, NodeContext, NodeResult, force_handoff
from dealerbot.core.engine.ports import ConversationStore, LeadChannel, PrivacyService, SearchProvider
from dealerbot.core.guardrails import GuardrailsService
from dealerbot.infra.logging_config import LogContext
from dealerbot.infra.metrics import AppMetrics

logger = logging.getLogger(__name__)


def reset_flow(state: ConversationState) -> None:
    """Explicit reset: quiz, profile, recommendations and graph go back to start.

    Messages and flags are kept; flags are write-once for the conversation.
    """
    state.quiz = QuizState()
    state.profile = None
    state.recommendations = []
    state.graph = GraphState()


class ConversationEngine:
    """
    Application service / use-case layer.
    Workflow: guardrails(input) -> global commands -> load state ->
    node dispatch -> guardrails(output) -> persistence.

    ``handle`` never raises: every failure ends in a pre-authored reply.
    Calls for the same identity are serialized; different identities
    never wait on each other.
    """

    def __init__(
        self,
        *,
        store: ConversationStore,
        guardrails: GuardrailsService,
        router,
        search: SearchProvider,
        lead_channel: LeadChannel,
        privacy: PrivacyService | None = None,
        extractor=None,
        graph: ConversationGraph | None = None,
        confirmations: PendingConfirmations | None = None,
        language: str = "pt",
        dealership_name: str = "Renatinhu's Cars",
        search_timeout: float = 10.0,
        search_limit: int = 5,
        interest_threshold: float = 0.7,
        lead_timezone: str = "America/Sao_Paulo",
        max_error_count: int = 3,
        max_loop_count: int = 5,
    ) -> None:
        if graph is None:
            from dealerbot.core.dealer import build_dealer_graph
            graph = build_dealer_graph(max_error_count=max_error_count, max_loop_count=max_loop_count)
        if extractor is None:
            from dealerbot.core.extraction import PreferenceExtractor
            extractor = PreferenceExtractor(router)

        self.store = store
        self.guardrails = guardrails
        self.router = router
        self.search = search
        self.lead_channel = lead_channel
        self.privacy = privacy
        self.extractor = extractor
        self.graph = graph
        self.confirmations = confirmations or PendingConfirmations()
        self.language = language
        self.dealership_name = dealership_name
        self.search_timeout = search_timeout
        self.search_limit = search_limit
        self.interest_threshold = interest_threshold
        self.lead_timezone = lead_timezone

        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @classmethod
    def from_settings(cls, settings, **collaborators) -> "ConversationEngine":
        return cls(
            language=settings.language,
            dealership_name=settings.dealership_name,
            search_timeout=settings.search_timeout_seconds,
            search_limit=settings.search_limit,
            interest_threshold=settings.interest_confidence_threshold,
            lead_timezone=settings.lead_timezone,
            max_error_count=settings.max_error_count,
            max_loop_count=settings.max_loop_count,
            **collaborators,
        )

    # ------------------------------------------------------------------
    # Per-identity serialization
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _serialized(self, identity: str):
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        self._lock_users[identity] = self._lock_users.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[identity] -= 1
            if self._lock_users[identity] == 0:
                del self._lock_users[identity]
                self._locks.pop(identity, None)

    def active_locks(self) -> int:
        return len(self._locks)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle(self, identity: str, message: str) -> HandleResult:
        AppMetrics.message_received()
        log = LogContext(logger, identity=identity)
        async with self._serialized(identity):
            try:
                return await self._handle(identity, message, log)
            except Exception as e:
                log.error(f"Unhandled error in conversation turn: {type(e).__name__}: {e}", exc_info=True)
                return HandleResult(response_text=get_text("service_degraded", self.language))

    async def _handle(self, identity: str, message: str, log: LogContext) -> HandleResult:
        guard = self.guardrails.validate_input(identity, message)
        if not guard.allowed:
            log.info(f"Input rejected ({guard.code})")
            return HandleResult(response_text=guard.reason or get_text("output_blocked", self.language))
        text = guard.sanitized_input or ""

        # Data rights bypass the state machine entirely
        if self.confirmations.is_pending(identity):
            return await self._resolve_deletion(identity, text, log)

        command = detect_command(text)
        if command == CommandKind.DELETE_DATA:
            return self._arm_deletion(identity, log)
        if command == CommandKind.EXPORT_DATA:
            return await self._export(identity, log)

        try:
            state = await self.store.load_state(identity)
        except Exception as e:
            log.error(f"Failed to load conversation state: {type(e).__name__}: {e}")
            AppMetrics.collaborator_error("store")
            return HandleResult(response_text=get_text("service_degraded", self.language))

        mutations: list[StateMutation] = []
        if state is None or state.is_closed:
            if command == CommandKind.EXIT:
                return HandleResult(response_text=get_text("farewell", self.language))
            state = ConversationState(identity=identity, language=self.language)
            mutations.append(StateMutation(MutationKind.CONVERSATION_STARTED, {"conversation_id": state.conversation_id}))
            log.info("Conversation started")
        log.bind(conversation_id=state.conversation_id)

        await self._record_message(state, "user", text, log)

        if command == CommandKind.EXIT:
            state.status = ConversationStatus.CLOSED
            mutations.append(StateMutation(MutationKind.CONVERSATION_CLOSED, {"reason": "exit"}))
            log.info("Conversation closed by customer")
            return await self._finish(state, get_text("farewell", state.language), mutations, log)

        prefix = ""
        if command == CommandKind.RESTART:
            reset_flow(state)
            mutations.append(StateMutation(MutationKind.CONVERSATION_RESET, {"reason": "restart"}))
            prefix = get_text("restarted", state.language)
        elif command == CommandKind.GREETING and self._is_mid_flow(state):
            reset_flow(state)
            ConversationGraph.apply(state, NodeId.GREETING, NodeResult(response="", next_node=NodeId.DISCOVERY))
            mutations.append(StateMutation(MutationKind.CONVERSATION_RESET, {"reason": "greeting"}))
            response = get_text("greeting_returning", state.language, dealership=self.dealership_name)
            return await self._finish(state, response, mutations, log)

        response, node_mutations = await self._dispatch(state, text, log)
        mutations.extend(node_mutations)
        if prefix:
            response = f"{prefix}\n\n{response}" if response else prefix
        return await self._finish(state, response, mutations, log)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _is_mid_flow(state: ConversationState) -> bool:
        return state.graph.current_node != NodeId.GREETING or state.quiz.current_step > 0

    def _context(self, state: ConversationState) -> NodeContext:
        return NodeContext(
            router=self.router,
            extractor=self.extractor,
            search=self.search,
            lead_channel=self.lead_channel,
            language=state.language,
            dealership_name=self.dealership_name,
            search_timeout=self.search_timeout,
            search_limit=self.search_limit,
            interest_threshold=self.interest_threshold,
            lead_timezone=self.lead_timezone,
        )

    async def _dispatch(self, state: ConversationState, text: str, log: LogContext):
        # A store failure while recording the message may already have crossed the ceiling
        reason = self.graph.check_ceiling(state)
        if reason:
            log.warning(f"Ceiling reached before dispatch ({reason})")
            mutations = await self._notify_seller(state, reason, log)
            mutations.append(force_handoff(state, reason))
            return get_text("handoff_ceiling", state.language), mutations

        log.bind(node=state.graph.current_node.value)
        try:
            outcome = await self.graph.run(state, text, self._context(state))
        except Exception as e:
            log.error(f"Node failed: {type(e).__name__}: {e}", exc_info=True)
            state.graph.error_count += 1
            reason = self.graph.check_ceiling(state)
            if reason:
                mutations = await self._notify_seller(state, reason, log)
                mutations.append(force_handoff(state, reason))
                return get_text("handoff_ceiling", state.language), mutations
            return get_text("service_degraded", state.language), []

        if outcome.forced_handoff:
            # HANDOFF stays the last mutation
            lead = await self._notify_seller(state, outcome.handoff_reason or "ceiling", log)
            return outcome.response_text, outcome.mutations[:-1] + lead + outcome.mutations[-1:]
        return outcome.response_text, outcome.mutations

    async def _notify_seller(self, state: ConversationState, reason: str, log: LogContext) -> list[StateMutation]:
        """Hand a ceiling-forced handoff to a seller; at most one lead per conversation."""
        from dealerbot.core.dealer.handoff import capture_lead

        try:
            lead = await capture_lead(state, self._context(state), None, reason=reason)
        except Exception as e:
            log.error(f"Seller notification failed: {type(e).__name__}: {e}", exc_info=True)
            return []
        return [lead] if lead is not None else []

    async def _record_message(self, state: ConversationState, role: str, content: str, log: LogContext) -> None:
        message = state.add_message(role, content)
        state.metadata.last_message_at = utcnow()
        try:
            await self.store.append(state.conversation_id, message)
        except Exception as e:
            log.error(f"Failed to append {role} message: {type(e).__name__}: {e}")
            AppMetrics.collaborator_error("store")
            state.graph.error_count += 1

    async def _finish(
        self,
        state: ConversationState,
        response: str,
        mutations: list[StateMutation],
        log: LogContext,
    ) -> HandleResult:
        checked = self.guardrails.validate_output(response)
        if not checked.allowed:
            log.warning(f"Response replaced by output guardrail ({checked.code})")
            response = get_text("output_blocked", state.language)

        await self._record_message(state, "assistant", response, log)
        try:
            await self.store.save_state(state.identity, state)
        except Exception as e:
            log.error(f"Failed to save conversation state: {type(e).__name__}: {e}")
            AppMetrics.collaborator_error("store")

        return HandleResult(
            response_text=response,
            mutations=mutations,
            node=state.graph.current_node,
            conversation_id=state.conversation_id,
        )

    # ------------------------------------------------------------------
    # Data rights
    # ------------------------------------------------------------------

    def _arm_deletion(self, identity: str, log: LogContext) -> HandleResult:
        if self.privacy is None:
            return HandleResult(response_text=get_text("privacy_error", self.language))
        self.confirmations.arm(identity)
        log.info("Data deletion requested, awaiting confirmation")
        return HandleResult(response_text=get_text("privacy_confirm_delete", self.language))

    async def _resolve_deletion(self, identity: str, text: str, log: LogContext) -> HandleResult:
        answer = parse_confirmation(text)
        if answer is None:
            return HandleResult(response_text=get_text("privacy_reconfirm", self.language))

        self.confirmations.clear(identity)
        if not answer:
            return HandleResult(response_text=get_text("privacy_delete_cancelled", self.language))

        try:
            deleted = await self.privacy.delete_data(identity)
        except Exception as e:
            log.error(f"Data deletion failed: {type(e).__name__}: {e}")
            AppMetrics.collaborator_error("privacy")
            return HandleResult(response_text=get_text("privacy_error", self.language))

        if not deleted:
            return HandleResult(response_text=get_text("privacy_nothing_to_delete", self.language))
        log.info("Customer data deleted")
        return HandleResult(
            response_text=get_text("privacy_deleted", self.language),
            mutations=[StateMutation(MutationKind.DATA_DELETED)],
        )

    async def _export(self, identity: str, log: LogContext) -> HandleResult:
        if self.privacy is None:
            return HandleResult(response_text=get_text("privacy_error", self.language))
        try:
            data = await self.privacy.export_data(identity)
        except Exception as e:
            log.error(f"Data export failed: {type(e).__name__}: {e}")
            AppMetrics.collaborator_error("privacy")
            return HandleResult(response_text=get_text("privacy_error", self.language))

        preferences = data.get("preferences") or {}
        summary = ", ".join(f"{k}: {v}" for k, v in preferences.items()) or "-"
        text = get_text(
            "privacy_export", self.language,
            conversations=data.get("conversations", 0),
            messages=data.get("messages", 0),
            name=data.get("name") or "-",
            preferences=summary,
        )
        return HandleResult(
            response_text=text,
            mutations=[StateMutation(MutationKind.DATA_EXPORTED, {"conversations": data.get("conversations", 0)})],
        )
