# dealerbot/core/engine/graph.py
"""
Conversation graph: an explicit dispatch table ``NodeId -> handler``.

Handlers are ``async (state, message, ctx) -> NodeResult``.  They never
pick the next node implicitly; the chosen edge is part of the result, so
every transition can be asserted in isolation.

``message`` is ``None`` when a handler is entered by chaining (e.g.
discovery completes and search runs in the same turn).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from dealerbot.core.engine.domain import (
    ConversationState,
    ConversationStatus,
    FLAG_HANDOFF_REQUESTED,
    MutationKind,
    NodeId,
    StateMutation,
)
from dealerbot.infra.metrics import AppMetrics

logger = logging.getLogger(__name__)

# chained node executions per turn
MAX_CHAIN_DEPTH = 4


@dataclass
class NodeResult:
    response: str
    next_node: NodeId
    progressed: bool = True
    error: bool = False
    chain: bool = False
    mutations: list[StateMutation] = field(default_factory=list)


@dataclass
class NodeContext:
    """Collaborators and tunables handed to every node for one turn."""
    router: Any
    extractor: Any
    search: Any
    lead_channel: Any
    language: str = "pt"
    dealership_name: str = "Renatinhu's Cars"
    search_timeout: float = 10.0
    search_limit: int = 5
    interest_threshold: float = 0.7
    lead_timezone: str = "America/Sao_Paulo"


NodeHandler = Callable[[ConversationState, Optional[str], NodeContext], Awaitable[NodeResult]]


@dataclass
class GraphOutcome:
    response_text: str
    node: NodeId
    mutations: list[StateMutation] = field(default_factory=list)
    forced_handoff: bool = False
    handoff_reason: Optional[str] = None


def ceiling_reason(state: ConversationState, max_errors: int, max_loops: int) -> Optional[str]:
    if state.graph.error_count >= max_errors:
        return "error_ceiling"
    if state.graph.loop_count >= max_loops:
        return "loop_ceiling"
    return None


def force_handoff(state: ConversationState, reason: str) -> StateMutation:
    """Move *state* to the terminal handoff node and close it."""
    graph = state.graph
    if graph.current_node != NodeId.HANDOFF:
        graph.previous_node = graph.current_node
        graph.node_history.append(NodeId.HANDOFF)
        graph.current_node = NodeId.HANDOFF
    state.metadata.set_flag(FLAG_HANDOFF_REQUESTED)
    state.status = ConversationStatus.CLOSED
    AppMetrics.handoff(reason)
    return StateMutation(MutationKind.HANDOFF, {"reason": reason})


class ConversationGraph:
    def __init__(
        self,
        handlers: Dict[NodeId, NodeHandler],
        *,
        max_error_count: int = 3,
        max_loop_count: int = 5,
        ceiling_text: Callable[[str], str] | None = None,
    ):
        missing = [n for n in NodeId if n not in handlers]
        if missing:
            raise ValueError(f"No handler for nodes: {', '.join(n.value for n in missing)}")
        self._handlers = dict(handlers)
        self.max_error_count = max_error_count
        self.max_loop_count = max_loop_count
        self._ceiling_text = ceiling_text or (lambda lang: "")

    def handler_for(self, node: NodeId) -> NodeHandler:
        return self._handlers[node]

    @staticmethod
    def apply(state: ConversationState, node: NodeId, result: NodeResult) -> None:
        """Record the transition chosen by *result* on ``state.graph``."""
        graph = state.graph
        if result.error:
            graph.error_count += 1
        if result.next_node == node and not result.progressed:
            graph.loop_count += 1
        if result.next_node != graph.current_node:
            graph.previous_node = graph.current_node
        graph.node_history.append(result.next_node)
        graph.current_node = result.next_node
        if result.next_node == NodeId.HANDOFF:
            state.status = ConversationStatus.CLOSED

    def check_ceiling(self, state: ConversationState) -> Optional[str]:
        return ceiling_reason(state, self.max_error_count, self.max_loop_count)

    async def run(self, state: ConversationState, message: str, ctx: NodeContext) -> GraphOutcome:
        responses: list[str] = []
        mutations: list[StateMutation] = []
        node = state.graph.current_node
        incoming: Optional[str] = message

        for _ in range(MAX_CHAIN_DEPTH):
            handler = self._handlers[node]
            with AppMetrics.track_node_time(node.value):
                result = await handler(state, incoming, ctx)
            self.apply(state, node, result)
            if result.response:
                responses.append(result.response)
            mutations.extend(result.mutations)

            reason = self.check_ceiling(state)
            if reason and state.graph.current_node != NodeId.HANDOFF:
                logger.warning(
                    f"Conversation ceiling reached ({reason}), forcing handoff",
                    extra={"conversation_id": state.conversation_id, "node": node.value},
                )
                mutations.append(force_handoff(state, reason))
                return GraphOutcome(
                    response_text=self._ceiling_text(state.language),
                    node=NodeId.HANDOFF,
                    mutations=mutations,
                    forced_handoff=True,
                    handoff_reason=reason,
                )

            if not result.chain or result.next_node == NodeId.HANDOFF:
                break
            node = result.next_node
            incoming = None
        else:
            logger.error(f"Chain depth exceeded at node {node.value}")

        return GraphOutcome(
            response_text="\n\n".join(responses),
            node=state.graph.current_node,
            mutations=mutations,
        )
