# dealerbot/core/dealer/__init__.py
"""
Dealership assistant nodes wired into a ``ConversationGraph``.
"""
from dealerbot.core.dealer.discovery import discovery_node
from dealerbot.core.dealer.greeting import greeting_node
from dealerbot.core.dealer.handoff import handoff_node
from dealerbot.core.dealer.recommendation import follow_up_node, recommendation_node
from dealerbot.core.dealer.search import search_node
from dealerbot.core.dealer.texts import get_text
from dealerbot.core.engine.domain import NodeId
from dealerbot.core.engine.graph import ConversationGraph

NODE_HANDLERS = {
    NodeId.GREETING: greeting_node,
    NodeId.DISCOVERY: discovery_node,
    NodeId.SEARCH: search_node,
    NodeId.RECOMMENDATION: recommendation_node,
    NodeId.FOLLOW_UP: follow_up_node,
    NodeId.HANDOFF: handoff_node,
}


def build_dealer_graph(*, max_error_count: int = 3, max_loop_count: int = 5) -> ConversationGraph:
    return ConversationGraph(
        NODE_HANDLERS,
        max_error_count=max_error_count,
        max_loop_count=max_loop_count,
        ceiling_text=lambda lang: get_text("handoff_ceiling", lang),
    )


__all__ = ["NODE_HANDLERS", "build_dealer_graph"]
