# dealerbot/core/dealer/greeting.py
from __future__ import annotations

from typing import Optional

from dealerbot.core.dealer.texts import get_text
from dealerbot.core.engine.domain import ConversationState, NodeId
from dealerbot.core.engine.graph import NodeContext, NodeResult


async def greeting_node(state: ConversationState, message: Optional[str], ctx: NodeContext) -> NodeResult:
    """Introduce the assistant and start discovery at the first step."""
    return NodeResult(
        response=get_text("greeting", state.language, dealership=ctx.dealership_name),
        next_node=NodeId.DISCOVERY,
    )
