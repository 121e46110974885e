# dealerbot/core/dealer/handoff.py
"""
Lead capture and handoff to a human seller.

Lead capture is at-most-once per conversation: the ``lead_captured``
flag is checked and set here, before the channel is called, and is
never cleared.
"""
from __future__ import annotations

import logging
from typing import Optional

from dealerbot.core.dealer.lead import build_lead_message
from dealerbot.core.dealer.texts import get_text
from dealerbot.core.engine.domain import (
    ConversationState,
    FLAG_HANDOFF_REQUESTED,
    FLAG_LEAD_CAPTURED,
    MutationKind,
    NodeId,
    StateMutation,
    Vehicle,
)
from dealerbot.core.engine.graph import NodeContext, NodeResult
from dealerbot.infra.logging_config import mask_identity
from dealerbot.infra.metrics import AppMetrics

logger = logging.getLogger(__name__)


async def capture_lead(
    state: ConversationState,
    ctx: NodeContext,
    vehicle: Optional[Vehicle],
    *,
    reason: str = "interest",
    intent: Optional[str] = None,
) -> Optional[StateMutation]:
    """
    Deliver one lead for this conversation.

    Returns the ``lead_captured`` mutation, or ``None`` when a lead was
    already captured (the channel is not called again).
    """
    if state.metadata.has_flag(FLAG_LEAD_CAPTURED):
        return None

    text = await build_lead_message(
        state,
        vehicle,
        ctx.router,
        dealership=ctx.dealership_name,
        timezone=ctx.lead_timezone,
        reason=reason,
    )

    # Flag first: a failing or slow channel must not allow a second delivery
    state.metadata.set_flag(FLAG_LEAD_CAPTURED)

    delivered = False
    try:
        delivered = bool(await ctx.lead_channel.deliver(state.identity, text))
    except Exception as e:
        logger.error(
            f"Lead channel raised: {type(e).__name__}: {e}",
            extra={"identity": mask_identity(state.identity), "conversation_id": state.conversation_id},
        )
    if not delivered:
        AppMetrics.collaborator_error("lead_channel")
        logger.warning(
            "Lead not delivered",
            extra={"identity": mask_identity(state.identity), "conversation_id": state.conversation_id},
        )

    AppMetrics.lead_captured()
    logger.info(
        f"Lead captured (reason={reason}, delivered={delivered})",
        extra={"identity": mask_identity(state.identity), "conversation_id": state.conversation_id},
    )
    return StateMutation(
        MutationKind.LEAD_CAPTURED,
        {
            "vehicle_id": vehicle.id if vehicle else None,
            "reason": reason,
            "intent": intent,
            "delivered": delivered,
        },
    )


async def request_handoff(
    state: ConversationState,
    ctx: NodeContext,
    *,
    reason: str = "customer_request",
    vehicle: Optional[Vehicle] = None,
) -> NodeResult:
    """Notify the seller (once) and move to the terminal handoff node."""
    mutations: list[StateMutation] = []
    lead = await capture_lead(state, ctx, vehicle, reason="handoff")
    if lead is not None:
        mutations.append(lead)
    state.metadata.set_flag(FLAG_HANDOFF_REQUESTED)
    mutations.append(StateMutation(MutationKind.HANDOFF, {"reason": reason}))
    AppMetrics.handoff(reason)
    return NodeResult(
        response=get_text("handoff_requested", state.language),
        next_node=NodeId.HANDOFF,
        mutations=mutations,
        error=lead is not None and not lead.detail.get("delivered", False),
    )


async def handoff_node(state: ConversationState, message: Optional[str], ctx: NodeContext) -> NodeResult:
    """Terminal node: a seller has been called, keep the customer informed."""
    return NodeResult(
        response=get_text("handoff_waiting", state.language),
        next_node=NodeId.HANDOFF,
    )
