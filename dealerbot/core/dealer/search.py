# dealerbot/core/dealer/search.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from dealerbot.core.dealer.handoff import request_handoff
from dealerbot.core.dealer.interest import is_handoff_request
from dealerbot.core.dealer.texts import get_text
from dealerbot.core.engine.domain import (
    ConversationState,
    CustomerProfile,
    MutationKind,
    NodeId,
    SearchCriteria,
    StateMutation,
)
from dealerbot.core.engine.graph import NodeContext, NodeResult
from dealerbot.infra.metrics import AppMetrics

logger = logging.getLogger(__name__)

BROADEN_BUDGET_FACTOR = 1.4


def criteria_from_profile(profile: CustomerProfile, limit: int = 5) -> SearchCriteria:
    budget = profile.budget or profile.budget_max or profile.budget_min or 0
    vehicle_type = profile.vehicle_type
    return SearchCriteria(
        budget=budget,
        budget_max=profile.budget_max or (int(budget * 1.2) if budget else None),
        body_type=None if vehicle_type in (None, "qualquer") else vehicle_type,
        min_year=profile.min_year,
        max_km=profile.max_km,
        usage=profile.usage_pattern,
        persons=profile.family_size,
        transmission=profile.transmission,
        brand=profile.brand_preference,
        limit=limit,
    )


def broaden_criteria(criteria: SearchCriteria) -> SearchCriteria:
    """Drop body type, year and km filters and widen the budget to +40%."""
    return replace(
        criteria,
        budget_max=int(criteria.budget * BROADEN_BUDGET_FACTOR),
        body_type=None,
        min_year=None,
        max_km=None,
        transmission=None,
        brand=None,
    )


def all_within_budget(criteria: SearchCriteria) -> SearchCriteria:
    return SearchCriteria(
        budget=criteria.budget,
        budget_max=criteria.budget_max,
        limit=criteria.limit,
    )


def build_suggestions(profile: Optional[CustomerProfile], lang: str = "pt") -> list[str]:
    """Concrete ways to broaden the search, derived from *profile*."""
    suggestions: list[str] = []
    if profile is not None:
        if profile.budget and profile.budget < 80_000:
            suggestions.append(get_text("suggest_budget", lang))
        if profile.min_year and profile.min_year > 2018:
            suggestions.append(get_text("suggest_older", lang))
        if profile.max_km and profile.max_km < 80_000:
            suggestions.append(get_text("suggest_km", lang))
        if profile.vehicle_type and profile.vehicle_type != "qualquer":
            suggestions.append(get_text("suggest_body_type", lang))
    if not suggestions:
        suggestions = [
            get_text("suggest_budget", lang),
            get_text("suggest_brands", lang),
            get_text("suggest_flex", lang),
        ]
    return suggestions


async def run_search(
    state: ConversationState,
    ctx: NodeContext,
    criteria: SearchCriteria,
    *,
    prefix: str = "",
) -> NodeResult:
    """Call the search collaborator and replace ``state.recommendations``."""
    lang = state.language
    try:
        results = await asyncio.wait_for(ctx.search.search(criteria), timeout=ctx.search_timeout)
    except Exception as e:
        logger.error(
            f"Vehicle search failed: {type(e).__name__}: {e}",
            extra={"conversation_id": state.conversation_id, "node": NodeId.SEARCH.value},
        )
        AppMetrics.collaborator_error("search")
        return NodeResult(
            response=get_text("search_error", lang),
            next_node=NodeId.SEARCH,
            progressed=False,
            error=True,
        )

    results = list(results or [])[: criteria.limit]
    state.recommendations = results
    mutation = StateMutation(
        MutationKind.RECOMMENDATIONS_REPLACED,
        {"count": len(results), "vehicle_ids": [r.vehicle.id for r in results]},
    )
    logger.info(
        f"Search returned {len(results)} vehicles",
        extra={"conversation_id": state.conversation_id, "node": NodeId.SEARCH.value},
    )

    if not results:
        suggestions = "\n".join(build_suggestions(state.profile, lang))
        empty = get_text("search_empty", lang, suggestions=suggestions)
        return NodeResult(
            response=f"{prefix}\n\n{empty}" if prefix else empty,
            next_node=NodeId.RECOMMENDATION,
            mutations=[mutation],
        )

    # The recommendation node presents the list in the same turn
    return NodeResult(
        response=prefix,
        next_node=NodeId.RECOMMENDATION,
        chain=True,
        mutations=[mutation],
    )


async def search_node(state: ConversationState, message: Optional[str], ctx: NodeContext) -> NodeResult:
    if message and is_handoff_request(message):
        return await request_handoff(state, ctx)
    if state.profile is None:
        logger.warning(
            "Search reached without a profile, back to discovery",
            extra={"conversation_id": state.conversation_id},
        )
        return NodeResult(response="", next_node=NodeId.DISCOVERY, progressed=False, chain=True)
    criteria = criteria_from_profile(state.profile, ctx.search_limit)
    return await run_search(state, ctx, criteria)
