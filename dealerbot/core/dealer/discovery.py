# dealerbot/core/dealer/discovery.py
"""
Discovery node: name -> budget -> usage -> body type.

Each answer goes through its strict parser first.  For every step but the
name, an answer the parser rejects (or a long free-text answer) is also
handed to the preference extractor, which may answer the current step and
fill later ones; steps that already have an answer are skipped.
``current_step`` and ``progress`` only grow until an explicit reset.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from dealerbot.core.dealer.handoff import request_handoff
from dealerbot.core.dealer.interest import is_handoff_request
from dealerbot.core.dealer.texts import get_text
from dealerbot.core.dealer.validators import (
    parse_budget,
    parse_name,
    parse_usage,
    parse_vehicle_type,
)
from dealerbot.core.engine.domain import (
    ConversationState,
    CustomerProfile,
    MutationKind,
    NodeId,
    StateMutation,
)
from dealerbot.core.engine.graph import NodeContext, NodeResult
from dealerbot.core.extraction.preference_extractor import PreferenceDelta, merge_with_profile

logger = logging.getLogger(__name__)

STEPS: tuple[str, ...] = ("customer_name", "budget", "usage", "vehicle_type")

_PARSERS: dict[str, Callable[[str], Any]] = {
    "customer_name": parse_name,
    "budget": parse_budget,
    "usage": parse_usage,
    "vehicle_type": parse_vehicle_type,
}

_ERROR_KEYS = {
    "customer_name": "err_name",
    "budget": "err_budget",
    "usage": "err_usage",
    "vehicle_type": "err_vehicle_type",
}

BUDGET_FLEXIBILITY = 20  # percent

DEFAULT_FAMILY_SIZE = 4
DEFAULT_MIN_YEAR = 2015
DEFAULT_MAX_KM = 100_000

USAGE_PRIORITIES = {
    "cidade": ["economico", "tamanho_compacto"],
    "viagem": ["conforto", "seguranca"],
    "trabalho": ["economico", "durabilidade"],
    "familia": ["espaco", "seguranca"],
}

# free-text answers with more words than this are also sent to the extractor
_FREE_TEXT_WORDS = 3


def question_for(step: int, answers: dict, lang: str, dealership: str = "") -> str:
    key = STEPS[step]
    if key == "customer_name":
        return get_text("greeting", lang, dealership=dealership)
    if key == "budget":
        return get_text("q_budget", lang, name=answers.get("customer_name", ""))
    if key == "usage":
        return get_text("q_usage", lang)
    return get_text("q_vehicle_type", lang)


def _answers_from_delta(delta: PreferenceDelta) -> dict[str, Any]:
    found: dict[str, Any] = {}
    budget = delta.budget or delta.budget_max
    if budget:
        found["budget"] = budget
    if delta.usage:
        found["usage"] = delta.usage
    if delta.body_type:
        found["vehicle_type"] = delta.body_type
    return found


def _next_open_step(answers: dict) -> Optional[int]:
    for index, key in enumerate(STEPS):
        if key not in answers:
            return index
    return None


def build_profile(answers: dict, base: Optional[CustomerProfile]) -> CustomerProfile:
    """Final profile from discovery answers layered on extracted preferences."""
    profile = base or CustomerProfile()
    budget = answers["budget"]
    profile.customer_name = answers["customer_name"]
    profile.budget = budget
    profile.budget_flexibility = BUDGET_FLEXIBILITY
    if profile.budget_min is None:
        profile.budget_min = int(budget * (100 - BUDGET_FLEXIBILITY) / 100)
    if profile.budget_max is None:
        profile.budget_max = int(budget * (100 + BUDGET_FLEXIBILITY) / 100)
    profile = merge_with_profile(
        profile,
        PreferenceDelta(usage=answers["usage"], body_type=answers["vehicle_type"]),
    )
    for priority in USAGE_PRIORITIES.get(profile.usage_pattern or "", []):
        if priority not in profile.priorities:
            profile.priorities.append(priority)
    if profile.family_size is None:
        profile.family_size = DEFAULT_FAMILY_SIZE
    if profile.min_year is None:
        profile.min_year = DEFAULT_MIN_YEAR
    if profile.max_km is None:
        profile.max_km = DEFAULT_MAX_KM
    return profile


async def _extract(state: ConversationState, message: str, ctx: NodeContext) -> Optional[PreferenceDelta]:
    if ctx.extractor is None:
        return None
    result = await ctx.extractor.extract(message, state.profile)
    if not result.fields_extracted:
        return None
    state.profile = merge_with_profile(state.profile, result.extracted)
    logger.debug(
        f"Extracted {', '.join(result.fields_extracted)} (confidence={result.confidence})",
        extra={"conversation_id": state.conversation_id, "node": NodeId.DISCOVERY.value},
    )
    return result.extracted


async def discovery_node(state: ConversationState, message: Optional[str], ctx: NodeContext) -> NodeResult:
    quiz = state.quiz
    lang = state.language

    if quiz.is_complete:
        return NodeResult(response="", next_node=NodeId.SEARCH, chain=True)

    if message is None:
        return NodeResult(
            response=question_for(quiz.current_step, quiz.answers, lang, ctx.dealership_name),
            next_node=NodeId.DISCOVERY,
            progressed=False,
        )

    key = STEPS[quiz.current_step]
    if key != "customer_name" and is_handoff_request(message):
        return await request_handoff(state, ctx)

    mutations: list[StateMutation] = []
    value = _PARSERS[key](message)

    if key != "customer_name" and (value is None or len(message.split()) > _FREE_TEXT_WORDS):
        delta = await _extract(state, message, ctx)
        if delta is not None:
            mutations.append(StateMutation(MutationKind.PROFILE_UPDATED, {"fields": delta.fields()}))
            for step_key, step_value in _answers_from_delta(delta).items():
                if step_key == key and value is None:
                    value = step_value
                elif step_key != key:
                    quiz.answers.setdefault(step_key, step_value)

    if value is None:
        return NodeResult(
            response=get_text(_ERROR_KEYS[key], lang),
            next_node=NodeId.DISCOVERY,
            progressed=False,
            mutations=mutations,
        )

    quiz.answers[key] = value
    answered = sum(1 for k in STEPS if k in quiz.answers)
    quiz.progress = max(quiz.progress, int(answered * 100 / len(STEPS)))

    next_step = _next_open_step(quiz.answers)
    if next_step is not None:
        quiz.current_step = max(quiz.current_step, next_step)
        return NodeResult(
            response=question_for(quiz.current_step, quiz.answers, lang, ctx.dealership_name),
            next_node=NodeId.DISCOVERY,
            mutations=mutations,
        )

    quiz.current_step = len(STEPS)
    quiz.is_complete = True
    state.profile = build_profile(quiz.answers, state.profile)
    mutations.append(StateMutation(MutationKind.PROFILE_UPDATED, {"complete": True}))
    logger.info(
        "Discovery complete",
        extra={"conversation_id": state.conversation_id, "node": NodeId.DISCOVERY.value},
    )
    return NodeResult(
        response=get_text(
            "discovery_done", lang,
            name=quiz.answers["customer_name"], dealership=ctx.dealership_name,
        ),
        next_node=NodeId.SEARCH,
        chain=True,
        mutations=mutations,
    )
