# dealerbot/core/dealer/lead.py
"""
Seller-facing lead message.

The text goes to the lead channel (Telegram group, seller WhatsApp), never
back to the customer, so it carries the contact link built from the
identity.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from dealerbot.core.dealer.formatter import format_km, format_price
from dealerbot.core.engine.domain import ConversationState, CustomerProfile, Vehicle
from dealerbot.core.errors import LLMProvidersFailedError
from dealerbot.core.llm.providers import ChatOptions

logger = logging.getLogger(__name__)

_SUMMARY_PROMPT = (
    "Você resume conversas de clientes de uma concessionária para o vendedor. "
    "Escreva no máximo 2 frases em português com o que o cliente procura. "
    "Não inclua telefone, documentos ou dados pessoais."
)

# last messages sent to the summary model
_SUMMARY_WINDOW = 12

# handoffs forced by the conversation graph rather than asked for
CEILING_REASONS = ("error_ceiling", "loop_ceiling")


def whatsapp_link(identity: str) -> str:
    digits = re.sub(r"\D", "", identity or "")
    return f"wa.me/{digits}" if digits else "-"


def profile_sentence(profile: Optional[CustomerProfile]) -> str:
    """Fallback summary built from the profile alone."""
    if profile is None:
        return "Cliente ainda não completou o questionário."
    parts = []
    if profile.vehicle_type and profile.vehicle_type != "qualquer":
        parts.append(f"um {profile.vehicle_type}")
    else:
        parts.append("um veículo")
    if profile.usage_pattern:
        parts.append(f"para uso {profile.usage_pattern}")
    sentence = "Cliente busca " + " ".join(parts)
    if profile.budget:
        sentence += f", com orçamento de até {format_price(profile.budget)}"
    return sentence + "."


def _preferences(profile: Optional[CustomerProfile]) -> list[str]:
    if profile is None:
        return []
    lines = []
    if profile.budget:
        lines.append(f"• Orçamento: {format_price(profile.budget)}")
    if profile.usage_pattern:
        lines.append(f"• Uso: {profile.usage_pattern}")
    if profile.vehicle_type:
        lines.append(f"• Tipo: {profile.vehicle_type}")
    if profile.family_size:
        lines.append(f"• Pessoas: {profile.family_size}")
    if profile.transmission:
        lines.append(f"• Câmbio: {profile.transmission}")
    if profile.brand_preference:
        lines.append(f"• Marca: {profile.brand_preference}")
    if profile.priorities:
        lines.append(f"• Prioridades: {', '.join(profile.priorities)}")
    if profile.deal_breakers:
        lines.append(f"• Evitar: {', '.join(profile.deal_breakers)}")
    return lines


async def summarize_conversation(state: ConversationState, router) -> str:
    """Short summary from the model, or a profile sentence when none answers."""
    transcript = "\n".join(
        f"{m.role}: {m.content}" for m in state.messages[-_SUMMARY_WINDOW:]
    )
    if router is None or not transcript:
        return profile_sentence(state.profile)
    try:
        summary = await router.chat_completion(
            [
                {"role": "system", "content": _SUMMARY_PROMPT},
                {"role": "user", "content": transcript},
            ],
            ChatOptions(temperature=0.3, max_tokens=150),
            offline_fallback=False,
        )
    except LLMProvidersFailedError:
        return profile_sentence(state.profile)
    return summary.strip() or profile_sentence(state.profile)


async def build_lead_message(
    state: ConversationState,
    vehicle: Optional[Vehicle],
    router,
    *,
    dealership: str,
    timezone: str = "America/Sao_Paulo",
    reason: str = "interest",
) -> str:
    profile = state.profile
    name = (profile.customer_name if profile else None) or state.quiz.answers.get("customer_name") or "Não informado"
    now = datetime.now(ZoneInfo(timezone))

    lines = [
        f"🔥 *NOVO LEAD - {dealership}*",
        "",
        f"👤 *Cliente:* {name}",
        f"📱 *Contato:* {whatsapp_link(state.identity)}",
    ]
    if reason == "handoff":
        lines.append("🙋 *Pediu para falar com um vendedor*")
    elif reason in CEILING_REASONS:
        lines.append("⚠️ *Transferido automaticamente: o atendimento automático não conseguiu continuar*")
    if vehicle is not None:
        lines += [
            "",
            f"🚗 *Veículo de interesse:* {vehicle.title} {vehicle.year}",
            f"💰 {format_price(vehicle.price)}",
            f"🛣️ {format_km(vehicle.mileage)}",
        ]
        if vehicle.url:
            lines.append(f"🔗 {vehicle.url}")

    prefs = _preferences(profile)
    if prefs:
        lines += ["", "📋 *Preferências:*", *prefs]

    summary = await summarize_conversation(state, router)
    lines += [
        "",
        f"💬 *Resumo:* {summary}",
        "",
        f"🕐 {now.strftime('%d/%m/%Y %H:%M')}",
    ]
    return "\n".join(lines)
