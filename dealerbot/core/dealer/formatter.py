# dealerbot/core/dealer/formatter.py
"""
Vehicle cards and recommendation lists for chat channels.

Every value sits on its own line: prices, years and mileage never end
up adjacent, so the output filter never mistakes them for a personal
document number.
"""
from __future__ import annotations

from dealerbot.core.dealer.texts import get_text
from dealerbot.core.engine.domain import Recommendation

_LABELS = {
    "pt": {
        "year": "Ano", "price": "Preço", "km": "Km", "body": "Tipo",
        "fuel": "Combustível", "transmission": "Câmbio", "color": "Cor",
        "match": "Compatibilidade", "why": "Por que combina",
        "details_footer": (
            "Gostou? Diga *quero esse* para falar com um vendedor sobre ele, "
            "ou digite outro número para ver mais opções."
        ),
    },
    "en": {
        "year": "Year", "price": "Price", "km": "Mileage", "body": "Type",
        "fuel": "Fuel", "transmission": "Transmission", "color": "Color",
        "match": "Match", "why": "Why it fits",
        "details_footer": (
            "Like it? Say *I want this one* to talk to a seller about it, "
            "or type another number to see more options."
        ),
    },
}


def _labels(lang: str) -> dict:
    return _LABELS.get(lang, _LABELS["pt"])


def format_thousands(value: float | int) -> str:
    """``65000`` -> ``"65.000"`` (Brazilian grouping)."""
    return f"{int(round(value)):,}".replace(",", ".")


def format_price(value: float | int) -> str:
    return f"R$ {format_thousands(value)}"


def format_km(value: int) -> str:
    return f"{format_thousands(value)} km"


def format_card(rec: Recommendation, index: int, lang: str = "pt") -> str:
    v = rec.vehicle
    label = _labels(lang)
    lines = [
        f"*{index}. {v.title}*",
        f"📅 {label['year']}: {v.year}",
        f"💰 {label['price']}: {format_price(v.price)}",
        f"🛣️ {label['km']}: {format_km(v.mileage)}",
    ]
    if v.body_type:
        lines.append(f"🚙 {label['body']}: {v.body_type}")
    if rec.match_score:
        lines.append(f"⭐ {label['match']}: {rec.match_score}%")
    if v.url:
        lines.append(f"🔗 {v.url}")
    return "\n".join(lines)


def format_recommendations(recs: list[Recommendation], lang: str = "pt", limit: int = 5) -> str:
    shown = recs[:limit]
    count = len(shown)
    header = get_text("rec_header", lang, count=count, plural="s" if count > 1 else "")
    cards = "\n\n".join(format_card(rec, i, lang) for i, rec in enumerate(shown, start=1))
    return f"{header}\n\n{cards}\n\n{get_text('rec_footer', lang)}"


def format_vehicle_details(rec: Recommendation, index: int, lang: str = "pt") -> str:
    v = rec.vehicle
    label = _labels(lang)
    lines = [format_card(rec, index, lang)]
    extra = [
        (label["fuel"], v.fuel_type),
        (label["transmission"], v.transmission),
        (label["color"], v.color),
    ]
    for name, value in extra:
        if value:
            lines.append(f"• {name}: {value}")
    if v.description:
        lines.append("")
        lines.append(v.description)
    if rec.reasoning:
        lines.append("")
        lines.append(f"💡 {label['why']}: {rec.reasoning}")
    if rec.highlights:
        lines.extend(f"✔️ {h}" for h in rec.highlights)
    lines.append("")
    lines.append(label["details_footer"])
    return "\n".join(lines)
