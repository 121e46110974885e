# dealerbot/infra/catalog_search.py
"""
Reference search collaborator over a static vehicle catalog.

Loads vehicles from a JSON file (a list of objects, or ``{"vehicles": [...]}``)
or from an in-memory list and filters them against ``SearchCriteria``.
Ranking is plain price closeness to the customer's budget; there is no
semantic search here.
"""
from __future__ import annotations

import json
import unicodedata
from pathlib import Path
from typing import Iterable, Optional

from dealerbot.core.engine.domain import Recommendation, SearchCriteria, Vehicle
from dealerbot.infra.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "sample_catalog.json"

_VEHICLE_FIELDS = {
    "id", "brand", "model", "year", "price", "mileage", "version", "body_type",
    "fuel_type", "transmission", "color", "url", "description",
}


def _norm(value: Optional[str]) -> str:
    if not value:
        return ""
    text = unicodedata.normalize("NFD", value.strip().lower())
    return "".join(ch for ch in text if unicodedata.category(ch) != "Mn")


def vehicle_from_dict(raw: dict) -> Vehicle:
    data = {k: v for k, v in raw.items() if k in _VEHICLE_FIELDS}
    data["id"] = str(data["id"])
    data["year"] = int(data["year"])
    data["price"] = float(data["price"])
    data["mileage"] = int(data.get("mileage") or 0)
    return Vehicle(**data)


def load_catalog(path: str | Path) -> list[Vehicle]:
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if isinstance(raw, dict):
        raw = raw.get("vehicles", [])

    vehicles = []
    for item in raw:
        try:
            vehicles.append(vehicle_from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed catalog entry {item.get('id', '?')}: {e}")
    logger.info(f"Catalog loaded: {len(vehicles)} vehicles from {path}")
    return vehicles


class CatalogSearchProvider:
    def __init__(self, vehicles: Iterable[Vehicle]):
        self._vehicles = list(vehicles)

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> "CatalogSearchProvider":
        return cls(load_catalog(path or DEFAULT_CATALOG_PATH))

    def __len__(self) -> int:
        return len(self._vehicles)

    def matches(self, vehicle: Vehicle, criteria: SearchCriteria) -> bool:
        ceiling = criteria.budget_max or criteria.budget
        if vehicle.price > ceiling:
            return False
        if criteria.body_type and _norm(vehicle.body_type) != _norm(criteria.body_type):
            return False
        if criteria.min_year and vehicle.year < criteria.min_year:
            return False
        if criteria.max_km and vehicle.mileage > criteria.max_km:
            return False
        if criteria.transmission and vehicle.transmission and _norm(vehicle.transmission) != _norm(criteria.transmission):
            return False
        if criteria.brand and _norm(vehicle.brand) != _norm(criteria.brand):
            return False
        return True

    @staticmethod
    def score(vehicle: Vehicle, criteria: SearchCriteria) -> int:
        """0-100, higher when the price sits closer to the budget."""
        budget = max(criteria.budget, 1)
        distance = abs(vehicle.price - budget) / budget
        return max(0, min(100, round(100 - distance * 100)))

    @staticmethod
    def _reasoning(vehicle: Vehicle, criteria: SearchCriteria) -> tuple[str, list[str]]:
        highlights = []
        if vehicle.price <= criteria.budget:
            highlights.append("dentro do orçamento")
        if criteria.body_type and vehicle.body_type:
            highlights.append(vehicle.body_type)
        if vehicle.mileage and vehicle.mileage <= 30_000:
            highlights.append("baixa quilometragem")
        return ", ".join(highlights), highlights

    async def search(self, criteria: SearchCriteria) -> list[Recommendation]:
        candidates = [v for v in self._vehicles if self.matches(v, criteria)]
        candidates.sort(key=lambda v: (abs(v.price - criteria.budget), -v.year))

        results = []
        for vehicle in candidates[:criteria.limit]:
            reasoning, highlights = self._reasoning(vehicle, criteria)
            results.append(Recommendation(
                vehicle=vehicle,
                match_score=self.score(vehicle, criteria),
                reasoning=reasoning,
                highlights=highlights,
            ))
        logger.debug(f"Catalog search: {len(candidates)} matches, returning {len(results)}")
        return results
