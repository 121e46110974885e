# tests/test_preference_extractor.py
"""Tests for preference extraction and profile merging"""
import pytest

from conftest import FakeRouter, offline_router
from dealerbot.core.engine.domain import CustomerProfile
from dealerbot.core.errors import ExtractionError, LLMProvidersFailedError
from dealerbot.core.extraction import (
    PreferenceDelta,
    PreferenceExtractor,
    confidence_for,
    extract_with_rules,
    merge_with_profile,
)
from dealerbot.core.extraction.preference_extractor import drop_known_fields, parse_model_output


class TestRuleExtraction:
    def test_full_sentence(self):
        delta = extract_with_rules("Quero um SUV automático até 80 mil para viajar com a família de 5")
        assert delta.budget == 80000
        assert delta.body_type == "suv"
        assert delta.transmission == "automatico"
        assert delta.usage == "viagem"
        assert delta.people == 5

    @pytest.mark.parametrize("text,budget", [
        ("tenho 50 mil", 50000),
        ("uns 60k", 60000),
        ("R$ 70.000", 70000),
        ("meu orçamento é 45000", 45000),
        ("até 85 mil", 85000),
    ])
    def test_budget_forms(self, text, budget):
        assert extract_with_rules(text).budget == budget

    def test_budget_range(self):
        delta = extract_with_rules("algo entre 40 e 60 mil")
        assert delta.budget_min == 40000
        assert delta.budget_max == 60000
        assert delta.budget is None

    def test_budget_floor(self):
        delta = extract_with_rules("a partir de 50 mil")
        assert delta.budget_min == 50000

    def test_year_and_km_are_not_budget(self):
        delta = extract_with_rules("a partir de 2018, até 80 mil km")
        assert delta.min_year == 2018
        assert delta.max_km == 80000
        assert delta.budget is None
        assert delta.budget_min is None

    def test_year_up_form(self):
        assert extract_with_rules("2019 pra cima").min_year == 2019

    def test_people(self):
        assert extract_with_rules("somos 5 pessoas").people == 5
        assert extract_with_rules("para quatro pessoas").people == 4

    def test_city_and_road_is_mixed(self):
        assert extract_with_rules("uso na cidade e na estrada").usage == "misto"

    def test_priorities_brand_and_deal_breakers(self):
        delta = extract_with_rules("Quero um Honda econômico e seguro, nada de leilão")
        assert delta.brand == "honda"
        assert delta.priorities == ["economico", "seguranca"]
        assert delta.deal_breakers == ["leilao"]

    def test_nothing_found(self):
        assert extract_with_rules("olá, tudo bem?").is_empty()


class TestPreferenceDelta:
    def test_invalid_fields_dropped(self):
        delta = PreferenceDelta.from_raw({"usage": "voar", "people": -2, "bodyType": "Sedan", "budget": "abc"})
        assert delta.fields() == ["body_type"]
        assert delta.body_type == "sedan"

    def test_camel_case_aliases(self):
        delta = PreferenceDelta.from_raw({"minYear": 2019, "maxKm": 60000, "dealBreakers": "leilao"})
        assert delta.min_year == 2019
        assert delta.max_km == 60000
        assert delta.deal_breakers == ["leilao"]

    def test_unknown_keys_ignored(self):
        assert PreferenceDelta.from_raw({"color": "azul"}).is_empty()

    def test_parse_model_output(self):
        delta = parse_model_output('Claro! {"budget": 90000, "transmission": "automatic"}')
        assert delta.budget == 90000
        assert delta.transmission == "automatico"

    @pytest.mark.parametrize("content", ["sem json aqui", "{nope", "[1, 2]"])
    def test_parse_model_output_errors(self, content):
        with pytest.raises(ExtractionError):
            parse_model_output(content)


class TestConfidence:
    def test_zero_fields(self):
        assert confidence_for(0) == 0.0

    def test_single_field_reaches_threshold(self):
        assert confidence_for(1) >= 0.7

    def test_capped(self):
        assert confidence_for(10) == 0.95


class TestMergeWithProfile:
    def test_fills_empty_fields(self):
        merged = merge_with_profile(None, PreferenceDelta(budget=50000, usage="cidade", people=3))
        assert merged.budget == 50000
        assert merged.usage_pattern == "cidade"
        assert merged.family_size == 3

    def test_does_not_overwrite_concrete_values(self):
        profile = CustomerProfile(vehicle_type="sedan", budget=60000)
        merged = merge_with_profile(profile, PreferenceDelta(body_type="suv", budget=90000))
        assert merged.vehicle_type == "sedan"
        assert merged.budget == 60000

    def test_placeholder_is_replaced(self):
        profile = CustomerProfile(vehicle_type="qualquer", usage_pattern="misto")
        merged = merge_with_profile(profile, PreferenceDelta(body_type="suv", usage="viagem"))
        assert merged.vehicle_type == "suv"
        assert merged.usage_pattern == "viagem"

    def test_lists_union_preserving_order(self):
        profile = CustomerProfile(priorities=["economico", "conforto"])
        merged = merge_with_profile(profile, PreferenceDelta(priorities=["conforto", "seguranca"]))
        assert merged.priorities == ["economico", "conforto", "seguranca"]

    def test_never_clears(self):
        profile = CustomerProfile(budget=50000, priorities=["economico"])
        merged = merge_with_profile(profile, PreferenceDelta())
        assert merged.budget == 50000
        assert merged.priorities == ["economico"]

    def test_input_profile_not_mutated(self):
        profile = CustomerProfile()
        merge_with_profile(profile, PreferenceDelta(budget=50000))
        assert profile.budget is None

    def test_drop_known_fields(self):
        profile = CustomerProfile(budget=50000, vehicle_type="qualquer", priorities=["economico"])
        delta = drop_known_fields(
            PreferenceDelta(budget=70000, body_type="suv", priorities=["economico", "conforto"]), profile,
        )
        assert delta.budget is None
        assert delta.body_type == "suv"
        assert delta.priorities == ["conforto"]


class TestPreferenceExtractor:
    @pytest.mark.asyncio
    async def test_rules_when_no_provider(self):
        extractor = PreferenceExtractor(offline_router())
        result = await extractor.extract("quero um sedan até 70 mil")

        assert result.source == "rules"
        assert set(result.fields_extracted) == {"budget", "body_type"}
        assert result.extracted.budget == 70000
        assert result.confidence == confidence_for(2)

    @pytest.mark.asyncio
    async def test_model_wins_per_field(self):
        router = FakeRouter(answers=['{"budget": 75000, "people": 5}'])
        result = await PreferenceExtractor(router).extract("sedan até 70 mil")

        assert result.source == "model+rules"
        assert result.extracted.budget == 75000
        assert result.extracted.people == 5
        assert result.extracted.body_type == "sedan"
        _messages, options, overrides = router.calls[0]
        assert options.json_mode is True
        assert overrides == {"offline_fallback": False}

    @pytest.mark.asyncio
    async def test_unparseable_model_output_falls_back_to_rules(self):
        router = FakeRouter(answers=["não entendi"])
        result = await PreferenceExtractor(router).extract("5 pessoas")
        assert result.source == "rules"
        assert result.extracted.people == 5

    @pytest.mark.asyncio
    async def test_all_providers_failed(self):
        router = FakeRouter(error=LLMProvidersFailedError(["openai", "groq"]))
        result = await PreferenceExtractor(router).extract("hatch manual")
        assert result.extracted.body_type == "hatch"
        assert result.extracted.transmission == "manual"

    @pytest.mark.asyncio
    async def test_known_fields_removed(self):
        profile = CustomerProfile(budget=50000)
        result = await PreferenceExtractor(offline_router()).extract("até 60 mil, suv", profile)
        assert "budget" not in result.fields_extracted
        assert result.fields_extracted == ["body_type"]

    @pytest.mark.asyncio
    async def test_nothing_extracted(self):
        result = await PreferenceExtractor(offline_router()).extract("bom dia")
        assert result.fields_extracted == []
        assert result.confidence == 0.0
