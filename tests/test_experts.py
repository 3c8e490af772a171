"""Tests for quorum.experts: prompt building, response parsing and the registry."""

import pytest

from conftest import ScriptedExpert, ScriptedProvider
from quorum.experts import (
    ExpertRegistry,
    LLMExpert,
    build_opinion_prompt,
    parse_confidence,
    parse_expert_response,
)
from quorum.models import ExpertContext, ExpertOpinion
from quorum.schemas import AIConfig, ConfigurationError, ExpertConfig


def _context(**overrides) -> ExpertContext:
    data = {
        "topic": "Adopt Rust for the billing service?",
        "description": "",
        "objectives": (),
        "constraints": (),
        "round_number": 1,
        "max_rounds": 5,
    }
    data.update(overrides)
    return ExpertContext(**data)


class TestParseConfidence:

    @pytest.mark.parametrize("raw,expected", [
        ("80", 0.8),
        ("0.65", 0.65),
        ("75%", 0.75),
        ("[90]", 0.9),
        ("1", 1.0),
        ("250", 1.0),
    ])
    def test_scales(self, raw, expected):
        assert parse_confidence(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", [None, "", "very high"])
    def test_defaults_when_missing(self, raw):
        assert parse_confidence(raw) == 0.5


class TestParseExpertResponse:

    def test_well_formed_reply(self):
        text = "OPINION: Go ahead.\nREASONING: Memory safety matters.\nCONFIDENCE: 70"

        opinion, reasoning, confidence = parse_expert_response(text)

        assert opinion == "Go ahead."
        assert reasoning == "Memory safety matters."
        assert confidence == pytest.approx(0.7)

    def test_bold_labels(self):
        text = "**OPINION:** Run a pilot.\n**REASONING:** Low risk.\n**CONFIDENCE:** 30"

        opinion, reasoning, confidence = parse_expert_response(text)

        assert opinion == "Run a pilot."
        assert reasoning == "Low risk."
        assert confidence == pytest.approx(0.3)

    def test_heading_and_emphasis_variants(self):
        text = "## OPINION: Wait.\n__REASONING__: Team is busy.\n**CONFIDENCE**: 60%"

        opinion, reasoning, confidence = parse_expert_response(text)

        assert opinion == "Wait."
        assert reasoning == "Team is busy."
        assert confidence == pytest.approx(0.6)

    def test_multiline_sections(self):
        text = "OPINION: Line one.\nLine two.\n\nREASONING: Because.\nCONFIDENCE: 55"

        opinion, reasoning, _ = parse_expert_response(text)

        assert opinion == "Line one.\nLine two."
        assert reasoning == "Because."

    def test_unformatted_reply_kept_whole(self):
        opinion, reasoning, confidence = parse_expert_response("  I think we should wait.  ")

        assert opinion == "I think we should wait."
        assert reasoning == ""
        assert confidence == 0.5


class TestBuildOpinionPrompt:

    def test_first_round_prompt(self):
        prompt = build_opinion_prompt(_context(objectives=("reduce incidents",)))

        assert "Adopt Rust for the billing service?" in prompt
        assert "Round 1 of at most 5" in prompt
        assert "- reduce incidents" in prompt
        assert "Previous Round" not in prompt
        assert "Constraints" not in prompt

    def test_includes_previous_opinions_and_guidance(self):
        previous = (ExpertOpinion("b", "Beta", "Wait a year.", "", confidence=0.4),)

        prompt = build_opinion_prompt(
            _context(round_number=2, previous_opinions=previous, moderator_guidance="Quantify risk")
        )

        assert "Beta (confidence 40%)" in prompt
        assert "Wait a year." in prompt
        assert "Moderator guidance for this round:\nQuantify risk" in prompt


class TestLLMExpert:

    async def test_generates_opinion_from_provider(self):
        provider = ScriptedProvider(["OPINION: Yes.\nREASONING: Fast.\nCONFIDENCE: 90"], tokens_per_call=33)
        config = ExpertConfig(
            id="eng", name="Engineer", role="builds things", ai_config=AIConfig(model="x/model")
        )
        expert = LLMExpert(config, provider)

        opinion = await expert.generate_opinion(_context())

        assert opinion.expert_id == "eng"
        assert opinion.expert_name == "Engineer"
        assert opinion.opinion == "Yes."
        assert opinion.confidence == pytest.approx(0.9)
        assert opinion.rank == 0
        assert opinion.tokens_used == 33
        assert opinion.quality_score is None
        call = provider.calls[0]
        assert call["config"].model == "x/model"
        assert "builds things" in call["system"]


class TestExpertRegistry:

    def test_ranks_follow_insertion_order(self):
        registry = ExpertRegistry([ScriptedExpert("a"), ScriptedExpert("b")])

        assert [registry.rank_of(e.id) for e in registry] == [1, 2]
        assert registry.size() == 2
        assert len(registry) == 2

    def test_shared_expert_keeps_rank_per_registry(self):
        shared = ScriptedExpert("s")
        first = ExpertRegistry([shared, ScriptedExpert("x")])
        second = ExpertRegistry([ScriptedExpert("y"), ScriptedExpert("z"), shared])

        assert first.rank_of("s") == 1
        assert second.rank_of("s") == 3
        assert not hasattr(shared, "rank")

    def test_rank_of_unknown_expert(self):
        with pytest.raises(KeyError):
            ExpertRegistry([ScriptedExpert("a")]).rank_of("missing")

    def test_get(self):
        registry = ExpertRegistry([ScriptedExpert("a")])

        assert registry.get("a").id == "a"
        assert registry.get("missing") is None

    def test_duplicate_ids_rejected(self):
        registry = ExpertRegistry([ScriptedExpert("a")])
        with pytest.raises(ConfigurationError):
            registry.add(ScriptedExpert("a"))

    def test_get_all_returns_copy(self):
        registry = ExpertRegistry([ScriptedExpert("a")])
        registry.get_all().clear()

        assert registry.size() == 1

    def test_from_configs(self):
        configs = [ExpertConfig(id="a", name="A"), ExpertConfig(id="b", name="B")]

        registry = ExpertRegistry.from_configs(configs, ScriptedProvider())

        assert all(isinstance(e, LLMExpert) for e in registry)
        assert [e.id for e in registry] == ["a", "b"]

    def test_default_configs(self):
        configs = ExpertRegistry.default_configs(model="custom/model")

        assert [c.id for c in configs] == ["strategist", "critic", "optimist", "synthesizer"]
        assert all(c.ai_config.model == "custom/model" for c in configs)
