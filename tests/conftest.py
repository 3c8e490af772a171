"""Shared test fixtures and configuration.

Sets environment variables before any quorum modules are imported,
preventing import errors from missing API keys, and provides scripted
stand-ins for the reasoning provider, experts and moderator.
"""

import asyncio
import os
from collections.abc import Callable, Sequence

# Set required env vars BEFORE any quorum imports happen.
# pytest loads conftest.py before test modules, so this runs first.
os.environ.setdefault("OPENROUTER_API_KEY", "test-key-not-real")
os.environ.setdefault("QUORUM_DATA_DIR", os.path.join(os.path.dirname(__file__), ".data"))

import pytest  # noqa: E402

from quorum.experts import Expert  # noqa: E402
from quorum.models import ExpertContext, ExpertOpinion  # noqa: E402
from quorum.moderator import DisabledMetaModerator  # noqa: E402
from quorum.reasoning import ReasoningProvider, ReasoningResult  # noqa: E402
from quorum.schemas import AIConfig, DeliberationConfig, ExpertConfig  # noqa: E402


class ScriptedProvider(ReasoningProvider):
    """Provider that replays canned responses and records every call.

    ``responses`` is either a list consumed in order (the last entry repeats)
    or a callable of ``(prompt, config, system)``. An exception instance in
    place of a response is raised instead.
    """

    def __init__(self, responses: Sequence | Callable = ("",), tokens_per_call: int = 10):
        self.responses = responses
        self.tokens_per_call = tokens_per_call
        self.calls: list[dict] = []

    async def generate(self, prompt, config: AIConfig, system=None) -> ReasoningResult:
        self.calls.append({"prompt": prompt, "config": config, "system": system})
        if callable(self.responses):
            response = self.responses(prompt, config, system)
        else:
            index = min(len(self.calls) - 1, len(self.responses) - 1)
            response = self.responses[index]
        if isinstance(response, BaseException):
            raise response
        return ReasoningResult(text=response, tokens_used=self.tokens_per_call, model=config.model)


class ScriptedExpert(Expert):
    """Expert that returns a fixed confidence per round and records its contexts."""

    def __init__(
        self,
        expert_id: str,
        confidences: Sequence[float] = (0.8,),
        opinion: str | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
        tokens_used: int = 5,
    ):
        super().__init__(expert_id, expert_id.title())
        self.confidences = list(confidences)
        self.opinion = opinion or f"{expert_id} position"
        self.delay = delay
        self.error = error
        self.tokens_used = tokens_used
        self.contexts: list[ExpertContext] = []

    async def generate_opinion(self, context: ExpertContext) -> ExpertOpinion:
        self.contexts.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        index = min(context.round_number - 1, len(self.confidences) - 1)
        return ExpertOpinion(
            expert_id=self.id,
            expert_name=self.name,
            opinion=f"{self.opinion} (round {context.round_number})",
            reasoning="because",
            confidence=self.confidences[index],
            tokens_used=self.tokens_used,
        )


class FixedScoreModerator(DisabledMetaModerator):
    """Moderator whose consensus score for round N is ``scores[N - 1]``."""

    def __init__(self, scores: Sequence[float], guidance: str = ""):
        super().__init__()
        self.scores = list(scores)
        self.guidance = guidance
        self.guidance_requests: list[int] = []
        self._round = 0

    async def generate_guidance(self, round_number, previous_rounds, topic):
        self.guidance_requests.append(round_number)
        return self.guidance

    async def calculate_consensus(self, opinions, topic):
        self._round += 1
        index = min(self._round - 1, len(self.scores) - 1)
        return self.scores[index], f"scripted consensus {self._round}"


def make_config(**overrides) -> DeliberationConfig:
    """Build a small valid DeliberationConfig."""
    data = {
        "id": "delib-1",
        "topic": "Should we adopt a four-day work week?",
        "description": "Mid-sized software company",
        "experts": (
            ExpertConfig(id="a", name="Alpha"),
            ExpertConfig(id="b", name="Beta"),
        ),
    }
    data.update(overrides)
    return DeliberationConfig.create(**data)


@pytest.fixture
def config() -> DeliberationConfig:
    return make_config()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()
