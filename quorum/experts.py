"""Expert panel: independent reasoning workers that each give one opinion per round."""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable

from .models import ExpertContext, ExpertOpinion, clamp_unit
from .reasoning import ReasoningProvider
from .schemas import AIConfig, ConfigurationError, ExpertConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5


EXPERT_SYSTEM_PROMPT = """You are {name}, a member of an expert panel deliberating on a decision.

Your role: {role}
Your perspective: {perspective}

GUIDELINES:
- Argue from your perspective, but change your position when the evidence warrants it
- Be specific about tradeoffs, risks and assumptions
- Report your confidence honestly; low confidence is useful information for the panel"""


OPINION_PROMPT = """Topic: {topic}
{description_section}{objectives_section}{constraints_section}
This is Round {round_number} of at most {max_rounds}.
{previous_section}{guidance_section}
Give your position in this exact format:
OPINION: [your position in one or two paragraphs]
REASONING: [the reasoning and evidence behind it]
CONFIDENCE: [0-100, how confident you are in this position]"""


def _bullet_section(title: str, items: Iterable[str]) -> str:
    items = [i for i in items if i]
    if not items:
        return ""
    lines = "\n".join(f"- {item}" for item in items)
    return f"\n{title}:\n{lines}\n"


def format_previous_opinions(opinions: Iterable[ExpertOpinion]) -> str:
    """Format the previous round's opinions for inclusion in a prompt."""
    parts = []
    for opinion in opinions:
        parts.append(
            f"{opinion.expert_name} (confidence {opinion.confidence * 100:.0f}%):\n"
            f"{opinion.opinion}"
        )
    return "\n\n".join(parts)


def build_opinion_prompt(context: ExpertContext) -> str:
    """Build the user prompt an expert answers for one round."""
    description_section = f"\n{context.description}\n" if context.description else ""

    previous_section = ""
    if context.previous_opinions:
        previous_section = (
            "\n=== Previous Round ===\n"
            f"{format_previous_opinions(context.previous_opinions)}\n"
            "=== End Previous Round ===\n"
            "Respond to the strongest points above. Say where you agree, "
            "where you disagree and why.\n"
        )

    guidance_section = ""
    if context.moderator_guidance:
        guidance_section = f"\nModerator guidance for this round:\n{context.moderator_guidance}\n"

    return OPINION_PROMPT.format(
        topic=context.topic,
        description_section=description_section,
        objectives_section=_bullet_section("Objectives", context.objectives),
        constraints_section=_bullet_section("Constraints", context.constraints),
        round_number=context.round_number,
        max_rounds=context.max_rounds,
        previous_section=previous_section,
        guidance_section=guidance_section,
    )


# Labels may be wrapped in markdown emphasis or headings: **OPINION:**, ## REASONING:
_LABEL = r"[*_#]*\s*{label}\s*[*_]*:[*_]*"
_SECTION_PATTERN = (
    _LABEL + r"\s*(.*?)(?=\n\s*" + _LABEL.format(label="(?:OPINION|REASONING|CONFIDENCE)")
    + r"|\Z)"
)


def parse_confidence(raw: str | None) -> float:
    """Parse a confidence figure given either as 0-1 or as 0-100.

    Returns DEFAULT_CONFIDENCE when nothing numeric can be found.
    """
    if not raw:
        return DEFAULT_CONFIDENCE
    match = re.search(r"(\d+(?:\.\d+)?)", raw)
    if not match:
        return DEFAULT_CONFIDENCE
    value = float(match.group(1))
    if value > 1:
        value = value / 100
    return clamp_unit(value)


def parse_expert_response(text: str) -> tuple[str, str, float]:
    """
    Split an expert's reply into opinion, reasoning and confidence.

    Args:
        text: Raw generated text

    Returns:
        Tuple of (opinion, reasoning, confidence). A reply that ignores the
        format is kept whole as the opinion with default confidence.
    """
    sections = {}
    for label in ("OPINION", "REASONING", "CONFIDENCE"):
        match = re.search(
            _SECTION_PATTERN.format(label=label), text, re.IGNORECASE | re.DOTALL
        )
        sections[label] = match.group(1).strip() if match else None

    opinion = sections["OPINION"] or text.strip()
    reasoning = sections["REASONING"] or ""
    confidence = parse_confidence(sections["CONFIDENCE"])
    return opinion, reasoning, confidence


class Expert(ABC):
    """A panel member. Produces exactly one opinion per call."""

    def __init__(self, expert_id: str, name: str) -> None:
        self.id = expert_id
        self.name = name

    @abstractmethod
    async def generate_opinion(self, context: ExpertContext) -> ExpertOpinion:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


class LLMExpert(Expert):
    """Expert whose opinions come from a reasoning provider."""

    def __init__(self, config: ExpertConfig, provider: ReasoningProvider) -> None:
        super().__init__(config.id, config.name)
        self.config = config
        self.provider = provider

    @property
    def system_prompt(self) -> str:
        return EXPERT_SYSTEM_PROMPT.format(
            name=self.config.name,
            role=self.config.role or "domain expert",
            perspective=self.config.perspective or "independent and evidence-driven",
        )

    async def generate_opinion(self, context: ExpertContext) -> ExpertOpinion:
        result = await self.provider.generate(
            build_opinion_prompt(context),
            self.config.ai_config,
            system=self.system_prompt,
        )
        opinion, reasoning, confidence = parse_expert_response(result.text)
        logger.debug(
            "Expert %s answered round %d with confidence %.2f",
            self.id, context.round_number, confidence,
        )
        return ExpertOpinion(
            expert_id=self.id,
            expert_name=self.name,
            opinion=opinion,
            reasoning=reasoning,
            confidence=confidence,
            tokens_used=result.tokens_used,
        )


class ExpertRegistry:
    """The ordered expert panel. Iteration order is panel order.

    Ranks are 1-based panel positions held by the registry, so the same
    Expert instance can sit in several panels.
    """

    def __init__(self, experts: Iterable[Expert]) -> None:
        self._experts: list[Expert] = []
        for expert in experts:
            self.add(expert)

    @classmethod
    def from_configs(
        cls, configs: Iterable[ExpertConfig], provider: ReasoningProvider
    ) -> "ExpertRegistry":
        return cls(LLMExpert(c, provider) for c in configs)

    def add(self, expert: Expert) -> None:
        if any(e.id == expert.id for e in self._experts):
            raise ConfigurationError(f"Duplicate expert id: {expert.id}")
        self._experts.append(expert)

    def rank_of(self, expert_id: str) -> int:
        for position, expert in enumerate(self._experts, start=1):
            if expert.id == expert_id:
                return position
        raise KeyError(expert_id)

    def get(self, expert_id: str) -> Expert | None:
        for expert in self._experts:
            if expert.id == expert_id:
                return expert
        return None

    def get_all(self) -> list[Expert]:
        return list(self._experts)

    def size(self) -> int:
        return len(self._experts)

    def __len__(self) -> int:
        return len(self._experts)

    def __iter__(self):
        return iter(list(self._experts))

    @staticmethod
    def default_configs(model: str | None = None) -> list[ExpertConfig]:
        """The default four-member panel."""
        ai_config = AIConfig(model=model) if model else None
        specs = [
            (
                "strategist",
                "Strategic Analyst",
                "Evaluates long-term positioning, market dynamics and competitive effects",
                "data-driven and focused on second-order consequences",
            ),
            (
                "critic",
                "Risk Critic",
                "Stress-tests proposals and surfaces failure modes",
                "skeptical; looks for hidden costs, risks and weak assumptions",
            ),
            (
                "optimist",
                "Opportunity Advocate",
                "Identifies upside, growth paths and ways to make ideas work",
                "constructive; looks for opportunities others dismiss",
            ),
            (
                "synthesizer",
                "Synthesizer",
                "Integrates the panel's views into a workable position",
                "pragmatic; seeks common ground without papering over disagreement",
            ),
        ]
        configs = []
        for expert_id, name, role, perspective in specs:
            kwargs = {"id": expert_id, "name": name, "role": role, "perspective": perspective}
            if ai_config is not None:
                kwargs["ai_config"] = ai_config
            configs.append(ExpertConfig(**kwargs))
        return configs
