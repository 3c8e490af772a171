"""Reasoning provider contract shared by experts, quality monitor and moderator."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .openrouter import ModelError, is_model_error, query_model
from .schemas import AIConfig, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReasoningResult:
    """Generated text plus token accounting for one provider call."""

    text: str
    tokens_used: int = 0
    model: str = ""


class ProviderError(RuntimeError):
    """A reasoning provider failed to produce a response."""

    def __init__(
        self,
        message: str,
        model: str = "",
        category: str = "unknown",
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.model = model
        self.category = category
        self.transient = transient

    @classmethod
    def from_model_error(cls, error: ModelError) -> "ProviderError":
        return cls(
            f"Model {error.model} failed ({error.category}): {error.message}",
            model=error.model,
            category=error.category,
            transient=error.is_transient,
        )


class ReasoningProvider(ABC):
    """Turns a prompt into generated text.

    Implementations own their timeout and retry policy. The deliberation
    engine treats each call as a single blocking request.
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        config: AIConfig,
        system: str | None = None,
    ) -> ReasoningResult:
        """Generate text for a prompt.

        Raises:
            ProviderError: if no response could be produced.
        """
        ...


class OpenRouterProvider(ReasoningProvider):
    """Reasoning provider backed by the OpenRouter chat completions API."""

    def __init__(self, timeout: float = 120.0) -> None:
        self.timeout = timeout

    async def generate(
        self,
        prompt: str,
        config: AIConfig,
        system: str | None = None,
    ) -> ReasoningResult:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await query_model(
            config.model,
            messages,
            timeout=self.timeout,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
        if is_model_error(response):
            raise ProviderError.from_model_error(response)

        metrics = response.get("metrics", {})
        return ReasoningResult(
            text=response.get("content") or "",
            tokens_used=metrics.get("total_tokens", 0) or 0,
            model=metrics.get("actual_model") or config.model,
        )


def create_provider(name: str) -> ReasoningProvider:
    """Look up a provider implementation by the name used in AIConfig."""
    if name == "openrouter":
        return OpenRouterProvider()
    raise ConfigurationError(f"Unknown reasoning provider: {name}")
