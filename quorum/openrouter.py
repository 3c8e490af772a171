"""OpenRouter API client for making LLM requests."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from . import config
from .telemetry import annotate_span, record_span_error, trace_span

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0
RETRYABLE_STATUS_CODES = frozenset({408, 429, 502, 503, 504})

_shared_client: httpx.AsyncClient | None = None


@dataclass(frozen=True)
class ModelError:
    """A failed model query, classified so callers can tell transient from fatal."""

    model: str
    status_code: int | None
    category: str  # billing | auth | rate_limit | transient | timeout | unknown
    message: str

    @property
    def is_transient(self) -> bool:
        return self.category in ("rate_limit", "transient", "timeout")

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "status_code": self.status_code,
            "category": self.category,
            "message": self.message,
        }


def is_model_error(result: Any) -> bool:
    """Check whether a query_model result is a ModelError."""
    return isinstance(result, ModelError)


def _classify_error(status_code: int | None) -> str:
    if status_code is None:
        return "timeout"
    if status_code == 402:
        return "billing"
    if status_code == 401:
        return "auth"
    if status_code == 429:
        return "rate_limit"
    if status_code in RETRYABLE_STATUS_CODES:
        return "transient"
    return "unknown"


def _extract_error_message(response: httpx.Response) -> str:
    """Pull a readable message out of an OpenRouter error body."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return response.text or f"HTTP {response.status_code}"


def get_shared_client() -> httpx.AsyncClient:
    """Get the process-wide httpx client, creating it on first use."""
    global _shared_client
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(timeout=120.0)
    return _shared_client


async def close_shared_client() -> None:
    """Close the shared client. Safe to call more than once."""
    global _shared_client
    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None


async def query_model(
    model: str,
    messages: list[dict[str, str]],
    timeout: float = 120.0,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> dict[str, Any] | ModelError:
    """
    Query a single model via OpenRouter API.

    Rate limits and transient gateway errors are retried with
    exponential backoff up to MAX_RETRIES attempts.

    Args:
        model: OpenRouter model identifier (e.g., "openai/gpt-4o")
        messages: List of message dicts with 'role' and 'content'
        timeout: Request timeout in seconds
        temperature: Optional sampling temperature
        max_tokens: Optional completion token budget

    Returns:
        Response dict with 'content' and 'metrics', or a ModelError
    """
    span_attributes = {
        "llm.model": model,
        "llm.message_count": len(messages),
    }

    with trace_span("llm.query_model", span_attributes) as span:
        headers = {
            "Authorization": f"Bearer {config.OPENROUTER_API_KEY}",
            "Content-Type": "application/json",
        }

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        client = get_shared_client()
        error: ModelError | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            start_time = time.time()
            try:
                response = await client.post(
                    config.OPENROUTER_API_URL,
                    headers=headers,
                    json=payload,
                    timeout=timeout,
                )
                response.raise_for_status()

                latency_ms = int((time.time() - start_time) * 1000)
                data = response.json()
                message = data['choices'][0]['message']
                usage = data.get('usage', {})

                result = {
                    'content': message.get('content'),
                    'metrics': {
                        'prompt_tokens': usage.get('prompt_tokens', 0),
                        'completion_tokens': usage.get('completion_tokens', 0),
                        'total_tokens': usage.get('total_tokens', 0),
                        'cost': usage.get('cost', 0.0),
                        'latency_ms': latency_ms,
                        'actual_model': data.get('model'),
                        'request_id': data.get('id'),
                        'provider': data.get('provider'),
                    }
                }

                annotate_span(span, {
                    "llm.prompt_tokens": usage.get('prompt_tokens', 0),
                    "llm.completion_tokens": usage.get('completion_tokens', 0),
                    "llm.total_tokens": usage.get('total_tokens', 0),
                    "llm.latency_ms": latency_ms,
                    "llm.attempts": attempt,
                })

                return result

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                error = ModelError(
                    model=model,
                    status_code=status,
                    category=_classify_error(status),
                    message=_extract_error_message(e.response),
                )
                if status not in RETRYABLE_STATUS_CODES:
                    break
            except httpx.TimeoutException as e:
                error = ModelError(
                    model=model,
                    status_code=None,
                    category="timeout",
                    message=str(e) or "Request timed out",
                )
                break
            except Exception as e:
                error = ModelError(
                    model=model,
                    status_code=None,
                    category="unknown",
                    message=str(e),
                )
                break

            if attempt < MAX_RETRIES:
                delay = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                logger.info(
                    "Retrying model %s after %s (attempt %d/%d, delay %.1fs)",
                    model, error.category, attempt, MAX_RETRIES, delay,
                )
                await asyncio.sleep(delay)

        logger.warning(
            "Error querying model %s: %s (%s)", model, error.message, error.category
        )
        record_span_error(span, RuntimeError(error.message))
        return error
