"""Configuration for Quorum deliberations."""

import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# OpenRouter API key
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")

# OpenRouter API endpoint
OPENROUTER_API_URL = os.getenv(
    "OPENROUTER_API_URL", "https://openrouter.ai/api/v1/chat/completions"
)

# Base data directory - configurable via environment
DATA_BASE_DIR = os.getenv("QUORUM_DATA_DIR", "data")

# User config file path
USER_CONFIG_FILE = os.path.join(DATA_BASE_DIR, "user_config.json")

# Default models per role
DEFAULT_EXPERT_MODEL = os.getenv("QUORUM_EXPERT_MODEL", "anthropic/claude-sonnet-4.5")
DEFAULT_QUALITY_MODEL = os.getenv("QUORUM_QUALITY_MODEL", "anthropic/claude-haiku-4.5")
DEFAULT_MODERATOR_MODEL = os.getenv("QUORUM_MODERATOR_MODEL", "anthropic/claude-sonnet-4.5")

# Round loop defaults
DEFAULT_MAX_ROUNDS = int(os.getenv("QUORUM_MAX_ROUNDS", "5"))
DEFAULT_CONSENSUS_THRESHOLD = float(os.getenv("QUORUM_CONSENSUS_THRESHOLD", "70"))
MIN_ROUNDS = 1
MAX_ROUNDS = 20

# Quality monitor defaults
DEFAULT_MIN_CONFIDENCE_THRESHOLD = 0.5
DEFAULT_COHERENCE_THRESHOLD = 0.6
DEFAULT_RELEVANCE_THRESHOLD = 0.7

# Meta-moderator defaults
DEFAULT_INTERVENTION_THRESHOLD = 0.7
DEFAULT_SUMMARY_STYLE = "detailed"


def load_user_config() -> dict[str, Any]:
    """Read the panel overrides saved in USER_CONFIG_FILE.

    A missing or unreadable file means "no overrides" and yields ``{}``.
    """
    config_path = Path(USER_CONFIG_FILE)
    if not config_path.is_file():
        return {}
    try:
        return json.loads(config_path.read_text())
    except (OSError, json.JSONDecodeError):
        logger.warning("Ignoring unreadable user config at %s", config_path)
        return {}


def save_user_config(config: dict[str, Any]) -> None:
    config_path = Path(USER_CONFIG_FILE)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config, indent=2))


def get_expert_panel() -> list[dict[str, Any]] | None:
    """Expert configs saved by the user, or None for the built-in panel."""
    return load_user_config().get("experts")


def get_moderator_model() -> str:
    return load_user_config().get("moderator_model", DEFAULT_MODERATOR_MODEL)


def get_quality_model() -> str:
    return load_user_config().get("quality_model", DEFAULT_QUALITY_MODEL)


def update_panel_config(
    experts: list[dict[str, Any]] | None = None,
    moderator_model: str | None = None,
    quality_model: str | None = None,
) -> dict[str, Any]:
    """Persist panel overrides. Arguments left as None keep their saved value.

    Returns:
        The full saved override dict.
    """
    changes = {
        "experts": experts,
        "moderator_model": moderator_model,
        "quality_model": quality_model,
    }
    config = load_user_config()
    config.update({key: value for key, value in changes.items() if value is not None})
    save_user_config(config)
    return config


def reload_config() -> dict[str, Any]:
    """Re-read .env so a rotated OpenRouter key or URL takes effect.

    Returns:
        A status dict describing the effective credentials and panel.
    """
    global OPENROUTER_API_KEY, OPENROUTER_API_URL

    load_dotenv(override=True)
    OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
    OPENROUTER_API_URL = os.getenv("OPENROUTER_API_URL", OPENROUTER_API_URL)
    logger.info("Reloaded configuration; OpenRouter key present: %s", bool(OPENROUTER_API_KEY))

    return {
        "status": "reloaded",
        "openrouter_configured": bool(OPENROUTER_API_KEY),
        "moderator_model": get_moderator_model(),
        "quality_model": get_quality_model(),
        "custom_panel": get_expert_panel() is not None,
    }
