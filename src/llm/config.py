"""
Model registry for the labelling LLM.

Model selection:
    LLM_MODEL: Model name or alias (e.g. "gemini-2.5-flash", "haiku")
    LLM_PROVIDER: Provider preference when LLM_MODEL is unset ("gemini" or "claude")
    CLAUDE_REGION: GCP region for Claude (default: europe-west1)
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from .base import LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_CLAUDE_MODEL = "claude-haiku-4-5"
DEFAULT_CLAUDE_REGION = "europe-west1"


@dataclass
class ModelInfo:
    """A selectable model."""
    model_id: str
    provider: LLMProvider
    description: str


MODEL_REGISTRY: Dict[str, ModelInfo] = {
    "gemini-2.5-flash": ModelInfo(
        model_id="gemini-2.5-flash",
        provider=LLMProvider.GEMINI,
        description="Gemini 2.5 Flash - fast, cheap labels",
    ),
    "gemini-2.5-pro": ModelInfo(
        model_id="gemini-2.5-pro",
        provider=LLMProvider.GEMINI,
        description="Gemini 2.5 Pro",
    ),
    "claude-haiku-4-5": ModelInfo(
        model_id="claude-haiku-4-5@20251001",
        provider=LLMProvider.CLAUDE,
        description="Claude Haiku 4.5 via Vertex AI",
    ),
    "claude-sonnet-4-5": ModelInfo(
        model_id="claude-sonnet-4-5@20250929",
        provider=LLMProvider.CLAUDE,
        description="Claude Sonnet 4.5 via Vertex AI",
    ),
}

MODEL_ALIASES: Dict[str, str] = {
    "gemini": "gemini-2.5-flash",
    "gemini-flash": "gemini-2.5-flash",
    "gemini-pro": "gemini-2.5-pro",
    "claude": "claude-haiku-4-5",
    "haiku": "claude-haiku-4-5",
    "sonnet": "claude-sonnet-4-5",
}


def resolve_model_name(name: str) -> str:
    return MODEL_ALIASES.get(name.lower(), name)


def get_model_info(name: str) -> Optional[ModelInfo]:
    return MODEL_REGISTRY.get(resolve_model_name(name))


def get_default_model() -> str:
    """
    Model to use when none is requested.

    Checks LLM_MODEL, then LLM_PROVIDER, then falls back to Gemini Flash.
    """
    model = os.environ.get('LLM_MODEL')
    if model:
        resolved = resolve_model_name(model)
        if resolved in MODEL_REGISTRY:
            return resolved
        logger.warning(f"Unknown model '{model}', falling back to default")

    if os.environ.get('LLM_PROVIDER', '').lower() == 'claude':
        return DEFAULT_CLAUDE_MODEL

    return DEFAULT_GEMINI_MODEL


def get_claude_region() -> str:
    return os.environ.get('CLAUDE_REGION', DEFAULT_CLAUDE_REGION)
