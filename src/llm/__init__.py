"""
LLM provider layer used for cluster labels.

Usage:
    from src.llm import get_client
    client = get_client()            # LLM_MODEL or gemini-2.5-flash
    client = get_client("haiku")     # explicit model or alias
    response = client.generate("Name this group...")

Environment Variables:
    LLM_MODEL: Default model (e.g. "gemini-2.5-flash", "claude-haiku")
    LLM_PROVIDER: Provider preference ("gemini" or "claude")
    GCP_PROJECT: GCP project ID
    GCP_REGION: GCP region for Gemini
    CLAUDE_REGION: GCP region for Claude (default: europe-west1)
"""

import logging
from typing import Optional

from src.config import get_gcp_config

from .base import BaseLLMClient, GenerationConfig, LLMProvider, LLMResponse
from .config import (
    MODEL_ALIASES,
    MODEL_REGISTRY,
    ModelInfo,
    get_claude_region,
    get_default_model,
    get_model_info,
    resolve_model_name,
)

logger = logging.getLogger(__name__)


def get_client(
    model: Optional[str] = None,
    project_id: Optional[str] = None,
    region: Optional[str] = None
) -> BaseLLMClient:
    """
    Create an LLM client.

    Args:
        model: Model name or alias (LLM_MODEL env var or default if None)
        project_id: GCP project ID (GCP_PROJECT env var if None)
        region: GCP region (chosen per provider if None)

    Raises:
        ValueError: If the model is unknown
    """
    model_name = resolve_model_name(model) if model else get_default_model()
    model_info = get_model_info(model_name)
    if not model_info:
        available = ", ".join(list(MODEL_REGISTRY) + list(MODEL_ALIASES))
        raise ValueError(f"Unknown model: {model_name}. Available: {available}")

    default_project, default_region = get_gcp_config()
    project_id = project_id or default_project

    if model_info.provider == LLMProvider.GEMINI:
        from .gemini import GeminiClient
        client = GeminiClient(model_info.model_id, project_id, region or default_region)
    else:
        from .claude import ClaudeClient
        client = ClaudeClient(model_info.model_id, project_id, region or get_claude_region())

    logger.info(f"Created LLM client: {client}")
    return client


__all__ = [
    "get_client",
    "BaseLLMClient",
    "LLMProvider",
    "GenerationConfig",
    "LLMResponse",
    "ModelInfo",
    "get_model_info",
    "get_default_model",
]
