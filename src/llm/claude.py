"""
Claude client via the Anthropic SDK with the Vertex AI backend.

Requires: pip install 'anthropic[vertex]'
"""

import logging
from typing import Optional

from .base import BaseLLMClient, GenerationConfig, LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class ClaudeClient(BaseLLMClient):
    """Claude models on Vertex AI."""

    retriable_markers = ('rate', 'overloaded', '429', '500', '503', 'timeout')

    def __init__(self, model_id: str, project_id: str, region: str, **kwargs):
        super().__init__(model_id, project_id, region, **kwargs)
        self._client = None

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.CLAUDE

    def _initialize(self) -> None:
        from anthropic import AnthropicVertex

        logger.info(f"Initializing Claude: model={self.model_id}, project={self.project_id}, region={self.region}")
        self._client = AnthropicVertex(project_id=self.project_id, region=self.region)

    def _generate_once(self, prompt: str, config: GenerationConfig, system_prompt: Optional[str]) -> LLMResponse:
        kwargs = {
            "model": self.model_id,
            "max_tokens": config.max_output_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": config.temperature,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if config.top_k:
            kwargs["top_k"] = config.top_k

        response = self._client.messages.create(**kwargs)

        text = ''.join(block.text for block in response.content or [] if hasattr(block, 'text'))
        if not text.strip():
            raise ValueError("Empty text from Claude API")

        return LLMResponse(
            text=text,
            model=self.model_id,
            provider=self.provider,
            input_tokens=response.usage.input_tokens if response.usage else None,
            output_tokens=response.usage.output_tokens if response.usage else None,
            finish_reason=response.stop_reason,
        )
