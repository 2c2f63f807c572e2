"""
LLM provider abstraction.

Cluster labelling only needs short single-turn completions, so clients expose
one generate() call with a provider-neutral GenerationConfig. Provider
clients initialize lazily and retry transient failures with exponential
backoff.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 30.0


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    GEMINI = "gemini"
    CLAUDE = "claude"


@dataclass
class GenerationConfig:
    """Model-agnostic generation settings, mapped to provider configs internally."""
    temperature: float = 0.7
    max_output_tokens: int = 256
    top_p: float = 0.95
    top_k: Optional[int] = None
    # Thinking-token budget for models that reason before answering; 0 disables
    thinking_budget: Optional[int] = None

    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMResponse:
    """Response from any provider."""
    text: str
    model: str
    provider: LLMProvider
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    finish_reason: Optional[str] = None


def is_retriable(error: Exception, markers: Iterable[str]) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in markers)


class BaseLLMClient(ABC):
    """
    Base class for provider clients.

    Args:
        model_id: Provider model identifier
        project_id: GCP project ID
        region: GCP region
        sleep: Backoff sleep function (injectable for tests)
    """

    retriable_markers = ('rate', 'quota', '429', '500', '503')

    def __init__(
        self,
        model_id: str,
        project_id: str,
        region: str,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.model_id = model_id
        self.project_id = project_id
        self.region = region
        self.sleep = sleep
        self._initialized = False

    @property
    @abstractmethod
    def provider(self) -> LLMProvider:
        pass

    @abstractmethod
    def _initialize(self) -> None:
        """Create the underlying SDK client. Called on first use."""

    @abstractmethod
    def _generate_once(self, prompt: str, config: GenerationConfig, system_prompt: Optional[str]) -> LLMResponse:
        """Single provider call; raises on failure or empty output."""

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self._initialize()
            self._initialized = True

    def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        """
        Generate text from a prompt, retrying transient errors.

        Raises:
            Exception: The provider error after retries are exhausted, or
                immediately for non-retriable errors
        """
        self._ensure_initialized()
        config = config or GenerationConfig()
        backoff = INITIAL_BACKOFF

        for attempt in range(MAX_RETRIES):
            try:
                return self._generate_once(prompt, config, system_prompt)
            except Exception as e:
                if is_retriable(e, self.retriable_markers) and attempt < MAX_RETRIES - 1:
                    logger.warning(f"Retriable error (attempt {attempt + 1}/{MAX_RETRIES}): {e}. Retrying after {backoff}s")
                    self.sleep(backoff)
                    backoff = min(backoff * 2, MAX_BACKOFF)
                else:
                    logger.error(f"{self.provider.value} generation failed after {attempt + 1} attempts: {e}")
                    raise

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model_id}, region={self.region})"
