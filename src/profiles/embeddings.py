"""
Text embedding generation using Vertex AI.

Profiles and search queries go through the same model and dimensionality so
that behaviour vectors and profile vectors live in one space.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
from google.api_core.exceptions import InternalServerError, ResourceExhausted, ServiceUnavailable

from src.config import EmbeddingConfig, get_gcp_config
from src.errors import ErrorKind

logger = logging.getLogger(__name__)

RETRIABLE_ERRORS = (ResourceExhausted, InternalServerError, ServiceUnavailable)


@dataclass
class EmbeddingResult:
    """Embedding vector, or the reason there is none."""
    vector: Optional[np.ndarray] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.vector is not None


class EmbeddingGenerator:
    """
    Converts text into a fixed-length vector.

    Never raises into a batch and never returns a zero vector: failures come
    back as an EmbeddingResult with an error kind so callers can skip the item.

    Args:
        config: Embedding settings (model, dimensionality, retry policy)
        model: Pre-built model exposing get_embeddings(); created lazily if None
        project_id: GCP project ID (uses GCP_PROJECT env var if None)
        region: GCP region (uses GCP_REGION env var if None)
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        model=None,
        project_id: Optional[str] = None,
        region: Optional[str] = None,
        sleep=time.sleep
    ):
        default_project, default_region = get_gcp_config()
        self.config = config or EmbeddingConfig.from_env()
        self.project_id = project_id or default_project
        self.region = region or default_region
        self._model = model
        self._sleep = sleep

    def _get_model(self):
        if self._model is None:
            import vertexai
            from vertexai.language_models import TextEmbeddingModel

            logger.info(f"Initializing Vertex AI in project={self.project_id}, region={self.region}")
            vertexai.init(project=self.project_id, location=self.region)

            logger.info(f"Loading {self.config.model_name} model...")
            self._model = TextEmbeddingModel.from_pretrained(self.config.model_name)
        return self._model

    def generate(self, text: Optional[str]) -> EmbeddingResult:
        """
        Embed a single text.

        Args:
            text: Input text; truncated to the service's maximum input length

        Returns:
            EmbeddingResult with a vector of config.dimensions floats, or an error kind
        """
        if not text or len(text.strip()) < self.config.min_input_chars:
            return EmbeddingResult(error=ErrorKind.DATA_INSUFFICIENCY, message="Text too short to embed")

        text = text[:self.config.max_input_chars]
        backoff = self.config.initial_backoff

        for attempt in range(self.config.max_retries):
            try:
                embeddings = self._get_model().get_embeddings(
                    [text], output_dimensionality=self.config.dimensions
                )
                vector = np.asarray(embeddings[0].values, dtype=np.float64)
                break

            except RETRIABLE_ERRORS as e:
                if attempt < self.config.max_retries - 1:
                    logger.warning(
                        f"Embedding service busy (attempt {attempt + 1}/{self.config.max_retries}), "
                        f"retrying after {backoff}s: {e}"
                    )
                    self._sleep(backoff)
                    backoff = min(backoff * 2, self.config.max_backoff)
                    continue
                logger.error(f"Embedding failed after {self.config.max_retries} attempts: {e}")
                return EmbeddingResult(error=ErrorKind.EXTERNAL_SERVICE_FAILURE, message=str(e))

            except Exception as e:
                logger.error(f"Unexpected error generating embedding: {e}")
                return EmbeddingResult(error=ErrorKind.EXTERNAL_SERVICE_FAILURE, message=str(e))

        if vector.shape != (self.config.dimensions,) or not np.all(np.isfinite(vector)):
            logger.error(f"Embedding service returned malformed vector of shape {vector.shape}")
            return EmbeddingResult(error=ErrorKind.MALFORMED_VECTOR, message="Malformed vector from service")

        logger.debug(f"Generated embedding with {vector.size} dimensions")
        return EmbeddingResult(vector=vector)
