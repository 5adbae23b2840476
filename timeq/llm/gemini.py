"""
Gemini completion provider for AI-assisted task classification.

Supports two backends:
  1. Vertex AI SDK (google-cloud-aiplatform), using GOOGLE_CLOUD_PROJECT
  2. google-generativeai, using GOOGLE_API_KEY (local development)

The model is created lazily and shared per (model, project, location).
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Protocol

from timeq.infrastructure import settings
from timeq.infrastructure.env import ensure_env_loaded
from timeq.observability.logging import get_logger

logger = get_logger(__name__)

GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.2,
    "max_output_tokens": 2048,
    "response_mime_type": "application/json",
}


class CompletionProvider(Protocol):
    """Anything that turns a prompt into raw model text."""

    def is_available(self) -> bool: ...

    async def complete(self, prompt: str) -> str: ...


class GeminiInitializationError(RuntimeError):
    """Raised when Gemini model cannot be initialized."""


@lru_cache(maxsize=4)
def get_gemini_model(model_name: str, project: str, location: str, api_key: str) -> Any:
    """
    Get or create a shared Gemini model instance.

    Tries the Vertex AI SDK first and falls back to google-generativeai when
    the Vertex SDK is not installed.

    Raises:
        GeminiInitializationError: If no backend can be initialized
    """
    try:
        import vertexai
        from vertexai.generative_models import GenerativeModel

        if not project:
            raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")

        vertexai.init(project=project, location=location)
        model = GenerativeModel(model_name)
        logger.info(
            "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
            project,
            location,
            model_name,
        )
        return model
    except ImportError:
        logger.info("Vertex AI SDK not installed, trying google-generativeai fallback")

    try:
        import google.generativeai as genai
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e

    if not api_key:
        raise GeminiInitializationError(
            "Neither vertexai nor GOOGLE_API_KEY available. "
            "Install google-cloud-aiplatform or set GOOGLE_API_KEY."
        )
    try:
        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(model_name)
    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    logger.info("Initialized Gemini model (google-generativeai): model=%s", model_name)
    return model


def clear_model_cache() -> None:
    """Clear cached model instances (tests, reconfiguration)."""
    get_gemini_model.cache_clear()


class GeminiProvider:
    def __init__(
        self,
        model_name: str | None = None,
        project: str | None = None,
        location: str | None = None,
        api_key: str | None = None,
    ) -> None:
        ensure_env_loaded()
        self.model_name = model_name or settings.gemini_model()
        self.project = project if project is not None else settings.google_cloud_project()
        self.location = location or settings.gemini_location()
        self.api_key = api_key if api_key is not None else settings.google_api_key()

    def _model(self) -> Any:
        return get_gemini_model(self.model_name, self.project, self.location, self.api_key)

    def is_available(self) -> bool:
        try:
            self._model()
        except GeminiInitializationError as exc:
            logger.info("Gemini unavailable: %s", exc)
            return False
        return True

    async def complete(self, prompt: str) -> str:
        response = await self._model().generate_content_async(
            prompt, generation_config=GENERATION_CONFIG
        )
        return response.text or ""
