"""LLM service for Google Gemini integration."""

import asyncio
import logging

from google import genai
from google.genai import types

from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class LLMService:
    """Service for Google Gemini LLM operations.

    The client is created on first use so the API can start without a key;
    callers get a clear error when they actually need the model.
    """

    def __init__(self, api_key: str | None = None, model: str | None = None):
        self.api_key = settings.gemini_api_key if api_key is None else api_key
        self.model = model or settings.gemini_model
        self._client: genai.Client | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("GEMINI_API_KEY is not set")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate_with_usage(
        self,
        prompt: str,
        max_tokens: int = 8192,
        temperature: float = 0.2,
        system_prompt: str | None = None,
    ) -> tuple[str, dict[str, int]]:
        """Generate text and return usage stats.

        Returns:
            Tuple of (generated_text, usage_dict) where usage_dict contains:
            - input_tokens
            - output_tokens
        """
        try:
            config = types.GenerateContentConfig(
                max_output_tokens=max_tokens,
                temperature=temperature,
                system_instruction=system_prompt,
            )

            response = await asyncio.to_thread(
                self.client.models.generate_content,
                model=self.model,
                contents=prompt,
                config=config,
            )

            usage_metadata = response.usage_metadata
            return (
                response.text or "",
                {
                    "input_tokens": (usage_metadata.prompt_token_count or 0) if usage_metadata else 0,
                    "output_tokens": (usage_metadata.candidates_token_count or 0) if usage_metadata else 0,
                },
            )
        except Exception as e:
            logger.error(f"LLM generation failed: {e}")
            raise
