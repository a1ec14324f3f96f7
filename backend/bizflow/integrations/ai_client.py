"""
Text generation client used by AI decision steps.
Supports an Ollama server (/api/generate) and the Anthropic Messages API.
"""
import asyncio
from typing import Any, Dict, Optional

import httpx

from bizflow.core.config import Settings, get_settings
from bizflow.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AIClientError(Exception):
    """Custom exception for AI provider errors"""
    pass


class AIClient:
    """
    Minimal text generation client.
    A transport can be injected (httpx.MockTransport in tests).
    """

    PROVIDERS = ("none", "ollama", "anthropic")

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self.provider = self.settings.ai_provider
        self.transport = transport
        if self.provider not in self.PROVIDERS:
            raise ValueError(f"Unknown AI provider: {self.provider}")

    @property
    def enabled(self) -> bool:
        return self.provider != "none"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.ai_base_url.rstrip("/"),
            timeout=float(self.settings.ai_timeout_seconds),
            transport=self.transport,
        )

    async def generate_text(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        """
        Generate a completion for a single prompt.

        Raises:
            AIClientError: provider not configured, HTTP failure or empty response
        """
        if not self.enabled:
            raise AIClientError("AI provider not configured")

        max_tokens = max_tokens or self.settings.ai_max_tokens
        max_retries = 2
        retry_delay = 1

        async with self._client() as client:
            for attempt in range(max_retries):
                try:
                    if self.provider == "ollama":
                        text = await self._generate_ollama(client, prompt, max_tokens)
                    else:
                        text = await self._generate_anthropic(client, prompt, max_tokens)
                    break
                except httpx.TimeoutException:
                    if attempt < max_retries - 1:
                        await asyncio.sleep(retry_delay * (attempt + 1))
                        continue
                    raise AIClientError(
                        f"Request to {self.settings.ai_base_url} timed out after {max_retries} attempts"
                    )
                except httpx.HTTPStatusError as e:
                    raise AIClientError(
                        f"HTTP error from {self.provider}: {e.response.status_code} - {e.response.text[:200]}"
                    ) from e
                except httpx.HTTPError as e:
                    raise AIClientError(f"Error calling {self.provider}: {e}") from e

        if not text:
            raise AIClientError("AI returned no text")
        logger.debug(
            f"AI completion received ({len(text)} chars)",
            extra={"ai_provider": self.provider, "ai_model": self.settings.ai_model},
        )
        return text

    async def _generate_ollama(self, client: httpx.AsyncClient, prompt: str, max_tokens: int) -> str:
        payload: Dict[str, Any] = {
            "model": self.settings.ai_model,
            "prompt": prompt,
            "stream": False,
            "options": {"num_predict": max_tokens},
        }
        response = await client.post("/api/generate", json=payload)
        response.raise_for_status()
        return (response.json().get("response") or "").strip()

    async def _generate_anthropic(self, client: httpx.AsyncClient, prompt: str, max_tokens: int) -> str:
        if not self.settings.ai_api_key:
            raise AIClientError("AI_API_KEY is required for the anthropic provider")
        payload = {
            "model": self.settings.ai_model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "x-api-key": self.settings.ai_api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        response = await client.post("/v1/messages", json=payload, headers=headers)
        response.raise_for_status()
        blocks = response.json().get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type") == "text").strip()
