"""
Local LLM Client (Ollama)
"""

import time
import logging
from typing import Dict, Any, Optional

import httpx

from relay.errors import RelayError

logger = logging.getLogger(__name__)


class LLMError(RelayError):
    """Base exception for LLM errors."""
    pass


class OllamaClient:
    """Client for a local Ollama runtime."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "qwen2.5:7b-instruct-q4_K_M",
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)
        logger.info(f"Ollama client initialized ({self.base_url}, model={model})")

    def complete(self, prompt: str, model: str = None, temperature: float = 0.3, **options) -> Dict[str, Any]:
        """Generate a non-streaming completion."""
        start_time = time.time()
        payload = {
            'model': model or self.model,
            'prompt': prompt,
            'stream': False,
            'options': {'temperature': temperature, **options},
        }

        try:
            response = self.client.post('/api/generate', json=payload)
        except httpx.HTTPError as e:
            logger.error(f"LLM completion error: {e}")
            raise LLMError(f"Completion failed: {e}") from e

        if response.is_error:
            logger.error(f"Ollama Error Status: {response.status_code}")
            logger.error(f"Ollama Error Body: {response.text}")
            raise LLMError(f"Ollama returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Ollama returned a non-JSON body: {response.text[:200]}")
            raise LLMError("Ollama returned an unreadable response") from e
        if not isinstance(data, dict):
            raise LLMError(f"Unexpected Ollama response type: {type(data).__name__}")

        return {
            'content': data.get('response') or '',
            'model': data.get('model', payload['model']),
            'elapsed': time.time() - start_time
        }

    def close(self):
        self.client.close()
