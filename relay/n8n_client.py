"""
n8n Webhook Client
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    """Outcome of one webhook call."""
    ok: bool
    status_code: int
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    elapsed: float = 0.0


class WebhookClient:
    """Posts JSON payloads to n8n webhooks."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 1,
        backoff: float = 1.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={'Content-Type': 'application/json'}
        )
        logger.info("Webhook client initialized")

    def post(self, url: str, payload: Dict[str, Any], auth: Optional[str] = None) -> WebhookResult:
        """
        Post a payload to a webhook.

        Non-2xx responses are returned with ok=False. 429 responses and
        transport errors are retried up to max_retries times.
        """
        headers = {}
        if auth:
            headers['Authorization'] = auth

        start_time = time.time()
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                logger.info(f"POST {url} (Attempt {attempt + 1}/{attempts})")
                response = self.client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                if attempt < attempts - 1:
                    logger.warning(f"Webhook transport error: {e}. Retrying in {self.backoff}s...")
                    time.sleep(self.backoff)
                    continue
                logger.error(f"Webhook unreachable: {url}: {e}")
                return WebhookResult(
                    ok=False,
                    status_code=0,
                    error=str(e),
                    elapsed=time.time() - start_time
                )

            if response.status_code == 429 and attempt < attempts - 1:
                sleep_time = self.backoff * (2 ** attempt)
                logger.warning(f"Rate limited (429). Retrying in {sleep_time}s...")
                time.sleep(sleep_time)
                continue

            data = self._parse_body(response)
            if response.is_error:
                logger.error(f"Webhook Error Status: {response.status_code}")
                logger.error(f"Webhook Error Body: {response.text}")
                return WebhookResult(
                    ok=False,
                    status_code=response.status_code,
                    data=data,
                    error=f"Webhook returned {response.status_code}",
                    elapsed=time.time() - start_time
                )

            logger.info(f"Webhook accepted payload ({response.status_code})")
            return WebhookResult(
                ok=True,
                status_code=response.status_code,
                data=data,
                elapsed=time.time() - start_time
            )

        return WebhookResult(ok=False, status_code=0, error="No attempts made")

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {'text': response.text}
        if isinstance(body, dict):
            return body
        return {'items': body}

    def close(self):
        self.client.close()
