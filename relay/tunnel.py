"""
Tunnel Discovery - public HTTPS base for callback URLs
"""

import logging
from typing import Optional

import httpx

from relay.config import get_env

logger = logging.getLogger(__name__)

NGROK_API_URL = "http://127.0.0.1:4040/api/tunnels"


def discover_ngrok_url(api_url: str = NGROK_API_URL, timeout: float = 2.0,
                       transport: Optional[httpx.BaseTransport] = None) -> Optional[str]:
    """Ask a local ngrok agent for its first https public URL."""
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.get(api_url)
            response.raise_for_status()
            tunnels = response.json().get('tunnels', [])
    except (httpx.HTTPError, ValueError) as e:
        logger.debug(f"ngrok agent not available at {api_url}: {e}")
        return None

    for tunnel in tunnels:
        public_url = tunnel.get('public_url', '')
        if public_url.startswith('https://'):
            logger.info(f"Discovered tunnel URL {public_url}")
            return public_url.rstrip('/')
    return None


def resolve_public_base(transport: Optional[httpx.BaseTransport] = None) -> Optional[str]:
    """PUBLIC_BASE_URL if set, else the ngrok URL when TUNNEL_DISCOVERY is on."""
    configured = get_env('PUBLIC_BASE_URL')
    if configured:
        return configured.rstrip('/')

    if get_env('TUNNEL_DISCOVERY', default='false').lower() == 'true':
        return discover_ngrok_url(get_env('NGROK_API_URL', default=NGROK_API_URL), transport=transport)
    return None
