"""
Relay Package - Supabase to n8n webhook relay
"""

from relay.relay import WebhookRelay, ProcessingStatus, GenerationStatus
from relay.errors import RelayError, ConfigError, ValidationError, NotFoundError, RelayFailure, StoreError
from relay.n8n_client import WebhookClient, WebhookResult
from relay.llm_client import OllamaClient, LLMError
from relay.sources import SourceWriter, detect_source_type, build_file_path
from relay.realtime import SourceCache, subscribe_sources
from relay.config import get_config, load_config, get_webhook_config

__all__ = [
    'WebhookRelay',
    'ProcessingStatus',
    'GenerationStatus',
    'RelayError',
    'ConfigError',
    'ValidationError',
    'NotFoundError',
    'RelayFailure',
    'StoreError',
    'WebhookClient',
    'WebhookResult',
    'OllamaClient',
    'LLMError',
    'SourceWriter',
    'detect_source_type',
    'build_file_path',
    'SourceCache',
    'subscribe_sources',
    'get_config',
    'load_config',
    'get_webhook_config'
]
