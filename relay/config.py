"""
Configuration Management
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from relay.errors import ConfigError

logger = logging.getLogger(__name__)

_config_cache: Optional[Dict[str, Any]] = None

# name -> (env variable, default n8n webhook path)
WEBHOOKS = {
    'document_processing': ('DOCUMENT_PROCESSING_WEBHOOK_URL', 'process-document'),
    'additional_sources': ('ADDITIONAL_SOURCES_WEBHOOK_URL', 'process-additional-sources'),
    'notebook_generation': ('NOTEBOOK_GENERATION_URL', 'generate-notebook-content'),
    'chat': ('NOTEBOOK_CHAT_URL', 'notebook-chat'),
    'audio_generation': ('AUDIO_GENERATION_WEBHOOK_URL', 'generate-audio-overview'),
}


def get_env(*names: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-empty environment variable among names."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def load_config(config_dir: str = "config") -> Dict[str, Any]:
    """Load defaults, then merge config/relay.yaml if present."""
    global _config_cache

    config = {
        'webhooks': {name: {'env': env, 'path': path} for name, (env, path) in WEBHOOKS.items()},
        'storage': {
            'sources_bucket': 'sources',
            'audio_bucket': 'audio',
            'signed_url_ttl_seconds': 24 * 60 * 60,
        },
        'relay': {
            'timeout_seconds': 30.0,
            'max_retries': 1,
        },
        'llm': {
            'base_url': 'http://localhost:11434',
            'model': 'qwen2.5:7b-instruct-q4_K_M',
            'timeout_seconds': 60.0,
        },
    }

    try:
        import yaml
        filepath = Path(config_dir) / 'relay.yaml'
        if filepath.exists():
            with open(filepath, 'r') as f:
                file_config = yaml.safe_load(f)
            if file_config:
                for section, values in file_config.items():
                    if isinstance(values, dict) and isinstance(config.get(section), dict):
                        config[section].update(values)
                    else:
                        config[section] = values
    except Exception as e:
        logger.warning(f"Could not load config files: {e}")

    _config_cache = config
    return config


def get_config() -> Dict[str, Any]:
    """Get the current configuration."""
    global _config_cache
    if _config_cache is None:
        load_config()
    return _config_cache or {}


def get_supabase_settings() -> Dict[str, Optional[str]]:
    """Supabase settings, accepting the self-hosted stack's variable names."""
    return {
        'url': get_env('SUPABASE_URL', 'SUPABASE_PUBLIC_URL', 'API_EXTERNAL_URL'),
        'anon_key': get_env('SUPABASE_ANON_KEY', 'ANON_KEY'),
        'service_role_key': get_env('SUPABASE_SERVICE_ROLE_KEY', 'SERVICE_ROLE_KEY'),
    }


def get_webhook_config(name: str) -> Dict[str, Any]:
    """Resolve URL and outgoing auth header for one n8n webhook."""
    webhooks = get_config().get('webhooks', {})
    if name not in webhooks:
        raise ConfigError(f"Unknown webhook: {name}")

    entry = webhooks[name]
    url = get_env(entry['env'])
    if not url:
        base = get_env('N8N_BASE_URL')
        if base:
            url = f"{base.rstrip('/')}/webhook/{entry['path'].lstrip('/')}"

    return {
        'name': name,
        'url': url,
        'auth': get_env('NOTEBOOK_GENERATION_AUTH', 'N8N_WEBHOOK_AUTH'),
    }


def require_webhook_url(name: str) -> Dict[str, Any]:
    """Like get_webhook_config, but raise when no URL is configured."""
    webhook = get_webhook_config(name)
    if not webhook['url']:
        env_name = get_config()['webhooks'][name]['env']
        raise ConfigError(f"{env_name} not configured")
    return webhook
