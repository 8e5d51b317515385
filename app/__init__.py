"""
Flask Application Factory
"""

import os
import logging
from flask import Flask
from flask_cors import CORS

from relay.config import get_config, get_env, get_supabase_settings

logger = logging.getLogger(__name__)


def create_app(config_overrides: dict = None) -> Flask:
    """
    Application factory for creating Flask app.

    Args:
        config_overrides: Values applied on top of the environment config

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    supabase = get_supabase_settings()

    # Load configuration
    app.config.update(
        SECRET_KEY=os.getenv('FLASK_SECRET_KEY', 'dev-secret-key-change-in-production'),
        SUPABASE_URL=supabase['url'],
        SUPABASE_ANON_KEY=supabase['anon_key'],
        SUPABASE_SERVICE_ROLE_KEY=supabase['service_role_key'],
        WEBHOOK_AUTH=get_env('WEBHOOK_AUTH', 'NOTEBOOK_GENERATION_AUTH', 'N8N_WEBHOOK_AUTH'),
        OLLAMA_BASE_URL=get_env('OLLAMA_BASE_URL', 'OLLAMA_HOST'),
        SOURCE_KIND_COLUMN=get_env('SOURCE_KIND_COLUMN', default='type'),
        MOCK_DB_FILE=os.getenv('MOCK_DB_FILE'),
        MAX_CONTENT_LENGTH=50 * 1024 * 1024,  # 50MB uploads
        DEV_MODE=os.getenv('DEV_MODE', 'false').lower() == 'true'
    )
    if config_overrides:
        app.config.update(config_overrides)

    # Enable CORS
    CORS(app, resources={
        r"/api/*": {
            "origins": os.getenv('ALLOWED_ORIGINS', '*').split(','),
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "apikey", "x-client-info"]
        }
    })

    # Register blueprints
    from app.routes import main_bp, api_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp, url_prefix='/api')

    # Initialize services
    with app.app_context():
        _initialize_services(app)

    logger.info("Flask application initialized successfully")

    return app


def _initialize_services(app: Flask) -> None:
    """Initialize application services."""
    from app.auth import SupabaseAuth, MockSupabaseAuth
    from relay.store import SupabaseStore, MockSupabaseStore
    from relay.n8n_client import WebhookClient
    from relay.llm_client import OllamaClient
    from relay.relay import WebhookRelay
    from relay.sources import SourceWriter
    from relay.tunnel import resolve_public_base

    config = get_config()

    if app.config.get('DEV_MODE'):
        logger.warning("Initializing mock Supabase services for DEV_MODE")
        app.supabase_auth = MockSupabaseAuth()
        app.store = MockSupabaseStore(db_file=app.config.get('MOCK_DB_FILE'))
    else:
        app.supabase_auth = SupabaseAuth(
            url=app.config['SUPABASE_URL'],
            anon_key=app.config['SUPABASE_ANON_KEY']
        )
        app.store = SupabaseStore(
            url=app.config['SUPABASE_URL'],
            service_role_key=app.config['SUPABASE_SERVICE_ROLE_KEY']
        )

    relay_config = config.get('relay', {})
    app.webhook_client = WebhookClient(
        timeout=relay_config.get('timeout_seconds', 30.0),
        max_retries=relay_config.get('max_retries', 1)
    )

    llm_config = config.get('llm', {})
    app.llm_client = OllamaClient(
        base_url=app.config.get('OLLAMA_BASE_URL') or llm_config.get('base_url', 'http://localhost:11434'),
        model=llm_config.get('model', 'qwen2.5:7b-instruct-q4_K_M'),
        timeout=llm_config.get('timeout_seconds', 60.0)
    )

    app.source_writer = SourceWriter(app.store, preferred_column=app.config['SOURCE_KIND_COLUMN'])

    public_base = resolve_public_base()
    if public_base:
        logger.info(f"Callback URLs will use {public_base}")

    app.relay = WebhookRelay(
        store=app.store,
        client=app.webhook_client,
        llm_client=app.llm_client,
        public_base=public_base
    )
