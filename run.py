#!/usr/bin/env python3
"""
InsightsLM Relay - Entry Point

Initializes logging, validates configuration, and starts the Flask
application that relays requests between Supabase and n8n.

Usage:
    Development:
        python run.py dev

    Production:
        gunicorn --bind 0.0.0.0:5000 --workers 2 "run:create_application()"

Environment Variables:
    FLASK_ENV: development|production (default: production)
    FLASK_DEBUG: true|false (default: false)
    FLASK_HOST: Host to bind to (default: 0.0.0.0)
    FLASK_PORT: Port to bind to (default: 5000)
    LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: INFO)
    DEV_MODE: true to use the local mock store instead of Supabase
"""

import os
import sys
import logging
import atexit
from pathlib import Path
from datetime import datetime

PROJECT_ROOT = Path(__file__).parent.absolute()

from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / '.env')

from relay.config import get_supabase_settings, get_webhook_config, get_env, WEBHOOKS

VERSION = '1.0.0'


# =============================================================================
# Logging Configuration
# =============================================================================

def setup_logging() -> logging.Logger:
    """
    Configure application logging.

    Console plus a daily file in storage/logs/.

    Returns:
        Configured logger instance
    """
    log_dir = PROJECT_ROOT / 'storage' / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)

    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    log_filename = log_dir / f"relay_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_filename, encoding='utf-8')
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    for noisy in ('httpx', 'httpcore', 'hpack', 'realtime', 'werkzeug'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger('relay')
    logger.info(f"Logging initialized at level {log_level_str}")
    logger.info(f"Log files: {log_filename}")

    return logger


# =============================================================================
# Configuration Validation
# =============================================================================

def validate_configuration() -> dict:
    """
    Validate required configuration and environment variables.

    Returns:
        Dictionary with validated configuration

    Raises:
        SystemExit: If critical configuration is missing
    """
    logger = logging.getLogger('relay.config')

    config = {
        'flask': {
            'env': os.getenv('FLASK_ENV', 'production'),
            'debug': os.getenv('FLASK_DEBUG', 'false').lower() == 'true',
            'host': os.getenv('FLASK_HOST', '0.0.0.0'),
            'port': int(os.getenv('FLASK_PORT', 5000)),
            'secret_key': os.getenv('FLASK_SECRET_KEY')
        },
        'dev_mode': os.getenv('DEV_MODE', 'false').lower() == 'true',
        'supabase': get_supabase_settings(),
        'webhooks': {name: get_webhook_config(name) for name in WEBHOOKS},
        'webhook_auth': get_env('WEBHOOK_AUTH', 'NOTEBOOK_GENERATION_AUTH', 'N8N_WEBHOOK_AUTH'),
        'ollama_url': get_env('OLLAMA_BASE_URL', 'OLLAMA_HOST', default='http://localhost:11434'),
    }

    errors = []
    warnings = []

    if not config['flask']['secret_key']:
        if config['flask']['env'] == 'production':
            errors.append("FLASK_SECRET_KEY is required in production")
        else:
            config['flask']['secret_key'] = 'dev-secret-key-not-for-production'
            warnings.append("Using default FLASK_SECRET_KEY (development only)")

    if not config['dev_mode']:
        if not config['supabase']['url']:
            errors.append("SUPABASE_URL is required (or SUPABASE_PUBLIC_URL / API_EXTERNAL_URL)")
        if not config['supabase']['anon_key']:
            errors.append("SUPABASE_ANON_KEY is required (or ANON_KEY)")
        if not config['supabase']['service_role_key']:
            errors.append("SUPABASE_SERVICE_ROLE_KEY is required (or SERVICE_ROLE_KEY)")

    for name, webhook in config['webhooks'].items():
        if not webhook['url']:
            warnings.append(f"{WEBHOOKS[name][0]} not set and no N8N_BASE_URL; {name} requests will fail")

    if not config['webhook_auth']:
        warnings.append("WEBHOOK_AUTH not set; callback endpoints accept unauthenticated requests")

    for warning in warnings:
        logger.warning(warning)

    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        logger.error("Please check your .env file or environment variables")
        sys.exit(1)

    logger.info("Configuration validated successfully")
    logger.info(f"Environment: {config['flask']['env']}")
    logger.info(f"Debug mode: {config['flask']['debug']}")

    return config


# =============================================================================
# Application Factory
# =============================================================================

def create_application():
    """
    Create and configure the Flask application.

    This is the application factory function that can be used by WSGI
    servers like Gunicorn.
    """
    logger = logging.getLogger('relay.app')

    try:
        from app import create_app
        app = create_app()
        logger.info("Flask application created successfully")
        return app
    except ImportError as e:
        logger.error(f"Failed to import application: {e}")
        logger.error("Make sure all dependencies are installed: pip install -e .")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Failed to create application: {e}")
        sys.exit(1)


# =============================================================================
# Shutdown
# =============================================================================

def close_clients(app):
    """Close the outgoing HTTP clients held by the relay."""
    for client in (app.webhook_client, app.llm_client):
        if client is not None:
            client.close()
    logging.getLogger('relay.shutdown').info("HTTP clients closed")


# =============================================================================
# Startup Checks
# =============================================================================

def perform_startup_checks(config: dict) -> bool:
    """
    Perform startup health checks.

    Args:
        config: Application configuration dictionary

    Returns:
        True if all required checks pass, False otherwise
    """
    import httpx
    from relay.tunnel import resolve_public_base

    logger = logging.getLogger('relay.startup')
    checks_passed = True

    logger.info("Performing startup health checks...")

    # Check 1: Supabase REST endpoint
    if config['dev_mode']:
        logger.info("- Supabase skipped (DEV_MODE)")
    else:
        try:
            response = httpx.get(
                f"{config['supabase']['url'].rstrip('/')}/rest/v1/",
                headers={'apikey': config['supabase']['anon_key']},
                timeout=10.0
            )
            if response.status_code < 500:
                logger.info("+ Supabase reachable")
            else:
                logger.error(f"x Supabase returned status {response.status_code}")
                checks_passed = False
        except httpx.HTTPError as e:
            logger.error(f"x Supabase connection failed: {e}")
            checks_passed = False

    # Check 2: local LLM runtime (optional)
    try:
        response = httpx.get(f"{config['ollama_url'].rstrip('/')}/api/tags", timeout=5.0)
        if response.status_code == 200:
            logger.info("+ Ollama reachable")
        else:
            logger.warning(f"! Ollama returned status {response.status_code}")
    except httpx.HTTPError as e:
        logger.warning(f"! Ollama not reachable, note titles will use a fallback: {e}")

    # Check 3: public callback base
    public_base = resolve_public_base()
    if public_base:
        logger.info(f"+ Callback base: {public_base}")
    else:
        logger.warning("! No PUBLIC_BASE_URL or tunnel; callbacks will use the request host")

    # Check 4: storage directory permissions
    try:
        storage_dir = PROJECT_ROOT / 'storage'
        storage_dir.mkdir(parents=True, exist_ok=True)
        test_file = storage_dir / '.write_test'
        test_file.touch()
        test_file.unlink()
        logger.info("+ Storage directory writable")
    except OSError as e:
        logger.error(f"x Storage directory not writable: {e}")
        checks_passed = False

    if checks_passed:
        logger.info("All startup checks passed")
    else:
        logger.error("Some startup checks failed")

    return checks_passed


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """
    Initializes logging, validates configuration, performs health checks,
    and starts the Flask development server.
    """
    logger = setup_logging()

    logger.info("=" * 60)
    logger.info("InsightsLM Relay Starting")
    logger.info("=" * 60)
    logger.info(f"Python version: {sys.version}")
    logger.info(f"Project root: {PROJECT_ROOT}")

    config = validate_configuration()


    if not perform_startup_checks(config):
        if config['flask']['env'] == 'production':
            logger.error("Startup checks failed in production mode, exiting")
            sys.exit(1)
        else:
            logger.warning("Startup checks failed, continuing in development mode")

    app = create_application()
    atexit.register(close_clients, app)

    host = config['flask']['host']
    port = config['flask']['port']
    debug = config['flask']['debug']

    logger.info("-" * 60)
    logger.info(f"Starting Flask server on http://{host}:{port}")
    logger.info(f"Debug mode: {debug}")
    logger.info("-" * 60)

    try:
        app.run(
            host=host,
            port=port,
            debug=debug,
            use_reloader=debug,
            threaded=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use")
        else:
            logger.exception(f"Failed to start server: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    finally:
        logger.info("Application shutdown complete")


# =============================================================================
# Realtime Watch
# =============================================================================

async def watch_sources(notebook_id: str, interval: float = 5.0):
    """Mirror a notebook's sources through realtime events and log their status."""
    import asyncio
    from supabase import acreate_client
    from relay.realtime import SourceCache, subscribe_sources

    logger = logging.getLogger('relay.watch')
    settings = get_supabase_settings()
    client = await acreate_client(settings['url'], settings['service_role_key'] or settings['anon_key'])

    cache = SourceCache()
    response = await client.table('sources').select('*').eq('notebook_id', notebook_id).execute()
    cache.load(notebook_id, response.data or [])
    channel = await subscribe_sources(client, notebook_id, cache)

    try:
        while True:
            rows = cache.get(notebook_id)
            summary = ', '.join(f"{r.get('title') or r['id']}={r.get('processing_status')}" for r in rows)
            logger.info(f"{len(rows)} sources: {summary or '-'}")
            await asyncio.sleep(interval)
    finally:
        await channel.unsubscribe()


# =============================================================================
# CLI Interface
# =============================================================================

def cli():
    """
    Command-line interface for the application.

    Commands:
        run         Start the server (default)
        dev         Start in development mode with the mock store
        check       Run configuration checks only
        tunnel      Print the public callback base
        watch       Follow a notebook's sources through realtime events
        version     Show version information
    """
    import argparse

    parser = argparse.ArgumentParser(
        description='InsightsLM Relay',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run.py              Start the server
    python run.py dev          Start in development mode
    python run.py check        Validate configuration
    python run.py --port 8080  Start on port 8080
        """
    )

    parser.add_argument(
        'command',
        nargs='?',
        default='run',
        choices=['run', 'dev', 'check', 'tunnel', 'watch', 'version'],
        help='Command to execute (default: run)'
    )
    parser.add_argument('--host', default=None, help='Host to bind to')
    parser.add_argument('--port', type=int, default=None, help='Port to bind to')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--notebook', default=None, help='Notebook id for the watch command')

    args = parser.parse_args()

    if args.host:
        os.environ['FLASK_HOST'] = args.host
    if args.port:
        os.environ['FLASK_PORT'] = str(args.port)
    if args.debug:
        os.environ['FLASK_DEBUG'] = 'true'

    if args.command == 'run':
        main()
    elif args.command == 'dev':
        os.environ.setdefault('FLASK_ENV', 'development')
        os.environ.setdefault('FLASK_DEBUG', 'true')
        os.environ.setdefault('LOG_LEVEL', 'DEBUG')
        os.environ.setdefault('DEV_MODE', 'true')
        main()
    elif args.command == 'check':
        setup_logging()
        config = validate_configuration()
        sys.exit(0 if perform_startup_checks(config) else 1)
    elif args.command == 'tunnel':
        from relay.tunnel import resolve_public_base
        os.environ.setdefault('TUNNEL_DISCOVERY', 'true')
        print(resolve_public_base() or 'No tunnel found')
    elif args.command == 'watch':
        import asyncio
        if not args.notebook:
            parser.error('watch requires --notebook')
        setup_logging()
        try:
            asyncio.run(watch_sources(args.notebook))
        except KeyboardInterrupt:
            pass
    elif args.command == 'version':
        print(f"InsightsLM Relay v{VERSION}")


if __name__ == '__main__':
    cli()
