"""
Supabase Authentication Middleware and Helpers
"""

import hmac
import logging
from functools import wraps
from typing import Optional, Dict, Any, Callable

from flask import request, jsonify, g, current_app

logger = logging.getLogger(__name__)


class SupabaseAuth:
    """Verifies user JWTs against Supabase Auth."""

    def __init__(self, url: str, anon_key: str):
        """
        Initialize Supabase auth client.
        """
        from supabase import create_client, Client

        self.client: Client = create_client(url, anon_key)
        logger.info("Supabase auth client initialized")

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify a JWT token and return the decoded payload."""
        try:
            user = self.client.auth.get_user(token)
        except Exception as e:
            logger.error(f"Token verification error: {e}")
            return None

        if user and user.user:
            return {
                'sub': user.user.id,
                'email': user.user.email,
                'role': user.user.role or 'authenticated'
            }
        return None


class MockSupabaseAuth:
    """Mock authentication for development; accepts fixed local tokens."""

    def __init__(self, tokens: Optional[Dict[str, Dict[str, Any]]] = None):
        logger.info("Mock Supabase auth client initialized (DEV MODE)")
        self.tokens = tokens or {
            'test-token': {
                'sub': 'test-user-id',
                'email': 'dev@example.com',
                'role': 'authenticated'
            }
        }

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Mock token verification."""
        logger.debug(f"Verifying token: {token[:10]}...")
        if token in self.tokens:
            return self.tokens[token]

        # local-<user id> tokens, as issued by the dev front-end
        if token.startswith('local-'):
            user_id = token[len('local-'):]
            return {'sub': user_id, 'email': f'{user_id}@localhost', 'role': 'authenticated'}

        logger.warning("Token verification failed")
        return None


def _bearer_token() -> Optional[str]:
    auth_header = request.headers.get('Authorization')
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return ''
    return parts[1]


def require_auth(f: Callable) -> Callable:
    """Decorator to require a Supabase user JWT for a route."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()

        if token is None:
            return jsonify({
                'error': 'Missing Authorization header',
                'code': 'AUTH_MISSING'
            }), 401

        if not token:
            return jsonify({
                'error': 'Invalid Authorization header format',
                'code': 'AUTH_INVALID_FORMAT'
            }), 401

        payload = current_app.supabase_auth.verify_token(token)
        if not payload:
            return jsonify({
                'error': 'Invalid or expired token',
                'code': 'AUTH_INVALID_TOKEN'
            }), 401

        g.user_id = payload.get('sub')
        g.user_email = payload.get('email')
        g.user_role = payload.get('role', 'authenticated')

        return f(*args, **kwargs)

    return decorated_function


def require_webhook_secret(f: Callable) -> Callable:
    """
    Decorator for callback routes called by n8n.

    No user JWT is checked. The Authorization header must equal
    WEBHOOK_AUTH; a bare value and a 'Bearer <value>' form are both
    accepted. Without a configured secret every call is let through.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get('WEBHOOK_AUTH')
        if not secret:
            logger.warning(f"WEBHOOK_AUTH not set; accepting unauthenticated callback on {request.path}")
            return f(*args, **kwargs)

        provided = request.headers.get('Authorization', '')
        if provided.lower().startswith('bearer '):
            provided = provided[7:]

        if not hmac.compare_digest(provided.encode(), secret.encode()):
            logger.warning(f"Rejected callback with bad secret on {request.path}")
            return jsonify({
                'error': 'Invalid webhook secret',
                'code': 'AUTH_INVALID_SECRET'
            }), 401

        return f(*args, **kwargs)

    return decorated_function
