"""
Shared fixtures: fake n8n endpoint, mock store and Flask test app
"""

import json

import httpx
import pytest

from relay.config import WEBHOOKS
from relay.n8n_client import WebhookClient
from relay.relay import WebhookRelay
from relay.store import MockSupabaseStore

N8N_BASE = 'http://n8n.test'
N8N_AUTH = 'n8n-shared-secret'

_ENV_VARS = [env for env, _ in WEBHOOKS.values()] + [
    'N8N_BASE_URL', 'NOTEBOOK_GENERATION_AUTH', 'N8N_WEBHOOK_AUTH', 'WEBHOOK_AUTH',
    'PUBLIC_BASE_URL', 'TUNNEL_DISCOVERY', 'SUPABASE_URL', 'SUPABASE_PUBLIC_URL',
    'API_EXTERNAL_URL', 'SUPABASE_ANON_KEY', 'ANON_KEY', 'SUPABASE_SERVICE_ROLE_KEY',
    'SERVICE_ROLE_KEY', 'DEV_MODE', 'MOCK_DB_FILE', 'SOURCE_KIND_COLUMN',
]


class FakeN8n:
    """Records webhook calls and answers with configured responses."""

    def __init__(self):
        self.requests = []
        self.responses = {}

    def respond(self, path: str, status: int, body=None):
        self.responses[path] = (status, body if body is not None else {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.get(request.url.path, (200, {'message': 'Workflow was started'}))
        return httpx.Response(status, json=body)

    def payloads(self, path: str):
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


@pytest.fixture(autouse=True)
def relay_env(monkeypatch):
    """Isolate tests from the host environment."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('N8N_BASE_URL', N8N_BASE)
    monkeypatch.setenv('NOTEBOOK_GENERATION_AUTH', N8N_AUTH)


@pytest.fixture
def n8n():
    return FakeN8n()


@pytest.fixture
def webhook_client(n8n):
    client = WebhookClient(max_retries=1, backoff=0, transport=httpx.MockTransport(n8n.handler))
    yield client
    client.close()


@pytest.fixture
def store(tmp_path):
    store = MockSupabaseStore(db_file=str(tmp_path / 'mock_db.json'))
    store.add_notebook({'id': 'nb-1', 'title': 'Untitled notebook'})
    store.insert_source({
        'id': 'src-1',
        'notebook_id': 'nb-1',
        'title': 'paper.pdf',
        'type': 'pdf',
        'file_path': 'nb-1/src-1.pdf',
        'processing_status': 'pending',
    })
    return store


@pytest.fixture
def relay(store, webhook_client):
    return WebhookRelay(store=store, client=webhook_client, public_base='https://relay.example.com')


@pytest.fixture
def app(tmp_path, webhook_client):
    """Flask test application on the mock store and fake n8n."""
    from app import create_app

    app = create_app({
        'TESTING': True,
        'DEV_MODE': True,
        'MOCK_DB_FILE': str(tmp_path / 'app_db.json'),
        'WEBHOOK_AUTH': 'callback-secret',
    })
    app.relay.client = webhook_client
    app.relay.llm_client = None
    app.store.add_notebook({'id': 'nb-1', 'title': 'Untitled notebook'})
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {'Authorization': 'Bearer test-token'}


@pytest.fixture
def callback_headers():
    return {'Authorization': 'callback-secret'}
