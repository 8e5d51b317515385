"""
Tests for the outgoing webhook client and the local LLM client
"""

import httpx
import pytest

from relay.llm_client import LLMError, OllamaClient
from relay.n8n_client import WebhookClient


def _client(handler, max_retries=1):
    return WebhookClient(max_retries=max_retries, backoff=0, transport=httpx.MockTransport(handler))


class TestWebhookClient:

    def test_success_with_auth_header(self):
        seen = {}

        def handler(request):
            seen['auth'] = request.headers.get('Authorization')
            return httpx.Response(200, json={'ok': True})

        result = _client(handler).post('http://n8n.test/webhook/x', {'a': 1}, auth='secret')
        assert result.ok is True
        assert result.data == {'ok': True}
        assert seen['auth'] == 'secret'

    def test_non_2xx_is_returned_not_raised(self):
        result = _client(lambda r: httpx.Response(404, json={'message': 'not registered'})).post('http://n8n.test/x', {})
        assert result.ok is False
        assert result.status_code == 404
        assert result.data == {'message': 'not registered'}

    def test_rate_limit_retried_once(self):
        statuses = iter([429, 200])
        result = _client(lambda r: httpx.Response(next(statuses), json={})).post('http://n8n.test/x', {})
        assert result.ok is True

    def test_rate_limit_persists_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, json={'message': 'slow down'})

        result = _client(handler, max_retries=1).post('http://n8n.test/x', {})
        assert result.ok is False
        assert result.status_code == 429
        assert len(calls) == 2

    def test_transport_error_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError('refused', request=request)

        result = _client(handler, max_retries=1).post('http://n8n.test/x', {})
        assert result.ok is False
        assert result.status_code == 0
        assert len(calls) == 2

    def test_plain_text_and_list_bodies(self):
        text = _client(lambda r: httpx.Response(200, text='Workflow was started')).post('http://n8n.test/x', {})
        assert text.data == {'text': 'Workflow was started'}

        items = _client(lambda r: httpx.Response(200, json=[{'a': 1}])).post('http://n8n.test/x', {})
        assert items.data == {'items': [{'a': 1}]}


class TestOllamaClient:

    def test_complete(self):
        def handler(request):
            assert request.url.path == '/api/generate'
            return httpx.Response(200, json={'model': 'llama3', 'response': 'A Title'})

        client = OllamaClient(model='llama3', transport=httpx.MockTransport(handler))
        assert client.complete('prompt')['content'] == 'A Title'

    def test_error_status(self):
        client = OllamaClient(transport=httpx.MockTransport(lambda r: httpx.Response(500, text='model not found')))
        with pytest.raises(LLMError):
            client.complete('prompt')

    def test_non_json_body(self):
        client = OllamaClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, text='<html>proxy</html>')))
        with pytest.raises(LLMError):
            client.complete('prompt')

    def test_non_object_body(self):
        client = OllamaClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=['A Title'])))
        with pytest.raises(LLMError):
            client.complete('prompt')
