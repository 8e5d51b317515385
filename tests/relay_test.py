"""
Unit tests for WebhookRelay operations
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import httpx
import pytest

from relay.errors import NotFoundError, RelayFailure, StoreError, ValidationError
from relay.llm_client import LLMError, OllamaClient


class TestDocumentCallback:

    def test_error_marks_failed(self, relay, store):
        result = relay.handle_document_callback({'source_id': 'src-1', 'error': 'parse failed'})
        assert result['processing_status'] == 'failed'
        assert store.get_source('src-1')['processing_status'] == 'failed'

    def test_explicit_status_is_kept(self, relay, store):
        relay.handle_document_callback({'source_id': 'src-1', 'status': 'processing', 'summary': 'partial'})
        source = store.get_source('src-1')
        assert source['processing_status'] == 'processing'
        assert source['summary'] == 'partial'

    def test_unknown_source(self, relay):
        with pytest.raises(NotFoundError):
            relay.handle_document_callback({'source_id': 'missing'})

    def test_requires_source_id(self, relay):
        with pytest.raises(ValidationError):
            relay.handle_document_callback({})


class TestProcessDocument:

    def test_uses_public_base_for_callback(self, relay, n8n):
        relay.process_document(
            {'sourceId': 'src-1', 'filePath': 'nb-1/src-1.pdf', 'sourceType': 'pdf'},
            callback_base='http://ignored.local/'
        )
        payload = n8n.payloads('/webhook/process-document')[0]
        assert payload['callback_url'] == 'https://relay.example.com/api/process-document-callback'
        assert payload['file_url'].endswith('/storage/v1/object/public/sources/nb-1/src-1.pdf')
        assert payload['source_type'] == 'pdf'

    def test_server_error_retries_nothing_and_fails(self, relay, store, n8n):
        n8n.respond('/webhook/process-document', 500, {'message': 'boom'})
        with pytest.raises(RelayFailure) as exc:
            relay.process_document({'sourceId': 'src-1', 'filePath': 'nb-1/src-1.pdf', 'sourceType': 'pdf'})
        assert exc.value.status_code == 500
        assert len(n8n.requests) == 1
        assert store.get_source('src-1')['processing_status'] == 'failed'


class TestAdditionalSources:

    def test_websites(self, relay, n8n):
        relay.process_additional_sources({
            'type': 'multiple-websites',
            'notebookId': 'nb-1',
            'urls': ['https://a.example', 'https://b.example'],
            'sourceIds': ['s-a', 's-b'],
        })
        payload = n8n.payloads('/webhook/process-additional-sources')[0]
        assert payload['source_ids'] == ['s-a', 's-b']
        assert payload['notebook_id'] == 'nb-1'
        assert 'timestamp' in payload

    def test_mismatched_lengths(self, relay):
        with pytest.raises(ValidationError):
            relay.process_additional_sources({
                'type': 'multiple-websites', 'notebookId': 'nb-1',
                'urls': ['https://a.example'], 'sourceIds': ['s-a', 's-b'],
            })

    def test_unknown_type(self, relay):
        with pytest.raises(ValidationError):
            relay.process_additional_sources({'type': 'youtube', 'notebookId': 'nb-1'})

    def test_copied_text_failure_marks_source(self, relay, store, n8n):
        n8n.respond('/webhook/process-additional-sources', 502, {})
        with pytest.raises(RelayFailure):
            relay.process_additional_sources({
                'type': 'copied-text', 'notebookId': 'nb-1',
                'title': 'Pasted', 'content': 'Some text', 'sourceId': 'src-1',
            })
        assert store.get_source('src-1')['processing_status'] == 'failed'


class TestNotebookContent:

    def test_stores_generated_fields(self, relay, store, n8n):
        n8n.respond('/webhook/generate-notebook-content', 200, [{
            'output': {
                'title': 'Solar Panels 101',
                'summary': 'An overview of photovoltaics.',
                'notebook_icon': 'sun',
                'background_color': 'amber',
                'example_questions': ['How efficient are panels?'],
            }
        }])

        result = relay.generate_notebook_content({
            'notebookId': 'nb-1', 'filePath': 'nb-1/src-1.pdf', 'sourceType': 'pdf'
        })

        assert result['title'] == 'Solar Panels 101'
        notebook = store.get_notebook('nb-1')
        assert notebook['generation_status'] == 'completed'
        assert notebook['description'] == 'An overview of photovoltaics.'
        assert notebook['icon'] == 'sun'
        assert notebook['color'] == 'amber'
        assert notebook['example_questions'] == ['How efficient are panels?']

    def test_website_needs_no_file_path(self, relay, n8n):
        relay.generate_notebook_content({'notebookId': 'nb-1', 'sourceType': 'website', 'url': 'https://x.example'})
        payload = n8n.payloads('/webhook/generate-notebook-content')[0]
        assert payload['file_path'] == 'https://x.example'
        assert 'file_url' not in payload

    def test_failure(self, relay, store, n8n):
        n8n.respond('/webhook/generate-notebook-content', 500, {})
        with pytest.raises(RelayFailure):
            relay.generate_notebook_content({'notebookId': 'nb-1', 'filePath': 'f.pdf', 'sourceType': 'pdf'})
        assert store.get_notebook('nb-1')['generation_status'] == 'failed'


class TestAudio:

    def test_run_audio_generation_failure(self, relay, store, n8n):
        relay.generate_audio_overview({'notebookId': 'nb-1'})
        n8n.respond('/webhook/generate-audio-overview', 500, {})

        assert relay.run_audio_generation('nb-1') is False
        assert store.get_notebook('nb-1')['audio_overview_generation_status'] == 'failed'

    def test_run_audio_generation_sends_callback(self, relay, n8n):
        assert relay.run_audio_generation('nb-1') is True
        payload = n8n.payloads('/webhook/generate-audio-overview')[0]
        assert payload == {
            'notebook_id': 'nb-1',
            'callback_url': 'https://relay.example.com/api/audio-generation-callback',
        }

    def test_callback_without_url_fails(self, relay, store):
        result = relay.handle_audio_callback({'notebook_id': 'nb-1', 'status': 'success'})
        assert result['status'] == 'failed'

    def test_refresh_uses_stored_path(self, relay, store):
        relay.handle_audio_callback({
            'notebook_id': 'nb-1', 'status': 'success',
            'audio_url': 'https://cdn/a.mp3', 'audio_path': 'nb-1/custom.mp3',
        })
        result = relay.refresh_audio_url({'notebookId': 'nb-1'})
        assert '/audio/nb-1/custom.mp3' in result['audioUrl']


class TestNoteTitle:

    def test_fallback_without_llm(self, relay):
        result = relay.generate_note_title({'content': 'one two three four five six seven eight'})
        assert result == {'title': 'one two three four five six'}

    def test_fallback_on_llm_error(self, relay):
        relay.llm_client = Mock()
        relay.llm_client.complete.side_effect = LLMError('connection refused')
        assert relay.generate_note_title({'content': 'Meeting notes'}) == {'title': 'Meeting notes'}

    def test_unreadable_llm_reply_falls_back(self, relay):
        relay.llm_client = OllamaClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text='<html>proxy</html>'))
        )
        assert relay.generate_note_title({'content': 'Meeting notes today'}) == {'title': 'Meeting notes today'}


class TestNotebookContentErrors:

    def test_top_level_response_shape(self, relay, store, n8n):
        n8n.respond('/webhook/generate-notebook-content', 200, {
            'title': 'Tidal Energy',
            'description': 'Power from the sea.',
        })

        result = relay.generate_notebook_content({
            'notebookId': 'nb-1', 'filePath': 'nb-1/src-1.pdf', 'sourceType': 'pdf'
        })

        assert result == {'success': True, 'title': 'Tidal Energy', 'description': 'Power from the sea.'}
        assert store.get_notebook('nb-1')['description'] == 'Power from the sea.'

    def test_failed_save_marks_notebook_failed(self, relay, store, n8n, monkeypatch):
        n8n.respond('/webhook/generate-notebook-content', 200, {'output': {'title': 'T', 'icon': 'sun'}})
        original_update = store.update_notebook

        def update_notebook(notebook_id, updates):
            if 'icon' in updates:
                raise StoreError("Could not find the 'icon' column of 'notebooks'", code='PGRST204')
            return original_update(notebook_id, updates)

        monkeypatch.setattr(store, 'update_notebook', update_notebook)

        with pytest.raises(StoreError):
            relay.generate_notebook_content({'notebookId': 'nb-1', 'filePath': 'f.pdf', 'sourceType': 'pdf'})
        assert store.get_notebook('nb-1')['generation_status'] == 'failed'


class TestAudioExpiry:

    def test_callback_expiry_is_one_day_ahead(self, relay, store):
        before = datetime.now(timezone.utc)
        relay.handle_audio_callback({
            'notebook_id': 'nb-1', 'status': 'success', 'audio_url': 'https://cdn/a.mp3'
        })

        expires_at = datetime.fromisoformat(store.get_notebook('nb-1')['audio_url_expires_at'])
        assert before + timedelta(hours=24) <= expires_at
        assert expires_at <= datetime.now(timezone.utc) + timedelta(hours=24)
