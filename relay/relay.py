"""
Webhook Relay - forwards requests between Supabase and n8n
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Any, List, Optional

from relay.config import get_config, require_webhook_url
from relay.errors import NotFoundError, RelayFailure, StoreError, ValidationError, require_fields
from relay.llm_client import LLMError
from relay.n8n_client import WebhookResult

logger = logging.getLogger(__name__)

DOCUMENT_CALLBACK_PATH = '/api/process-document-callback'
AUDIO_CALLBACK_PATH = '/api/audio-generation-callback'


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WebhookRelay:
    """
    One method per relay function. Each validates its input, forwards to
    the configured n8n webhook, and records a failed status when the
    webhook does not accept the payload.
    """

    def __init__(self, store, client, llm_client=None, public_base: Optional[str] = None):
        self.store = store
        self.client = client
        self.llm_client = llm_client
        self.public_base = public_base.rstrip('/') if public_base else None
        self.storage = get_config().get('storage', {})

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def callback_url(self, path: str, callback_base: Optional[str] = None) -> Optional[str]:
        base = self.public_base or (callback_base.rstrip('/') if callback_base else None)
        return f"{base}{path}" if base else None

    def _forward(self, webhook_name: str, payload: Dict[str, Any]) -> WebhookResult:
        webhook = require_webhook_url(webhook_name)
        logger.info(f"Relaying to {webhook_name}")
        result = self.client.post(webhook['url'], payload, auth=webhook['auth'])
        logger.info(f"{webhook_name} answered {result.status_code} in {result.elapsed:.2f}s")
        return result

    def _require_notebook(self, notebook_id: str) -> Dict[str, Any]:
        notebook = self.store.get_notebook(notebook_id)
        if not notebook:
            raise NotFoundError(f"Notebook {notebook_id} not found")
        return notebook

    def _mark_sources(self, source_ids: List[str], status: ProcessingStatus) -> None:
        for source_id in source_ids:
            try:
                self.store.update_source(source_id, {'processing_status': status.value})
            except StoreError as e:
                logger.error(f"Could not mark source {source_id} {status.value}: {e}")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def process_document(self, data: Dict[str, Any], callback_base: Optional[str] = None) -> Dict[str, Any]:
        """Send an uploaded file to the document processing workflow."""
        require_fields(data, 'sourceId', 'filePath', 'sourceType')
        source_id = data['sourceId']
        file_path = data['filePath']
        require_webhook_url('document_processing')

        bucket = self.storage.get('sources_bucket', 'sources')
        payload = {
            'source_id': source_id,
            'file_url': self.store.get_public_url(bucket, file_path),
            'file_path': file_path,
            'source_type': data['sourceType'],
            'callback_url': self.callback_url(DOCUMENT_CALLBACK_PATH, callback_base),
        }

        self.store.update_source(source_id, {'processing_status': ProcessingStatus.PROCESSING.value})
        result = self._forward('document_processing', payload)

        if not result.ok:
            self._mark_sources([source_id], ProcessingStatus.FAILED)
            raise RelayFailure(
                'Document processing failed',
                status_code=result.status_code,
                details={'error': result.error, 'response': result.data}
            )

        logger.info(f"Document processing started for source {source_id}")
        return {
            'success': True,
            'message': 'Document processing initiated',
            'result': result.data
        }

    def handle_document_callback(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Store the outcome n8n reports for a processed source."""
        require_fields(data, 'source_id')
        source_id = data['source_id']

        if data.get('error'):
            updates = {'processing_status': ProcessingStatus.FAILED.value}
            logger.warning(f"Processing failed for source {source_id}: {data['error']}")
        else:
            updates = {'processing_status': data.get('status') or ProcessingStatus.COMPLETED.value}
            for field in ('content', 'summary', 'display_name'):
                if data.get(field) is not None:
                    updates[field] = data[field]
            if data.get('display_name'):
                updates['title'] = data['display_name']

        try:
            self.store.update_source(source_id, updates)
        except StoreError as e:
            if e.code == 'PGRST116':
                raise NotFoundError(f"Source {source_id} not found") from e
            raise

        return {'success': True, 'source_id': source_id, 'processing_status': updates['processing_status']}

    def process_additional_sources(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Relay website lists and pasted text to the additional sources workflow."""
        require_fields(data, 'type', 'notebookId')
        source_kind = data['type']

        if source_kind == 'multiple-websites':
            require_fields(data, 'urls', 'sourceIds')
            urls, source_ids = data['urls'], data['sourceIds']
            if not isinstance(urls, list) or not isinstance(source_ids, list):
                raise ValidationError('urls and sourceIds must be lists')
            if len(urls) != len(source_ids):
                raise ValidationError('urls and sourceIds must have the same length')
            payload = {
                'type': source_kind,
                'notebook_id': data['notebookId'],
                'urls': urls,
                'source_ids': source_ids,
            }
        elif source_kind == 'copied-text':
            require_fields(data, 'title', 'content', 'sourceId')
            source_ids = [data['sourceId']]
            payload = {
                'type': source_kind,
                'notebook_id': data['notebookId'],
                'title': data['title'],
                'content': data['content'],
                'source_id': data['sourceId'],
            }
        else:
            raise ValidationError(f"Unsupported type: {source_kind}")

        payload['timestamp'] = _now().isoformat()
        result = self._forward('additional_sources', payload)

        if not result.ok:
            self._mark_sources(source_ids, ProcessingStatus.FAILED)
            raise RelayFailure(
                f"Failed to process {source_kind}",
                status_code=result.status_code,
                details={'error': result.error, 'response': result.data}
            )

        return {
            'success': True,
            'message': f"{source_kind} data sent to webhook successfully",
            'webhookResponse': result.data
        }

    # ------------------------------------------------------------------
    # Notebooks
    # ------------------------------------------------------------------

    def generate_notebook_content(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Ask n8n for a title, description and example questions."""
        require_fields(data, 'notebookId', 'sourceType')
        notebook_id = data['notebookId']
        source_type = data['sourceType']
        if source_type != 'website':
            require_fields(data, 'filePath')

        self._require_notebook(notebook_id)
        require_webhook_url('notebook_generation')
        self.store.update_notebook(notebook_id, {'generation_status': GenerationStatus.GENERATING.value})

        payload = {'notebook_id': notebook_id, 'source_type': source_type}
        if source_type == 'website':
            payload['file_path'] = data.get('filePath') or data.get('url')
        else:
            bucket = self.storage.get('sources_bucket', 'sources')
            payload['file_path'] = data['filePath']
            payload['file_url'] = self.store.get_public_url(bucket, data['filePath'])

        result = self._forward('notebook_generation', payload)
        if not result.ok:
            self.store.update_notebook(notebook_id, {'generation_status': GenerationStatus.FAILED.value})
            raise RelayFailure(
                'Failed to generate content from web service',
                status_code=result.status_code,
                details={'error': result.error, 'response': result.data}
            )

        updates = self._notebook_updates(result.data)
        updates['generation_status'] = GenerationStatus.COMPLETED.value
        try:
            self.store.update_notebook(notebook_id, updates)
        except StoreError as e:
            logger.error(f"Could not save generated content for notebook {notebook_id}: {e}")
            self.store.update_notebook(notebook_id, {'generation_status': GenerationStatus.FAILED.value})
            raise

        logger.info(f"Notebook {notebook_id} content generated")
        return {'success': True, 'title': updates.get('title'), 'description': updates.get('description')}

    @staticmethod
    def _notebook_updates(data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get('items'):
            data = data['items'][0] if isinstance(data['items'][0], dict) else {}
        output = data.get('output') if isinstance(data.get('output'), dict) else data

        updates = {}
        if output.get('title'):
            updates['title'] = output['title']
        description = output.get('description') or output.get('summary')
        if description:
            updates['description'] = description
        icon = output.get('notebook_icon') or output.get('icon')
        if icon:
            updates['icon'] = icon
        color = output.get('background_color') or output.get('color')
        if color:
            updates['color'] = color
        if isinstance(output.get('example_questions'), list):
            updates['example_questions'] = output['example_questions']
        return updates

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def send_chat_message(self, data: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        require_fields(data, 'session_id', 'message')
        payload = {
            'session_id': data['session_id'],
            'message': data['message'],
            'user_id': data.get('user_id') or user_id,
            'timestamp': _now().isoformat(),
        }

        result = self._forward('chat', payload)
        if not result.ok:
            raise RelayFailure(
                'Chat webhook failed',
                status_code=result.status_code,
                details={'error': result.error, 'response': result.data}
            )
        return {'success': True, 'data': result.data}

    # ------------------------------------------------------------------
    # Audio overview
    # ------------------------------------------------------------------

    def generate_audio_overview(self, data: Dict[str, Any]) -> str:
        """Mark the notebook as generating; the webhook call runs separately."""
        require_fields(data, 'notebookId')
        notebook_id = data['notebookId']
        self._require_notebook(notebook_id)
        require_webhook_url('audio_generation')

        self.store.update_notebook(notebook_id, {
            'audio_overview_generation_status': GenerationStatus.GENERATING.value
        })
        return notebook_id

    def run_audio_generation(self, notebook_id: str, callback_base: Optional[str] = None) -> bool:
        payload = {
            'notebook_id': notebook_id,
            'callback_url': self.callback_url(AUDIO_CALLBACK_PATH, callback_base),
        }
        result = self._forward('audio_generation', payload)
        if not result.ok:
            logger.error(f"Audio generation failed for notebook {notebook_id}: {result.error}")
            self.store.update_notebook(notebook_id, {
                'audio_overview_generation_status': GenerationStatus.FAILED.value
            })
            return False
        return True

    def handle_audio_callback(self, data: Dict[str, Any]) -> Dict[str, Any]:
        require_fields(data, 'notebook_id')
        notebook_id = data['notebook_id']
        self._require_notebook(notebook_id)

        if data.get('status') == 'success' and data.get('audio_url'):
            ttl = self.storage.get('signed_url_ttl_seconds', 86400)
            updates = {
                'audio_overview_url': data['audio_url'],
                'audio_url_expires_at': (_now() + timedelta(seconds=ttl)).isoformat(),
                'audio_overview_generation_status': GenerationStatus.COMPLETED.value,
            }
            if data.get('audio_path'):
                updates['audio_file_path'] = data['audio_path']
        else:
            logger.warning(f"Audio generation failed for notebook {notebook_id}: {data.get('error')}")
            updates = {'audio_overview_generation_status': GenerationStatus.FAILED.value}

        self.store.update_notebook(notebook_id, updates)
        return {'success': True, 'status': updates['audio_overview_generation_status']}

    def refresh_audio_url(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Issue a fresh signed URL for the notebook's audio overview."""
        require_fields(data, 'notebookId')
        notebook_id = data['notebookId']
        notebook = self._require_notebook(notebook_id)

        bucket = self.storage.get('audio_bucket', 'audio')
        ttl = self.storage.get('signed_url_ttl_seconds', 86400)
        path = notebook.get('audio_file_path') or f"{notebook_id}/audio_overview.mp3"

        signed_url = self.store.create_signed_url(bucket, path, ttl)
        expires_at = (_now() + timedelta(seconds=ttl)).isoformat()
        self.store.update_notebook(notebook_id, {
            'audio_overview_url': signed_url,
            'audio_url_expires_at': expires_at,
        })
        return {'success': True, 'audioUrl': signed_url, 'expiresAt': expires_at}

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def generate_note_title(self, data: Dict[str, Any]) -> Dict[str, Any]:
        require_fields(data, 'content')
        content = str(data['content'])
        fallback = ' '.join(content.split()[:6]) or 'Untitled Note'

        if not self.llm_client:
            return {'title': fallback}

        prompt = (
            "Write a short title (at most 8 words) for the following note. "
            "Reply with the title only.\n\n" + content[:4000]
        )
        try:
            response = self.llm_client.complete(prompt)
        except LLMError as e:
            logger.warning(f"Note title generation failed, using fallback: {e}")
            return {'title': fallback}

        title = response['content'].strip().splitlines()[0].strip().strip('"\'') if response['content'].strip() else ''
        return {'title': title or fallback}
