"""
Flask Routes - Relay Functions and Source Uploads
"""

import logging
import threading
import uuid
from datetime import datetime, timezone

from flask import Blueprint, request, jsonify, g, current_app
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

from app.auth import require_auth, require_webhook_secret
from relay.errors import (
    RelayError, ConfigError, ValidationError, NotFoundError, RelayFailure, StoreError
)
from relay.relay import GenerationStatus, ProcessingStatus
from relay.sources import detect_source_type, build_file_path

logger = logging.getLogger(__name__)

main_bp = Blueprint('main', __name__)
api_bp = Blueprint('api', __name__)


@main_bp.route('/')
def index():
    """Service description."""
    return jsonify({
        'service': 'insightslm-relay',
        'functions': sorted(
            rule.rule for rule in current_app.url_map.iter_rules()
            if rule.rule.startswith('/api/')
        )
    })


@main_bp.route('/health')
def health():
    """Health check endpoint."""
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'version': '1.0.0'
    })


# ----------------------------------------------------------------------
# Error mapping
# ----------------------------------------------------------------------

@api_bp.errorhandler(RelayError)
def handle_relay_error(e: RelayError):
    if isinstance(e, ValidationError):
        return jsonify({'error': str(e), 'code': 'VALIDATION_ERROR'}), 400
    if isinstance(e, NotFoundError):
        return jsonify({'error': str(e), 'code': 'NOT_FOUND'}), 404
    if isinstance(e, RelayFailure):
        return jsonify({
            'error': str(e),
            'code': 'WEBHOOK_FAILED',
            'status': e.status_code,
            'details': e.details
        }), 500
    if isinstance(e, ConfigError):
        logger.error(f"Configuration error: {e}")
        return jsonify({'error': str(e), 'code': 'CONFIG_ERROR'}), 500
    if isinstance(e, StoreError):
        return jsonify({'error': str(e), 'code': 'STORE_ERROR'}), 500
    logger.exception(f"Relay error: {e}")
    return jsonify({'error': 'Internal server error', 'code': 'INTERNAL_ERROR'}), 500


@api_bp.errorhandler(Exception)
def handle_unexpected_error(e: Exception):
    if isinstance(e, HTTPException):
        return e
    logger.exception(f"Unexpected error: {e}")
    return jsonify({'error': 'Internal server error', 'code': 'INTERNAL_ERROR'}), 500


def _body():
    return request.get_json(silent=True)


def _callback_base() -> str:
    return request.host_url


# ----------------------------------------------------------------------
# Background work
# ----------------------------------------------------------------------

def run_async_audio(app, notebook_id, callback_base):
    """Call the audio generation webhook in a background thread."""
    with app.app_context():
        try:
            logger.info(f"Starting async audio generation for notebook {notebook_id}")
            app.relay.run_audio_generation(notebook_id, callback_base)
        except Exception as e:
            logger.exception(f"Async audio generation error: {e}")
            try:
                app.store.update_notebook(notebook_id, {
                    'audio_overview_generation_status': GenerationStatus.FAILED.value
                })
            except StoreError as store_error:
                logger.error(f"Could not mark audio generation failed: {store_error}")


def run_async_notebook_generation(app, data):
    """Generate notebook title and description in a background thread."""
    with app.app_context():
        try:
            app.relay.generate_notebook_content(data)
        except RelayError as e:
            logger.error(f"Notebook generation for {data.get('notebookId')} failed: {e}")


def _start_thread(target, *args) -> None:
    # current_app is a proxy; the thread needs the real app object
    app = current_app._get_current_object()
    thread = threading.Thread(target=target, args=(app, *args))
    thread.daemon = True
    thread.start()


# ----------------------------------------------------------------------
# Documents
# ----------------------------------------------------------------------

@api_bp.route('/process-document', methods=['POST'])
@require_auth
def process_document():
    result = current_app.relay.process_document(_body(), callback_base=_callback_base())
    return jsonify(result)


@api_bp.route('/process-document-callback', methods=['POST'])
@require_webhook_secret
def process_document_callback():
    result = current_app.relay.handle_document_callback(_body())
    return jsonify(result)


@api_bp.route('/process-additional-sources', methods=['POST'])
@require_auth
def process_additional_sources():
    result = current_app.relay.process_additional_sources(_body())
    return jsonify(result)


@api_bp.route('/notebooks/<notebook_id>/sources', methods=['GET'])
@require_auth
def list_sources(notebook_id: str):
    sources = current_app.store.list_sources(notebook_id)
    return jsonify({'sources': sources, 'total': len(sources)})


@api_bp.route('/notebooks/<notebook_id>/sources', methods=['POST'])
@require_auth
def upload_source(notebook_id: str):
    """Upload a file, record it as a source, and start processing."""
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise ValidationError('Missing required field: file')

    store = current_app.store
    notebook = store.get_notebook(notebook_id)
    if not notebook:
        raise NotFoundError(f"Notebook {notebook_id} not found")

    filename = secure_filename(upload.filename) or 'upload'
    source_id = str(uuid.uuid4())
    source_type = detect_source_type(filename, upload.mimetype)
    file_path = build_file_path(notebook_id, source_id, filename)
    data = upload.read()

    bucket = current_app.relay.storage.get('sources_bucket', 'sources')
    store.upload_file(bucket, file_path, data, upload.mimetype or 'application/octet-stream')

    source = current_app.source_writer.insert({
        'id': source_id,
        'notebook_id': notebook_id,
        'title': upload.filename,
        'type': source_type,
        'file_path': file_path,
        'file_size': len(data),
        'processing_status': ProcessingStatus.PENDING.value,
    })
    logger.info(f"Uploaded source {source_id} ({source_type}, {len(data)} bytes) to notebook {notebook_id}")

    processing = current_app.relay.process_document({
        'sourceId': source_id,
        'filePath': file_path,
        'sourceType': source_type,
    }, callback_base=_callback_base())

    if notebook.get('generation_status') in (None, GenerationStatus.PENDING.value):
        _start_thread(run_async_notebook_generation, {
            'notebookId': notebook_id,
            'filePath': file_path,
            'sourceType': source_type,
        })

    return jsonify({'source': source, 'processing': processing}), 201


# ----------------------------------------------------------------------
# Notebooks, chat and notes
# ----------------------------------------------------------------------

@api_bp.route('/generate-notebook-content', methods=['POST'])
@require_auth
def generate_notebook_content():
    result = current_app.relay.generate_notebook_content(_body())
    return jsonify(result)


@api_bp.route('/send-chat-message', methods=['POST'])
@require_auth
def send_chat_message():
    result = current_app.relay.send_chat_message(_body(), user_id=g.user_id)
    return jsonify(result)


@api_bp.route('/generate-note-title', methods=['POST'])
@require_auth
def generate_note_title():
    result = current_app.relay.generate_note_title(_body())
    return jsonify(result)


# ----------------------------------------------------------------------
# Audio overview
# ----------------------------------------------------------------------

@api_bp.route('/generate-audio-overview', methods=['POST'])
@require_auth
def generate_audio_overview():
    notebook_id = current_app.relay.generate_audio_overview(_body())
    _start_thread(run_async_audio, notebook_id, _callback_base())
    return jsonify({
        'success': True,
        'message': 'Audio generation started',
        'status': GenerationStatus.GENERATING.value
    }), 202


@api_bp.route('/audio-generation-callback', methods=['POST'])
@require_webhook_secret
def audio_generation_callback():
    result = current_app.relay.handle_audio_callback(_body())
    return jsonify(result)


@api_bp.route('/refresh-audio-url', methods=['POST'])
@require_auth
def refresh_audio_url():
    result = current_app.relay.refresh_audio_url(_body())
    return jsonify(result)
