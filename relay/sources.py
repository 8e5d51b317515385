"""
Source Rows - type detection, storage paths and schema-tolerant inserts
"""

import logging
import mimetypes
import threading
from pathlib import PurePosixPath
from typing import Dict, Any, Optional

from relay.errors import StoreError

logger = logging.getLogger(__name__)

KIND_COLUMNS = ('type', 'source_type')

# PostgREST schema cache miss, Postgres undefined_column
UNKNOWN_COLUMN_CODES = {'PGRST204', '42703'}

TEXT_EXTENSIONS = {'txt', 'md', 'markdown', 'csv', 'json'}
AUDIO_EXTENSIONS = {'mp3', 'wav', 'm4a', 'ogg', 'flac', 'aac'}


def detect_source_type(filename: str, content_type: Optional[str] = None) -> str:
    """Classify an uploaded file as pdf, text or audio."""
    ext = PurePosixPath(filename or '').suffix.lower().lstrip('.')
    content_type = content_type or mimetypes.guess_type(filename or '')[0] or ''

    if ext == 'pdf' or content_type == 'application/pdf':
        return 'pdf'
    if ext in AUDIO_EXTENSIONS or content_type.startswith('audio/'):
        return 'audio'
    if ext in TEXT_EXTENSIONS or content_type.startswith('text/'):
        return 'text'
    return 'text'


def build_file_path(notebook_id: str, source_id: str, filename: str) -> str:
    """Storage path for an uploaded source: <notebook>/<source>.<ext>."""
    ext = PurePosixPath(filename or '').suffix.lower().lstrip('.') or 'bin'
    return f"{notebook_id}/{source_id}.{ext}"


def is_unknown_column(error: StoreError, column: str) -> bool:
    if error.code not in UNKNOWN_COLUMN_CODES:
        return False
    return f"'{column}'" in str(error) or f'"{column}"' in str(error)


class SourceWriter:
    """
    Inserts source rows whose kind column may be named `type` or
    `source_type`, depending on which migration the database has.

    The kind is always given under `type`. If the table rejects that
    column the insert is retried once with it renamed; the column that
    worked is reused for later inserts.
    """

    def __init__(self, store, preferred_column: str = 'type'):
        if preferred_column not in KIND_COLUMNS:
            raise ValueError(f"Unknown kind column: {preferred_column}")
        self.store = store
        self.column = preferred_column
        self._lock = threading.Lock()

    def _payload(self, row: Dict[str, Any], column: str) -> Dict[str, Any]:
        payload = {k: v for k, v in row.items() if k not in KIND_COLUMNS}
        kind = row.get('type', row.get('source_type'))
        if kind is not None:
            payload[column] = kind
        return payload

    def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        column = self.column
        try:
            return self.store.insert_source(self._payload(row, column))
        except StoreError as e:
            if not is_unknown_column(e, column):
                raise
            logger.warning(f"sources.{column} rejected ({e.code}), retrying with {self._other(column)}")

        alternate = self._other(column)
        record = self.store.insert_source(self._payload(row, alternate))
        with self._lock:
            self.column = alternate
        logger.info(f"Using sources.{alternate} for source kind")
        return record

    @staticmethod
    def _other(column: str) -> str:
        return KIND_COLUMNS[1] if column == KIND_COLUMNS[0] else KIND_COLUMNS[0]

    @staticmethod
    def source_kind(row: Dict[str, Any]) -> Optional[str]:
        return row.get('type') or row.get('source_type')
