"""
Supabase Data Access - sources, notebooks and storage buckets
"""

import os
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from postgrest.exceptions import APIError

from relay.errors import StoreError

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseStore:
    """Table and storage access through the service role client."""

    def __init__(self, url: str, service_role_key: str):
        from supabase import create_client, Client

        self.url = url.rstrip('/')
        self.client: Client = create_client(url, service_role_key)
        logger.info("Supabase store initialized")

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except APIError as e:
            logger.error(f"Error {action}: {e.message} ({e.code})")
            raise StoreError(e.message or str(e), code=e.code) from e

    def insert_source(self, row: Dict[str, Any]) -> Dict[str, Any]:
        response = self._execute(self.client.table('sources').insert(row), 'inserting source')
        return response.data[0] if response.data else row

    def update_source(self, source_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        updates = {**updates, 'updated_at': _now()}
        response = self._execute(
            self.client.table('sources').update(updates).eq('id', source_id),
            'updating source'
        )
        if not response.data:
            raise StoreError(f"Source {source_id} not found", code='PGRST116')
        return response.data[0]

    def get_source(self, source_id: str) -> Optional[Dict[str, Any]]:
        response = self._execute(
            self.client.table('sources').select('*').eq('id', source_id).limit(1),
            'fetching source'
        )
        return response.data[0] if response.data else None

    def list_sources(self, notebook_id: str) -> List[Dict[str, Any]]:
        response = self._execute(
            self.client.table('sources').select('*').eq('notebook_id', notebook_id).order('created_at', desc=True),
            'listing sources'
        )
        return response.data or []

    def delete_source(self, source_id: str) -> bool:
        self._execute(self.client.table('sources').delete().eq('id', source_id), 'deleting source')
        return True

    def get_notebook(self, notebook_id: str) -> Optional[Dict[str, Any]]:
        response = self._execute(
            self.client.table('notebooks').select('*').eq('id', notebook_id).limit(1),
            'fetching notebook'
        )
        return response.data[0] if response.data else None

    def update_notebook(self, notebook_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        updates = {**updates, 'updated_at': _now()}
        response = self._execute(
            self.client.table('notebooks').update(updates).eq('id', notebook_id),
            'updating notebook'
        )
        if not response.data:
            raise StoreError(f"Notebook {notebook_id} not found", code='PGRST116')
        return response.data[0]

    def upload_file(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        try:
            self.client.storage.from_(bucket).upload(path, data, {'content-type': content_type})
        except Exception as e:
            logger.error(f"Error uploading {bucket}/{path}: {e}")
            raise StoreError(f"Upload failed: {e}") from e
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{path}"

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        try:
            result = self.client.storage.from_(bucket).create_signed_url(path, expires_in)
        except Exception as e:
            logger.error(f"Error signing {bucket}/{path}: {e}")
            raise StoreError(f"Could not sign URL: {e}") from e
        signed = result.get('signedURL') or result.get('signedUrl')
        if not signed:
            raise StoreError(f"No signed URL returned for {bucket}/{path}")
        return signed


class MockSupabaseStore:
    """Store for development and tests, persisted to a JSON file."""

    DB_FILE = 'storage/mock_db.json'
    BASE_URL = 'http://localhost:54321'

    def __init__(self, db_file: Optional[str] = None, source_columns: Optional[List[str]] = None):
        logger.info("Mock Supabase store initialized (DEV MODE)")
        self.db_file = db_file or self.DB_FILE
        # Columns accepted by the sources table; anything else is rejected
        # the way PostgREST rejects an unknown column.
        self.source_columns = set(source_columns or [
            'id', 'notebook_id', 'title', 'type', 'url', 'file_path', 'file_size',
            'display_name', 'content', 'summary', 'processing_status', 'metadata',
            'created_at', 'updated_at',
        ])
        self.sources: Dict[str, Dict[str, Any]] = {}
        self.notebooks: Dict[str, Dict[str, Any]] = {}
        self.files: Dict[str, Dict[str, Any]] = {}
        self._load()

    def _load(self):
        """Load data from JSON file."""
        if os.path.exists(self.db_file):
            try:
                with open(self.db_file, 'r') as f:
                    data = json.load(f)
                self.sources = data.get('sources', {})
                self.notebooks = data.get('notebooks', {})
                self.files = data.get('files', {})
                logger.info(f"Loaded mock DB from {self.db_file}")
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load mock DB: {e}")

    def _save(self):
        """Save data to JSON file."""
        data = {
            'sources': self.sources,
            'notebooks': self.notebooks,
            'files': self.files,
        }
        directory = os.path.dirname(self.db_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.db_file, 'w') as f:
            json.dump(data, f, indent=2, default=str)

    def insert_source(self, row: Dict[str, Any]) -> Dict[str, Any]:
        for column in row:
            if column not in self.source_columns:
                raise StoreError(
                    f"Could not find the '{column}' column of 'sources' in the schema cache",
                    code='PGRST204'
                )
        record = {'created_at': _now(), **row}
        self.sources[record['id']] = record
        logger.debug(f"[MOCK] Inserted source {record['id']}")
        self._save()
        return record

    def update_source(self, source_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        if source_id not in self.sources:
            raise StoreError(f"Source {source_id} not found", code='PGRST116')
        self.sources[source_id].update(updates, updated_at=_now())
        self._save()
        return self.sources[source_id]

    def get_source(self, source_id: str) -> Optional[Dict[str, Any]]:
        return self.sources.get(source_id)

    def list_sources(self, notebook_id: str) -> List[Dict[str, Any]]:
        rows = [s for s in self.sources.values() if s.get('notebook_id') == notebook_id]
        return sorted(rows, key=lambda s: s.get('created_at', ''), reverse=True)

    def delete_source(self, source_id: str) -> bool:
        removed = self.sources.pop(source_id, None)
        self._save()
        return removed is not None

    def add_notebook(self, notebook: Dict[str, Any]) -> Dict[str, Any]:
        record = {'generation_status': 'pending', 'created_at': _now(), **notebook}
        self.notebooks[record['id']] = record
        self._save()
        return record

    def get_notebook(self, notebook_id: str) -> Optional[Dict[str, Any]]:
        return self.notebooks.get(notebook_id)

    def update_notebook(self, notebook_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        if notebook_id not in self.notebooks:
            raise StoreError(f"Notebook {notebook_id} not found", code='PGRST116')
        self.notebooks[notebook_id].update(updates, updated_at=_now())
        self._save()
        return self.notebooks[notebook_id]

    def upload_file(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        self.files[f"{bucket}/{path}"] = {'size': len(data), 'content_type': content_type}
        self._save()
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.BASE_URL}/storage/v1/object/public/{bucket}/{path}"

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        return f"{self.BASE_URL}/storage/v1/object/sign/{bucket}/{path}?token=mock&expires_in={expires_in}"
