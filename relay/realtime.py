"""
Realtime Source Cache

Keeps a per-notebook list of source rows in sync with Supabase realtime
postgres_changes events, alongside optimistic rows added before the
insert is confirmed.
"""

import logging
import threading
from typing import Dict, Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

OPTIMISTIC_FLAG = '_optimistic'


def normalize_change(payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any], Dict[str, Any]]:
    """
    Return (event, new_row, old_row) from either payload shape:
    {'eventType', 'new', 'old'} or {'data': {'type', 'record', 'old_record'}}.
    """
    if 'data' in payload and isinstance(payload['data'], dict):
        data = payload['data']
        event = data.get('type') or data.get('eventType') or ''
        new = data.get('record') or {}
        old = data.get('old_record') or {}
    else:
        event = payload.get('eventType') or payload.get('type') or ''
        new = payload.get('new') or payload.get('record') or {}
        old = payload.get('old') or payload.get('old_record') or {}
    return str(event).upper(), dict(new), dict(old)


class SourceCache:
    """In-memory cache of source rows keyed by notebook id."""

    def __init__(self):
        self._rows: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _sort(self, notebook_id: str) -> None:
        self._rows[notebook_id].sort(key=lambda r: r.get('created_at') or '', reverse=True)

    def _index(self, notebook_id: str, source_id: str) -> Optional[int]:
        for i, row in enumerate(self._rows.get(notebook_id, [])):
            if row.get('id') == source_id:
                return i
        return None

    def load(self, notebook_id: str, rows: List[Dict[str, Any]]) -> None:
        with self._lock:
            self._rows[notebook_id] = [dict(r) for r in rows]
            self._sort(notebook_id)

    def get(self, notebook_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._rows.get(notebook_id, [])]

    def add_optimistic(self, row: Dict[str, Any]) -> None:
        """Show a row before the database confirms it."""
        notebook_id = row['notebook_id']
        with self._lock:
            rows = self._rows.setdefault(notebook_id, [])
            idx = self._index(notebook_id, row['id'])
            record = {**row, OPTIMISTIC_FLAG: True}
            if idx is None:
                rows.append(record)
            else:
                rows[idx] = record
            self._sort(notebook_id)

    def apply_change(self, payload: Dict[str, Any], notebook_id: Optional[str] = None) -> bool:
        """
        Patch the cache from one realtime event. Returns True when the
        cache changed. When notebook_id is given, rows for any other
        notebook are ignored.
        """
        event, new, old = normalize_change(payload)
        row = new if event != 'DELETE' else old
        source_id = row.get('id')
        target = row.get('notebook_id') or notebook_id

        if not source_id or not target:
            logger.debug(f"Ignoring {event} without id or notebook_id")
            return False
        if notebook_id and target != notebook_id:
            return False

        with self._lock:
            rows = self._rows.setdefault(target, [])
            idx = self._index(target, source_id)

            if event == 'INSERT':
                if idx is None:
                    rows.append(new)
                else:
                    rows[idx] = new
            elif event == 'UPDATE':
                if idx is None:
                    rows.append(new)
                else:
                    merged = {**rows[idx], **new}
                    merged.pop(OPTIMISTIC_FLAG, None)
                    rows[idx] = merged
            elif event == 'DELETE':
                if idx is None:
                    return False
                rows.pop(idx)
            else:
                logger.debug(f"Ignoring realtime event {event!r}")
                return False

            self._sort(target)

        logger.debug(f"Applied {event} for source {source_id}")
        return True


async def subscribe_sources(client, notebook_id: str, cache: SourceCache, channel_name: Optional[str] = None):
    """
    Subscribe an async Supabase client to source changes for one notebook.
    Returns the channel so the caller can unsubscribe.
    """
    channel = client.channel(channel_name or f"sources-changes-{notebook_id}")

    def on_change(payload):
        cache.apply_change(payload, notebook_id=notebook_id)

    channel.on_postgres_changes(
        event='*',
        schema='public',
        table='sources',
        filter=f"notebook_id=eq.{notebook_id}",
        callback=on_change,
    )
    await channel.subscribe()
    logger.info(f"Subscribed to source changes for notebook {notebook_id}")
    return channel
