"""
Local record store.

Keeps the two gallery collections and the two tombstone sets on disk, one
JSON list per versioned key, inside a single directory. This is the only
place the sync layer persists anything locally; it knows nothing about
merging.

Reads never fail: a missing, unreadable or corrupt file reads as an empty
list. Writes replace a whole key atomically; a failed write is logged and
absorbed so the in-memory view can carry on for the session.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from gallery.records import (
    ARTWORK, STUDENT, apply_update, create_id, sanitize,
)

logger = logging.getLogger(__name__)

KEY_PREFIX = 'gallery_'

STUDENTS_KEY = 'gallery_students_local_v1'
ARTWORKS_KEY = 'gallery_artworks_local_v1'
STUDENTS_DELETED_KEY = 'gallery_students_deleted_v1'
ARTWORKS_DELETED_KEY = 'gallery_artworks_deleted_v1'

RECORD_KEYS = {STUDENT: STUDENTS_KEY, ARTWORK: ARTWORKS_KEY}
TOMBSTONE_KEYS = {STUDENT: STUDENTS_DELETED_KEY, ARTWORK: ARTWORKS_DELETED_KEY}

_ID_PREFIXES = {STUDENT: 'student', ARTWORK: 'artwork'}


class LocalRecordStore:
    """File-backed key-value store for gallery records and tombstones."""

    def __init__(self, directory):
        self.directory = Path(directory)
        self._listeners = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Raw key access
    # ------------------------------------------------------------------

    def _path(self, key):
        return self.directory / f'{key}.json'

    def _read_list(self, key):
        path = self._path(key)
        try:
            raw = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning('Could not read %s: %s', path, e)
            return []
        if not raw.strip():
            return []
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning('Ignoring corrupt local store entry %s', key)
            return []
        if not isinstance(parsed, list):
            logger.warning('Ignoring local store entry %s: expected a list', key)
            return []
        return parsed

    def _write_list(self, key, items):
        """Replace the list stored under key. Returns False if it did not persist."""
        try:
            payload = json.dumps(items, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.error('Could not serialize %s: %s', key, e)
            return False

        tmp_path = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f'.{key}.', suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
            os.replace(tmp_path, self._path(key))
            tmp_path = None
        except OSError as e:
            logger.error('Could not persist %s: %s', key, e)
            return False
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        self._notify(key, external=False)
        return True

    # ------------------------------------------------------------------
    # Change subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener):
        """Call listener(key, external) whenever a key changes.

        external is True for writes reported through notify_external_write.
        Returns an unsubscribe callable.
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify_external_write(self, key=None):
        """Report a write made by another process sharing the directory.

        A key of None means "anything may have changed". Keys that do not
        belong to the gallery are ignored.
        """
        if key and not key.startswith(KEY_PREFIX):
            return
        self._notify(key, external=True)

    def _notify(self, key, external):
        for listener in list(self._listeners):
            try:
                listener(key, external)
            except Exception:
                logger.exception('Local store listener failed for %s', key)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _read_records(self, kind):
        records = []
        for entry in self._read_list(RECORD_KEYS[kind]):
            if isinstance(entry, dict):
                records.append(sanitize(kind, entry))
        return records

    def load(self):
        """Return {'students': [...], 'artworks': [...]} as sanitized records."""
        return {
            STUDENT: self._read_records(STUDENT),
            ARTWORK: self._read_records(ARTWORK),
        }

    def save(self, kind, items):
        """Overwrite a collection. Every item goes through the sanitizer first."""
        records = [sanitize(kind, item) for item in items]
        with self._lock:
            self._write_list(RECORD_KEYS[kind], [r.to_dict() for r in records])
        return records

    def add(self, kind, record):
        """Prepend a record, assigning an id when missing.

        An existing record with the same id is replaced.
        """
        entry = sanitize(kind, record)
        if not entry.id:
            entry.id = create_id(_ID_PREFIXES[kind])
        with self._lock:
            records = [r for r in self._read_records(kind) if r.id != entry.id]
            records.insert(0, entry)
            self._write_list(RECORD_KEYS[kind], [r.to_dict() for r in records])
        return entry

    def update(self, kind, item_id, updates):
        """Apply a partial update to one record. Returns the whole collection."""
        updates = dict(updates)
        if kind == ARTWORK and not isinstance(updates.get('localOnly'), bool):
            updates.pop('localOnly', None)
        with self._lock:
            records = [
                apply_update(kind, r, updates) if r.id == item_id else r
                for r in self._read_records(kind)
            ]
            self._write_list(RECORD_KEYS[kind], [r.to_dict() for r in records])
        return records

    def get(self, kind, item_id):
        for record in self._read_records(kind):
            if record.id == item_id:
                return record
        return None

    def remove_student(self, student_id):
        """Remove a student and every artwork that belongs to it."""
        with self._lock:
            students = [s for s in self._read_records(STUDENT) if s.id != student_id]
            artworks = [a for a in self._read_records(ARTWORK) if a.student_id != student_id]
            self._write_list(STUDENTS_KEY, [s.to_dict() for s in students])
            self._write_list(ARTWORKS_KEY, [a.to_dict() for a in artworks])
        return {STUDENT: students, ARTWORK: artworks}

    def remove_artwork(self, artwork_id):
        with self._lock:
            artworks = [a for a in self._read_records(ARTWORK) if a.id != artwork_id]
            self._write_list(ARTWORKS_KEY, [a.to_dict() for a in artworks])
        return artworks

    # ------------------------------------------------------------------
    # Tombstones
    # ------------------------------------------------------------------

    def _read_ids(self, kind):
        return [i for i in self._read_list(TOMBSTONE_KEYS[kind]) if isinstance(i, str) and i]

    def load_tombstones(self):
        """Return {'students': set(ids), 'artworks': set(ids)}."""
        return {
            STUDENT: set(self._read_ids(STUDENT)),
            ARTWORK: set(self._read_ids(ARTWORK)),
        }

    def mark_deleted(self, kind, item_id):
        if not item_id:
            return
        with self._lock:
            ids = self._read_ids(kind)
            if item_id in ids:
                return
            ids.append(item_id)
            self._write_list(TOMBSTONE_KEYS[kind], ids)

    def clear_deleted(self, kind, item_id):
        if not item_id:
            return
        with self._lock:
            ids = self._read_ids(kind)
            if item_id not in ids:
                return
            self._write_list(TOMBSTONE_KEYS[kind], [i for i in ids if i != item_id])

    # ------------------------------------------------------------------
    # Entity helpers used by the presentation layer
    # ------------------------------------------------------------------

    def load_local_data(self):
        return self.load()

    def load_deleted_ids(self):
        return self.load_tombstones()

    def save_local_students(self, items):
        return self.save(STUDENT, items)

    def save_local_artworks(self, items):
        return self.save(ARTWORK, items)

    def add_local_student(self, student):
        return self.add(STUDENT, student)

    def add_local_artwork(self, artwork):
        return self.add(ARTWORK, artwork)

    def update_local_student(self, student_id, updates):
        return self.update(STUDENT, student_id, updates)

    def update_local_artwork(self, artwork_id, updates):
        return self.update(ARTWORK, artwork_id, updates)

    def remove_local_student(self, student_id):
        return self.remove_student(student_id)

    def remove_local_artwork(self, artwork_id):
        return self.remove_artwork(artwork_id)

    def mark_student_deleted(self, student_id):
        self.mark_deleted(STUDENT, student_id)

    def mark_artwork_deleted(self, artwork_id):
        self.mark_deleted(ARTWORK, artwork_id)

    def clear_student_deleted(self, student_id):
        self.clear_deleted(STUDENT, student_id)

    def clear_artwork_deleted(self, artwork_id):
        self.clear_deleted(ARTWORK, artwork_id)

    def has_pending(self):
        data = self.load()
        return any(r.local_only for r in data[STUDENT]) or any(r.local_only for r in data[ARTWORK])
