"""
The gallery's reconciliation service.

One ``GalleryService`` owns the in-memory view (``GalleryState``) and is the
only writer to it. Every event source goes through it: admin edits, remote
snapshot callbacks, writes made by another process sharing the local store
and the connectivity-restored signal.

Writes are remote-first with a local fallback: if the upload or the
Firestore write fails, the record is kept in the local store with its media
embedded and ``localOnly`` set, and the drainer publishes it later. Deletes
are local-first: the record disappears immediately and a tombstone hides it
from stale snapshots until the remote delete is confirmed.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import partial
from typing import List, Optional

from google.cloud.firestore import SERVER_TIMESTAMP

from gallery import notices
from gallery.errors import GallerySyncError, RemoteError, UploadError
from gallery.reconciler import GalleryState, filter_deleted, reconcile
from gallery.records import (
    ARTWORK, COLLECTIONS, DEFAULT_ARTWORK_TITLE, STUDENT,
    Artwork, Media, MediaKind, Student, apply_update, sanitize, sort_newest_first,
)
from gallery.services.storage import read_payload, to_data_url
from gallery.services.sync import DrainResult, SyncDrainer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class WriteResult:
    record: object
    saved_remotely: bool
    notice: notices.Notice

    def to_dict(self):
        return {
            'success': True,
            'record': self.record.to_dict(),
            'saved_remotely': self.saved_remotely,
            'notice': self.notice.to_dict(),
        }


@dataclass
class BatchResult:
    records: List[object] = field(default_factory=list)
    remote_count: int = 0
    local_count: int = 0

    @property
    def notice(self):
        if self.local_count and not self.remote_count:
            return notices.SAVED_LOCALLY
        if self.local_count:
            return notices.SOME_SAVED_LOCALLY
        return notices.SAVED_TO_CLOUD

    def to_dict(self):
        return {
            'success': True,
            'records': [r.to_dict() for r in self.records],
            'remote_count': self.remote_count,
            'local_count': self.local_count,
            'notice': self.notice.to_dict(),
        }


@dataclass
class DeleteResult:
    remote_deleted: bool
    cascade_failed: int = 0

    @property
    def notice(self):
        if not self.remote_deleted:
            return notices.DELETED_LOCALLY
        if self.cascade_failed:
            return notices.DELETED_WITH_LEFTOVERS
        return notices.DELETED

    def to_dict(self):
        return {
            'success': True,
            'remote_deleted': self.remote_deleted,
            'cascade_failed': self.cascade_failed,
            'notice': self.notice.to_dict(),
        }


@dataclass
class ArtworkEntry:
    """One artwork card submitted by the admin form."""
    type: str
    file: object
    media_type: str = MediaKind.IMAGE.value
    title: str = ''
    description: str = ''
    filename: Optional[str] = None


def _scaled_progress(on_progress, index, total):
    """Map one card's 0-100 progress onto the whole batch."""
    if on_progress is None:
        return None

    def report(percent):
        on_progress(round((index + percent / 100) / total * 100))

    return report


def _default_title(title, filename):
    if title:
        return title
    if filename:
        stem = os.path.splitext(os.path.basename(filename))[0]
        if stem:
            return stem
    return DEFAULT_ARTWORK_TITLE


class GalleryService:
    """Owns the merged view and runs every add, edit, delete and sync."""

    def __init__(self, store, remote=None, uploader=None, state=None,
                 retry_deletes_on_reconnect=False):
        self.store = store
        self.remote = remote
        self.uploader = uploader
        self.state = state or GalleryState()
        self.retry_deletes_on_reconnect = retry_deletes_on_reconnect
        self.drainer = SyncDrainer(store, remote, uploader)
        self._listeners = []
        self._unsubscribe_store = store.subscribe(self._on_store_changed)

    @property
    def online(self):
        return self.remote is not None

    # ------------------------------------------------------------------
    # Change listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener):
        """Call listener(reason) after every change to the view."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _emit(self, reason):
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception('Gallery listener failed for %s', reason)

    def _on_store_changed(self, key, external):
        if external:
            self.apply_local_data(force=True)

    # ------------------------------------------------------------------
    # Loading and reconciliation
    # ------------------------------------------------------------------

    def start(self, drain=True):
        """Show cached data, subscribe to both collections, drain the queue.

        Subscriptions are followed by a one-shot fetch whose failure falls
        back to local data. A watch stream that dies after attaching reports
        nothing.
        """
        self.apply_local_data(force=False)
        if self.remote is None:
            logger.info('No remote data source; running from the local store only')
            self.apply_local_data(force=True)
            return None
        for kind in COLLECTIONS:
            self.remote.subscribe(
                kind,
                partial(self.on_snapshot, kind),
                partial(self.on_snapshot_error, kind),
            )
        self.refresh()
        if drain:
            return self.sync_pending()
        return None

    def apply_local_data(self, force=False):
        """Show the local cache minus tombstones.

        Without force an empty cache is not shown, so the view keeps waiting
        for a real snapshot instead of flashing an empty gallery.
        """
        data = self.store.load()
        deleted = self.store.load_tombstones()
        students = filter_deleted(data[STUDENT], deleted[STUDENT])
        artworks = filter_deleted(data[ARTWORK], deleted[ARTWORK])
        if not force and not students and not artworks:
            return False
        with self.state.lock:
            self.state.replace(STUDENT, sort_newest_first(students), ready=True)
            self.state.replace(ARTWORK, sort_newest_first(artworks), ready=True)
        self._emit('local')
        return True

    def on_snapshot(self, kind, docs):
        """Merge a remote snapshot with a fresh read of the cache and tombstones."""
        remote_items = [sanitize(kind, doc) for doc in docs]
        with self.state.lock:
            local_items = self.store.load()[kind]
            deleted = self.store.load_tombstones()[kind]
            merged = reconcile(remote_items, local_items, deleted)
            self.store.save(kind, merged)
            self.state.replace(kind, merged, ready=True)
        self._emit(kind)

    def on_snapshot_error(self, kind, error):
        logger.warning('Live updates for %s unavailable, showing local data: %s', kind, error)
        self.apply_local_data(force=True)

    def refresh(self):
        """Fetch both collections once and reconcile them."""
        if self.remote is None:
            self.apply_local_data(force=True)
            return
        for kind in COLLECTIONS:
            try:
                docs = self.remote.fetch(kind)
            except RemoteError as e:
                self.on_snapshot_error(kind, e)
            else:
                self.on_snapshot(kind, docs)

    def _reload_from_store(self):
        data = self.store.load()
        deleted = self.store.load_tombstones()
        with self.state.lock:
            for kind in COLLECTIONS:
                self.state.replace(kind, sort_newest_first(filter_deleted(data[kind], deleted[kind])))
        self._emit('local')

    def _apply_in_memory_update(self, kind, item_id, updates):
        with self.state.lock:
            items = [
                apply_update(kind, item, updates) if item.id == item_id else item
                for item in self.state.items(kind)
            ]
            self.state.replace(kind, items)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync_pending(self):
        if not self.store.has_pending():
            return DrainResult()
        result = self.drainer.drain()
        if result.synced:
            self._reload_from_store()
        return result

    def on_connectivity_restored(self):
        result = self.sync_pending()
        if self.retry_deletes_on_reconnect:
            self.retry_pending_deletes()
        return result

    def _upload(self, data, kind, filename=None, on_progress=None):
        if self.uploader is None:
            raise UploadError('Media storage is not configured')
        return self.uploader.upload(data, on_progress, kind, filename)

    def _require_remote(self):
        if self.remote is None:
            raise RemoteError('No remote data source')
        return self.remote

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    def add_student(self, name, category, cover, filename=None, on_progress=None):
        """Publish a new student, or keep it locally when that fails."""
        data, content_type = read_payload(cover, filename, MediaKind.IMAGE)
        student = Student(name=name or '', category=category or '')
        try:
            remote = self._require_remote()
            student.cover_url = self._upload(data, MediaKind.IMAGE, filename, on_progress)
            fields = student.remote_fields()
            fields['createdAt'] = SERVER_TIMESTAMP
            student.id = remote.add_document(STUDENT, fields)
        except GallerySyncError as e:
            logger.info('Saving student locally: %s', e)
            student.cover_url = to_data_url(data, content_type)
            student.local_only = True
            entry = self.store.add_local_student(student)
            self.state.prepend(STUDENT, entry)
            self._emit(STUDENT)
            return WriteResult(entry, False, notices.SAVED_LOCALLY)

        entry = self.store.add_local_student(student)
        self.state.prepend(STUDENT, entry)
        self._emit(STUDENT)
        return WriteResult(entry, True, notices.SAVED_TO_CLOUD)

    def update_student(self, student_id, name, category, cover=None, filename=None, on_progress=None):
        """Edit a student. Returns None if the student is unknown."""
        current = self.state.find(STUDENT, student_id) or self.store.get(STUDENT, student_id)
        if current is None:
            return None

        updates = {'name': name or '', 'category': category or ''}
        payload = read_payload(cover, filename, MediaKind.IMAGE) if cover is not None else None

        if current.local_only:
            if payload:
                updates['coverUrl'] = to_data_url(*payload)
            self._save_update_locally(student_id, updates)
            return WriteResult(self.state.find(STUDENT, student_id) or current, False, notices.UPDATED_LOCALLY)

        try:
            remote = self._require_remote()
            if payload:
                updates['coverUrl'] = self._upload(payload[0], MediaKind.IMAGE, filename, on_progress)
            remote.update_document(STUDENT, student_id, updates)
        except GallerySyncError as e:
            logger.info('Saving edit of student %s locally: %s', student_id, e)
            if payload:
                updates['coverUrl'] = to_data_url(*payload)
            self._save_update_locally(student_id, updates)
            return WriteResult(self.state.find(STUDENT, student_id) or current, False, notices.UPDATE_SAVED_LOCALLY)

        self._save_update_locally(student_id, updates)
        return WriteResult(self.state.find(STUDENT, student_id) or current, True, notices.UPDATED)

    def _save_update_locally(self, student_id, updates):
        self.store.update_local_student(student_id, updates)
        self._apply_in_memory_update(STUDENT, student_id, updates)
        self._emit(STUDENT)

    def delete_student(self, student_id):
        """Hide the student and its artworks now, then delete them remotely."""
        self.store.mark_student_deleted(student_id)
        self.store.remove_local_student(student_id)
        self.state.discard_student(student_id)
        self._emit(STUDENT)

        if self.remote is None:
            return DeleteResult(remote_deleted=False)
        return self._delete_student_remotely(student_id)

    def _delete_student_remotely(self, student_id):
        try:
            artworks = self.remote.query(ARTWORK, 'studentId', student_id)
        except RemoteError:
            return DeleteResult(remote_deleted=False)

        cascade_failed = 0
        for artwork in artworks:
            try:
                self.remote.delete_document(ARTWORK, artwork['id'])
            except RemoteError:
                cascade_failed += 1

        try:
            self.remote.delete_document(STUDENT, student_id)
        except RemoteError:
            return DeleteResult(remote_deleted=False, cascade_failed=cascade_failed)

        self.store.clear_student_deleted(student_id)
        if cascade_failed:
            logger.warning('Student %s deleted but %d artworks remain remotely', student_id, cascade_failed)
        return DeleteResult(remote_deleted=True, cascade_failed=cascade_failed)

    # ------------------------------------------------------------------
    # Artworks
    # ------------------------------------------------------------------

    def add_artworks(self, student_id, entries, on_progress=None):
        """Publish each artwork card; cards that fail are kept locally."""
        if not student_id:
            raise ValueError('An artwork needs a student')
        if not entries:
            raise ValueError('Add at least one artwork')

        result = BatchResult()
        total = len(entries)
        for index, entry in enumerate(entries):
            kind = MediaKind(entry.media_type)
            data, content_type = read_payload(entry.file, entry.filename, kind)
            artwork = Artwork(
                student_id=student_id,
                type=entry.type,
                title=_default_title(entry.title, entry.filename),
                description=entry.description or '',
            )
            progress = _scaled_progress(on_progress, index, total)
            try:
                remote = self._require_remote()
                artwork.media = Media(kind, self._upload(data, kind, entry.filename, progress))
                fields = artwork.remote_fields()
                fields['createdAt'] = SERVER_TIMESTAMP
                artwork.id = remote.add_document(ARTWORK, fields)
                result.remote_count += 1
            except GallerySyncError as e:
                logger.info('Saving artwork locally: %s', e)
                artwork.media = Media(kind, to_data_url(data, content_type))
                artwork.local_only = True
                result.local_count += 1
            entry_record = self.store.add_local_artwork(artwork)
            self.state.prepend(ARTWORK, entry_record)
            result.records.append(entry_record)

        self._emit(ARTWORK)
        return result

    def delete_artwork(self, artwork_id):
        self.store.mark_artwork_deleted(artwork_id)
        self.store.remove_local_artwork(artwork_id)
        self.state.discard(ARTWORK, artwork_id)
        self._emit(ARTWORK)

        if self.remote is None:
            return DeleteResult(remote_deleted=False)
        try:
            self.remote.delete_document(ARTWORK, artwork_id)
        except RemoteError:
            return DeleteResult(remote_deleted=False)
        self.store.clear_artwork_deleted(artwork_id)
        return DeleteResult(remote_deleted=True)

    # ------------------------------------------------------------------
    # Tombstone sweep
    # ------------------------------------------------------------------

    def retry_pending_deletes(self):
        """Retry the remote delete of every tombstoned id.

        Returns how many tombstones were cleared per collection.
        """
        cleared = {STUDENT: 0, ARTWORK: 0}
        if self.remote is None:
            return cleared
        deleted = self.store.load_tombstones()
        for student_id in sorted(deleted[STUDENT]):
            if self._delete_student_remotely(student_id).remote_deleted:
                cleared[STUDENT] += 1
        for artwork_id in sorted(deleted[ARTWORK]):
            try:
                self.remote.delete_document(ARTWORK, artwork_id)
            except RemoteError:
                continue
            self.store.clear_artwork_deleted(artwork_id)
            cleared[ARTWORK] += 1
        return cleared

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def status(self):
        data = self.store.load()
        return {
            'online': self.online,
            'data_ready': self.state.data_ready,
            'pending': {
                STUDENT: sum(1 for s in data[STUDENT] if s.local_only),
                ARTWORK: sum(1 for a in data[ARTWORK] if a.local_only),
            },
            'deleted': {k: len(v) for k, v in self.store.load_tombstones().items()},
            'syncing': self.drainer.running,
        }

    def close(self):
        self._unsubscribe_store()
        if self.remote is not None and hasattr(self.remote, 'close'):
            self.remote.close()
