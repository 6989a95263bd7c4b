"""
Draining the pending-write queue.

A record is pending while its ``localOnly`` flag is set. ``SyncDrainer.drain``
walks students first, then artworks, one record at a time:

1. artworks whose student is still pending are skipped until a later drain
   (an artwork with no student at all counts as failed),
2. embedded media is uploaded to get a durable URL,
3. the record is upserted at its existing id,
4. the local copy gets the new URL and ``localOnly = False``.

Any failure in 2 or 3 leaves the local copy untouched for the next drain.
Nothing is retried inside a drain and no backoff state is kept; the caller
decides when to drain again (app start, reconnect, manual sync).
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from gallery import notices
from gallery.errors import RemoteError, UploadError
from gallery.records import ARTWORK, STUDENT, MediaKind, is_embedded_placeholder

logger = logging.getLogger(__name__)


@dataclass
class CollectionCounts:
    synced: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self):
        return {'synced': self.synced, 'failed': self.failed, 'skipped': self.skipped}


@dataclass
class DrainResult:
    students: CollectionCounts = field(default_factory=CollectionCounts)
    artworks: CollectionCounts = field(default_factory=CollectionCounts)
    skipped_reentrant: bool = False

    @property
    def synced(self):
        return self.students.synced + self.artworks.synced

    @property
    def failed(self):
        return self.students.failed + self.artworks.failed

    def notice(self) -> Optional[notices.Notice]:
        if self.synced and not self.failed:
            return notices.SYNC_COMPLETE
        if self.synced:
            return notices.SYNC_PARTIAL
        if self.failed:
            return notices.SYNC_FAILED
        return None

    def to_dict(self):
        notice = self.notice()
        return {
            STUDENT: self.students.to_dict(),
            ARTWORK: self.artworks.to_dict(),
            'synced': self.synced,
            'failed': self.failed,
            'skipped_reentrant': self.skipped_reentrant,
            'notice': notice.to_dict() if notice else None,
        }


@dataclass(frozen=True)
class StageResult:
    """Outcome of one step of a record's sync."""
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value=None):
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error):
        return cls(ok=False, error=str(error))


def _media_of(kind, record):
    if kind == STUDENT:
        return MediaKind.IMAGE, record.cover_url
    return record.media.kind, record.media.url


def _with_media_url(kind, record, url):
    if kind == STUDENT:
        record.cover_url = url
    else:
        record.media = record.media.with_url(url)
    return record


def _media_updates(kind, record):
    if kind == STUDENT:
        return {'coverUrl': record.cover_url}
    return record.media.to_dict()


class SyncDrainer:
    """Pushes local-only records to the remote store. Never raises."""

    def __init__(self, store, remote=None, uploader=None):
        self.store = store
        self.remote = remote
        self.uploader = uploader
        self._guard = threading.Lock()

    @property
    def running(self):
        return self._guard.locked()

    def drain(self):
        """Sync every pending record. A call made while one runs is a no-op."""
        if not self._guard.acquire(blocking=False):
            logger.info('Drain already in progress; ignoring this call')
            return DrainResult(skipped_reentrant=True)
        try:
            result = DrainResult()
            self._drain_students(result.students)
            self._drain_artworks(result.artworks)
        finally:
            self._guard.release()
        if result.synced or result.failed:
            logger.info('Drain finished: %d synced, %d failed', result.synced, result.failed)
        return result

    def _drain_students(self, counts):
        pending = [s for s in self.store.load()[STUDENT] if s.local_only]
        for student in pending:
            if self._sync_record(STUDENT, student):
                counts.synced += 1
            else:
                counts.failed += 1

    def _drain_artworks(self, counts):
        # Re-read so students promoted a moment ago no longer block their artworks.
        data = self.store.load()
        blocked = {s.id for s in data[STUDENT] if s.local_only}
        for artwork in (a for a in data[ARTWORK] if a.local_only):
            if not artwork.student_id:
                logger.warning('Artwork %s has no student; leaving it queued', artwork.id)
                counts.failed += 1
                continue
            if artwork.student_id in blocked:
                counts.skipped += 1
                continue
            if not artwork.media.url:
                logger.warning('Artwork %s has no media; leaving it queued', artwork.id)
                counts.failed += 1
                continue
            if self._sync_record(ARTWORK, artwork):
                counts.synced += 1
            else:
                counts.failed += 1

    def _sync_record(self, kind, record):
        try:
            return self._push(kind, record)
        except Exception:
            logger.exception('Unexpected error syncing %s/%s', kind, record.id)
            return False

    def _push(self, kind, record):
        if self.remote is None:
            return False

        media_kind, media_url = _media_of(kind, record)
        stage = self._resolve_media(media_kind, media_url)
        if not stage.ok:
            logger.info('Keeping %s/%s queued: %s', kind, record.id, stage.error)
            return False

        record = _with_media_url(kind, record, stage.value)
        stage = self._write(kind, record)
        if not stage.ok:
            logger.info('Keeping %s/%s queued: %s', kind, record.id, stage.error)
            return False

        updates = {'localOnly': False}
        if stage.value != media_url:
            updates.update(_media_updates(kind, record))
        self.store.update(kind, record.id, updates)
        return True

    def _resolve_media(self, media_kind, url):
        if not is_embedded_placeholder(url):
            return StageResult.success(url)
        if self.uploader is None:
            return StageResult.failure('media storage is not configured')
        try:
            return StageResult.success(self.uploader.upload(url, None, media_kind))
        except UploadError as e:
            return StageResult.failure(e.reason)

    def _write(self, kind, record):
        try:
            self.remote.set_document(kind, record.id, record.remote_fields())
        except RemoteError as e:
            return StageResult.failure(e)
        return StageResult.success(_media_of(kind, record)[1])
