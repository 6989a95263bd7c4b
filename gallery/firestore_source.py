"""
Firestore access for the gallery collections.

The sync layer only needs five things from the remote store: a live
subscription per collection, point writes by id, point deletes by id, an
add with a generated id and a query by one field. Every failure surfaces
as ``RemoteError`` so callers have a single thing to catch.
"""

import logging
from contextlib import contextmanager

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud.firestore_v1 import FieldFilter

from gallery.errors import RemoteError
from gallery.firebase_init import get_db

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _doc_to_dict(doc_snapshot):
    """Convert a Firestore DocumentSnapshot to a dict with 'id' field."""
    if not doc_snapshot.exists:
        return None
    d = doc_snapshot.to_dict() or {}
    d['id'] = doc_snapshot.id
    return d


def _query_to_list(query_ref):
    """Run a query and return a list of dicts."""
    return [d for d in (_doc_to_dict(doc) for doc in query_ref.stream()) if d is not None]


@contextmanager
def _remote_call(action, collection, doc_id=None):
    try:
        yield
    except (GoogleAPIError, GoogleAuthError) as e:
        target = f'{collection}/{doc_id}' if doc_id else collection
        logger.warning('Firestore %s on %s failed: %s', action, target, e)
        raise RemoteError(f'{action} {target} failed: {e}', collection=collection, doc_id=doc_id) from e


class FirestoreSource:
    """Remote data source backed by a Firestore client."""

    order_field = 'createdAt'

    def __init__(self, db=None):
        self._db = db
        self._watches = []

    @property
    def db(self):
        return self._db or get_db()

    def _ordered(self, collection):
        return self.db.collection(collection).order_by(self.order_field, direction='DESCENDING')

    # ========================================================================
    # Reads
    # ========================================================================

    def subscribe(self, collection, on_snapshot, on_error):
        """Stream the collection, newest first, into on_snapshot(list_of_dicts).

        If the listener cannot be attached, on_error(RemoteError) is called
        instead and None is returned.
        """
        def _callback(col_snapshot, changes, read_time):
            on_snapshot([d for d in (_doc_to_dict(doc) for doc in col_snapshot) if d is not None])

        try:
            with _remote_call('subscribe', collection):
                watch = self._ordered(collection).on_snapshot(_callback)
        except RemoteError as e:
            on_error(e)
            return None
        self._watches.append(watch)
        return watch

    def fetch(self, collection):
        """One-shot read of the whole collection, newest first."""
        with _remote_call('fetch', collection):
            return _query_to_list(self._ordered(collection))

    def query(self, collection, field, value):
        """Documents whose field equals value."""
        with _remote_call('query', collection):
            return _query_to_list(
                self.db.collection(collection)
                .where(filter=FieldFilter(field, '==', value))
            )

    # ========================================================================
    # Writes
    # ========================================================================

    def set_document(self, collection, doc_id, fields):
        """Upsert at a known id. A locally generated id becomes permanent."""
        with _remote_call('set', collection, doc_id):
            self.db.collection(collection).document(doc_id).set(fields)

    def add_document(self, collection, fields):
        """Create a document with a generated id. Returns the id."""
        with _remote_call('add', collection):
            _, doc_ref = self.db.collection(collection).add(fields)
        return doc_ref.id

    def update_document(self, collection, doc_id, fields):
        with _remote_call('update', collection, doc_id):
            self.db.collection(collection).document(doc_id).update(fields)

    def delete_document(self, collection, doc_id):
        with _remote_call('delete', collection, doc_id):
            self.db.collection(collection).document(doc_id).delete()

    def close(self):
        for watch in self._watches:
            watch.unsubscribe()
        self._watches = []
