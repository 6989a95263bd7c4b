"""
Shared pytest fixtures for the gallery tests.

Provides:
- A file-backed local store in a temporary directory
- In-memory stand-ins for Firestore and the media uploader
- A GalleryService wired to them
- A Flask app and test client using TestingConfig
"""

import base64
from datetime import datetime, timezone
from itertools import count

import pytest
from google.cloud.firestore import SERVER_TIMESTAMP

from config import TestingConfig
from gallery import create_app
from gallery.errors import RemoteError, UploadError
from gallery.local_store import LocalRecordStore
from gallery.records import ARTWORK, STUDENT
from gallery.services.gallery import GalleryService

PNG_BYTES = b'\x89PNG\r\n\x1a\nfake-image'
PNG_DATA_URL = 'data:image/png;base64,' + base64.b64encode(PNG_BYTES).decode('ascii')
READS = ('subscribe', 'fetch', 'query')


# ============================================================================
# Fakes
# ============================================================================

class FakeRemote:
    """In-memory remote data source with switchable failures.

    Every call is appended to ``calls`` as (action, collection, doc_id).
    """

    def __init__(self):
        self.docs = {STUDENT: {}, ARTWORK: {}}
        self.calls = []
        self.subscribers = {STUDENT: [], ARTWORK: []}
        self.fail_writes = False
        self.fail_query = False
        self.fail_subscribe = False
        self.silent_subscribe = False
        self.fail_deletes = set()
        self.live = False
        self._ids = count(1)

    def _check_write(self, collection, doc_id=None):
        if self.fail_writes:
            raise RemoteError('offline', collection=collection, doc_id=doc_id)

    def _stored(self, fields):
        data = dict(fields)
        if data.get('createdAt') is SERVER_TIMESTAMP:
            data['createdAt'] = datetime.now(timezone.utc)
        return data

    def snapshot(self, collection):
        docs = [dict(d, id=doc_id) for doc_id, d in self.docs[collection].items()]
        return docs

    def push(self, collection):
        """Deliver the current contents to every subscriber of collection."""
        for on_snapshot, _ in self.subscribers[collection]:
            on_snapshot(self.snapshot(collection))

    def _changed(self, collection):
        if self.live:
            self.push(collection)

    def subscribe(self, collection, on_snapshot, on_error):
        self.calls.append(('subscribe', collection, None))
        if self.fail_subscribe:
            on_error(RemoteError('listener refused', collection=collection))
            return None
        self.subscribers[collection].append((on_snapshot, on_error))
        if not self.silent_subscribe:
            on_snapshot(self.snapshot(collection))
        return object()

    def fail_subscribers(self, collection):
        for _, on_error in self.subscribers[collection]:
            on_error(RemoteError('stream dropped', collection=collection))

    def fetch(self, collection):
        self.calls.append(('fetch', collection, None))
        if self.fail_query:
            raise RemoteError('offline', collection=collection)
        return self.snapshot(collection)

    def query(self, collection, field, value):
        self.calls.append(('query', collection, value))
        if self.fail_query:
            raise RemoteError('offline', collection=collection)
        return [d for d in self.snapshot(collection) if d.get(field) == value]

    def set_document(self, collection, doc_id, fields):
        self.calls.append(('set', collection, doc_id))
        self._check_write(collection, doc_id)
        self.docs[collection][doc_id] = self._stored(fields)
        self._changed(collection)

    def add_document(self, collection, fields):
        self._check_write(collection)
        doc_id = f'{collection}-remote-{next(self._ids)}'
        self.calls.append(('add', collection, doc_id))
        self.docs[collection][doc_id] = self._stored(fields)
        self._changed(collection)
        return doc_id

    def update_document(self, collection, doc_id, fields):
        self.calls.append(('update', collection, doc_id))
        self._check_write(collection, doc_id)
        self.docs[collection].setdefault(doc_id, {}).update(fields)
        self._changed(collection)

    def delete_document(self, collection, doc_id):
        self.calls.append(('delete', collection, doc_id))
        if self.fail_writes or doc_id in self.fail_deletes:
            raise RemoteError('offline', collection=collection, doc_id=doc_id)
        self.docs[collection].pop(doc_id, None)
        self._changed(collection)

    def writes(self, action=None):
        return [c for c in self.calls if c[0] not in READS and (action is None or c[0] == action)]


class FakeUploader:
    def __init__(self):
        self.fail = False
        self.uploads = []

    def upload(self, payload, on_progress=None, kind='image', filename=None):
        if self.fail:
            raise UploadError('upload rejected')
        if on_progress:
            on_progress(0)
        self.uploads.append((payload, kind, filename))
        url = f'https://cdn.example.com/{len(self.uploads)}'
        if on_progress:
            on_progress(100)
        return url


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store(tmp_path):
    return LocalRecordStore(tmp_path / 'store')


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def service(store, remote, uploader):
    svc = GalleryService(store, remote=remote, uploader=uploader)
    yield svc
    svc.close()


@pytest.fixture
def offline_service(store):
    svc = GalleryService(store)
    yield svc
    svc.close()


@pytest.fixture
def app(service):
    return create_app(TestingConfig, service=service)


@pytest.fixture
def client(app):
    return app.test_client()


def student_doc(doc_id, name='Ana', category='Painting', created_at=1000, **extra):
    data = {
        'id': doc_id,
        'name': name,
        'category': category,
        'coverUrl': f'https://cdn.example.com/{doc_id}.png',
        'createdAt': created_at,
    }
    data.update(extra)
    return data


def artwork_doc(doc_id, student_id, type_='Drawing', created_at=1000, **extra):
    data = {
        'id': doc_id,
        'studentId': student_id,
        'type': type_,
        'title': f'Work {doc_id}',
        'description': '',
        'mediaType': 'image',
        'imageUrl': f'https://cdn.example.com/{doc_id}.png',
        'createdAt': created_at,
    }
    data.update(extra)
    return data
