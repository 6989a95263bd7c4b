"""Tests for the Socket.IO events."""

import pytest

from config import TestingConfig
from gallery import create_app, socketio
from gallery.local_store import STUDENTS_KEY, LocalRecordStore
from gallery.records import STUDENT
from gallery.services.gallery import GalleryService

from conftest import student_doc


@pytest.fixture
def socket_client(app):
    client = socketio.test_client(app)
    yield client
    if client.is_connected():
        client.disconnect()


def _names(received):
    return [message['name'] for message in received]


def test_connect_sends_status(socket_client):
    received = socket_client.get_received()
    status = next(m for m in received if m['name'] == 'gallery_status')
    assert status['args'][0]['online'] is True


def test_connectivity_restored_drains(socket_client, store, remote):
    socket_client.get_received()
    store.add_local_student(student_doc('student-local', localOnly=True))

    socket_client.emit('connectivity_restored')

    received = socket_client.get_received()
    result = next(m for m in received if m['name'] == 'sync_result')
    assert result['args'][0]['synced'] == 1
    assert 'gallery_changed' in _names(received)
    assert 'student-local' in remote.docs[STUDENT]


def test_storage_changed_reloads_view(socket_client, store, service):
    socket_client.get_received()
    LocalRecordStore(store.directory).add_local_student(student_doc('from-elsewhere'))

    socket_client.emit('storage_changed', {'key': STUDENTS_KEY})

    assert service.state.find(STUDENT, 'from-elsewhere') is not None
    assert 'gallery_changed' in _names(socket_client.get_received())


def test_storage_changed_ignores_foreign_keys(socket_client, store, service):
    socket_client.get_received()
    LocalRecordStore(store.directory).add_local_student(student_doc('from-elsewhere'))

    socket_client.emit('storage_changed', {'key': 'theme'})

    assert service.state.find(STUDENT, 'from-elsewhere') is None


def test_handlers_attach_to_every_app(store, remote, uploader):
    """Each app builds its own Socket.IO server; the handlers follow it."""
    first = create_app(TestingConfig, service=GalleryService(store, remote, uploader))
    second = create_app(TestingConfig, service=GalleryService(store, remote, uploader))
    assert first is not second

    client = socketio.test_client(second)
    client.get_received()
    store.add_local_student(student_doc('student-local', localOnly=True))

    client.emit('connectivity_restored')

    assert 'sync_result' in _names(client.get_received())
    assert 'student-local' in remote.docs[STUDENT]
    client.disconnect()
