from flask_socketio import emit
from gallery import get_service, socketio


def init_app(service):
    """Attach the event handlers to the current Socket.IO server and
    broadcast gallery_changed whenever the service's view changes.

    Must run after ``socketio.init_app``: every app gets a fresh server.
    """
    socketio.on_event('connect', handle_connect)
    socketio.on_event('connectivity_restored', handle_connectivity_restored)
    socketio.on_event('storage_changed', handle_storage_changed)
    return bind_service(service)


def bind_service(service):
    def _broadcast(reason):
        socketio.emit('gallery_changed', {
            'reason': reason,
            'data_ready': service.state.data_ready,
        })

    return service.add_listener(_broadcast)


def handle_connect():
    emit('gallery_status', get_service().status())


def handle_connectivity_restored(data=None):
    result = get_service().on_connectivity_restored()
    emit('sync_result', result.to_dict())


def handle_storage_changed(data=None):
    """Another process wrote to the shared local store."""
    key = (data or {}).get('key')
    get_service().store.notify_external_write(key)
