import logging
from flask import Flask, current_app
from flask_socketio import SocketIO
from flask_wtf.csrf import CSRFProtect
from config import Config

socketio = SocketIO()
csrf = CSRFProtect()

logger = logging.getLogger(__name__)


def get_service():
    """The GalleryService bound to the current app."""
    return current_app.extensions['gallery']


def _build_service(app):
    from gallery.firebase_init import get_bucket, init_firebase, is_firebase_configured
    from gallery.firestore_source import FirestoreSource
    from gallery.local_store import LocalRecordStore
    from gallery.services.gallery import GalleryService
    from gallery.services.storage import MediaUploader

    store = LocalRecordStore(app.config['LOCAL_STORE_DIR'])
    remote = None
    uploader = None

    if is_firebase_configured(app.config):
        init_firebase(app.config)
        remote = FirestoreSource()
        uploader = MediaUploader(get_bucket(), folder=app.config.get('MEDIA_FOLDER', 'gallery'))
    else:
        logger.warning('Firebase is not configured; the gallery runs from the local store only')

    return GalleryService(
        store,
        remote=remote,
        uploader=uploader,
        retry_deletes_on_reconnect=app.config.get('RETRY_DELETES_ON_RECONNECT', False),
    )


def create_app(config_class=Config, service=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(level=app.config.get('LOG_LEVEL', 'INFO'))

    csrf.init_app(app)

    if service is None:
        service = _build_service(app)
    app.extensions['gallery'] = service

    # CORS origins
    allowed_origins = []
    cors_origins = app.config.get('CORS_ALLOWED_ORIGINS', '')
    if cors_origins:
        for origin in cors_origins.split(','):
            origin = origin.strip()
            if origin:
                allowed_origins.append(origin)

    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins if allowed_origins else None,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'eventlet')
    )

    # Register blueprints
    from gallery.routes import admin, main
    app.register_blueprint(main.bp)
    app.register_blueprint(admin.bp)

    from gallery import events
    events.init_app(service)

    service.start(drain=app.config.get('DRAIN_ON_START', True))

    return app
