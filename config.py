import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ('true', '1', 'yes')


class Config:
    SECRET_KEY = os.environ.get('SESSION_SECRET') or os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None

    LOCAL_STORE_DIR = os.environ.get('LOCAL_STORE_DIR', './.gallery_store')
    GOOGLE_APPLICATION_CREDENTIALS = os.environ.get('GOOGLE_APPLICATION_CREDENTIALS', './firebase-service-account.json')
    FIREBASE_ENABLED = _env_flag('FIREBASE_ENABLED', 'true')
    FIREBASE_STORAGE_BUCKET = os.environ.get('FIREBASE_STORAGE_BUCKET', '')
    MEDIA_FOLDER = os.environ.get('MEDIA_FOLDER', 'gallery')

    DRAIN_ON_START = _env_flag('DRAIN_ON_START', 'true')
    RETRY_DELETES_ON_RECONNECT = _env_flag('RETRY_DELETES_ON_RECONNECT')

    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'eventlet')
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    FIREBASE_ENABLED = False
    DRAIN_ON_START = False
    SOCKETIO_ASYNC_MODE = 'threading'
