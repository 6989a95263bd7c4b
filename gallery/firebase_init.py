import logging
import os
import firebase_admin
from firebase_admin import credentials, firestore, storage

logger = logging.getLogger(__name__)

_app = None
_db = None
_bucket = None


def _config_value(app_config, key, default=''):
    value = ''
    if app_config:
        value = app_config.get(key, '')
    return value or os.environ.get(key, default)


def is_firebase_configured(app_config=None):
    """Firebase is usable when enabled and some credential source exists."""
    enabled = app_config.get('FIREBASE_ENABLED', True) if app_config else True
    if not enabled:
        return False
    cred_path = _config_value(app_config, 'GOOGLE_APPLICATION_CREDENTIALS', './firebase-service-account.json')
    return os.path.exists(cred_path) or bool(os.environ.get('GOOGLE_CLOUD_PROJECT'))


def init_firebase(app_config=None):
    global _app, _db, _bucket

    if _app is not None:
        return

    cred_path = _config_value(app_config, 'GOOGLE_APPLICATION_CREDENTIALS', './firebase-service-account.json')

    if os.path.exists(cred_path):
        cred = credentials.Certificate(cred_path)
    else:
        cred = credentials.ApplicationDefault()

    bucket_name = _config_value(app_config, 'FIREBASE_STORAGE_BUCKET')

    options = {}
    if bucket_name:
        options['storageBucket'] = bucket_name

    _app = firebase_admin.initialize_app(cred, options=options if options else None)
    _db = firestore.client()

    if bucket_name:
        _bucket = storage.bucket()
    else:
        logger.warning('FIREBASE_STORAGE_BUCKET is not set; media uploads will fail and stay local')


def get_db():
    global _db
    if _db is None:
        init_firebase()
    return _db


def get_bucket():
    global _bucket
    if _bucket is None:
        init_firebase()
    return _bucket
