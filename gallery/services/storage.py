import base64
import binascii
import logging
import mimetypes
import os
import uuid

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError

from gallery.errors import UploadError
from gallery.records import MediaKind, is_embedded_placeholder

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPES = {
    MediaKind.IMAGE: 'image/jpeg',
    MediaKind.VIDEO: 'video/mp4',
}


def decode_data_url(url):
    """Split a data: URL into (bytes, content_type)."""
    if not is_embedded_placeholder(url):
        raise UploadError('Not an embedded media payload')
    header, sep, body = url.partition(',')
    if not sep:
        raise UploadError('Malformed embedded media payload')
    meta = header[len('data:'):].split(';')
    content_type = meta[0] or 'application/octet-stream'
    try:
        if 'base64' in meta[1:]:
            data = base64.b64decode(body, validate=True)
        else:
            data = body.encode('utf-8')
    except (binascii.Error, ValueError) as e:
        raise UploadError(f'Malformed embedded media payload: {e}') from e
    return data, content_type


def to_data_url(file_data, content_type=None):
    """Embed file bytes inline so they can wait in the local store for upload."""
    encoded = base64.b64encode(file_data).decode('ascii')
    return f'data:{content_type or "application/octet-stream"};base64,{encoded}'


def read_payload(payload, filename=None, kind=MediaKind.IMAGE):
    """Normalize bytes, a data: URL or a file-like object to (bytes, content_type).

    File-like objects (werkzeug FileStorage included) are read once; callers
    keep the returned bytes for the local fallback.
    """
    kind = MediaKind(kind)
    if isinstance(payload, str):
        return decode_data_url(payload)

    content_type = getattr(payload, 'mimetype', None) or getattr(payload, 'content_type', None)
    if isinstance(payload, (bytes, bytearray)):
        data = bytes(payload)
    elif hasattr(payload, 'read'):
        data = payload.read()
        filename = filename or getattr(payload, 'filename', None)
    else:
        raise UploadError(f'Unsupported media payload: {type(payload).__name__}')

    if not content_type and filename:
        content_type, _ = mimetypes.guess_type(filename)
    return data, content_type or DEFAULT_CONTENT_TYPES[kind]


def upload_file(bucket, file_data, destination_path, content_type=None):
    """Upload file bytes to Firebase Storage and make them publicly readable.

    Args:
        bucket: a google.cloud.storage Bucket
        file_data: bytes
        destination_path: path in the bucket (e.g. 'gallery/images/abc.png')
        content_type: MIME type

    Returns:
        The blob's public URL
    """
    blob = bucket.blob(destination_path)
    blob.upload_from_string(file_data, content_type=content_type)
    blob.make_public()
    return blob.public_url


class MediaUploader:
    """Turns media payloads into durable URLs in the Firebase Storage bucket."""

    def __init__(self, bucket=None, folder='gallery'):
        self.bucket = bucket
        self.folder = folder.strip('/')

    def is_configured(self):
        return self.bucket is not None

    def _destination(self, kind, content_type, filename):
        ext = os.path.splitext(filename)[1].lower() if filename else ''
        if not ext:
            ext = mimetypes.guess_extension(content_type or '') or ''
        return f'{self.folder}/{kind.value}s/{uuid.uuid4().hex}{ext}'

    def upload(self, payload, on_progress=None, kind=MediaKind.IMAGE, filename=None):
        """Upload payload and return its durable URL.

        Raises:
            UploadError: storage is not configured, the payload is unreadable
                or the bucket rejected the upload.
        """
        if not self.is_configured():
            raise UploadError('Media storage is not configured')
        kind = MediaKind(kind)
        data, content_type = read_payload(payload, filename, kind)
        if on_progress:
            on_progress(0)
        try:
            url = upload_file(self.bucket, data, self._destination(kind, content_type, filename), content_type)
        except (GoogleAPIError, GoogleAuthError, OSError) as e:
            logger.warning('Media upload failed: %s', e)
            raise UploadError(f'Media upload failed: {e}') from e
        if on_progress:
            on_progress(100)
        return url
