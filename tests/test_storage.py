"""Tests for the media uploader and embedded payload helpers."""

import io
from unittest.mock import MagicMock

import pytest
from google.api_core.exceptions import Forbidden
from werkzeug.datastructures import FileStorage

from gallery.errors import UploadError
from gallery.records import MediaKind
from gallery.services.storage import MediaUploader, decode_data_url, read_payload, to_data_url

from conftest import PNG_BYTES, PNG_DATA_URL


class TestPayloads:
    def test_data_url_round_trip(self):
        assert to_data_url(PNG_BYTES, 'image/png') == PNG_DATA_URL
        assert decode_data_url(PNG_DATA_URL) == (PNG_BYTES, 'image/png')

    def test_malformed_data_url(self):
        with pytest.raises(UploadError):
            decode_data_url('data:image/png;base64')
        with pytest.raises(UploadError):
            decode_data_url('data:image/png;base64,@@@')

    def test_file_storage_payload(self):
        upload = FileStorage(io.BytesIO(b'clip'), filename='clip.mp4', content_type='video/mp4')
        assert read_payload(upload, kind=MediaKind.VIDEO) == (b'clip', 'video/mp4')

    def test_bytes_fall_back_to_kind_default(self):
        assert read_payload(b'clip', kind='video') == (b'clip', 'video/mp4')

    def test_unsupported_payload(self):
        with pytest.raises(UploadError):
            read_payload(12345)


class TestMediaUploader:
    def test_uploads_and_returns_public_url(self):
        bucket = MagicMock()
        blob = bucket.blob.return_value
        blob.public_url = 'https://storage.example.com/gallery/images/x.png'
        progress = []

        url = MediaUploader(bucket).upload(PNG_DATA_URL, progress.append)

        assert url == blob.public_url
        path = bucket.blob.call_args[0][0]
        assert path.startswith('gallery/images/')
        assert path.endswith('.png')
        blob.upload_from_string.assert_called_with(PNG_BYTES, content_type='image/png')
        blob.make_public.assert_called_once()
        assert progress == [0, 100]

    def test_video_path(self):
        bucket = MagicMock()
        MediaUploader(bucket, folder='/art/').upload(b'clip', kind=MediaKind.VIDEO, filename='clip.MP4')
        assert bucket.blob.call_args[0][0].startswith('art/videos/')
        assert bucket.blob.call_args[0][0].endswith('.mp4')

    def test_unconfigured(self):
        with pytest.raises(UploadError):
            MediaUploader(None).upload(PNG_BYTES)

    def test_bucket_error_becomes_upload_error(self):
        bucket = MagicMock()
        bucket.blob.return_value.upload_from_string.side_effect = Forbidden('denied')
        with pytest.raises(UploadError) as info:
            MediaUploader(bucket).upload(PNG_BYTES)
        assert 'denied' in info.value.reason
