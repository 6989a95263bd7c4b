"""Exceptions raised by the remote data source and the media uploader.

The write flows in ``gallery.services`` catch them around every remote call
and fall back to the local store instead of failing the request.
"""


class GallerySyncError(Exception):
    """Base class for failures talking to the cloud side."""


class RemoteError(GallerySyncError):
    """A Firestore read, write or delete did not go through."""

    def __init__(self, message, collection=None, doc_id=None):
        super().__init__(message)
        self.collection = collection
        self.doc_id = doc_id


class UploadError(GallerySyncError):
    """The media uploader could not produce a durable URL."""

    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason
