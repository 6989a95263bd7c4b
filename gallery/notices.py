"""Transient user-facing notices returned by every write flow."""

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class Notice:
    message: str
    level: str = 'success'

    def to_dict(self):
        return asdict(self)


SAVED_TO_CLOUD = Notice('Saved to the cloud.')
SAVED_LOCALLY = Notice('Saved locally; it will be published once a connection is available.', 'error')
SOME_SAVED_LOCALLY = Notice('Some items were saved locally and will be published once a connection is available.', 'error')
UPDATED = Notice('Changes saved.')
UPDATED_LOCALLY = Notice('Changes saved locally.')
UPDATE_SAVED_LOCALLY = Notice('Could not reach the cloud; changes were saved locally.', 'error')

DELETED = Notice('Deleted.')
DELETED_LOCALLY = Notice('Deleted locally; it stays hidden until the cloud confirms.', 'error')
DELETED_WITH_LEFTOVERS = Notice('Deleted, but some related items could not be removed from the cloud.', 'error')

SYNC_COMPLETE = Notice('Locally saved items were synced to the cloud.')
SYNC_PARTIAL = Notice('Some items were synced; the rest need a connection.', 'error')
SYNC_FAILED = Notice('Could not sync some items saved locally.', 'error')
