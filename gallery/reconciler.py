"""
Merging remote snapshots with the local cache.

``merge_with_local`` is pure and never looks at tombstones. Callers always
follow it with ``filter_deleted`` before showing or persisting anything,
on every snapshot, because a snapshot can race a delete confirmation.
"""

import re
import threading

from gallery.records import ARTWORK, COLLECTIONS, STUDENT, record_id, sort_newest_first


def merge_with_local(remote_items, local_items):
    """Union keyed by id. Remote copies win; local copies fill the gaps."""
    merged = {}
    for item in remote_items:
        item_id = record_id(item)
        if item_id:
            merged[item_id] = item
    for item in local_items:
        item_id = record_id(item)
        if item_id and item_id not in merged:
            merged[item_id] = item
    return list(merged.values())


def filter_deleted(items, deleted_ids):
    return [item for item in items if record_id(item) not in deleted_ids]


def reconcile(remote_items, local_items, deleted_ids):
    """merge -> filter tombstones -> newest first."""
    return sort_newest_first(filter_deleted(merge_with_local(remote_items, local_items), deleted_ids))


def normalize(value):
    return re.sub(r'\s+', ' ', str(value or '')).lower().strip()


class GalleryState:
    """In-memory view of both collections shared by every event source.

    Mutations go through ``replace`` under a re-entrant lock so snapshot
    callbacks arriving on SDK threads never interleave with user edits.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._items = {STUDENT: [], ARTWORK: []}
        self._ready = {STUDENT: False, ARTWORK: False}

    @property
    def lock(self):
        return self._lock

    @property
    def students(self):
        with self._lock:
            return list(self._items[STUDENT])

    @property
    def artworks(self):
        with self._lock:
            return list(self._items[ARTWORK])

    @property
    def data_ready(self):
        with self._lock:
            return dict(self._ready)

    def items(self, kind):
        with self._lock:
            return list(self._items[kind])

    def is_ready(self, kind=None):
        with self._lock:
            if kind is not None:
                return self._ready[kind]
            return all(self._ready[k] for k in COLLECTIONS)

    def replace(self, kind, items, ready=None):
        with self._lock:
            self._items[kind] = list(items)
            if ready is not None:
                self._ready[kind] = ready

    def mark_ready(self, kind):
        with self._lock:
            self._ready[kind] = True

    def find(self, kind, item_id):
        with self._lock:
            for item in self._items[kind]:
                if item.id == item_id:
                    return item
        return None

    def prepend(self, kind, item):
        with self._lock:
            self._items[kind] = [item] + [i for i in self._items[kind] if i.id != item.id]

    def discard(self, kind, item_id):
        with self._lock:
            self._items[kind] = [i for i in self._items[kind] if i.id != item_id]

    def discard_student(self, student_id):
        """Drop a student and its artworks from the view."""
        with self._lock:
            self._items[STUDENT] = [s for s in self._items[STUDENT] if s.id != student_id]
            self._items[ARTWORK] = [a for a in self._items[ARTWORK] if a.student_id != student_id]

    # -- Queries -------------------------------------------------------------

    def visible_artworks(self):
        """Artworks whose student is in view. Orphans are hidden, not errors."""
        with self._lock:
            artworks = list(self._items[ARTWORK])
            if not self._ready[STUDENT]:
                return artworks
            student_ids = {s.id for s in self._items[STUDENT]}
        return [a for a in artworks if a.student_id in student_ids]

    def artworks_for(self, student_id):
        return [a for a in self.visible_artworks() if a.student_id == student_id]

    def artwork_count(self, student_id):
        return len(self.artworks_for(student_id))

    def categories(self):
        seen = []
        for student in self.students:
            if student.category and student.category not in seen:
                seen.append(student.category)
        for artwork in self.visible_artworks():
            if artwork.type and artwork.type not in seen:
                seen.append(artwork.type)
        return seen

    def search(self, term='', category='all'):
        """Students whose name contains term and who match category.

        A student matches a category through its own category or through the
        type of any of its artworks.
        """
        term = normalize(term)
        wanted = normalize(category) if category and category != 'all' else None
        artworks = self.visible_artworks()
        results = []
        for student in self.students:
            if term not in normalize(student.name):
                continue
            if wanted is not None:
                own = normalize(student.category) == wanted
                via_artwork = any(
                    a.student_id == student.id and normalize(a.type) == wanted
                    for a in artworks
                )
                if not own and not via_artwork:
                    continue
            results.append(student)
        return results
