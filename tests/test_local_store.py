"""Tests for the file-backed local record store."""

import json

from gallery.local_store import ARTWORKS_KEY, STUDENTS_DELETED_KEY, STUDENTS_KEY, LocalRecordStore
from gallery.records import ARTWORK, STUDENT, Artwork, Student, to_millis

from conftest import artwork_doc, student_doc


class TestReads:
    def test_missing_directory_reads_empty(self, store):
        assert store.load() == {STUDENT: [], ARTWORK: []}
        assert store.load_tombstones() == {STUDENT: set(), ARTWORK: set()}

    def test_corrupt_entry_reads_empty(self, store):
        store.directory.mkdir(parents=True)
        (store.directory / f'{STUDENTS_KEY}.json').write_text('{not json', encoding='utf-8')
        assert store.load()[STUDENT] == []

    def test_non_list_entry_reads_empty(self, store):
        store.directory.mkdir(parents=True)
        (store.directory / f'{ARTWORKS_KEY}.json').write_text('{"id": "a1"}', encoding='utf-8')
        assert store.load()[ARTWORK] == []

    def test_non_finite_timestamps_read_as_now(self, store):
        store.directory.mkdir(parents=True)
        raw = '[{"id": "s1", "createdAt": {"seconds": NaN}}, {"id": "s2", "createdAt": {"seconds": 1e308}}]'
        (store.directory / f'{STUDENTS_KEY}.json').write_text(raw, encoding='utf-8')
        before = to_millis(None)
        students = store.load()[STUDENT]
        assert [s.id for s in students] == ['s1', 's2']
        assert all(s.created_at >= before for s in students)

    def test_entries_are_sanitized(self, store):
        store.directory.mkdir(parents=True)
        raw = [{'id': 's1', 'name': None, 'createdAt': '5'}, 'junk']
        (store.directory / f'{STUDENTS_KEY}.json').write_text(json.dumps(raw), encoding='utf-8')
        students = store.load()[STUDENT]
        assert len(students) == 1
        assert students[0].name == ''
        assert students[0].created_at == 5


class TestWrites:
    def test_add_assigns_prefixed_id_and_prepends(self, store):
        first = store.add_local_student(Student(name='Ana'))
        second = store.add_local_student(Student(name='Bea'))
        assert first.id.startswith('student-')
        assert [s.id for s in store.load()[STUDENT]] == [second.id, first.id]

    def test_add_replaces_same_id(self, store):
        store.add_local_student(student_doc('s1', name='Ana'))
        store.add_local_student(student_doc('s1', name='Ana B.'))
        students = store.load()[STUDENT]
        assert [s.name for s in students] == ['Ana B.']

    def test_update_preserves_id_and_created_at(self, store):
        store.add_local_student(student_doc('s1', created_at=1234))
        store.update_local_student('s1', {'id': 'x', 'createdAt': 9, 'name': 'Renamed'})
        student = store.get(STUDENT, 's1')
        assert student.name == 'Renamed'
        assert student.created_at == 1234

    def test_update_artwork_ignores_non_bool_local_only(self, store):
        store.add_local_artwork(artwork_doc('a1', 's1', localOnly=True))
        store.update_local_artwork('a1', {'localOnly': 'no'})
        assert store.get(ARTWORK, 'a1').local_only is True

    def test_remove_student_cascades(self, store):
        store.save_local_students([student_doc('s1'), student_doc('s2')])
        store.save_local_artworks([artwork_doc('a1', 's1'), artwork_doc('a2', 's2')])
        store.remove_local_student('s1')
        data = store.load()
        assert [s.id for s in data[STUDENT]] == ['s2']
        assert [a.id for a in data[ARTWORK]] == ['a2']

    def test_has_pending(self, store):
        store.save_local_artworks([artwork_doc('a1', 's1')])
        assert not store.has_pending()
        store.update_local_artwork('a1', {'localOnly': True})
        assert store.has_pending()

    def test_shared_directory_sees_writes(self, store):
        store.add_local_artwork(Artwork(student_id='s1', type='Drawing'))
        other = LocalRecordStore(store.directory)
        assert len(other.load()[ARTWORK]) == 1


class TestTombstones:
    def test_mark_is_idempotent(self, store):
        store.mark_student_deleted('s1')
        store.mark_student_deleted('s1')
        raw = json.loads((store.directory / f'{STUDENTS_DELETED_KEY}.json').read_text(encoding='utf-8'))
        assert raw == ['s1']

    def test_clear_is_idempotent(self, store):
        store.mark_artwork_deleted('a1')
        store.clear_artwork_deleted('a1')
        store.clear_artwork_deleted('a1')
        assert store.load_tombstones()[ARTWORK] == set()

    def test_empty_id_is_ignored(self, store):
        store.mark_student_deleted('')
        assert store.load_tombstones()[STUDENT] == set()


class TestSubscriptions:
    def test_own_writes_notify_as_internal(self, store):
        seen = []
        store.subscribe(lambda key, external: seen.append((key, external)))
        store.add_local_student(Student(name='Ana'))
        assert seen == [(STUDENTS_KEY, False)]

    def test_external_writes_filtered_by_prefix(self, store):
        seen = []
        store.subscribe(lambda key, external: seen.append((key, external)))
        store.notify_external_write('unrelated_key')
        store.notify_external_write(STUDENTS_KEY)
        store.notify_external_write()
        assert seen == [(STUDENTS_KEY, True), (None, True)]

    def test_unsubscribe_and_failing_listener(self, store):
        seen = []

        def broken(key, external):
            raise RuntimeError('boom')

        store.subscribe(broken)
        unsubscribe = store.subscribe(lambda key, external: seen.append(key))
        store.mark_student_deleted('s1')
        unsubscribe()
        store.mark_student_deleted('s2')
        assert seen == [STUDENTS_DELETED_KEY]
