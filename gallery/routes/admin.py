from flask import Blueprint, jsonify
from gallery import get_service
from gallery.errors import UploadError
from gallery.forms import ArtworkBatchForm, EditStudentForm, StudentForm
from gallery.records import STUDENT
from gallery.services.gallery import ArtworkEntry

bp = Blueprint('admin', __name__, url_prefix='/admin')


def _error(message, status=400):
    return jsonify({'success': False, 'message': message}), status


def _first_error(form):
    for errors in form.errors.values():
        if errors:
            first = errors[0]
            # FieldList/FormField errors nest one level deeper.
            if isinstance(first, dict):
                for nested in first.values():
                    if nested:
                        return nested[0]
                continue
            return first
    return 'Invalid submission.'


@bp.route('/students', methods=['POST'])
def add_student():
    form = StudentForm()
    if not form.validate_on_submit():
        return _error(_first_error(form))

    cover = form.cover.data
    try:
        result = get_service().add_student(
            form.name.data.strip(),
            (form.category.data or '').strip(),
            cover,
            filename=cover.filename,
        )
    except UploadError as e:
        return _error(e.reason)
    return jsonify(result.to_dict()), 201


@bp.route('/students/<student_id>', methods=['POST'])
def update_student(student_id):
    form = EditStudentForm()
    if not form.validate_on_submit():
        return _error(_first_error(form))

    cover = form.cover.data if form.has_cover() else None
    try:
        result = get_service().update_student(
            student_id,
            form.name.data.strip(),
            (form.category.data or '').strip(),
            cover=cover,
            filename=cover.filename if cover else None,
        )
    except UploadError as e:
        return _error(e.reason)
    if result is None:
        return _error('Student not found.', 404)
    return jsonify(result.to_dict())


@bp.route('/students/<student_id>', methods=['DELETE'])
def delete_student(student_id):
    result = get_service().delete_student(student_id)
    return jsonify(result.to_dict())


@bp.route('/students/<student_id>/artworks', methods=['POST'])
def add_artworks(student_id):
    service = get_service()
    if service.state.find(STUDENT, student_id) is None:
        return _error('Add the student first.', 404)

    form = ArtworkBatchForm()
    if not form.validate_on_submit():
        return _error(_first_error(form))

    cards = form.filled_cards()
    if not cards:
        return _error('Add at least one artwork before saving.')
    if not all(card.is_complete() for card in cards):
        return _error('Every artwork needs a type and a file.')

    entries = [
        ArtworkEntry(
            type=card.type.data.strip(),
            file=card.media.data,
            media_type=card.media_type.data,
            title=(card.title.data or '').strip(),
            description=(card.description.data or '').strip(),
            filename=card.media.data.filename,
        )
        for card in cards
    ]
    try:
        result = service.add_artworks(student_id, entries)
    except UploadError as e:
        return _error(e.reason)
    return jsonify(result.to_dict()), 201


@bp.route('/artworks/<artwork_id>', methods=['DELETE'])
def delete_artwork(artwork_id):
    result = get_service().delete_artwork(artwork_id)
    return jsonify(result.to_dict())


@bp.route('/sync', methods=['POST'])
def sync():
    result = get_service().on_connectivity_restored()
    return jsonify(result.to_dict())
