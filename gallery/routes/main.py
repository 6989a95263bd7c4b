from flask import Blueprint, jsonify, request
from gallery import get_service
from gallery.records import STUDENT

bp = Blueprint('main', __name__)


def _student_json(state, student):
    data = student.to_dict()
    data['artworkCount'] = state.artwork_count(student.id)
    return data


@bp.route('/health')
def health():
    return jsonify({'status': 'ok'}), 200


@bp.route('/api/status')
def status():
    return jsonify(get_service().status())


@bp.route('/api/students')
def students():
    state = get_service().state
    if not state.is_ready():
        # Nothing known yet; the client keeps showing its loading state.
        return jsonify({'ready': False, 'count': 0, 'students': [], 'categories': []})

    term = request.args.get('q', '')
    category = request.args.get('category', 'all')
    results = state.search(term, category)
    return jsonify({
        'ready': True,
        'count': len(results),
        'students': [_student_json(state, s) for s in results],
        'categories': state.categories(),
    })


@bp.route('/api/students/<student_id>')
def student_detail(student_id):
    service = get_service()
    if student_id in service.store.load_tombstones()[STUDENT]:
        return jsonify({'success': False, 'message': 'This student has been deleted.'}), 404

    student = service.state.find(STUDENT, student_id)
    if student is None:
        return jsonify({'success': False, 'message': 'Student not found.'}), 404

    return jsonify({
        'student': _student_json(service.state, student),
        'artworks': [a.to_dict() for a in service.state.artworks_for(student_id)],
    })
