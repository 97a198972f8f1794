from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user
from quizlive import coordinator
from quizlive.errors import BadRequest, InvalidTransition, NotFound, Unauthorized
from quizlive.models import User
from quizlive.services.quizzes import parse_quiz_payload
from quizlive.services.sessions import normalize_code, project, summarize


quizzes = Blueprint('quizzes', __name__)


def _store():
    return coordinator.store


def _request_identity(data=None):
    """The logged-in user, else the identity the client put in the body or query."""
    if current_user.is_authenticated:
        return current_user.identity
    data = data or {}
    identity = (
        data.get('user_id') or data.get('userId') or data.get('created_by') or data.get('createdBy')
        or request.args.get('user_id') or request.args.get('userId')
    )
    if identity is None:
        return None
    if User.by_identity(identity) is not None:
        # Registered identities can only be used through their login session
        raise Unauthorized('Log in to act as this user')
    return str(identity)


def _require_quiz(code):
    quiz = _store().find_by_code(normalize_code(code))
    if quiz is None:
        raise NotFound('Quiz not found')
    return quiz


@quizzes.route('/create', methods=['POST'])
def create_quiz():
    data = request.get_json(silent=True) or {}
    if current_user.is_authenticated:
        data = dict(data, created_by=current_user.identity, creator_name=current_user.username)
    cfg = current_app.config
    fields = parse_quiz_payload(
        data,
        default_time_limit=int(cfg.get('DEFAULT_TIME_LIMIT_SEC', 30)),
        max_time_limit=int(cfg.get('MAX_TIME_LIMIT_SEC', 600)),
    )
    code = _store().create_quiz(fields)
    return jsonify({
        'success': True,
        'code': code,
        'message': 'Quiz created successfully',
    }), 201


@quizzes.route('/list', methods=['GET'])
def list_quizzes():
    return jsonify(_store().list_summaries())


@quizzes.route('/<string:code>', methods=['GET'])
def get_quiz(code):
    quiz = _require_quiz(code)
    payload = quiz.sanitized()
    payload['participant_count'] = len(_store().participants(quiz.code) or [])
    payload['is_creator'] = quiz.created_by == _request_identity()
    return jsonify(payload)


@quizzes.route('/<string:code>/admin', methods=['GET'])
def get_quiz_admin(code):
    quiz = _require_quiz(code)
    if quiz.created_by != _request_identity():
        raise Unauthorized('Only the quiz creator can view the answers')
    payload = quiz.to_dict()
    payload['participants'] = _store().participants(quiz.code) or []
    return jsonify(payload)


@quizzes.route('/join', methods=['POST'])
def join_quiz():
    """Register in the quiz roster ahead of connecting to the live session."""
    data = request.get_json(silent=True) or {}
    code = normalize_code(data.get('code'))
    identity = _request_identity(data)
    username = current_user.username if current_user.is_authenticated else data.get('username')
    if not all([code, identity, username]):
        raise BadRequest('code, user_id and username are required')

    quiz = _require_quiz(code)
    if quiz.status != 'pending':
        raise InvalidTransition('Quiz has already started')
    added = _store().add_participant(quiz.code, identity, username)
    payload = quiz.sanitized()
    payload['participants'] = _store().participants(quiz.code) or []
    payload['participant_count'] = len(payload['participants'])
    return jsonify({
        'success': True,
        'message': 'Joined quiz successfully' if added else 'Already joined quiz',
        'quiz': payload,
    })


@quizzes.route('/<string:code>/start', methods=['POST'])
def start_quiz(code):
    data = request.get_json(silent=True) or {}
    started = coordinator.start(normalize_code(code), _request_identity(data))
    return jsonify(dict(started, success=True))


@quizzes.route('/<string:code>/submit-answer', methods=['POST'])
def submit_answer(code):
    # Same entry point as the realtime submit_answer: an answer is scored once
    data = request.get_json(silent=True) or {}
    question_index = data.get('question_index', data.get('questionIndex'))
    result = coordinator.submit_answer(normalize_code(code), _request_identity(data), question_index, data.get('answer'))
    return jsonify(dict(result, success=True))


@quizzes.route('/<string:code>/end', methods=['POST'])
def end_quiz(code):
    data = request.get_json(silent=True) or {}
    ended = coordinator.end(normalize_code(code), _request_identity(data))
    return jsonify(dict(ended, success=True, show_leaderboard=True))


@quizzes.route('/<string:code>/session', methods=['GET'])
def session_state(code):
    return jsonify(coordinator.snapshot(normalize_code(code)))


@quizzes.route('/leaderboard/<string:code>', methods=['GET'])
def leaderboard(code):
    quiz = _require_quiz(code)
    points = int(current_app.config.get('POINTS_PER_CORRECT', 10))
    if quiz.status == 'completed':
        # The ranking written at completion, identical to the ``ended`` event
        participants = _store().final_standings(quiz.code) or []
    else:
        participants = _store().participants(quiz.code) or []
    standings = project(
        [(p['user_id'], p['username'], p['score']) for p in participants],
        quiz.question_count,
        points,
    )
    return jsonify({
        'success': True,
        'quiz': {
            'title': quiz.title,
            'category': quiz.category,
            'creator_name': quiz.creator_name,
            'status': quiz.status,
            'total_questions': quiz.question_count,
            'total_participants': len(participants),
        },
        'leaderboard': [s.to_dict() for s in standings],
        'submission_history': _store().score_history(quiz.code) or [],
        'metadata': summarize(standings),
    })


@quizzes.route('/leaderboard/<string:code>/live', methods=['GET'])
def live_leaderboard(code):
    return jsonify(dict(coordinator.live_leaderboard(normalize_code(code)), success=True))
