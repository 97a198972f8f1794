import re

from quizlive.services.quizzes import ScoreEntry, parse_quiz_payload
from conftest import HOST_ID, quiz_payload


def test_create_and_find_quiz(store, make_quiz):
    code = make_quiz()
    assert re.fullmatch(r'[A-Z0-9]{6}', code)
    quiz = store.find_by_code(code)
    assert quiz.title == 'Alphabet basics'
    assert quiz.created_by == HOST_ID
    assert quiz.status == 'pending'
    assert [q.correct_answer for q in quiz.questions] == ['A', 'B']
    assert quiz.questions[0].options == ('A', 'B', 'C')
    # Lookups are case-insensitive on the code
    assert store.find_by_code(code.lower()).code == code
    assert store.find_by_code('ZZZZZZ') is None


def test_codes_are_unique(make_quiz):
    codes = {make_quiz() for _ in range(20)}
    assert len(codes) == 20


def test_multiple_choice_answer_is_stored_sorted(store):
    fields = parse_quiz_payload(quiz_payload(questions=[
        {'text': 'Vowels?', 'kind': 'multiple', 'options': ['A', 'B', 'E'], 'correct_answer': ['E', 'A']},
    ]))
    quiz = store.find_by_code(store.create_quiz(fields))
    assert quiz.questions[0].correct_answer == 'A,E'
    assert quiz.questions[0].time_limit == 30


def test_add_participant_is_idempotent(store, make_quiz):
    code = make_quiz()
    assert store.add_participant(code, 'p1', 'Pat') is True
    assert store.add_participant(code, 'p1', 'Pat') is False
    assert store.add_participant('NOPE00', 'p1', 'Pat') is None
    assert store.participants(code) == [{'user_id': 'p1', 'username': 'Pat', 'score': 0}]


def test_increment_score(store, make_quiz):
    code = make_quiz()
    store.add_participant(code, 'p1', 'Pat')
    assert store.increment_score(code, 'p1', 10) == 10
    assert store.increment_score(code, 'p1', 10) == 20
    assert store.increment_score(code, 'ghost', 10) is None
    assert store.increment_score('NOPE00', 'p1', 10) is None


def test_score_history_newest_first(store, make_quiz):
    code = make_quiz()
    store.append_score_record(code, ScoreEntry('p1', 'Pat', 10))
    store.append_score_record(code, ScoreEntry('p2', 'Sam', 0))
    history = store.score_history(code)
    assert [h['user_id'] for h in history] == ['p2', 'p1']
    assert history[1]['score'] == 10
    assert history[0]['submitted_at'] is not None


def test_status_transitions_and_summaries(store, make_quiz):
    code = make_quiz()
    store.add_participant(code, 'p1', 'Pat')
    assert store.set_status(code, 'active') is True
    assert store.find_by_code(code).status == 'active'
    assert store.set_status('NOPE00', 'active') is False
    summary = next(s for s in store.list_summaries() if s['code'] == code)
    assert summary == {
        'code': code,
        'title': 'Alphabet basics',
        'category': 'Warmups',
        'status': 'active',
        'participant_count': 1,
    }


def test_record_final_scores_reconciles_missing_rows(store, make_quiz):
    code = make_quiz()
    store.add_participant(code, 'p1', 'Pat')
    store.increment_score(code, 'p1', 10)
    # p2 never reached the stored roster; p1's stored score lags behind memory
    store.record_final_scores(code, [ScoreEntry('p1', 'Pat', 20), ScoreEntry('p2', 'Sam', 10)])
    scores = {p['user_id']: p['score'] for p in store.participants(code)}
    assert scores == {'p1': 20, 'p2': 10}
    assert store.find_by_code(code).status == 'completed'
    assert [(p['user_id'], p['rank']) for p in store.final_standings(code)] == [('p1', 1), ('p2', 2)]


def test_final_standings_skip_unranked_rows(store, make_quiz):
    code = make_quiz()
    for identity, name in [('p1', 'Pat'), ('p2', 'Sam'), ('p3', 'Kai')]:
        store.add_participant(code, identity, name)
    # p2 registered but never made it into the played session
    store.record_final_scores(code, [ScoreEntry('p3', 'Kai', 10), ScoreEntry('p1', 'Pat', 0)])
    assert [(p['user_id'], p['rank'], p['score']) for p in store.final_standings(code)] == [
        ('p3', 1, 10), ('p1', 2, 0),
    ]
    assert store.final_standings('NOPE00') is None


def test_remove_participant(store, make_quiz):
    code = make_quiz()
    store.add_participant(code, 'p1', 'Pat')
    store.add_participant(code, 'p2', 'Sam')
    assert store.remove_participant(code, 'p1') is True
    assert store.remove_participant(code, 'p1') is False
    assert store.remove_participant('NOPE00', 'p2') is False
    # Rejoining appends a fresh row at the end of the roster
    store.add_participant(code, 'p1', 'Pat')
    assert [p['user_id'] for p in store.participants(code)] == ['p2', 'p1']
