"""Immutable quiz definitions and validation of authoring payloads.

The store hands these value objects to the session coordinator so that no ORM
instance ever crosses an app-context boundary (timer callbacks run in their
own context).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from quizlive.errors import BadRequest

QUESTION_KINDS = ('single', 'multiple', 'text')
QUIZ_STATUSES = ('pending', 'active', 'completed')


def serialize_selection(value: Any) -> str:
    """Canonical form of a multi-select answer: sorted, comma-joined, de-duplicated."""
    if isinstance(value, str):
        items: Iterable[Any] = value.split(',')
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        raise BadRequest('Multiple-choice answers must be a list or a comma-separated string')
    cleaned = {str(item).strip() for item in items}
    cleaned.discard('')
    return ','.join(sorted(cleaned))


@dataclass(frozen=True)
class QuestionDefinition:
    text: str
    kind: str
    options: Tuple[str, ...]
    correct_answer: str
    time_limit: int

    def sanitized(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'kind': self.kind,
            'options': list(self.options),
            'time_limit': self.time_limit,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.sanitized()
        data['correct_answer'] = self.correct_answer
        return data


@dataclass(frozen=True)
class QuizDefinition:
    code: str
    title: str
    category: str
    created_by: str
    creator_name: str
    status: str = 'pending'
    questions: Tuple[QuestionDefinition, ...] = field(default_factory=tuple)

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def _header(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'title': self.title,
            'category': self.category,
            'creator_name': self.creator_name,
            'status': self.status,
            'question_count': self.question_count,
        }

    def sanitized(self) -> Dict[str, Any]:
        data = self._header()
        data['questions'] = [q.sanitized() for q in self.questions]
        return data

    def to_dict(self) -> Dict[str, Any]:
        data = self._header()
        data['created_by'] = self.created_by
        data['questions'] = [q.to_dict() for q in self.questions]
        return data


@dataclass(frozen=True)
class ScoreEntry:
    """One participant's score at a point in time (audit records, final scores)."""
    identity: str
    display_name: str
    score: int
    submitted_at: Optional[datetime] = None


def _required_text(data: Dict[str, Any], *keys: str, label: Optional[str] = None) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    raise BadRequest(f"'{label or keys[0]}' is required")


def _parse_question(raw: Any, position: int, default_time_limit: int, max_time_limit: int) -> QuestionDefinition:
    if not isinstance(raw, dict):
        raise BadRequest(f'Question {position + 1} must be an object')
    label = f'Question {position + 1}'
    text = _required_text(raw, 'text', label=f'{label} text')
    kind = (raw.get('kind') or raw.get('type') or 'single')
    if kind not in QUESTION_KINDS:
        raise BadRequest(f"{label}: kind must be one of {', '.join(QUESTION_KINDS)}")

    raw_options = raw.get('options') or []
    if not isinstance(raw_options, list):
        raise BadRequest(f'{label}: options must be a list')
    options = tuple(str(o).strip() for o in raw_options if str(o).strip())
    if len(set(options)) != len(options):
        raise BadRequest(f'{label}: options must be unique')

    correct = raw.get('correct_answer', raw.get('correctAnswer'))
    if kind == 'single':
        if len(options) < 2:
            raise BadRequest(f'{label}: single-choice questions need at least two options')
        correct = str(correct).strip() if correct is not None else ''
        if correct not in options:
            raise BadRequest(f'{label}: correct answer must be one of the options')
    elif kind == 'multiple':
        if len(options) < 2:
            raise BadRequest(f'{label}: multiple-choice questions need at least two options')
        if any(',' in o for o in options):
            raise BadRequest(f'{label}: multiple-choice options cannot contain commas')
        if correct is None:
            raise BadRequest(f'{label}: correct answer is required')
        correct = serialize_selection(correct)
        if not correct or any(item not in options for item in correct.split(',')):
            raise BadRequest(f'{label}: correct answers must be drawn from the options')
    else:
        correct = str(correct) if correct is not None else ''
        if not correct.strip():
            raise BadRequest(f'{label}: correct answer is required')

    time_limit = raw.get('time_limit', raw.get('timeLimit'))
    if time_limit in (None, ''):
        time_limit = default_time_limit
    try:
        time_limit = int(time_limit)
    except (TypeError, ValueError):
        raise BadRequest(f'{label}: time limit must be a number of seconds')
    if not 1 <= time_limit <= max_time_limit:
        raise BadRequest(f'{label}: time limit must be between 1 and {max_time_limit} seconds')

    return QuestionDefinition(text=text, kind=kind, options=options, correct_answer=correct, time_limit=time_limit)


def parse_quiz_payload(data: Any, default_time_limit: int = 30, max_time_limit: int = 600) -> Dict[str, Any]:
    """Validate a quiz authoring payload.

    Accepts both snake_case keys and the camelCase keys older clients send
    (``createdBy``, ``correctAnswer``, ``timeLimit``). Returns the normalized
    fields; raises ``BadRequest`` describing the first problem found.
    """
    if not isinstance(data, dict):
        raise BadRequest('Quiz payload must be a JSON object')
    raw_questions = data.get('questions')
    if not isinstance(raw_questions, list) or not raw_questions:
        raise BadRequest('At least one question is required')
    questions: List[QuestionDefinition] = [
        _parse_question(raw, i, default_time_limit, max_time_limit) for i, raw in enumerate(raw_questions)
    ]
    return {
        'title': _required_text(data, 'title'),
        'category': _required_text(data, 'category'),
        'created_by': _required_text(data, 'created_by', 'createdBy', label='created_by'),
        'creator_name': _required_text(data, 'creator_name', 'creatorName', label='creator_name'),
        'questions': questions,
    }
