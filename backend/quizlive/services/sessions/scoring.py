from typing import Any, Tuple

from quizlive.errors import BadRequest
from quizlive.services.quizzes.definitions import QuestionDefinition, serialize_selection


def normalize_answer(question: QuestionDefinition, answer: Any) -> str:
    """Coerce a submitted answer into the stored correct-answer format."""
    if answer is None:
        raise BadRequest('answer is required')
    if question.kind == 'multiple':
        return serialize_selection(answer)
    if isinstance(answer, bool) or not isinstance(answer, (str, int, float)):
        raise BadRequest('answer must be a string')
    return str(answer)


def score_answer(question: QuestionDefinition, answer: Any, points_per_correct: int) -> Tuple[bool, int]:
    """Return (correct, points) for one submission.

    Single-choice and text answers must match exactly; multiple-choice answers
    are compared as sets. No partial credit.
    """
    correct = normalize_answer(question, answer) == question.correct_answer
    return correct, (points_per_correct if correct else 0)
