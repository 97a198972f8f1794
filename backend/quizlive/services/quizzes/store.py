"""SQL-backed quiz store.

All lookups are by quiz code. Methods return plain values or the immutable
definitions from ``definitions`` rather than ORM rows. Database failures are
rolled back and surfaced as ``StoreUnavailable``.
"""

import functools
from datetime import datetime, timezone
from typing import Iterable, List, Optional
import json

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from quizlive import db
from quizlive.errors import BadRequest, StoreUnavailable
from quizlive.models import Participant, Question, Quiz, ScoreRecord
from .definitions import QUIZ_STATUSES, QuestionDefinition, QuizDefinition, ScoreEntry


def _guarded(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"[store-error] op={fn.__name__} error={exc}")
            raise StoreUnavailable(f'Quiz store failed during {fn.__name__}') from exc
    return wrapper


def _to_definition(quiz: Quiz) -> QuizDefinition:
    return QuizDefinition(
        code=quiz.code,
        title=quiz.title,
        category=quiz.category,
        created_by=quiz.created_by,
        creator_name=quiz.creator_name,
        status=quiz.status,
        questions=tuple(
            QuestionDefinition(
                text=q.text,
                kind=q.kind,
                options=tuple(q.option_list),
                correct_answer=q.correct_answer,
                time_limit=q.time_limit,
            )
            for q in quiz.questions
        ),
    )


class QuizStore:

    def _quiz(self, code: str) -> Optional[Quiz]:
        if not code:
            return None
        return Quiz.query.filter_by(code=code.upper()).first()

    @_guarded
    def create_quiz(self, fields: dict) -> str:
        """Persist a validated quiz (see ``parse_quiz_payload``) and return its code."""
        quiz = Quiz(
            title=fields['title'],
            category=fields['category'],
            created_by=fields['created_by'],
            creator_name=fields['creator_name'],
            status='pending',
        )
        for position, question in enumerate(fields['questions']):
            quiz.questions.append(Question(
                position=position,
                text=question.text,
                kind=question.kind,
                options=json.dumps(list(question.options)),
                correct_answer=question.correct_answer,
                time_limit=question.time_limit,
            ))
        db.session.add(quiz)
        db.session.commit()
        current_app.logger.info(f"[quiz-create] code={quiz.code} questions={len(quiz.questions)} by={quiz.created_by}")
        return quiz.code

    @_guarded
    def find_by_code(self, code: str) -> Optional[QuizDefinition]:
        quiz = self._quiz(code)
        return _to_definition(quiz) if quiz else None

    @_guarded
    def add_participant(self, code: str, identity: str, display_name: str) -> Optional[bool]:
        """Add to the roster. None if the quiz is unknown, False if already present."""
        quiz = self._quiz(code)
        if not quiz:
            return None
        if Participant.query.filter_by(quiz_id=quiz.id, user_id=identity).first():
            return False
        db.session.add(Participant(quiz_id=quiz.id, user_id=identity, username=display_name, score=0))
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race with a concurrent join for the same identity
            db.session.rollback()
            return False
        return True

    @_guarded
    def remove_participant(self, code: str, identity: str) -> bool:
        """Drop a roster row. Only used before the quiz starts."""
        quiz = self._quiz(code)
        if not quiz:
            return False
        removed = Participant.query.filter_by(quiz_id=quiz.id, user_id=identity).delete(synchronize_session=False)
        db.session.commit()
        return bool(removed)

    @_guarded
    def increment_score(self, code: str, identity: str, delta: int) -> Optional[int]:
        quiz = self._quiz(code)
        if not quiz:
            return None
        updated = Participant.query.filter_by(quiz_id=quiz.id, user_id=identity).update(
            {Participant.score: Participant.score + delta}, synchronize_session=False
        )
        if not updated:
            db.session.rollback()
            return None
        db.session.commit()
        return db.session.query(Participant.score).filter_by(quiz_id=quiz.id, user_id=identity).scalar()

    @_guarded
    def append_score_record(self, code: str, record: ScoreEntry) -> bool:
        quiz = self._quiz(code)
        if not quiz:
            return False
        db.session.add(ScoreRecord(
            quiz_id=quiz.id,
            user_id=record.identity,
            username=record.display_name,
            score=record.score,
            submitted_at=record.submitted_at or datetime.now(timezone.utc),
        ))
        db.session.commit()
        return True

    @_guarded
    def set_status(self, code: str, status: str) -> bool:
        if status not in QUIZ_STATUSES:
            raise BadRequest(f'Unknown quiz status {status!r}')
        quiz = self._quiz(code)
        if not quiz:
            return False
        quiz.status = status
        now = datetime.now(timezone.utc)
        if status == 'active':
            quiz.started_at = now
        elif status == 'completed':
            quiz.ended_at = now
        db.session.commit()
        return True

    @_guarded
    def record_final_scores(self, code: str, entries: Iterable[ScoreEntry]) -> bool:
        """Write the authoritative final ranking and mark the quiz completed.

        ``entries`` come in ranking order; each row gets its score and rank.
        Rows missing because a join or increment never reached the store are
        created here, which is how failed score updates get reconciled. Rows
        with no entry (registered but never played) stay unranked.
        """
        quiz = self._quiz(code)
        if not quiz:
            return False
        rows = {p.user_id: p for p in quiz.participants}
        for rank, entry in enumerate(entries, start=1):
            row = rows.get(entry.identity)
            if row is None:
                row = Participant(quiz_id=quiz.id, user_id=entry.identity, username=entry.display_name)
                db.session.add(row)
            row.score = entry.score
            row.rank = rank
        quiz.status = 'completed'
        quiz.ended_at = datetime.now(timezone.utc)
        db.session.commit()
        return True

    @_guarded
    def final_standings(self, code: str) -> Optional[List[dict]]:
        """Ranked rows of a completed quiz, best first."""
        quiz = self._quiz(code)
        if not quiz:
            return None
        rows = Participant.query.filter(
            Participant.quiz_id == quiz.id, Participant.rank.isnot(None)
        ).order_by(Participant.rank).all()
        return [dict(p.to_dict(), rank=p.rank) for p in rows]

    @_guarded
    def list_summaries(self) -> List[dict]:
        return [quiz.to_summary() for quiz in Quiz.query.order_by(Quiz.id.desc()).all()]

    @_guarded
    def participants(self, code: str) -> Optional[List[dict]]:
        quiz = self._quiz(code)
        if not quiz:
            return None
        return [p.to_dict() for p in quiz.participants]

    @_guarded
    def score_history(self, code: str) -> Optional[List[dict]]:
        """Submission history, newest first."""
        quiz = self._quiz(code)
        if not quiz:
            return None
        return [r.to_dict() for r in sorted(quiz.score_records, key=lambda r: r.id, reverse=True)]
