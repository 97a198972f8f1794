from quizlive import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import json
import string
import random

QUIZ_CODE_ALPHABET = string.ascii_uppercase + string.digits
QUIZ_CODE_LENGTH = 6


def _utcnow():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=True, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def identity(self) -> str:
        return str(self.id)

    @classmethod
    def by_identity(cls, identity):
        """The registered user behind ``identity``, if any."""
        if identity is None or not str(identity).isdigit():
            return None
        return db.session.get(cls, int(identity))

    def to_dict(self):
        return {
            'id': self.identity,
            'username': self.username,
            'email': self.email,
        }


def generate_quiz_code(length=QUIZ_CODE_LENGTH):
    """Generate a unique, short quiz code."""
    while True:
        code = ''.join(random.choices(QUIZ_CODE_ALPHABET, k=length))
        if not Quiz.query.filter_by(code=code).first():
            return code


class Quiz(db.Model):
    __tablename__ = 'quiz'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(QUIZ_CODE_LENGTH), unique=True, nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(100), nullable=False)
    created_by = db.Column(db.String(64), nullable=False, index=True)
    creator_name = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='pending', index=True)  # pending, active, completed
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    questions = db.relationship(
        'Question', back_populates='quiz', order_by='Question.position', cascade='all, delete-orphan'
    )
    participants = db.relationship(
        'Participant', back_populates='quiz', order_by='Participant.id', cascade='all, delete-orphan'
    )
    score_records = db.relationship(
        'ScoreRecord', back_populates='quiz', order_by='ScoreRecord.id', cascade='all, delete-orphan'
    )

    def __init__(self, **kwargs):
        super(Quiz, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_quiz_code()

    def to_summary(self):
        return {
            'code': self.code,
            'title': self.title,
            'category': self.category,
            'status': self.status,
            'participant_count': len(self.participants),
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    text = db.Column(db.Text, nullable=False)
    kind = db.Column(db.String(16), nullable=False)  # single, multiple, text
    options = db.Column(db.Text, nullable=True)  # JSON-encoded list of strings
    correct_answer = db.Column(db.Text, nullable=False)
    time_limit = db.Column(db.Integer, nullable=False, default=30)
    quiz = db.relationship('Quiz', back_populates='questions')

    @property
    def option_list(self):
        return json.loads(self.options) if self.options else []


class Participant(db.Model):
    __tablename__ = 'participant'
    __table_args__ = (db.UniqueConstraint('quiz_id', 'user_id', name='uq_participant_quiz_user'),)
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False)
    username = db.Column(db.String(64), nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)
    # Position in the final ranking; set when the quiz completes
    rank = db.Column(db.Integer, nullable=True)
    joined_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    quiz = db.relationship('Quiz', back_populates='participants')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.username,
            'score': self.score or 0,
        }


class ScoreRecord(db.Model):
    """Append-only audit row: cumulative score right after one submission."""
    __tablename__ = 'score_record'
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False)
    username = db.Column(db.String(64), nullable=False)
    score = db.Column(db.Integer, nullable=False)
    submitted_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    quiz = db.relationship('Quiz', back_populates='score_records')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.username,
            'score': self.score,
            'submitted_at': self.submitted_at.isoformat() if self.submitted_at else None,
        }
