"""Quiz authoring and persistence: immutable definitions and the SQL store."""

from .definitions import QuestionDefinition, QuizDefinition, ScoreEntry, parse_quiz_payload
