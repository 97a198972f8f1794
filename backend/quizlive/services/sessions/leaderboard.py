"""Leaderboard projection shared by the live and final views."""

from dataclasses import asdict, dataclass
from typing import Iterable, List, Sequence, Tuple

DEFAULT_POINTS_PER_QUESTION = 10


@dataclass(frozen=True)
class Standing:
    rank: int
    identity: str
    display_name: str
    score: int
    percentage: float

    def to_dict(self) -> dict:
        return asdict(self)


def project(entries: Iterable[Tuple[str, str, int]], question_count: int,
            points_per_question: int = DEFAULT_POINTS_PER_QUESTION) -> List[Standing]:
    """Rank ``(identity, display_name, score)`` entries.

    Highest score first; ``sorted`` is stable so equal scores keep the order
    the entries came in (join order).
    """
    max_score = question_count * points_per_question
    ordered = sorted(entries, key=lambda e: e[2] or 0, reverse=True)
    standings = []
    for index, (identity, display_name, score) in enumerate(ordered):
        score = score or 0
        percentage = round(score / max_score * 100, 2) if max_score else 0.0
        standings.append(Standing(
            rank=index + 1,
            identity=identity,
            display_name=display_name,
            score=score,
            percentage=percentage,
        ))
    return standings


def summarize(standings: Sequence[Standing]) -> dict:
    if not standings:
        return {'average_score': 0, 'highest_score': 0, 'lowest_score': 0}
    scores = [s.score for s in standings]
    return {
        'average_score': round(sum(scores) / len(scores), 2),
        'highest_score': scores[0],
        'lowest_score': scores[-1],
    }
