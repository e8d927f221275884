"""Vote aggregation and book ordering."""

import logging

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

# Голоса вне этого набора дают 0 к сумме
CANONICAL_VOTE_WEIGHTS = {2: 2, 1: 1, -1: -1, -2: -2}


def vote_weight(value) -> int:
    """Score contribution of a single vote value."""
    return CANONICAL_VOTE_WEIGHTS.get(value, 0)


def score_expression():
    weight = case(
        *[
            (models.Vote.vote_value == value, points)
            for value, points in CANONICAL_VOTE_WEIGHTS.items()
        ],
        else_=0,
    )
    return func.coalesce(func.sum(weight), 0)


def rank_books(db: Session, session_id=None) -> list[dict]:
    """Rank every book by score, earliest proposal first among equal scores.

    ``session_id`` is accepted for the route's sake and does not filter:
    all books are ranked together.
    """
    logger.debug("Ranking books for session %s", session_id)

    score = score_expression().label("score")
    vote_count = func.count(func.distinct(models.Vote.user_id)).label("vote_count")

    rows = (
        db.query(
            models.Book,
            models.User.name.label("proposed_by_name"),
            score,
            vote_count,
        )
        .outerjoin(models.User, models.Book.proposed_by == models.User.id)
        .outerjoin(models.Vote, models.Vote.book_id == models.Book.id)
        .group_by(models.Book.id, models.User.name)
        .order_by(score.desc(), models.Book.proposed_at.asc(), models.Book.id.asc())
        .all()
    )

    return [
        {
            **book_to_dict(book),
            "proposed_by_name": proposed_by_name,
            "score": int(total),
            "vote_count": count,
        }
        for book, proposed_by_name, total, count in rows
    ]


def book_to_dict(book: models.Book) -> dict:
    return {
        column.name: getattr(book, column.name)
        for column in models.Book.__table__.columns
    }
