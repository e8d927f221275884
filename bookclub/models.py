from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base

ROLE_MEMBER = "member"
ROLE_ADMIN = "admin"


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, default=ROLE_MEMBER)  # "member" или "admin"
    created_at = Column(DateTime, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    pages = Column(Integer)
    genre = Column(String)
    publication_year = Column(Integer)
    series_order = Column(Integer)
    # слабая ссылка: существование пользователя не проверяется
    proposed_by = Column(Integer, ForeignKey("users.id"))
    proposed_at = Column(DateTime, default=utcnow)
    status = Column(String, default="voting")


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("book_id", "user_id", name="uq_vote_book_user"),)

    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    vote_value = Column(Integer)
    voted_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class VotingSession(Base):
    __tablename__ = "voting_sessions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(String, default="active")
    created_at = Column(DateTime, default=utcnow)

    constraints = relationship("BookConstraint", back_populates="session")


class BookConstraint(Base):
    __tablename__ = "book_constraints"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("voting_sessions.id"))
    max_pages = Column(Integer)
    allowed_genres = Column(String)
    min_publication_year = Column(Integer)
    max_publication_year = Column(Integer)
    min_series_order = Column(Integer)

    session = relationship("VotingSession", back_populates="constraints")
