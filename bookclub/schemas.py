from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, StringConstraints
from typing_extensions import Annotated

NonEmptyShortStr = Annotated[str, StringConstraints(min_length=1, max_length=200)]
EmailType = Annotated[EmailStr, StringConstraints(max_length=254)]


class UserCreate(BaseModel):
    name: NonEmptyShortStr
    email: EmailType
    role: Optional[str] = None
    admin_id: Optional[int] = None


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserDelete(BaseModel):
    admin_id: Optional[int] = None
    transfer_books_to: Optional[int] = None
    delete_books: bool = False


class BookFields(BaseModel):
    title: NonEmptyShortStr
    author: NonEmptyShortStr
    pages: Optional[int] = None
    genre: Optional[str] = None
    publication_year: Optional[int] = None
    series_order: Optional[int] = None


class BookCreate(BookFields):
    proposed_by: Optional[int] = None


class BookUpdate(BookFields):
    user_id: Optional[int] = None


class BookDelete(BaseModel):
    user_id: Optional[int] = None
    admin_id: Optional[int] = None


class BookOut(BookFields):
    id: int
    proposed_by: Optional[int] = None
    proposed_at: Optional[datetime] = None
    status: Optional[str] = None

    model_config = {"from_attributes": True}


class BookListItem(BookOut):
    proposed_by_name: Optional[str] = None


class RankedBook(BookListItem):
    score: int
    vote_count: int


class VoteCreate(BaseModel):
    book_id: int
    user_id: int
    vote_value: Optional[int] = None


class VoteOut(BaseModel):
    id: int
    book_id: int
    user_id: int
    vote_value: Optional[int] = None
    voted_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookValidationRequest(BaseModel):
    pages: Optional[int] = None
    publication_year: Optional[int] = None
    series_order: Optional[int] = None


class BookValidationResult(BaseModel):
    valid: bool
    errors: list[str]
