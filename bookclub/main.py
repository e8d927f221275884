import logging
import os
from contextlib import contextmanager
from typing import Optional
from uuid import uuid4

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import database, models, permissions, ranking, schemas, validation

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
RATE_LIMIT = os.getenv("RATE_LIMIT", "60/minute")
STATIC_DIR = os.getenv("STATIC_DIR", "public")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")

logging.basicConfig(
    level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger("bookclub")


app = FastAPI(title="Book Club Votes", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(
    key_func=get_remote_address, enabled=not os.getenv("TESTING", "").lower() == "true"
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


class ApiError(Exception):
    def __init__(self, code: str, message: str, status: int = 400):
        self.code = code
        self.message = message
        self.status = status


def not_found(message: str) -> ApiError:
    return ApiError(code="not_found", message=message, status=404)


def forbidden(message: str = "Unauthorized") -> ApiError:
    return ApiError(code="forbidden", message=message, status=403)


def missing_parameter(message: str) -> ApiError:
    return ApiError(code="missing_parameter", message=message, status=400)


def error_response(status: int, code: str, title: str, message: str) -> JSONResponse:
    correlation_id = str(uuid4())
    logger.warning("%s (%s): %s [%s]", title, status, message, correlation_id)
    return JSONResponse(
        status_code=status,
        content={
            "error": message,
            "type": f"https://bookclub.example.com/errors/{code}",
            "title": title,
            "status": status,
            "detail": message,
            "correlation_id": correlation_id,
        },
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    title_map = {
        "constraint_violation": "Constraint violation",
        "not_found": "Resource not found",
        "forbidden": "Forbidden",
        "missing_parameter": "Missing parameter",
    }
    title = title_map.get(exc.code, "Request error")
    return error_response(exc.status, exc.code, title, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    status_to_title = {
        400: "Bad request",
        403: "Forbidden",
        404: "Resource not found",
        405: "Method not allowed",
        422: "Validation error",
        429: "Too Many Requests",
    }
    title = status_to_title.get(exc.status_code, "HTTP error")
    detail = str(exc.detail) if exc.detail else title
    return error_response(exc.status_code, f"http_{exc.status_code}", title, detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    message = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    )
    return error_response(422, "validation_error", "Validation error", message)


@contextmanager
def atomic(db: Session):
    """Commit everything done inside the block at once, or nothing."""
    try:
        yield
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        message = str(getattr(exc, "orig", None) or exc)
        raise ApiError(
            code="constraint_violation", message=message, status=400
        ) from exc


@app.middleware("http")
async def no_cache_html(request: Request, call_next):
    response = await call_next(request)
    path = request.url.path
    if path == "/" or path.endswith(".html"):
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        response.headers["Pragma"] = "no-cache"
        response.headers["Expires"] = "0"
    return response


def init_admin(db: Session):
    if not ADMIN_EMAIL:
        return
    if db.query(models.User).filter(models.User.role == models.ROLE_ADMIN).count() == 0:
        db.add(models.User(name=ADMIN_NAME, email=ADMIN_EMAIL, role=models.ROLE_ADMIN))
        db.commit()
        logger.info("Seeded admin user %s", ADMIN_EMAIL)


@app.on_event("startup")
def startup_event():
    database.init_db()
    db = database.SessionLocal()
    try:
        init_admin(db)
    finally:
        db.close()


def get_user(db: Session, user_id: Optional[int]) -> Optional[models.User]:
    if user_id is None:
        return None
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_book_or_404(db: Session, book_id: int) -> models.Book:
    book = db.query(models.Book).filter(models.Book.id == book_id).first()
    if not book:
        raise not_found("Book not found")
    return book


@app.get("/health")
def health():
    return {"status": "ok"}


# --- Участники ---


@app.post("/api/users", response_model=schemas.UserOut)
@limiter.limit(RATE_LIMIT)
def create_user(
    request: Request, user: schemas.UserCreate, db: Session = Depends(database.get_db)
):
    admin_exists = (
        db.query(models.User).filter(models.User.role == models.ROLE_ADMIN).count() > 0
    )
    sponsor = get_user(db, user.admin_id)
    if not permissions.can_grant_role(user.role, sponsor, admin_exists):
        raise forbidden("Only admin can create admin users")

    new_user = models.User(
        name=user.name,
        email=user.email,
        role=user.role or models.ROLE_MEMBER,
    )
    with atomic(db):
        db.add(new_user)
    db.refresh(new_user)
    return new_user


@app.get("/api/users", response_model=list[schemas.UserOut])
def list_users(db: Session = Depends(database.get_db)):
    return db.query(models.User).order_by(models.User.name).all()


@app.delete("/api/users/{user_id}")
def delete_user(
    user_id: int,
    body: schemas.UserDelete,
    db: Session = Depends(database.get_db),
):
    admin = get_user(db, body.admin_id)
    if not permissions.can_delete_users(admin):
        raise forbidden("Only admin can delete users")

    transfer_to = body.transfer_books_to
    if body.delete_books and transfer_to is not None:
        raise missing_parameter("Specify either transfer_books_to or delete_books, not both")
    if not body.delete_books and transfer_to is None:
        raise missing_parameter("Specify transfer_books_to or delete_books")

    if not get_user(db, user_id):
        raise not_found("User not found")

    # голоса, поданные самим пользователем за чужие книги, остаются
    if body.delete_books:
        own_books = select(models.Book.id).where(models.Book.proposed_by == user_id)
        with atomic(db):
            db.query(models.Vote).filter(models.Vote.book_id.in_(own_books)).delete(
                synchronize_session=False
            )
            books_deleted = (
                db.query(models.Book)
                .filter(models.Book.proposed_by == user_id)
                .delete(synchronize_session=False)
            )
            db.query(models.User).filter(models.User.id == user_id).delete(
                synchronize_session=False
            )
        logger.info("Deleted user %s with %s proposed books", user_id, books_deleted)
        return {"success": True, "id": user_id, "books_deleted": books_deleted}

    if transfer_to == user_id:
        raise missing_parameter("Cannot transfer books to the user being deleted")
    if not get_user(db, transfer_to):
        raise not_found("Transfer target not found")

    with atomic(db):
        db.query(models.Book).filter(models.Book.proposed_by == user_id).update(
            {models.Book.proposed_by: transfer_to}, synchronize_session=False
        )
        db.query(models.User).filter(models.User.id == user_id).delete(
            synchronize_session=False
        )
    logger.info("Deleted user %s, books transferred to %s", user_id, transfer_to)
    return {"success": True, "id": user_id, "books_transferred": transfer_to}


# --- Книги ---


@app.post("/api/books", response_model=schemas.BookOut)
@limiter.limit(RATE_LIMIT)
def create_book(
    request: Request, book: schemas.BookCreate, db: Session = Depends(database.get_db)
):
    db_book = models.Book(**book.model_dump())
    with atomic(db):
        db.add(db_book)
    db.refresh(db_book)
    return db_book


@app.get("/api/books", response_model=list[schemas.BookListItem])
def list_books(db: Session = Depends(database.get_db)):
    rows = (
        db.query(models.Book, models.User.name)
        .outerjoin(models.User, models.Book.proposed_by == models.User.id)
        .order_by(models.Book.proposed_at.desc(), models.Book.id.desc())
        .all()
    )
    return [
        {**ranking.book_to_dict(book), "proposed_by_name": name} for book, name in rows
    ]


@app.get("/api/books/ranking/{session_id}", response_model=list[schemas.RankedBook])
def book_ranking(session_id: str, db: Session = Depends(database.get_db)):
    return ranking.rank_books(db, session_id)


@app.put("/api/books/{book_id}", response_model=schemas.BookOut)
def update_book(
    book_id: int,
    book: schemas.BookUpdate,
    db: Session = Depends(database.get_db),
):
    db_book = get_book_or_404(db, book_id)
    caller = get_user(db, book.user_id)
    if not permissions.can_modify_book(db_book, book.user_id, caller):
        raise forbidden()

    with atomic(db):
        for field, value in book.model_dump(exclude={"user_id"}).items():
            setattr(db_book, field, value)
    db.refresh(db_book)
    return db_book


@app.delete("/api/books/{book_id}")
def delete_book(
    book_id: int,
    body: schemas.BookDelete,
    db: Session = Depends(database.get_db),
):
    db_book = get_book_or_404(db, book_id)
    caller = get_user(db, body.user_id)
    allowed = permissions.can_modify_book(db_book, body.user_id, caller)
    if not allowed and body.admin_id is not None:
        allowed = permissions.is_admin(get_user(db, body.admin_id))
    if not allowed:
        raise forbidden()

    with atomic(db):
        db.query(models.Vote).filter(models.Vote.book_id == book_id).delete(
            synchronize_session=False
        )
        db.query(models.Book).filter(models.Book.id == book_id).delete(
            synchronize_session=False
        )
    logger.info("Deleted book %s", book_id)
    return {"success": True, "id": book_id}


@app.post("/api/validate-book", response_model=schemas.BookValidationResult)
def validate_book(book: schemas.BookValidationRequest):
    return validation.validate_book(
        pages=book.pages,
        publication_year=book.publication_year,
        series_order=book.series_order,
    )


# --- Голосование ---


def find_vote(db: Session, book_id: int, user_id: int) -> Optional[models.Vote]:
    return (
        db.query(models.Vote)
        .filter(models.Vote.book_id == book_id, models.Vote.user_id == user_id)
        .first()
    )


@app.post("/api/votes", response_model=schemas.VoteOut)
@limiter.limit(RATE_LIMIT)
def cast_vote(
    request: Request, vote: schemas.VoteCreate, db: Session = Depends(database.get_db)
):
    existing_vote = find_vote(db, vote.book_id, vote.user_id)
    if existing_vote is None:
        new_vote = models.Vote(
            book_id=vote.book_id, user_id=vote.user_id, vote_value=vote.vote_value
        )
        db.add(new_vote)
        try:
            db.commit()
        except IntegrityError as exc:
            # параллельный запрос успел вставить голос за ту же пару
            db.rollback()
            existing_vote = find_vote(db, vote.book_id, vote.user_id)
            if existing_vote is None:
                raise ApiError(
                    code="constraint_violation", message=str(exc.orig), status=400
                ) from exc
        else:
            db.refresh(new_vote)
            return new_vote

    with atomic(db):
        existing_vote.vote_value = vote.vote_value
        existing_vote.voted_at = models.utcnow()
    db.refresh(existing_vote)
    return existing_vote


@app.get("/api/votes/{book_id}/{user_id}", response_model=Optional[schemas.VoteOut])
def get_vote(book_id: int, user_id: int, db: Session = Depends(database.get_db)):
    return find_vote(db, book_id, user_id)


# статика монтируется последней, иначе перехватит /api
if os.path.isdir(STATIC_DIR):
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")
