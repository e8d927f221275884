"""Ownership and admin checks for book and user management."""

from typing import Optional

from . import models


def is_admin(user: Optional[models.User]) -> bool:
    return user is not None and user.is_admin


def can_modify_book(
    book: models.Book, caller_id: Optional[int], caller: Optional[models.User]
) -> bool:
    """Proposers may edit or delete their own books; admins may touch any book.

    Ownership is matched on the raw identifier, so a proposer whose user row
    is gone still owns the book.
    """
    if caller_id is None:
        return False
    if book.proposed_by is not None and book.proposed_by == caller_id:
        return True
    return is_admin(caller)


def can_delete_users(caller: Optional[models.User]) -> bool:
    return is_admin(caller)


def can_grant_role(
    role: Optional[str], caller: Optional[models.User], admin_exists: bool
) -> bool:
    """Only an admin may create another admin; the first admin needs no sponsor."""
    if role != models.ROLE_ADMIN:
        return True
    return not admin_exists or is_admin(caller)
