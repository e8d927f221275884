"""Stateless checks for proposed book attributes.

The result is advisory: nothing here blocks a book from being created.
"""

from typing import Optional

MAX_PAGES = 500
MIN_PUBLICATION_YEAR = 1950
MIN_SERIES_ORDER = 1


def validate_book(
    pages: Optional[int] = None,
    publication_year: Optional[int] = None,
    series_order: Optional[int] = None,
) -> dict:
    """Return ``{"valid": bool, "errors": [...]}``; a missing value skips its rule."""
    errors = []

    if pages is not None and pages > MAX_PAGES:
        errors.append(f"Book exceeds {MAX_PAGES} pages")
    if publication_year is not None and publication_year < MIN_PUBLICATION_YEAR:
        errors.append("Publication year too old")
    if series_order is not None and series_order < MIN_SERIES_ORDER:
        errors.append(f"Series order must be at least {MIN_SERIES_ORDER}")

    return {"valid": not errors, "errors": errors}
