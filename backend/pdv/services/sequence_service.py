# Overview: Sale number allocation.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence

SALE_DOCUMENT_TYPE = "SALE"


class SequenceError(Exception):
    """Raised when a sequence cannot be allocated."""
    pass


def _bump(document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_number(document_type: str) -> int:
    """
    Atomically allocate the next number for a document type.

    Runs inside the caller's transaction: the UPDATE holds the counter row
    lock until the caller commits, so concurrent allocations serialize and
    a rolled-back caller releases its number without a duplicate. The first
    allocation inserts the counter row; losing that insert race falls back
    to the UPDATE path.
    """
    if not document_type:
        raise SequenceError("document_type is required")

    allocated = _bump(document_type)
    if allocated is not None:
        return allocated

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        return 1
    except IntegrityError:
        allocated = _bump(document_type)
        if allocated is None:
            raise SequenceError(f"Could not allocate {document_type} number")
        return allocated


def next_sale_number() -> str:
    """Next sale number, zero padded (e.g. "000042")."""
    width = current_app.config.get("SALE_NUMBER_WIDTH", 6)
    return f"{next_number(SALE_DOCUMENT_TYPE):0{width}d}"
