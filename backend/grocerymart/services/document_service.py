# Overview: Human-readable document numbers for orders and return requests.

from __future__ import annotations

import secrets

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from grocerymart.time_utils import utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _allocate(document_type: str) -> int:
    """
    Atomically allocate the next running number for a document type.

    Runs inside the caller's transaction; a first-use race on the sequence
    row is resolved inside a SAVEPOINT so the outer work is not lost.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _read_current() -> int:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        return current - 1

    if db.session.execute(stmt).rowcount:
        return _read_current()

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        return 1
    except IntegrityError:
        if not db.session.execute(stmt).rowcount:
            raise
        return _read_current()


def next_document_number(*, document_type: str, prefix: str, pad: int = 4) -> str:
    """
    Globally unique, roughly time-ordered number:
    <prefix>-<UTC yyyymmddHHMMSS>-<running count>-<random suffix>.
    """
    running = _allocate(document_type)
    stamp = utcnow().strftime("%Y%m%d%H%M%S")
    suffix = secrets.token_hex(2).upper()
    return f"{prefix}-{stamp}-{running:0{pad}d}-{suffix}"
