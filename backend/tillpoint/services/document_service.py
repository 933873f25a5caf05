# Overview: Store-scoped human-readable document numbers (TX-, RF-, PO-, SC-).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import Unavailable, ValidationError
from ..extensions import db
from ..models import DocumentSequence


DOC_TRANSACTION = "transaction"
DOC_REFUND = "refund"
DOC_PURCHASE_ORDER = "purchase_order"
DOC_STOCK_COUNT = "stock_count"

PREFIXES = {
    DOC_TRANSACTION: "TX",
    DOC_REFUND: "RF",
    DOC_PURCHASE_ORDER: "PO",
    DOC_STOCK_COUNT: "SC",
}


def next_document_number(*, store_id: int, document_type: str, pad: int = 6) -> str:
    """
    Allocate the next number for (store_id, document_type), e.g. TX-000042.

    Runs inside the caller's atomic unit and only flushes: the counter bump
    commits or rolls back together with the document that uses it. The
    UPDATE ... SET next_number = next_number + 1 takes the row lock, so two
    units in the same store serialize on it and never share a number.
    """
    if not store_id:
        raise ValidationError("store_id is required")
    prefix = PREFIXES.get(document_type)
    if prefix is None:
        raise ValidationError(f"Unknown document type '{document_type}'")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(store_id=store_id, document_type=document_type)
            .scalar()
        )
        number = current - 1
    else:
        # First document of this type in the store
        db.session.add(DocumentSequence(store_id=store_id, document_type=document_type, next_number=2))
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Another unit created the counter first; ours is now unusable
            raise Unavailable(
                "Document numbering is contended; retry the request",
                details={"document_type": document_type},
            ) from exc
        number = 1

    return f"{prefix}-{number:0{pad}d}"
