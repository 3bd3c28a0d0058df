# Overview: Atomic invoice / order number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..enums import TransactionType, normalize_transaction_type
from ..extensions import db
from ..models import DocumentSequence


ORDER_DOCUMENT_TYPE = "order"

DOCUMENT_PREFIXES = {
    ORDER_DOCUMENT_TYPE: "ORD",
    TransactionType.PURCHASE.value: "PUR",
    TransactionType.PURCHASE_RETURN.value: "RET",
    TransactionType.DAMAGE.value: "DMG",
    TransactionType.ADJUSTMENT.value: "ADJ",
}

NUMBER_PAD = 6


def _claim(document_type: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        return current - 1

    seq = DocumentSequence(document_type=document_type, next_number=2)
    db.session.add(seq)
    try:
        db.session.flush()
        return 1
    except IntegrityError:
        # Lost the race to create the row. The caller's transaction is gone
        # with the rollback, so only standalone callers get here safely;
        # ensure_sequences() pre-creates rows to avoid it.
        db.session.rollback()
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        return current - 1


def format_number(document_type: str, number: int) -> str:
    return f"{DOCUMENT_PREFIXES[document_type]}-{number:0{NUMBER_PAD}d}"


def next_sequence_number(transaction_type) -> str:
    """
    Allocate the next invoice number for an inventory transaction type.

    Runs inside the caller's DB transaction: the number is only consumed if
    the caller commits. Uniqueness holds under concurrency because the
    increment is a single UPDATE on the sequence row.
    """
    ttype = normalize_transaction_type(transaction_type).value
    return format_number(ttype, _claim(ttype))


def next_order_number() -> str:
    return format_number(ORDER_DOCUMENT_TYPE, _claim(ORDER_DOCUMENT_TYPE))


def ensure_sequences() -> None:
    """Create any missing sequence rows. Called from init-db and test setup."""
    existing = {row.document_type for row in DocumentSequence.query.all()}
    for document_type in DOCUMENT_PREFIXES:
        if document_type not in existing:
            db.session.add(DocumentSequence(document_type=document_type, next_number=1))
    db.session.commit()
