# Overview: Caps purchase returns at what is still returnable against the original purchase.

"""
For a reference purchase P and variant V:

    max_returnable(V) = |purchased V on P| - |returned V against P|

where "returned" sums purchase_return transactions referencing P that are
approved, plus pending ones when RETURN_GUARD_COUNT_PENDING is on. A
requested item never purchased on P is a violation on its own.

Serialization: before reading the returned totals the caller claims P with
claim_reference(), an UPDATE that bumps P.return_lock_version. The claim
holds P's row lock (Postgres) or the database write lock (SQLite) until the
surrounding DB transaction ends, so two concurrent returns against the same
purchase see each other's writes and can never jointly over-return.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func, update

from ..enums import TransactionStatus, TransactionType
from ..errors import NotFound, ReturnQuantityExceeded, ValidationError
from ..extensions import db
from ..models import InventoryTransaction, InventoryTransactionItem


@dataclass
class ReturnValidation:
    reference_transaction_id: int
    valid: bool
    violations: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "reference_transaction_id": self.reference_transaction_id,
            "valid": self.valid,
            "violations": self.violations,
        }


def claim_reference(reference_transaction_id: int) -> None:
    """Take the write claim on the reference purchase for this DB transaction."""
    stmt = (
        update(InventoryTransaction)
        .where(InventoryTransaction.id == reference_transaction_id)
        .values(return_lock_version=InventoryTransaction.return_lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        raise NotFound(
            f"Reference transaction {reference_transaction_id} not found",
            details={"reference_transaction_id": reference_transaction_id},
        )


def _load_reference(reference_transaction_id: int) -> InventoryTransaction:
    ref = db.session.get(InventoryTransaction, reference_transaction_id)
    if ref is None:
        raise NotFound(
            f"Reference transaction {reference_transaction_id} not found",
            details={"reference_transaction_id": reference_transaction_id},
        )
    if ref.transaction_type != TransactionType.PURCHASE.value:
        raise ValidationError(
            "Returns may only reference a purchase transaction",
            details={"reference_transaction_id": ref.id, "transaction_type": ref.transaction_type},
        )
    if ref.status != TransactionStatus.APPROVED.value:
        raise ValidationError(
            f"Reference purchase is {ref.status}; only approved purchases can be returned against",
            details={"reference_transaction_id": ref.id, "status": ref.status},
        )
    return ref


def original_quantities(reference_transaction_id: int) -> dict[int, int]:
    rows = (
        db.session.query(
            InventoryTransactionItem.variant_id,
            func.sum(func.abs(InventoryTransactionItem.quantity)),
        )
        .filter(InventoryTransactionItem.transaction_id == reference_transaction_id)
        .group_by(InventoryTransactionItem.variant_id)
        .all()
    )
    return {variant_id: int(total or 0) for variant_id, total in rows}


def returned_quantities(
    reference_transaction_id: int,
    *,
    count_pending: bool,
    exclude_transaction_id: int | None = None,
) -> dict[int, int]:
    statuses = [TransactionStatus.APPROVED.value]
    if count_pending:
        statuses.append(TransactionStatus.PENDING.value)

    query = (
        db.session.query(
            InventoryTransactionItem.variant_id,
            func.sum(func.abs(InventoryTransactionItem.quantity)),
        )
        .join(InventoryTransaction, InventoryTransaction.id == InventoryTransactionItem.transaction_id)
        .filter(
            InventoryTransaction.reference_transaction_id == reference_transaction_id,
            InventoryTransaction.transaction_type == TransactionType.PURCHASE_RETURN.value,
            InventoryTransaction.status.in_(statuses),
        )
    )
    if exclude_transaction_id is not None:
        query = query.filter(InventoryTransaction.id != exclude_transaction_id)
    rows = query.group_by(InventoryTransactionItem.variant_id).all()
    return {variant_id: int(total or 0) for variant_id, total in rows}


def _requested_by_variant(requested_items) -> dict[int, int]:
    totals: dict[int, int] = defaultdict(int)
    for item in requested_items:
        totals[int(item["variant_id"])] += abs(int(item["quantity"]))
    return dict(totals)


def validate_return(
    reference_transaction_id: int,
    requested_items,
    *,
    exclude_transaction_id: int | None = None,
    count_pending: bool | None = None,
    claim: bool = True,
) -> ReturnValidation:
    """
    Check requested return quantities against the reference purchase.

    requested_items: iterable of {"variant_id", "quantity"}; quantity sign is
    ignored. exclude_transaction_id leaves one return out of the "already
    returned" sum (the pending return being approved).

    Does not commit. With claim=True (the default) the reference row is
    claimed first, so this must run in the same DB transaction as the write
    it protects.
    """
    if count_pending is None:
        count_pending = current_app.config.get("RETURN_GUARD_COUNT_PENDING", True)

    if claim:
        claim_reference(reference_transaction_id)
    ref = _load_reference(reference_transaction_id)

    original = original_quantities(ref.id)
    returned = returned_quantities(
        ref.id,
        count_pending=count_pending,
        exclude_transaction_id=exclude_transaction_id,
    )

    violations = []
    for variant_id, requested in sorted(_requested_by_variant(requested_items).items()):
        original_qty = original.get(variant_id, 0)
        if original_qty == 0:
            violations.append({
                "variant_id": variant_id,
                "requested": requested,
                "original": 0,
                "already_returned": 0,
                "max_returnable": 0,
                "message": "Item was never part of the original purchase",
            })
            continue

        already = returned.get(variant_id, 0)
        max_returnable = max(original_qty - already, 0)
        if requested > max_returnable:
            violations.append({
                "variant_id": variant_id,
                "requested": requested,
                "original": original_qty,
                "already_returned": already,
                "max_returnable": max_returnable,
                "message": (
                    f"Cannot return {requested}; purchased {original_qty}, "
                    f"already returned {already}, max returnable {max_returnable}"
                ),
            })

    return ReturnValidation(
        reference_transaction_id=ref.id,
        valid=not violations,
        violations=violations,
    )


def assert_returnable(reference_transaction_id: int, requested_items, **kwargs) -> ReturnValidation:
    """validate_return(), raising ReturnQuantityExceeded on any violation."""
    result = validate_return(reference_transaction_id, requested_items, **kwargs)
    if not result.valid:
        raise ReturnQuantityExceeded(
            "Return quantity exceeds what is still returnable",
            violations=result.violations,
        )
    return result


def remaining_returnable(reference_transaction_id: int, *, count_pending: bool | None = None) -> dict[int, dict]:
    """Per-variant purchased / returned / remaining for a purchase. Read-only."""
    if count_pending is None:
        count_pending = current_app.config.get("RETURN_GUARD_COUNT_PENDING", True)
    original = original_quantities(reference_transaction_id)
    returned = returned_quantities(reference_transaction_id, count_pending=count_pending)
    return {
        variant_id: {
            "purchased": qty,
            "returned": returned.get(variant_id, 0),
            "remaining": max(qty - returned.get(variant_id, 0), 0),
        }
        for variant_id, qty in original.items()
    }
