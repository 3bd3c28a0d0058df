# Overview: Maker-checker approval pipeline for ledger transactions.

"""
Transaction status machine:

    PENDING  -> APPROVED   stock applied, approver stamped
    PENDING  -> REJECTED   reason stamped, stock untouched
    APPROVED -> VOIDED     stock reversed symmetrically

Every status change is a compare-and-set on the prior status; losing a race
raises Conflict and applies nothing. Only privileged roles
(PRIVILEGED_ROLES) may approve, reject or void, and the approver must not
be the user who created the transaction.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func, update

from ..actors import Actor
from ..enums import TransactionStatus, TransactionType
from ..errors import AccessDenied, Conflict, ValidationError
from ..extensions import db
from ..models import InventoryTransaction
from ..time_utils import utcnow
from . import return_guard
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import apply_transaction_stock, get_transaction


def _require_privileged(actor: Actor, action: str) -> None:
    if not actor.is_privileged:
        raise AccessDenied(
            f"Only {', '.join(current_app.config['PRIVILEGED_ROLES'])} may {action} transactions",
            details={"role": actor.role},
        )


def _load_locked(transaction_id: int) -> InventoryTransaction:
    tx = lock_for_update(
        InventoryTransaction.query.filter_by(id=transaction_id)
    ).one_or_none()
    if tx is None:
        return get_transaction(transaction_id)
    return tx


def _compare_and_set(tx_id: int, expected: TransactionStatus, **values) -> None:
    stmt = (
        update(InventoryTransaction)
        .where(InventoryTransaction.id == tx_id, InventoryTransaction.status == expected.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not db.session.execute(stmt).rowcount:
        raise Conflict(
            f"Transaction {tx_id} is no longer {expected.value}",
            details={"transaction_id": tx_id, "expected_status": expected.value},
        )


def _require_reason(reason: str | None, min_len: int, what: str) -> str:
    reason = (reason or "").strip()
    if len(reason) < min_len:
        raise ValidationError(f"{what} must be at least {min_len} characters")
    return reason


def approve(transaction_id: int, approver: Actor) -> InventoryTransaction:
    _require_privileged(approver, "approve")

    def _op():
        tx = _load_locked(transaction_id)
        if tx.status != TransactionStatus.PENDING.value:
            raise Conflict(
                f"Transaction is already {tx.status}",
                details={"transaction_id": tx.id, "status": tx.status},
            )
        if tx.performed_by_user_id is not None and tx.performed_by_user_id == approver.user_id:
            raise AccessDenied("Maker-checker: you cannot approve a transaction you created")

        if tx.transaction_type == TransactionType.PURCHASE_RETURN.value:
            # Time may have passed since creation; re-check against current totals.
            return_guard.assert_returnable(
                tx.reference_transaction_id,
                [{"variant_id": i.variant_id, "quantity": i.quantity} for i in tx.items],
                exclude_transaction_id=tx.id,
            )

        _compare_and_set(
            tx.id,
            TransactionStatus.PENDING,
            status=TransactionStatus.APPROVED.value,
            approved_by_user_id=approver.user_id,
            approved_at=utcnow(),
        )
        apply_transaction_stock(tx, actor_id=approver.user_id)
        db.session.commit()
        return get_transaction(transaction_id)

    tx = run_with_retry(_op)
    current_app.logger.info("Approved %s (%s) by user=%s", tx.invoice_no, tx.transaction_type, approver.user_id)
    return tx


def reject(transaction_id: int, approver: Actor, reason: str | None) -> InventoryTransaction:
    _require_privileged(approver, "reject")
    reason = _require_reason(
        reason, current_app.config.get("REJECTION_REASON_MIN_LENGTH", 5), "Rejection reason"
    )

    def _op():
        tx = _load_locked(transaction_id)
        if tx.status != TransactionStatus.PENDING.value:
            raise Conflict(
                f"Transaction is already {tx.status}",
                details={"transaction_id": tx.id, "status": tx.status},
            )
        _compare_and_set(
            tx.id,
            TransactionStatus.PENDING,
            status=TransactionStatus.REJECTED.value,
            rejected_by_user_id=approver.user_id,
            rejected_at=utcnow(),
            rejection_reason=reason,
        )
        db.session.commit()
        return get_transaction(transaction_id)

    tx = run_with_retry(_op)
    current_app.logger.info("Rejected %s by user=%s: %s", tx.invoice_no, approver.user_id, reason)
    return tx


def void(transaction_id: int, actor: Actor, reason: str | None) -> InventoryTransaction:
    """
    Void an approved transaction and reverse its stock effect.

    A purchase with live (pending or approved) returns against it cannot be
    voided; those returns must be rejected or voided first.
    """
    _require_privileged(actor, "void")
    reason = _require_reason(
        reason, current_app.config.get("TRANSACTION_REASON_MIN_LENGTH", 5), "Void reason"
    )

    def _op():
        tx = _load_locked(transaction_id)
        if tx.status != TransactionStatus.APPROVED.value:
            raise Conflict(
                f"Only approved transactions can be voided (status is {tx.status})",
                details={"transaction_id": tx.id, "status": tx.status},
            )

        if tx.transaction_type == TransactionType.PURCHASE.value:
            return_guard.claim_reference(tx.id)
            live_returns = (
                InventoryTransaction.query.filter(
                    InventoryTransaction.reference_transaction_id == tx.id,
                    InventoryTransaction.transaction_type == TransactionType.PURCHASE_RETURN.value,
                    InventoryTransaction.status.in_(
                        [TransactionStatus.PENDING.value, TransactionStatus.APPROVED.value]
                    ),
                ).count()
            )
            if live_returns:
                raise Conflict(
                    "Purchase has returns against it; void or reject them first",
                    details={"transaction_id": tx.id, "live_returns": live_returns},
                )

        _compare_and_set(
            tx.id,
            TransactionStatus.APPROVED,
            status=TransactionStatus.VOIDED.value,
            voided_by_user_id=actor.user_id,
            voided_at=utcnow(),
            void_reason=reason,
        )
        apply_transaction_stock(tx, actor_id=actor.user_id, reverse=True)
        db.session.commit()
        return get_transaction(transaction_id)

    tx = run_with_retry(_op)
    current_app.logger.info("Voided %s by user=%s: %s", tx.invoice_no, actor.user_id, reason)
    return tx


def list_pending(*, transaction_type: str | None = None, limit: int = 50, offset: int = 0):
    query = InventoryTransaction.query.filter(
        InventoryTransaction.status == TransactionStatus.PENDING.value
    )
    if transaction_type:
        query = query.filter(InventoryTransaction.transaction_type == transaction_type)
    total = query.count()
    rows = (
        query.order_by(InventoryTransaction.created_at.asc(), InventoryTransaction.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def approval_stats(*, days: int = 30) -> dict:
    cutoff = utcnow() - timedelta(days=days)
    rows = (
        db.session.query(
            InventoryTransaction.transaction_type,
            InventoryTransaction.status,
            func.count(InventoryTransaction.id),
        )
        .filter(InventoryTransaction.created_at >= cutoff)
        .group_by(InventoryTransaction.transaction_type, InventoryTransaction.status)
        .all()
    )

    by_status = {s.value: 0 for s in TransactionStatus}
    by_type: dict[str, dict[str, int]] = {}
    for ttype, status, count in rows:
        by_status[status] = by_status.get(status, 0) + count
        by_type.setdefault(ttype, {})[status] = count

    pending_total = InventoryTransaction.query.filter(
        InventoryTransaction.status == TransactionStatus.PENDING.value
    ).count()

    return {
        "period_days": days,
        "by_status": by_status,
        "by_type": by_type,
        "pending_total": pending_total,
    }
