# Overview: Stock ledger; records purchases, purchase returns, damage and adjustments.

"""
Ledger rules (authoritative):

Creation status:
- purchase:                 always APPROVED, stock applied immediately.
- other types, privileged:  APPROVED, stock applied immediately.
- other types, otherwise:   PENDING, no stock effect until approval.

Quantity sign (stored on InventoryTransactionItem.quantity):
- purchase:                 positive (negative input is rejected)
- purchase_return, damage:  -abs(requested)
- adjustment:               caller's sign, non-zero

Date: purchases may carry a caller-supplied transaction_date (not in the
future); every other type is stamped with the server date.

Numbers: invoice_no is allocated from the PUR / RET / DMG / ADJ sequence. A
caller-supplied invoice_no is kept as vendor_invoice_no.

Purchase returns run the return guard (with the reference claimed) inside the
same DB transaction as the insert.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import or_, update

from ..actors import Actor
from ..enums import TransactionStatus, TransactionType, normalize_transaction_type
from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import InventoryTransaction, InventoryTransactionItem, Variant, Vendor
from ..time_utils import parse_iso_date, today, utcnow
from . import return_guard, stock_service
from .concurrency import run_with_retry
from .sequence_service import next_sequence_number


OUTBOUND_TYPES = (TransactionType.PURCHASE_RETURN, TransactionType.DAMAGE)
REASON_REQUIRED_TYPES = (TransactionType.PURCHASE_RETURN, TransactionType.DAMAGE, TransactionType.ADJUSTMENT)
VENDOR_REQUIRED_TYPES = (TransactionType.PURCHASE, TransactionType.PURCHASE_RETURN)


def _to_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        as_int = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float) and value != as_int:
        raise ValidationError(f"{field} must be an integer")
    return as_int


def _to_money(value, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount.quantize(Decimal("0.01"))


def _signed_quantity(ttype: TransactionType, quantity: int, index: int) -> int:
    if quantity == 0:
        raise ValidationError(f"items[{index}].quantity cannot be zero")
    if ttype == TransactionType.PURCHASE:
        if quantity < 0:
            raise ValidationError(f"items[{index}].quantity must be positive for purchases")
        return quantity
    if ttype in OUTBOUND_TYPES:
        return -abs(quantity)
    return quantity


def _normalize_items(ttype: TransactionType, items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    normalized = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if raw.get("variant_id") is None:
            raise ValidationError(f"items[{index}].variant_id is required")
        if raw.get("quantity") is None:
            raise ValidationError(f"items[{index}].quantity is required")

        variant_id = _to_int(raw["variant_id"], f"items[{index}].variant_id")
        quantity = _signed_quantity(ttype, _to_int(raw["quantity"], f"items[{index}].quantity"), index)

        unit_cost = raw.get("unit_cost")
        if unit_cost is None and ttype == TransactionType.PURCHASE:
            raise ValidationError(f"items[{index}].unit_cost is required for purchases")

        variant = db.session.get(Variant, variant_id)
        if variant is None:
            raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})

        if unit_cost is None:
            cost = Decimal(str(variant.cost_price or 0)).quantize(Decimal("0.01"))
        else:
            cost = _to_money(unit_cost, f"items[{index}].unit_cost")

        normalized.append({
            "variant_id": variant_id,
            "quantity": quantity,
            "unit_cost": cost,
            "notes": raw.get("notes"),
        })
    return normalized


def _resolve_date(ttype: TransactionType, value):
    if ttype != TransactionType.PURCHASE or value in (None, ""):
        return today()
    try:
        parsed = parse_iso_date(value)
    except ValueError:
        raise ValidationError("transaction_date must be an ISO-8601 date")
    if parsed > today():
        raise ValidationError("transaction_date cannot be in the future")
    return parsed


def adjust_vendor_balance(vendor_id: int | None, amount: Decimal) -> None:
    """balance += amount as a single UPDATE. Does not commit."""
    if vendor_id is None or not amount:
        return
    stmt = (
        update(Vendor)
        .where(Vendor.id == vendor_id)
        .values(balance=Vendor.balance + amount)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)


def apply_transaction_stock(tx: InventoryTransaction, *, actor_id: int | None, reverse: bool = False) -> None:
    """
    Push every line of tx through the atomic stock primitive.

    Forward application stamps stock_before / stock_after on each item.
    reverse=True undoes an approved transaction (void) and leaves the
    original stamps untouched. Any InsufficientStock aborts the whole
    transaction. Does not commit.
    """
    movement_type = stock_service.MOVEMENT_LEDGER_VOID if reverse else stock_service.MOVEMENT_LEDGER_APPLY
    for item in tx.items:
        delta = -item.quantity if reverse else item.quantity
        change = stock_service.atomic_adjust(
            item.variant_id,
            delta,
            movement_type=movement_type,
            source=tx.transaction_type,
            transaction_id=tx.id,
            transaction_item_id=item.id,
            actor_id=actor_id,
        )
        if not reverse:
            item.stock_before = change.stock_before
            item.stock_after = change.stock_after

    if tx.transaction_type in (TransactionType.PURCHASE.value, TransactionType.PURCHASE_RETURN.value):
        amount = Decimal(str(tx.total_cost or 0))
        adjust_vendor_balance(tx.vendor_id, -amount if reverse else amount)


def record_transaction(transaction_type, items, metadata: dict | None, actor: Actor) -> InventoryTransaction:
    """
    Create a ledger entry.

    metadata keys: vendor_id, invoice_no, reference_transaction_id, reason,
    notes, transaction_date.
    """
    metadata = dict(metadata or {})
    ttype = normalize_transaction_type(transaction_type)

    def _op():
        lines = _normalize_items(ttype, items)

        reason = (metadata.get("reason") or "").strip() or None
        min_len = current_app.config.get("TRANSACTION_REASON_MIN_LENGTH", 5)
        if ttype in REASON_REQUIRED_TYPES and (not reason or len(reason) < min_len):
            raise ValidationError(f"reason of at least {min_len} characters is required for {ttype.value}")

        vendor_id = metadata.get("vendor_id")
        if vendor_id is not None:
            vendor_id = _to_int(vendor_id, "vendor_id")
            if db.session.get(Vendor, vendor_id) is None:
                raise NotFound(f"Vendor {vendor_id} not found", details={"vendor_id": vendor_id})
        if ttype in VENDOR_REQUIRED_TYPES and vendor_id is None:
            raise ValidationError(f"vendor_id is required for {ttype.value}")

        reference_id = metadata.get("reference_transaction_id")
        if ttype == TransactionType.PURCHASE_RETURN:
            if reference_id is None:
                raise ValidationError("reference_transaction_id is required for purchase_return")
            reference_id = _to_int(reference_id, "reference_transaction_id")
            return_guard.assert_returnable(reference_id, lines)
            ref = db.session.get(InventoryTransaction, reference_id)
            if ref.vendor_id is not None and ref.vendor_id != vendor_id:
                raise ValidationError(
                    "vendor_id does not match the referenced purchase",
                    details={"expected_vendor_id": ref.vendor_id},
                )
        elif reference_id is not None:
            raise ValidationError("reference_transaction_id is only allowed for purchase_return")

        auto_approve = ttype == TransactionType.PURCHASE or actor.is_privileged
        now = utcnow()

        tx = InventoryTransaction(
            invoice_no=next_sequence_number(ttype),
            vendor_invoice_no=(metadata.get("invoice_no") or None),
            transaction_type=ttype.value,
            status=TransactionStatus.APPROVED.value if auto_approve else TransactionStatus.PENDING.value,
            vendor_id=vendor_id,
            reference_transaction_id=reference_id,
            transaction_date=_resolve_date(ttype, metadata.get("transaction_date")),
            total_cost=sum((line["quantity"] * line["unit_cost"] for line in lines), Decimal("0")),
            total_quantity=sum(line["quantity"] for line in lines),
            reason=reason,
            notes=metadata.get("notes"),
            performed_by_user_id=actor.user_id,
            approved_by_user_id=actor.user_id if auto_approve else None,
            approved_at=now if auto_approve else None,
        )
        db.session.add(tx)
        db.session.flush()

        for line in lines:
            db.session.add(
                InventoryTransactionItem(
                    transaction_id=tx.id,
                    variant_id=line["variant_id"],
                    quantity=line["quantity"],
                    unit_cost=line["unit_cost"],
                    notes=line["notes"],
                )
            )
        db.session.flush()
        db.session.refresh(tx)

        if auto_approve:
            apply_transaction_stock(tx, actor_id=actor.user_id)

        db.session.commit()
        return tx

    tx = run_with_retry(_op)
    current_app.logger.info(
        "Recorded %s %s (status=%s, items=%d) by user=%s",
        tx.transaction_type, tx.invoice_no, tx.status, len(tx.items), actor.user_id,
    )
    return tx


def get_transaction(transaction_id: int) -> InventoryTransaction:
    tx = db.session.get(InventoryTransaction, transaction_id)
    if tx is None:
        raise NotFound(f"Transaction {transaction_id} not found", details={"transaction_id": transaction_id})
    return tx


def list_transactions(
    *,
    transaction_type=None,
    status: str | None = None,
    vendor_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
):
    query = InventoryTransaction.query
    if transaction_type:
        query = query.filter(InventoryTransaction.transaction_type == normalize_transaction_type(transaction_type).value)
    if status:
        query = query.filter(InventoryTransaction.status == status)
    if vendor_id:
        query = query.filter(InventoryTransaction.vendor_id == vendor_id)
    total = query.count()
    rows = (
        query.order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def search_purchase_invoices(*, query: str | None = None, vendor_id: int | None = None, limit: int = 20) -> list[dict]:
    """
    Approved purchases matching an invoice number (ours or the vendor's),
    each line enriched with what is still returnable.
    """
    q = InventoryTransaction.query.filter(
        InventoryTransaction.transaction_type == TransactionType.PURCHASE.value,
        InventoryTransaction.status == TransactionStatus.APPROVED.value,
    )
    if query:
        like = f"%{query.strip()}%"
        q = q.filter(or_(
            InventoryTransaction.invoice_no.ilike(like),
            InventoryTransaction.vendor_invoice_no.ilike(like),
        ))
    if vendor_id:
        q = q.filter(InventoryTransaction.vendor_id == vendor_id)

    results = []
    for tx in q.order_by(InventoryTransaction.id.desc()).limit(limit).all():
        remaining = return_guard.remaining_returnable(tx.id)
        data = tx.to_dict(include_items=True)
        for item in data["items"]:
            item["remaining_returnable"] = remaining.get(item["variant_id"], {}).get("remaining", 0)
        data["fully_returned"] = all(r["remaining"] == 0 for r in remaining.values())
        results.append(data)
    return results
