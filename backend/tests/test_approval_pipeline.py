"""
Maker-checker approval pipeline tests.

Pending transactions never move stock. Approval applies them, rejection
closes them, void reverses an approved one.
"""

import pytest

from retailops.errors import AccessDenied, Conflict, InsufficientStock, ReturnQuantityExceeded, ValidationError
from retailops.extensions import db
from retailops.models import StockMovement, Variant, Vendor
from retailops.services import approval_service, ledger_service

from conftest import actor_for, make_user, make_variant, reload


def _damage(actor, variant, qty, reason="Damaged in transit"):
    return ledger_service.record_transaction(
        "damage", [{"variant_id": variant.id, "quantity": qty}], {"reason": reason}, actor
    )


def _purchase(actor, vendor, variant, qty):
    return ledger_service.record_transaction(
        "purchase",
        [{"variant_id": variant.id, "quantity": qty, "unit_cost": 50}],
        {"vendor_id": vendor.id},
        actor,
    )


class TestApprove:
    def test_pending_does_not_move_stock(self, db_session, operator):
        variant = make_variant(stock=10)
        tx = _damage(actor_for(operator), variant, 4)

        assert tx.status == "pending"
        assert reload(Variant, variant.id).current_stock == 10
        assert StockMovement.query.count() == 0

    def test_approval_applies_and_stamps(self, db_session, operator, manager):
        variant = make_variant(stock=10)
        tx = _damage(actor_for(operator), variant, 4)

        approved = approval_service.approve(tx.id, actor_for(manager))

        assert approved.status == "approved"
        assert approved.approved_by_user_id == manager.id
        assert approved.approved_at is not None
        assert (approved.items[0].stock_before, approved.items[0].stock_after) == (10, 6)
        assert reload(Variant, variant.id).current_stock == 6

    def test_operator_cannot_approve(self, db_session, operator):
        variant = make_variant(stock=10)
        tx = _damage(actor_for(make_user("operator")), variant, 1)

        with pytest.raises(AccessDenied):
            approval_service.approve(tx.id, actor_for(operator))

    def test_maker_cannot_check(self, db_session):
        variant = make_variant(stock=10)
        maker = make_user("operator")
        tx = _damage(actor_for(maker), variant, 1)

        maker.role = "manager"
        db.session.commit()

        with pytest.raises(AccessDenied):
            approval_service.approve(tx.id, actor_for(maker))
        assert reload(Variant, variant.id).current_stock == 10

    def test_approve_twice_is_a_conflict(self, db_session, operator, admin):
        variant = make_variant(stock=10)
        tx = _damage(actor_for(operator), variant, 2)
        approval_service.approve(tx.id, actor_for(admin))

        with pytest.raises(Conflict):
            approval_service.approve(tx.id, actor_for(admin))
        assert reload(Variant, variant.id).current_stock == 8

    def test_approval_fails_when_stock_is_gone(self, db_session, operator, admin):
        variant = make_variant(stock=3)
        tx = _damage(actor_for(operator), variant, 3)
        _damage(actor_for(admin), variant, 2)

        with pytest.raises(InsufficientStock):
            approval_service.approve(tx.id, actor_for(admin))

        assert ledger_service.get_transaction(tx.id).status == "pending"
        assert reload(Variant, variant.id).current_stock == 1

    def test_return_is_rechecked_at_approval(self, app, db_session, admin, operator, vendor, monkeypatch):
        variant = make_variant()
        purchase = _purchase(actor_for(admin), vendor, variant, 100)
        monkeypatch.setitem(app.config, "RETURN_GUARD_COUNT_PENDING", False)

        def _return(qty):
            return ledger_service.record_transaction(
                "purchase_return",
                [{"variant_id": variant.id, "quantity": qty}],
                {"vendor_id": vendor.id, "reference_transaction_id": purchase.id, "reason": "Defective stitching"},
                actor_for(operator),
            )

        first = _return(60)
        second = _return(60)
        approval_service.approve(first.id, actor_for(admin))

        with pytest.raises(ReturnQuantityExceeded) as exc:
            approval_service.approve(second.id, actor_for(admin))

        assert exc.value.violations[0]["max_returnable"] == 40
        assert reload(Variant, variant.id).current_stock == 40


class TestReject:
    def test_reject_closes_without_stock(self, db_session, operator, manager):
        variant = make_variant(stock=10)
        tx = _damage(actor_for(operator), variant, 4)

        rejected = approval_service.reject(tx.id, actor_for(manager), "  Recount shows no damage ")

        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Recount shows no damage"
        assert rejected.rejected_by_user_id == manager.id
        assert reload(Variant, variant.id).current_stock == 10

    def test_short_reason_refused(self, db_session, operator, manager):
        tx = _damage(actor_for(operator), make_variant(stock=10), 1)
        with pytest.raises(ValidationError):
            approval_service.reject(tx.id, actor_for(manager), "no")

    def test_cannot_reject_approved(self, db_session, admin):
        tx = _damage(actor_for(admin), make_variant(stock=10), 1)
        with pytest.raises(Conflict):
            approval_service.reject(tx.id, actor_for(admin), "Changed my mind")


class TestVoid:
    def test_void_reverses_purchase(self, db_session, admin, vendor):
        variant = make_variant(stock=2)
        tx = _purchase(actor_for(admin), vendor, variant, 10)

        voided = approval_service.void(tx.id, actor_for(admin), "Entered twice")

        assert voided.status == "voided"
        assert voided.void_reason == "Entered twice"
        assert reload(Variant, variant.id).current_stock == 2
        assert float(reload(Vendor, vendor.id).balance) == 0.0
        assert (voided.items[0].stock_before, voided.items[0].stock_after) == (2, 12)

    def test_void_blocked_by_live_returns(self, db_session, admin, operator, vendor):
        variant = make_variant()
        purchase = _purchase(actor_for(admin), vendor, variant, 10)
        ledger_service.record_transaction(
            "purchase_return",
            [{"variant_id": variant.id, "quantity": 2}],
            {"vendor_id": vendor.id, "reference_transaction_id": purchase.id, "reason": "Torn seams"},
            actor_for(operator),
        )

        with pytest.raises(Conflict):
            approval_service.void(purchase.id, actor_for(admin), "Wrong vendor")
        assert reload(Variant, variant.id).current_stock == 10

    def test_void_pending_is_a_conflict(self, db_session, operator, admin):
        tx = _damage(actor_for(operator), make_variant(stock=5), 1)
        with pytest.raises(Conflict):
            approval_service.void(tx.id, actor_for(admin), "Not needed")

    def test_operator_cannot_void(self, db_session, operator, admin):
        tx = _damage(actor_for(admin), make_variant(stock=5), 1)
        with pytest.raises(AccessDenied):
            approval_service.void(tx.id, actor_for(operator), "Not needed")


class TestQueueAndStats:
    def test_list_pending_oldest_first(self, db_session, operator, admin):
        variant = make_variant(stock=10)
        first = _damage(actor_for(operator), variant, 1)
        second = _damage(actor_for(operator), variant, 2)
        _damage(actor_for(admin), variant, 1)

        rows, total = approval_service.list_pending()

        assert total == 2
        assert [r.id for r in rows] == [first.id, second.id]

    def test_stats(self, db_session, operator, admin):
        variant = make_variant(stock=10)
        _damage(actor_for(operator), variant, 1)
        to_reject = _damage(actor_for(operator), variant, 1)
        approval_service.reject(to_reject.id, actor_for(admin), "Not damaged")
        _damage(actor_for(admin), variant, 1)

        stats = approval_service.approval_stats(days=7)

        assert stats["period_days"] == 7
        assert stats["pending_total"] == 1
        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["rejected"] == 1
        assert stats["by_status"]["approved"] == 1
        assert stats["by_type"]["damage"] == {"pending": 1, "rejected": 1, "approved": 1}
