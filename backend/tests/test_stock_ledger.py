"""
Stock ledger tests: atomic stock primitive, transaction recording,
sign rules, reasons, date policy and document numbering.
"""

from datetime import timedelta

import pytest

from retailops.errors import InsufficientStock, NotFound, ValidationError
from retailops.models import InventoryTransaction, StockMovement, Variant, Vendor
from retailops.services import ledger_service, sequence_service, stock_service
from retailops.time_utils import today

from conftest import actor_for, make_variant, make_vendor, reload


class TestAtomicAdjust:
    def test_increment_and_decrement(self, db_session):
        variant = make_variant(stock=5)

        up = stock_service.atomic_adjust(variant.id, 3)
        down = stock_service.atomic_adjust(variant.id, -8)
        db_session.commit()

        assert (up.stock_before, up.stock_after) == (5, 8)
        assert (down.stock_before, down.stock_after) == (8, 0)
        assert reload(Variant, variant.id).current_stock == 0
        assert StockMovement.query.filter_by(variant_id=variant.id).count() == 2

    def test_never_goes_negative(self, db_session):
        variant = make_variant(stock=2)

        with pytest.raises(InsufficientStock) as exc:
            stock_service.atomic_adjust(variant.id, -3)

        assert exc.value.details["current_stock"] == 2
        assert exc.value.details["requested_delta"] == -3
        db_session.rollback()
        assert reload(Variant, variant.id).current_stock == 2

    def test_unknown_variant(self, db_session):
        with pytest.raises(NotFound):
            stock_service.atomic_adjust(999, 1)

    def test_zero_delta_rejected(self, db_session):
        variant = make_variant(stock=1)
        with pytest.raises(ValidationError):
            stock_service.atomic_adjust(variant.id, 0)

    def test_reserve_cannot_exceed_available(self, db_session):
        variant = make_variant(stock=5, reserved=4)
        with pytest.raises(InsufficientStock) as exc:
            stock_service.reserve(variant.id, 2)
        assert exc.value.details["available_stock"] == 1


class TestPurchase:
    def test_purchase_is_auto_approved_and_applied(self, db_session, operator, vendor):
        variant = make_variant(stock=4)

        tx = ledger_service.record_transaction(
            "purchase",
            [{"variant_id": variant.id, "quantity": 10, "unit_cost": "250.50"}],
            {"vendor_id": vendor.id, "invoice_no": "V-7781"},
            actor_for(operator),
        )

        assert tx.status == "approved"
        assert tx.requires_approval is False
        assert tx.invoice_no == "PUR-000001"
        assert tx.vendor_invoice_no == "V-7781"
        assert tx.total_quantity == 10
        assert float(tx.total_cost) == 2505.0
        assert (tx.items[0].stock_before, tx.items[0].stock_after) == (4, 14)
        assert reload(Variant, variant.id).current_stock == 14
        assert float(reload(Vendor, vendor.id).balance) == 2505.0

    def test_vendor_required(self, db_session, operator):
        variant = make_variant()
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                "purchase", [{"variant_id": variant.id, "quantity": 1, "unit_cost": 10}], {}, actor_for(operator)
            )

    def test_unit_cost_required(self, db_session, operator, vendor):
        variant = make_variant()
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                "purchase", [{"variant_id": variant.id, "quantity": 1}], {"vendor_id": vendor.id}, actor_for(operator)
            )

    def test_negative_quantity_rejected(self, db_session, operator, vendor):
        variant = make_variant()
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                "purchase",
                [{"variant_id": variant.id, "quantity": -1, "unit_cost": 10}],
                {"vendor_id": vendor.id},
                actor_for(operator),
            )

    def test_backdated_purchase_keeps_its_date(self, db_session, operator, vendor):
        variant = make_variant()
        last_week = today() - timedelta(days=7)
        tx = ledger_service.record_transaction(
            "purchase",
            [{"variant_id": variant.id, "quantity": 1, "unit_cost": 10}],
            {"vendor_id": vendor.id, "transaction_date": last_week.isoformat()},
            actor_for(operator),
        )
        assert tx.transaction_date == last_week

    def test_future_purchase_date_rejected(self, db_session, operator, vendor):
        variant = make_variant()
        tomorrow = today() + timedelta(days=1)
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                "purchase",
                [{"variant_id": variant.id, "quantity": 1, "unit_cost": 10}],
                {"vendor_id": vendor.id, "transaction_date": tomorrow.isoformat()},
                actor_for(operator),
            )

    def test_unknown_vendor(self, db_session, operator):
        variant = make_variant()
        with pytest.raises(NotFound):
            ledger_service.record_transaction(
                "purchase",
                [{"variant_id": variant.id, "quantity": 1, "unit_cost": 10}],
                {"vendor_id": 999},
                actor_for(operator),
            )


class TestOutboundAndAdjustments:
    def test_operator_damage_waits_for_approval(self, db_session, operator):
        variant = make_variant(stock=10)

        tx = ledger_service.record_transaction(
            "damage",
            [{"variant_id": variant.id, "quantity": 3}],
            {"reason": "Water damage in store room"},
            actor_for(operator),
        )

        assert tx.status == "pending"
        assert tx.requires_approval is True
        assert tx.invoice_no == "DMG-000001"
        assert tx.items[0].quantity == -3
        assert tx.items[0].stock_before is None
        assert reload(Variant, variant.id).current_stock == 10

    def test_manager_damage_applies_immediately(self, db_session, manager):
        variant = make_variant(stock=10, cost=40)

        tx = ledger_service.record_transaction(
            "damage",
            [{"variant_id": variant.id, "quantity": 3}],
            {"reason": "Broken on shelf"},
            actor_for(manager),
        )

        assert tx.status == "approved"
        assert float(tx.items[0].unit_cost) == 40.0
        assert reload(Variant, variant.id).current_stock == 7

    def test_adjustment_keeps_sign(self, db_session, admin):
        variant = make_variant(stock=10)

        tx = ledger_service.record_transaction(
            "adjustment",
            [{"variant_id": variant.id, "quantity": -2}, {"variant_id": make_variant(stock=0).id, "quantity": 5}],
            {"reason": "Cycle count"},
            actor_for(admin),
        )

        assert [i.quantity for i in tx.items] == [-2, 5]
        assert tx.invoice_no == "ADJ-000001"
        assert reload(Variant, variant.id).current_stock == 8

    def test_privileged_damage_beyond_stock_is_refused(self, db_session, admin):
        variant = make_variant(stock=1)
        with pytest.raises(InsufficientStock):
            ledger_service.record_transaction(
                "damage", [{"variant_id": variant.id, "quantity": 2}], {"reason": "Crushed box"}, actor_for(admin)
            )
        assert InventoryTransaction.query.count() == 0
        assert reload(Variant, variant.id).current_stock == 1

    @pytest.mark.parametrize("ttype", ["damage", "adjustment"])
    def test_reason_required(self, db_session, operator, ttype):
        variant = make_variant(stock=5)
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                ttype, [{"variant_id": variant.id, "quantity": 1}], {"reason": "bad"}, actor_for(operator)
            )

    def test_date_ignored_for_non_purchase(self, db_session, admin):
        variant = make_variant(stock=5)
        tx = ledger_service.record_transaction(
            "adjustment",
            [{"variant_id": variant.id, "quantity": 1}],
            {"reason": "Found in back room", "transaction_date": "2001-01-01"},
            actor_for(admin),
        )
        assert tx.transaction_date == today()

    def test_reference_only_for_returns(self, db_session, admin):
        variant = make_variant(stock=5)
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                "damage",
                [{"variant_id": variant.id, "quantity": 1}],
                {"reason": "Torn packaging", "reference_transaction_id": 1},
                actor_for(admin),
            )

    def test_unknown_type(self, db_session, admin):
        with pytest.raises(ValidationError):
            ledger_service.record_transaction("gift", [{"variant_id": 1, "quantity": 1}], {}, actor_for(admin))


class TestSequences:
    def test_numbers_are_unique_per_type(self, db_session):
        first = sequence_service.next_sequence_number("purchase")
        second = sequence_service.next_sequence_number("purchase")
        other = sequence_service.next_sequence_number("damage")
        db_session.commit()

        assert (first, second, other) == ("PUR-000001", "PUR-000002", "DMG-000001")

    def test_order_numbers(self, db_session):
        assert sequence_service.next_order_number() == "ORD-000001"
        assert sequence_service.next_order_number() == "ORD-000002"
        db_session.commit()


class TestQueries:
    def test_list_and_filter(self, db_session, admin, vendor):
        variant = make_variant(stock=10)
        actor = actor_for(admin)
        ledger_service.record_transaction(
            "purchase", [{"variant_id": variant.id, "quantity": 1, "unit_cost": 5}], {"vendor_id": vendor.id}, actor
        )
        ledger_service.record_transaction(
            "damage", [{"variant_id": variant.id, "quantity": 1}], {"reason": "Dropped item"}, actor
        )

        rows, total = ledger_service.list_transactions(transaction_type="damage")
        assert total == 1
        assert rows[0].transaction_type == "damage"

        rows, total = ledger_service.list_transactions(vendor_id=vendor.id)
        assert [r.invoice_no for r in rows] == ["PUR-000001"]

    def test_get_unknown(self, db_session):
        with pytest.raises(NotFound):
            ledger_service.get_transaction(77)

    def test_search_by_vendor_invoice(self, db_session, operator):
        vendor = make_vendor("Acme")
        variant = make_variant()
        tx = ledger_service.record_transaction(
            "purchase",
            [{"variant_id": variant.id, "quantity": 6, "unit_cost": 5}],
            {"vendor_id": vendor.id, "invoice_no": "ACME-55"},
            actor_for(operator),
        )

        results = ledger_service.search_purchase_invoices(query="acme-55")

        assert [r["id"] for r in results] == [tx.id]
        assert results[0]["items"][0]["remaining_returnable"] == 6
        assert results[0]["fully_returned"] is False
