"""
Order transition tests.

Covers the full transition pipeline: validation, compare-and-set write,
write-once timestamps, status log, inventory triggers and side effects.
"""

import pytest
from sqlalchemy import update

from retailops.enums import OrderStatus
from retailops.errors import (
    AccessDenied,
    Conflict,
    InvalidTransition,
    InsufficientStock,
    MissingRequiredField,
    NotFound,
    ValidationError,
)
from retailops.extensions import db
from retailops.models import Order, OrderStatusLog, SideEffectTask, Variant
from retailops.services import inventory_triggers, order_service, stock_service, workflow_rules

from conftest import actor_for, make_order, make_rider, make_variant, reload


class TestCreateOrder:
    def test_creates_intake_order_with_number_and_log(self, db_session, operator):
        variant = make_variant(stock=10)

        order = order_service.create_order(
            {
                "customer_name": "Sita Sharma",
                "customer_phone": "9800000001",
                "fulfillment_type": "outside_valley",
                "items": [{"variant_id": variant.id, "quantity": 2, "unit_price": 1200}],
            },
            actor_for(operator),
        )

        assert order.order_number == "ORD-000001"
        assert order.status == "intake"
        assert order.fulfillment_type == "third_party_courier"
        assert order.stock_state == "none"
        assert float(order.total_amount) == 2400.0
        assert [i.sku for i in order.items] == [variant.sku]

        timeline = order_service.get_order_timeline(order.id)
        assert [(e.old_status, e.new_status) for e in timeline] == [(None, "intake")]

    def test_default_fulfillment_is_self_delivery(self, db_session, operator):
        variant = make_variant()
        order = order_service.create_order(
            {"customer_name": "Ram", "items": [{"variant_id": variant.id, "quantity": 1}]},
            actor_for(operator),
        )
        assert order.fulfillment_type == "self_delivery"

    def test_creating_does_not_touch_stock(self, db_session, operator):
        variant = make_variant(stock=3)
        order_service.create_order(
            {"customer_name": "Ram", "items": [{"variant_id": variant.id, "quantity": 3}]},
            actor_for(operator),
        )
        fresh = reload(Variant, variant.id)
        assert (fresh.current_stock, fresh.reserved_stock) == (3, 0)

    def test_viewer_cannot_create(self, db_session, viewer):
        with pytest.raises(AccessDenied):
            order_service.create_order({"customer_name": "X", "items": []}, actor_for(viewer))

    def test_customer_name_required(self, db_session, operator):
        with pytest.raises(ValidationError):
            order_service.create_order({"customer_name": "  ", "items": []}, actor_for(operator))

    def test_unknown_variant(self, db_session, operator):
        with pytest.raises(NotFound):
            order_service.create_order(
                {"customer_name": "Ram", "items": [{"variant_id": 999, "quantity": 1}]},
                actor_for(operator),
            )


class TestSelfDeliveryLifecycle:
    def test_intake_to_delivered_moves_stock_once(self, db_session, operator):
        variant = make_variant(stock=10)
        rider = make_rider()
        order = make_order(items=[(variant, 3)])
        staff = actor_for(operator)

        order_service.transition(order.id, "confirmed", staff)
        packed = order_service.transition(order.id, "packed", staff)
        assert packed.inventory.action == "RESERVE"
        v = reload(Variant, variant.id)
        assert (v.current_stock, v.reserved_stock) == (10, 3)

        order_service.transition(order.id, "assigned", staff, {"rider_id": rider.id})
        order_service.transition(order.id, "out_for_delivery", actor_for(rider.user))
        delivered = order_service.transition(order.id, "delivered", actor_for(rider.user))

        assert delivered.inventory.action == "COMMIT"
        assert delivered.order.status == "delivered"
        assert delivered.order.stock_state == "committed"
        v = reload(Variant, variant.id)
        assert (v.current_stock, v.reserved_stock) == (7, 0)

        o = reload(Order, order.id)
        for column in ("converted_at", "packed_at", "assigned_at", "dispatched_at", "delivered_at"):
            assert getattr(o, column) is not None, column

        statuses = [e.new_status for e in order_service.get_order_timeline(order.id)]
        assert statuses == ["converted", "packed", "assigned", "out_for_delivery", "delivered"]

    def test_cancelling_packed_order_releases_reservation(self, db_session, operator):
        variant = make_variant(stock=10)
        order = make_order(status="converted", items=[(variant, 4)])
        staff = actor_for(operator)

        order_service.transition(order.id, "packed", staff)
        outcome = order_service.transition(order.id, "cancelled", staff, {"reason": "Customer unreachable"})

        assert outcome.inventory.action == "RELEASE"
        v = reload(Variant, variant.id)
        assert (v.current_stock, v.reserved_stock) == (10, 0)
        assert reload(Order, order.id).cancellation_reason == "Customer unreachable"


class TestNoOpTransition:
    def test_same_status_changes_nothing(self, db_session, operator):
        variant = make_variant(stock=10)
        order = make_order(status="converted", items=[(variant, 2)])
        order_service.transition(order.id, "packed", actor_for(operator))
        before = reload(Order, order.id)
        packed_at, version = before.packed_at, before.version_id
        log_count = OrderStatusLog.query.filter_by(order_id=order.id).count()

        outcome = order_service.transition(order.id, "packed", actor_for(operator))

        assert outcome.changed is False
        assert outcome.inventory is None
        after = reload(Order, order.id)
        assert after.packed_at == packed_at
        assert after.version_id == version
        assert OrderStatusLog.query.filter_by(order_id=order.id).count() == log_count
        assert reload(Variant, variant.id).reserved_stock == 2

    def test_same_status_from_another_rider_is_denied(self, db_session):
        r1 = make_rider()
        r2 = make_rider()
        order = make_order(status="assigned", stock_state="reserved", rider=r1)

        with pytest.raises(AccessDenied) as exc:
            order_service.transition(order.id, "assigned", actor_for(r2.user))
        assert exc.value.locked_by == r1.id

        outcome = order_service.transition(order.id, "assigned", actor_for(r1.user))
        assert outcome.changed is False


class TestWriteOnceTimestamps:
    def test_reassignment_keeps_first_assigned_at(self, db_session, admin):
        r1 = make_rider()
        r2 = make_rider()
        order = make_order(status="packed", stock_state="reserved")
        boss = actor_for(admin)

        order_service.transition(order.id, "assigned", boss, {"rider_id": r1.id})
        first = reload(Order, order.id).assigned_at

        back = order_service.transition(order.id, "packed", boss)
        assert back.order.assigned_rider_id is None
        assert back.inventory.action == "SKIPPED"

        order_service.transition(order.id, "assigned", boss, {"rider_id": r2.id})
        o = reload(Order, order.id)
        assert o.assigned_at == first
        assert o.assigned_rider_id == r2.id


class TestRejectedTransitions:
    def test_illegal_edge_raises_invalid_transition(self, db_session, operator):
        order = make_order(status="intake")
        with pytest.raises(InvalidTransition):
            order_service.transition(order.id, "delivered", actor_for(operator))
        assert reload(Order, order.id).status == "intake"

    def test_rider_lock_carries_holder(self, db_session):
        r1 = make_rider()
        r2 = make_rider()
        order = make_order(status="assigned", stock_state="reserved", rider=r1)

        with pytest.raises(AccessDenied) as exc:
            order_service.transition(order.id, "delivered", actor_for(r2.user))

        assert exc.value.locked_by == r1.id
        assert exc.value.to_dict()["locked_by"] == r1.id

    def test_missing_fields_listed(self, db_session, operator):
        order = make_order(fulfillment_type="third_party_courier", status="packed", stock_state="reserved")
        with pytest.raises(MissingRequiredField) as exc:
            order_service.transition(order.id, "handover_to_courier", actor_for(operator), {"courier_partner": "Pathao"})
        assert exc.value.fields == ["courier_tracking_id"]

    def test_unknown_order(self, db_session, operator):
        with pytest.raises(NotFound):
            order_service.transition(12345, "converted", actor_for(operator))

    def test_unknown_status(self, db_session, operator):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.transition(order.id, "teleported", actor_for(operator))

    def test_concurrent_change_is_a_conflict(self, db_session, operator, monkeypatch):
        order = make_order(status="intake")
        real_validate = workflow_rules.validate

        def validate_then_race(o, target, actor, fields):
            result = real_validate(o, target, actor, fields)
            db.session.execute(
                update(Order)
                .where(Order.id == o.id)
                .values(version_id=Order.version_id + 1)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            return result

        monkeypatch.setattr(workflow_rules, "validate", validate_then_race)

        with pytest.raises(Conflict):
            order_service.transition(order.id, "converted", actor_for(operator))
        assert reload(Order, order.id).status == "intake"


class TestPostCommitEffects:
    def test_trigger_failure_is_a_warning(self, db_session, operator, monkeypatch):
        variant = make_variant(stock=5)
        order = make_order(status="converted", items=[(variant, 2)])

        def no_stock(*args, **kwargs):
            raise InsufficientStock("Not enough stock", details={"variant_id": variant.id})

        monkeypatch.setattr(stock_service, "reserve", no_stock)

        outcome = order_service.transition(order.id, "packed", actor_for(operator))

        assert outcome.changed is True
        assert outcome.order.status == "packed"
        assert outcome.order.stock_state == "none"
        assert outcome.inventory.success is False
        assert outcome.warnings and "reserve" in outcome.warnings[0]

    def test_cancel_before_pack_trigger_reserves_nothing(self, db_session, operator, monkeypatch):
        variant = make_variant(stock=10)
        order = make_order(status="converted", items=[(variant, 4)])
        staff = actor_for(operator)
        real_apply = inventory_triggers.apply
        cancels = []

        def cancel_then_apply(order_id, old, new, **kwargs):
            if new == OrderStatus.PACKED and not cancels:
                cancels.append(order_service.transition(order_id, "cancelled", staff, {"reason": "Customer unreachable"}))
            return real_apply(order_id, old, new, **kwargs)

        monkeypatch.setattr(inventory_triggers, "apply", cancel_then_apply)

        outcome = order_service.transition(order.id, "packed", staff)

        assert cancels[0].inventory.action == "NONE"
        assert outcome.inventory.action == "SKIPPED"
        o = reload(Order, order.id)
        assert (o.status, o.stock_state) == ("cancelled", "none")
        v = reload(Variant, variant.id)
        assert (v.current_stock, v.reserved_stock) == (10, 0)

    def test_transition_queues_notification(self, db_session, operator):
        order = make_order(status="intake")
        order_service.transition(order.id, "converted", actor_for(operator))

        tasks = SideEffectTask.query.filter_by(order_id=order.id).all()
        assert [t.task_type for t in tasks] == ["notify_status_change"]
        assert tasks[0].payload["to"] == "converted"

    def test_courier_handover_queues_sync(self, db_session, operator):
        order = make_order(fulfillment_type="third_party_courier", status="packed", stock_state="reserved")
        outcome = order_service.transition(
            order.id,
            "handover_to_courier",
            actor_for(operator),
            {"courier_partner": "Pathao", "courier_tracking_id": "PTH-1"},
        )

        assert outcome.order.courier_tracking_id == "PTH-1"
        types = sorted(t.task_type for t in SideEffectTask.query.filter_by(order_id=order.id))
        assert types == ["courier_sync", "notify_status_change"]


class TestFulfillmentTypeChange:
    def test_change_before_packing(self, db_session, operator):
        order = make_order(status="converted")
        updated = order_service.change_fulfillment_type(order.id, "courier", actor_for(operator))

        assert updated.fulfillment_type == "third_party_courier"
        assert OrderStatusLog.query.filter_by(order_id=order.id).count() == 1

    def test_change_after_packing_is_refused(self, db_session, operator):
        order = make_order(status="packed", stock_state="reserved")
        with pytest.raises(Conflict):
            order_service.change_fulfillment_type(order.id, "store", actor_for(operator))

    def test_status_must_exist_in_new_channel(self, db_session, operator):
        order = make_order(status="follow_up")
        with pytest.raises(ValidationError):
            order_service.change_fulfillment_type(order.id, "store", actor_for(operator))

    def test_viewer_cannot_change(self, db_session, viewer):
        order = make_order()
        with pytest.raises(AccessDenied):
            order_service.change_fulfillment_type(order.id, "store", actor_for(viewer))


class TestBulkTransition:
    def test_each_order_succeeds_or_fails_alone(self, db_session, operator):
        ok = make_order(status="intake")
        wrong = make_order(status="delivered", stock_state="committed")

        summary = order_service.bulk_transition([ok.id, wrong.id, "abc"], "converted", actor_for(operator))

        assert summary["total"] == 3
        assert summary["succeeded"] == 1
        assert summary["failed"] == 2
        by_id = {r["order_id"]: r for r in summary["results"]}
        assert by_id[ok.id]["status"] == "converted"
        assert by_id[wrong.id]["code"] == "INVALID_TRANSITION"
        assert by_id["abc"]["code"] == "VALIDATION_ERROR"

    def test_empty_list_rejected(self, db_session, operator):
        with pytest.raises(ValidationError):
            order_service.bulk_transition([], "converted", actor_for(operator))


@pytest.mark.parametrize("start,alias,expected", [
    ("intake", "confirmed", OrderStatus.CONVERTED),
    ("intake", "Canceled", OrderStatus.CANCELLED),
    ("converted", "on_hold", OrderStatus.HOLD),
])
def test_status_aliases_are_accepted(db_session, operator, start, alias, expected):
    order = make_order(status=start)
    outcome = order_service.transition(order.id, alias, actor_for(operator), {"reason": "Customer asked"})
    assert outcome.new_status == expected.value
