"""
API route tests.

Verifies:
- Actor header handling (401) and permission map (403)
- Machine-readable error codes on rejected transitions
- Transition field aliases at ingress
- Inventory approval endpoints
"""

import pytest

from retailops.extensions import db
from retailops.services import ledger_service

from conftest import (
    actor_for,
    headers_for,
    make_order,
    make_rider,
    make_user,
    make_variant,
)


class TestActorHeader:
    def test_missing_header(self, client, db_session):
        response = client.get('/api/orders/1')
        assert response.status_code == 401

    def test_malformed_header(self, client, db_session):
        response = client.get('/api/orders/1', headers={'X-Actor-Id': 'abc'})
        assert response.status_code == 401

    def test_unknown_user(self, client, db_session):
        response = client.get('/api/orders/1', headers={'X-Actor-Id': '9999'})
        assert response.status_code == 401

    def test_inactive_user(self, client, db_session):
        user = make_user("operator", is_active=False)
        response = client.get('/api/orders/1', headers=headers_for(user))
        assert response.status_code == 401


class TestPermissions:
    @pytest.mark.parametrize("role,expected", [
        ("viewer", 403),
        ("rider", 403),
        ("operator", 201),
    ])
    def test_create_order_by_role(self, client, db_session, role, expected):
        user = make_user(role)
        variant = make_variant()
        response = client.post('/api/orders/', headers=headers_for(user), json={
            "customer_name": "Hari",
            "items": [{"variant_id": variant.id, "quantity": 1}],
        })
        assert response.status_code == expected
        if expected == 403:
            assert response.get_json()["required_permission"] == "CREATE_ORDER"

    def test_operator_cannot_approve_inventory(self, client, db_session, operator):
        response = client.get('/api/inventory/transactions/pending', headers=headers_for(operator))
        assert response.status_code == 403
        assert response.get_json()["code"] == "ACCESS_DENIED"

    def test_only_admin_dispatches_outbox(self, client, db_session, admin, manager):
        assert client.post('/api/outbox/dispatch', headers=headers_for(manager)).status_code == 403

        response = client.post('/api/outbox/dispatch', headers=headers_for(admin))
        assert response.status_code == 200
        assert response.get_json()["processed"] == 0


class TestOrderRoutes:
    def test_create_with_channel_alias(self, client, db_session, operator):
        variant = make_variant()
        response = client.post('/api/orders/', headers=headers_for(operator), json={
            "customer_name": "Gita",
            "fulfillment_type": "outside_valley",
            "items": [{"variant_id": variant.id, "quantity": 2, "unit_price": 500}],
        })

        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["fulfillment_type"] == "third_party_courier"
        assert order["status"] == "intake"
        assert order["items"][0]["quantity"] == 2

    def test_body_must_be_object(self, client, db_session, operator):
        response = client.post('/api/orders/', headers=headers_for(operator), json=[1, 2])
        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"

    def test_get_includes_workflow(self, client, db_session, operator):
        order = make_order(status="converted")
        response = client.get(f'/api/orders/{order.id}', headers=headers_for(operator))

        assert response.status_code == 200
        data = response.get_json()
        assert data["order"]["id"] == order.id
        assert set(data["workflow"]["allowed_transitions"]) == {"packed", "hold", "cancelled"}
        assert data["workflow"]["requirements"]["cancelled"]["required"] == ["cancellation_reason"]

    def test_unknown_order(self, client, db_session, operator):
        response = client.get('/api/orders/4040', headers=headers_for(operator))
        assert response.status_code == 404
        assert response.get_json()["code"] == "NOT_FOUND"

    def test_courier_cannot_go_out_for_delivery(self, client, db_session, admin):
        order = make_order(fulfillment_type="third_party_courier", status="packed", stock_state="reserved")
        response = client.patch(
            f'/api/orders/{order.id}/status',
            headers=headers_for(admin),
            json={"status": "out_for_delivery"},
        )
        assert response.status_code == 422
        assert response.get_json()["code"] == "INVALID_TRANSITION"

    def test_awb_number_alias(self, client, db_session, operator):
        order = make_order(fulfillment_type="third_party_courier", status="packed", stock_state="reserved")
        response = client.patch(
            f'/api/orders/{order.id}/status',
            headers=headers_for(operator),
            json={"status": "handover", "courier": "Pathao", "awb_number": " PTH-778 "},
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["changed"] is True
        assert data["new_status"] == "handover_to_courier"
        assert data["order"]["courier_partner"] == "Pathao"
        assert data["order"]["courier_tracking_id"] == "PTH-778"

    def test_missing_fields_are_listed(self, client, db_session, operator):
        order = make_order(status="packed", stock_state="reserved")
        response = client.patch(f'/api/orders/{order.id}/status', headers=headers_for(operator), json={"status": "assigned"})

        assert response.status_code == 400
        data = response.get_json()
        assert data["code"] == "MISSING_REQUIRED_FIELD"
        assert data["requires"]["fields"] == ["rider_id"]

    def test_rider_lock_reports_holder(self, client, db_session):
        r1 = make_rider()
        r2 = make_rider()
        order = make_order(status="assigned", stock_state="reserved", rider=r1)

        response = client.patch(f'/api/orders/{order.id}/status', headers=headers_for(r2.user), json={"status": "delivered"})

        assert response.status_code == 403
        data = response.get_json()
        assert data["code"] == "ACCESS_DENIED"
        assert data["locked_by"] == r1.id

    def test_rider_unavailable_is_conflict(self, client, db_session, operator):
        rider = make_rider(is_available=False)
        order = make_order(status="packed", stock_state="reserved")
        response = client.patch(
            f'/api/orders/{order.id}/status',
            headers=headers_for(operator),
            json={"status": "assigned", "assigned_rider_id": rider.id},
        )
        assert response.status_code == 409
        assert response.get_json()["code"] == "RIDER_UNAVAILABLE"

    def test_my_deliveries(self, client, db_session, operator):
        rider = make_rider()
        mine = make_order(status="out_for_delivery", stock_state="reserved", rider=rider)
        make_order(status="delivered", stock_state="committed", rider=rider)

        response = client.get('/api/orders/my-deliveries', headers=headers_for(rider.user))

        assert response.status_code == 200
        assert [o["id"] for o in response.get_json()["orders"]] == [mine.id]
        assert client.get('/api/orders/my-deliveries', headers=headers_for(operator)).status_code == 403

    def test_timeline_and_fulfillment_change(self, client, db_session, operator):
        order = make_order(status="intake")
        headers = headers_for(operator)

        assert client.patch(f'/api/orders/{order.id}/status', headers=headers, json={"status": "converted"}).status_code == 200
        response = client.patch(f'/api/orders/{order.id}/fulfillment-type', headers=headers, json={"fulfillment_type": "pos"})
        assert response.status_code == 200
        assert response.get_json()["order"]["fulfillment_type"] == "store"

        timeline = client.get(f'/api/orders/{order.id}/timeline', headers=headers).get_json()["timeline"]
        assert [e["new_status"] for e in timeline] == ["converted", "converted"]

    def test_bulk_status(self, client, db_session, operator):
        a = make_order(status="intake")
        b = make_order(status="cancelled")
        response = client.post('/api/orders/bulk-status', headers=headers_for(operator), json={
            "order_ids": [a.id, b.id],
            "status": "converted",
        })

        assert response.status_code == 200
        data = response.get_json()
        assert (data["succeeded"], data["failed"]) == (1, 1)


class TestInventoryRoutes:
    def test_damage_approval_flow(self, client, db_session, operator, manager):
        variant = make_variant(stock=10)
        response = client.post('/api/inventory/transactions', headers=headers_for(operator), json={
            "transaction_type": "damage",
            "items": [{"variant_id": variant.id, "quantity": 2}],
            "reason": "Box crushed",
        })
        assert response.status_code == 201
        tx = response.get_json()["transaction"]
        assert tx["requires_approval"] is True

        pending = client.get('/api/inventory/transactions/pending', headers=headers_for(manager)).get_json()
        assert pending["total"] == 1

        response = client.post(f'/api/inventory/transactions/{tx["id"]}/approve', headers=headers_for(manager))
        assert response.status_code == 200
        assert response.get_json()["transaction"]["items"][0]["stock_after"] == 8

    def test_self_approval_forbidden(self, client, db_session):
        maker = make_user("operator")
        variant = make_variant(stock=10)
        tx = ledger_service.record_transaction(
            "damage", [{"variant_id": variant.id, "quantity": 1}], {"reason": "Cracked"}, actor_for(maker)
        )
        maker.role = "manager"
        db.session.commit()

        response = client.post(f'/api/inventory/transactions/{tx.id}/approve', headers=headers_for(maker))
        assert response.status_code == 403

    def test_reject_needs_reason(self, client, db_session, operator, manager):
        variant = make_variant(stock=10)
        tx = ledger_service.record_transaction(
            "damage", [{"variant_id": variant.id, "quantity": 1}], {"reason": "Cracked"}, actor_for(operator)
        )
        url = f'/api/inventory/transactions/{tx.id}/reject'

        response = client.post(url, headers=headers_for(manager), json={"reason": "no"})
        assert response.status_code == 400

        response = client.post(url, headers=headers_for(manager), json={"rejection_reason": "Item is fine"})
        assert response.status_code == 200
        assert response.get_json()["transaction"]["status"] == "rejected"

    def test_return_over_limit(self, client, db_session, admin, vendor):
        variant = make_variant()
        purchase = ledger_service.record_transaction(
            "purchase",
            [{"variant_id": variant.id, "quantity": 100, "unit_cost": 10}],
            {"vendor_id": vendor.id},
            actor_for(admin),
        )
        headers = headers_for(admin)
        body = {
            "transaction_type": "purchase_return",
            "vendor_id": vendor.id,
            "reference_transaction_id": purchase.id,
            "reason": "Wrong colour",
        }

        first = client.post('/api/inventory/transactions', headers=headers,
                            json=dict(body, items=[{"variant_id": variant.id, "quantity": 60}]))
        assert first.status_code == 201

        check = client.post('/api/inventory/returns/validate', headers=headers, json={
            "reference_transaction_id": purchase.id,
            "items": [{"variant_id": variant.id, "quantity": 50}],
        })
        assert check.status_code == 200
        assert check.get_json()["valid"] is False

        second = client.post('/api/inventory/transactions', headers=headers,
                             json=dict(body, items=[{"variant_id": variant.id, "quantity": 50}]))
        assert second.status_code == 422
        data = second.get_json()
        assert data["code"] == "RETURN_QUANTITY_EXCEEDED"
        assert data["violations"][0]["max_returnable"] == 40

        search = client.get('/api/inventory/purchases/search', headers=headers,
                            query_string={"q": purchase.invoice_no}).get_json()
        assert search["purchases"][0]["items"][0]["remaining_returnable"] == 40

    def test_stats_days_must_be_positive(self, client, db_session, manager):
        response = client.get('/api/inventory/approval-stats?days=0', headers=headers_for(manager))
        assert response.status_code == 400


def test_health(client, db_session):
    response = client.get('/api/health')
    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "healthy"
    assert data["checks"]["database"]["details"]["pending_approvals"] == 0


class TestPermissionCatalog:
    def test_rider_sees_granted_codes(self, client, db_session):
        rider = make_rider()
        response = client.get('/api/permissions', headers=headers_for(rider.user))

        assert response.status_code == 200
        data = response.get_json()
        assert data["actor"]["rider_id"] == rider.id
        assert data["granted"] == ["VIEW_ORDERS", "UPDATE_ORDER_STATUS", "DELIVER_ORDERS"]
        dispatch = {p["code"]: p["granted"] for p in data["categories"]["DISPATCH"]}
        assert dispatch == {"DELIVER_ORDERS": True, "RUN_OUTBOX": False}

    def test_unknown_code_rejected_at_decoration(self):
        from retailops.decorators import require_permission

        with pytest.raises(ValueError):
            require_permission("LAUNCH_ROCKETS")
