"""Checkout to fulfillment through the HTTP layer: intent, webhook, admin."""

import asyncio
import json

import pytest

from storefront.db.base import make_sessionmaker
from storefront.db.repositories.skus import get_sku_by_id
from storefront.jobs.dispatcher import JobDispatcher, JobOutcome
from storefront.jobs.types import JobType
from tests.factories import cart_payload

USER = {"X-User-Id": "user-1"}
SIGNED = {"X-Payment-Signature": "whsec_test", "Content-Type": "application/json"}


@pytest.fixture
def order(client, api_catalog):
    design = {"objects": [{"type": "text", "text": "A"}]}
    payload = cart_payload((api_catalog.sku_a, 2, {"design": design}), (api_catalog.sku_b, 1))
    return client.post("/api/v1/orders", json=payload, headers=USER).json()


def _webhook(client, order_id, outcome="succeeded", reference="pi_live_1", headers=SIGNED):
    body = {"orderId": order_id, "paymentReference": reference, "outcome": outcome}
    return client.post("/api/v1/payments/webhook", content=json.dumps(body), headers=headers)


def _stock(engine, sku_id):
    async def _read():
        async with make_sessionmaker(engine)() as session:
            return (await get_sku_by_id(session, sku_id)).stock

    return asyncio.run(_read())


class TestPaymentIntentAPI:
    def test_intent_is_created_once(self, client, order, gateway):
        first = client.post("/api/v1/payments/intents", json={"order_id": order["id"]}, headers=USER)
        second = client.post("/api/v1/payments/intents", json={"order_id": order["id"]}, headers=USER)

        assert first.status_code == 200
        assert first.json()["payment_reference"].startswith("pi_mock_")
        assert second.json()["payment_reference"] == first.json()["payment_reference"]
        assert len(gateway.calls) == 1


class TestWebhookAPI:
    def test_confirmation_settles_order(self, client, order, api_queue, api_engine, api_catalog):
        response = _webhook(client, order["id"])

        assert response.status_code == 200
        assert response.json() == {"received": True}
        stored = client.get(f"/api/v1/orders/{order['id']}", headers=USER).json()
        assert stored["status"] == "PAID"
        assert stored["payment_reference"] == "pi_live_1"
        assert _stock(api_engine, api_catalog.sku_a.id) == 8
        assert _stock(api_engine, api_catalog.sku_b.id) == 4
        assert api_queue.pending_count() == 2

    def test_redelivery_is_acknowledged_and_ignored(self, client, order, api_queue, api_engine, api_catalog):
        _webhook(client, order["id"])
        response = _webhook(client, order["id"])

        assert response.json() == {"received": True}
        assert api_queue.pending_count() == 2
        assert _stock(api_engine, api_catalog.sku_a.id) == 8

    def test_failed_payment_leaves_order_pending(self, client, order, api_queue):
        response = _webhook(client, order["id"], outcome="failed", reference=None)

        assert response.json() == {"received": True}
        stored = client.get(f"/api/v1/orders/{order['id']}", headers=USER).json()
        assert stored["status"] == "PENDING"
        assert api_queue.pending_count() == 0

    def test_internal_failure_is_still_acknowledged(self, client, api_catalog):
        response = _webhook(client, "00000000-0000-4000-8000-000000000000")

        assert response.status_code == 200
        assert response.json() == {"received": True}

    def test_bad_signature_is_rejected(self, client, order, api_queue):
        response = _webhook(client, order["id"], headers={"X-Payment-Signature": "forged"})

        assert response.status_code == 400
        assert response.json()["error"] == "Webhook verification failed"
        stored = client.get(f"/api/v1/orders/{order['id']}", headers=USER).json()
        assert stored["status"] == "PENDING"

    def test_malformed_event_is_rejected(self, client):
        response = client.post("/api/v1/payments/webhook", content=b"{}", headers=SIGNED)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION"


class TestAdminAPI:
    def test_status_lifecycle(self, client, order, api_queue):
        _webhook(client, order["id"])

        for status in ("PROCESSING", "SHIPPED", "DELIVERED"):
            response = client.patch(f"/api/v1/admin/orders/{order['id']}/status", json={"status": status})
            assert response.status_code == 200
            assert response.json()["status"] == status

        # render + confirmed, then shipped + delivered notifications
        assert api_queue.pending_count() == 4

    def test_pending_to_shipped_lists_valid_targets(self, client, order):
        response = client.patch(f"/api/v1/admin/orders/{order['id']}/status", json={"status": "SHIPPED"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["allowed"] == ["CANCELLED", "PAID"]

    def test_unknown_status_value(self, client, order):
        response = client.patch(f"/api/v1/admin/orders/{order['id']}/status", json={"status": "LOST"})

        assert response.status_code == 400

    def test_listing_detail_and_stats(self, client, order):
        _webhook(client, order["id"])

        listing = client.get("/api/v1/admin/orders", params={"status": "PAID"}).json()
        detail = client.get(f"/api/v1/admin/orders/{order['id']}")
        stats = client.get("/api/v1/admin/stats").json()

        assert [row["id"] for row in listing["orders"]] == [order["id"]]
        assert detail.json()["user_id"] == "user-1"
        assert stats["orders"]["by_status"]["PAID"] == 1
        assert stats["total_revenue"] == "250.00"

    def test_listing_search_by_order_id(self, client, order):
        found = client.get("/api/v1/admin/orders", params={"search": order["id"][:8]}).json()
        missed = client.get("/api/v1/admin/orders", params={"search": "nobody-here"}).json()

        assert [row["id"] for row in found["orders"]] == [order["id"]]
        assert missed["pagination"]["total"] == 0

    def test_dead_letter_listing(self, client, order, api_queue):
        _webhook(client, order["id"])

        async def fail_everything(payload):
            raise RuntimeError("printer on fire")

        async def run():
            dispatcher = JobDispatcher(api_queue, {job_type: fail_everything for job_type in JobType})
            await dispatcher.drain()
            return dispatcher.stats

        stats = asyncio.run(run())

        assert stats[JobOutcome.DEAD_LETTERED] == 2
        entries = client.get("/api/v1/admin/jobs/dead-letter").json()
        assert {entry["type"] for entry in entries} == {"RENDER_PRINT", "SEND_NOTIFICATION"}
        assert all(entry["error"] == "printer on fire" for entry in entries)
        assert all(entry["retries"] == 3 for entry in entries)
