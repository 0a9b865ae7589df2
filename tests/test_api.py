"""
Integration tests for the REST API endpoints.

Runs the real FastAPI app over ``httpx.ASGITransport`` against the SQLite
test database, with the geocoder, notifier and payment gateways replaced
by the fakes from :mod:`tests.fakes` (see the ``client`` fixture).
"""

import pytest

from tests.conftest import auth
from wali.config import settings
from wali.domain.geography import ABIDJAN_COMMUNES

API = "/api/v1"


def _point(district: str, street: str) -> dict:
    lat, lng = ABIDJAN_COMMUNES[district]
    return {"street": street, "district": district, "latitude": lat, "longitude": lng}


ORDER_BODY = {
    "pickup": _point("Plateau", "Avenue Chardy"),
    "delivery": _point("Cocody", "Rue des Jardins"),
    "items": [
        {"name": "Dossier administratif", "weightKg": 0.5, "value": 10000, "category": "DOCUMENTS"}
    ],
    "priority": "EXPRESS",
    "paymentMethod": "CASH",
}


async def _create_order(client, user, **overrides) -> dict:
    body = {**ORDER_BODY, **overrides}
    resp = await client.post(f"{API}/orders", json=body, headers=auth(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Health & auth ─────────────────────────────────────────────────────


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get(f"{API}/admin/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        resp = await client.get(f"{API}/orders")
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        resp = await client.get(f"{API}/orders", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


# ── Pricing ───────────────────────────────────────────────────────────


class TestQuote:
    @pytest.mark.asyncio
    async def test_quote(self, client, users):
        resp = await client.post(
            f"{API}/pricing/quote",
            json={
                "pickup": ORDER_BODY["pickup"],
                "delivery": ORDER_BODY["delivery"],
                "vehicleType": "MOTO",
                "priority": "EXPRESS",
                "scheduledAt": "2024-01-10T10:00:00Z",
            },
            headers=auth(users.client),
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["totalPrice"] == 2865
        assert data["currency"] == "XOF"
        assert data["estimatedMinutes"] == 31
        assert sum(line["amount"] for line in data["breakdown"]) == data["totalPrice"]
        assert {"distanceKm", "basePrice", "surchargePrice", "factors"} <= data.keys()

    @pytest.mark.asyncio
    async def test_quote_from_text(self, client, users, geocoder):
        resp = await client.post(
            f"{API}/pricing/quote",
            json={
                "pickup": {"text": "sococe deux plateaux"},
                "delivery": _point("Marcory", "Boulevard VGE"),
            },
            headers=auth(users.client),
        )
        assert resp.status_code == 200, resp.text
        assert geocoder.queries == ["sococe deux plateaux"]

    @pytest.mark.asyncio
    async def test_quote_outside_country(self, client, users):
        resp = await client.post(
            f"{API}/pricing/quote",
            json={
                "pickup": ORDER_BODY["pickup"],
                "delivery": {"street": "Rue de Rivoli", "latitude": 48.86, "longitude": 2.35},
            },
            headers=auth(users.client),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"


# ── Orders ────────────────────────────────────────────────────────────


class TestOrders:
    @pytest.mark.asyncio
    async def test_create_order(self, client, users, notifier):
        data = await _create_order(client, users.client)

        assert data["status"] == "PENDING"
        assert data["orderNumber"].startswith("WAL-")
        assert data["clientId"] == users.client.id
        assert data["driverId"] is None
        assert data["delivery"]["district"] == "Cocody"
        assert data["totalWeight"] == 0.5
        breakdown = data["pricing"]["breakdown"]
        assert sum(line["amount"] for line in breakdown) == data["totalPrice"]
        assert notifier.for_user(users.client.id)

    @pytest.mark.asyncio
    async def test_create_order_from_text(self, client, users):
        data = await _create_order(
            client,
            users.client,
            pickup={"text": "sococe deux plateaux"},
            delivery=_point("Plateau", "Avenue Chardy"),
        )
        assert data["pickup"]["district"] == "Cocody"
        assert data["pickup"]["street"] == "Sococé, Les Deux Plateaux, Abidjan"

    @pytest.mark.asyncio
    async def test_unknown_district_is_rejected(self, client, users):
        body = {
            **ORDER_BODY,
            "delivery": {**ORDER_BODY["delivery"], "district": "Paris 15"},
        }
        resp = await client.post(f"{API}/orders", json=body, headers=auth(users.client))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_items_are_rejected(self, client, users):
        resp = await client.post(
            f"{API}/orders", json={**ORDER_BODY, "items": []}, headers=auth(users.client)
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_driver_cannot_order(self, client, users):
        resp = await client.post(f"{API}/orders", json=ORDER_BODY, headers=auth(users.moto_driver))
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_list_and_get(self, client, users):
        order = await _create_order(client, users.client)

        mine = await client.get(f"{API}/orders", headers=auth(users.client))
        assert [o["id"] for o in mine.json()["orders"]] == [order["id"]]
        assert {k: mine.json()[k] for k in ("total", "page", "limit")} == {
            "total": 1,
            "page": 1,
            "limit": 10,
        }

        theirs = await client.get(f"{API}/orders", headers=auth(users.other_client))
        assert theirs.json() == {"orders": [], "total": 0, "page": 1, "limit": 10}

        resp = await client.get(f"{API}/orders/{order['id']}", headers=auth(users.other_client))
        assert resp.status_code == 403

        resp = await client.get(f"{API}/orders/999999", headers=auth(users.client))
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_pagination(self, client, users):
        ids = [(await _create_order(client, users.client))["id"] for _ in range(3)]

        resp = await client.get(
            f"{API}/orders", params={"page": 2, "limit": 2}, headers=auth(users.client)
        )
        assert resp.status_code == 200
        data = resp.json()
        assert [o["id"] for o in data["orders"]] == [ids[0]]
        assert (data["total"], data["page"], data["limit"]) == (3, 2, 2)

        resp = await client.get(
            f"{API}/orders", params={"page": 0}, headers=auth(users.client)
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_owner_edits_order(self, client, users):
        order = await _create_order(client, users.client, notes="Appeler avant")

        resp = await client.patch(
            f"{API}/orders/{order['id']}",
            json={"scheduledAt": "2030-03-01T09:00:00Z"},
            headers=auth(users.client),
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["scheduledAt"].startswith("2030-03-01T09:00:00")
        # fields left out are untouched
        assert data["notes"] == "Appeler avant"
        assert data["totalPrice"] == order["totalPrice"]

        resp = await client.patch(
            f"{API}/orders/{order['id']}",
            json={"notes": "Piéton"},
            headers=auth(users.other_client),
        )
        assert resp.status_code == 403

        await client.post(
            f"{API}/orders/{order['id']}/cancel", json={}, headers=auth(users.client)
        )
        resp = await client.patch(
            f"{API}/orders/{order['id']}", json={"notes": "Piéton"}, headers=auth(users.client)
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "TERMINAL_STATE"

    @pytest.mark.asyncio
    async def test_client_cannot_choose_the_weather(self, client, users, monkeypatch):
        monkeypatch.setattr(settings, "current_weather", "HEAVY_RAIN")
        data = await _create_order(client, users.client, weather="CLEAR")
        assert data["pricing"]["factors"]["WEATHER"] == 1.2


class TestAcceptAndDispatch:
    @pytest.mark.asyncio
    async def test_first_driver_wins(self, client, users):
        order = await _create_order(client, users.client)

        first = await client.post(
            f"{API}/orders/{order['id']}/accept", headers=auth(users.moto_driver)
        )
        assert first.status_code == 200
        assert first.json()["status"] == "ACCEPTED"
        assert first.json()["driverId"] == users.moto_driver.id

        second = await client.post(
            f"{API}/orders/{order['id']}/accept", headers=auth(users.car_driver)
        )
        assert second.status_code == 409
        assert second.json()["code"] == "ORDER_TAKEN"

    @pytest.mark.asyncio
    async def test_client_cannot_accept(self, client, users):
        order = await _create_order(client, users.client)
        resp = await client.post(f"{API}/orders/{order['id']}/accept", headers=auth(users.client))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_available_orders(self, client, users):
        order = await _create_order(client, users.client, preferredVehicleType="VOITURE")

        car = await client.get(f"{API}/orders/available", headers=auth(users.car_driver))
        assert [o["id"] for o in car.json()] == [order["id"]]

        moto = await client.get(f"{API}/orders/available", headers=auth(users.moto_driver))
        assert moto.json() == []

        resp = await client.get(f"{API}/orders/available", headers=auth(users.client))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_assigns_then_driver_confirms(self, client, users):
        order = await _create_order(client, users.client)

        resp = await client.post(
            f"{API}/orders/{order['id']}/assign",
            json={"driverId": users.moto_driver.id},
            headers=auth(users.admin),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "ASSIGNED"

        resp = await client.patch(
            f"{API}/orders/{order['id']}/status",
            json={"status": "ACCEPTED"},
            headers=auth(users.moto_driver),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "ACCEPTED"

    @pytest.mark.asyncio
    async def test_only_admin_assigns(self, client, users):
        order = await _create_order(client, users.client)
        resp = await client.post(
            f"{API}/orders/{order['id']}/assign",
            json={"driverId": users.moto_driver.id},
            headers=auth(users.client),
        )
        assert resp.status_code == 403


class TestStatusFlow:
    @pytest.mark.asyncio
    async def test_full_delivery(self, client, users):
        order = await _create_order(client, users.client)
        oid = order["id"]
        driver = auth(users.moto_driver)
        await client.post(f"{API}/orders/{oid}/accept", headers=driver)

        for status in ("PICKUP_IN_PROGRESS", "PICKED_UP", "DELIVERY_IN_PROGRESS"):
            resp = await client.patch(
                f"{API}/orders/{oid}/status", json={"status": status}, headers=driver
            )
            assert resp.status_code == 200, resp.text
            assert resp.json()["status"] == status

        resp = await client.patch(
            f"{API}/orders/{oid}/status",
            json={"status": "DELIVERED", "latitude": 5.3717, "longitude": -3.9925, "notes": "Remis en main propre"},
            headers=driver,
        )
        data = resp.json()
        assert data["status"] == "DELIVERED"
        assert data["paymentStatus"] == "PAID"
        assert data["completedAt"] is not None

        history = await client.get(f"{API}/orders/{oid}/history", headers=auth(users.client))
        entries = history.json()
        assert [e["status"] for e in entries] == [
            "PENDING",
            "ACCEPTED",
            "PICKUP_IN_PROGRESS",
            "PICKED_UP",
            "DELIVERY_IN_PROGRESS",
            "DELIVERED",
        ]
        assert entries[-1]["latitude"] == 5.3717
        assert entries[-1]["updatedByRole"] == "DRIVER"

    @pytest.mark.asyncio
    async def test_skipping_a_step(self, client, users):
        order = await _create_order(client, users.client)
        await client.post(f"{API}/orders/{order['id']}/accept", headers=auth(users.moto_driver))

        resp = await client.patch(
            f"{API}/orders/{order['id']}/status",
            json={"status": "DELIVERED"},
            headers=auth(users.moto_driver),
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_other_driver_cannot_advance(self, client, users):
        order = await _create_order(client, users.client)
        await client.post(f"{API}/orders/{order['id']}/accept", headers=auth(users.moto_driver))

        resp = await client.patch(
            f"{API}/orders/{order['id']}/status",
            json={"status": "PICKUP_IN_PROGRESS"},
            headers=auth(users.car_driver),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_status(self, client, users):
        order = await _create_order(client, users.client)
        resp = await client.patch(
            f"{API}/orders/{order['id']}/status",
            json={"status": "TELEPORTED"},
            headers=auth(users.admin),
        )
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Données invalides : status", "code": "VALIDATION_ERROR"}

    @pytest.mark.asyncio
    async def test_malformed_body(self, client, users):
        resp = await client.post(
            f"{API}/orders",
            json={**ORDER_BODY, "items": [{"name": "Colis", "quantity": 0}]},
            headers=auth(users.client),
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["detail"] == "Données invalides : items.0.quantity"


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_then_frozen(self, client, users):
        order = await _create_order(client, users.client)

        resp = await client.post(
            f"{API}/orders/{order['id']}/cancel",
            json={"reason": "Plus besoin"},
            headers=auth(users.client),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"

        resp = await client.patch(
            f"{API}/orders/{order['id']}/status",
            json={"status": "ACCEPTED"},
            headers=auth(users.admin),
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "TERMINAL_STATE"

        resp = await client.post(
            f"{API}/orders/{order['id']}/accept", headers=auth(users.moto_driver)
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_stranger_cannot_cancel(self, client, users):
        order = await _create_order(client, users.client)
        resp = await client.post(
            f"{API}/orders/{order['id']}/cancel", json={}, headers=auth(users.other_client)
        )
        assert resp.status_code == 403


class TestMessages:
    @pytest.mark.asyncio
    async def test_message_is_relayed(self, client, users, notifier):
        order = await _create_order(client, users.client)
        await client.post(f"{API}/orders/{order['id']}/accept", headers=auth(users.moto_driver))

        resp = await client.post(
            f"{API}/orders/{order['id']}/messages",
            json={"text": "Je suis devant le portail"},
            headers=auth(users.moto_driver),
        )
        assert resp.status_code == 202
        assert resp.json()["senderRole"] == "DRIVER"
        assert notifier.chats[-1][0] == order["id"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_chat(self, client, users):
        order = await _create_order(client, users.client)
        resp = await client.post(
            f"{API}/orders/{order['id']}/messages",
            json={"text": "Bonjour"},
            headers=auth(users.other_client),
        )
        assert resp.status_code == 403


# ── Addresses ─────────────────────────────────────────────────────────


class TestAddresses:
    @pytest.mark.asyncio
    async def test_address_book(self, client, users):
        headers = auth(users.client)
        home = await client.post(
            f"{API}/addresses",
            json={**_point("Cocody", "Rue des Jardins"), "label": "Maison"},
            headers=headers,
        )
        assert home.status_code == 201
        assert home.json()["isDefault"] is True

        office = await client.post(
            f"{API}/addresses", json=_point("Plateau", "Rue du Commerce"), headers=headers
        )
        office_id = office.json()["id"]

        resp = await client.post(f"{API}/addresses/{office_id}/default", headers=headers)
        assert resp.json()["isDefault"] is True

        resp = await client.patch(
            f"{API}/addresses/{office_id}", json={"landmark": "Immeuble CCIA"}, headers=headers
        )
        assert resp.json()["landmark"] == "Immeuble CCIA"

        resp = await client.delete(f"{API}/addresses/{office_id}", headers=headers)
        assert resp.status_code == 204

        listed = (await client.get(f"{API}/addresses", headers=headers)).json()
        assert [(a["id"], a["isDefault"]) for a in listed] == [(home.json()["id"], True)]

    @pytest.mark.asyncio
    async def test_other_users_address(self, client, users):
        home = await client.post(
            f"{API}/addresses", json=_point("Cocody", "Rue des Jardins"), headers=auth(users.client)
        )
        resp = await client.delete(
            f"{API}/addresses/{home.json()['id']}", headers=auth(users.other_client)
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_geocode(self, client, users):
        resp = await client.post(
            f"{API}/addresses/geocode",
            json={"address": "marche de treichville"},
            headers=auth(users.client),
        )
        assert resp.status_code == 200
        assert resp.json()["district"] == "Treichville"

    @pytest.mark.asyncio
    async def test_geocode_falls_back_to_commune(self, client, users):
        resp = await client.post(
            f"{API}/addresses/geocode",
            json={"address": "Carrefour Siporex, Yopougon"},
            headers=auth(users.client),
        )
        assert resp.status_code == 200
        assert resp.json()["district"] == "Yopougon"
        assert resp.json()["formattedAddress"]

    @pytest.mark.asyncio
    async def test_geocode_miss(self, client, users):
        resp = await client.post(
            f"{API}/addresses/geocode",
            json={"address": "Derrière le grand fromager"},
            headers=auth(users.client),
        )
        assert resp.status_code == 502

    @pytest.mark.asyncio
    async def test_reverse_geocode(self, client, users):
        resp = await client.post(
            f"{API}/addresses/reverse-geocode",
            json={"latitude": 5.3236, "longitude": -4.0197},
            headers=auth(users.client),
        )
        assert resp.json()["district"] == "Plateau"


# ── Payments ──────────────────────────────────────────────────────────


class TestPayments:
    @pytest.mark.asyncio
    async def test_mobile_money_flow(self, client, users):
        order = await _create_order(client, users.client, paymentMethod="ORANGE_MONEY")
        headers = auth(users.client)

        resp = await client.post(
            f"{API}/payments",
            json={
                "orderId": order["id"],
                "method": "ORANGE_MONEY",
                "amount": order["totalPrice"],
                "phoneNumber": "07 01 02 03 04",
            },
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        tx = resp.json()
        assert tx["status"] == "PROCESSING"
        assert tx["provider"] == "ORANGE_MONEY"
        assert tx["reference"].startswith(f"WALI-{order['id']}-")
        assert tx["currency"] == "XOF"

        resp = await client.get(f"{API}/payments/{tx['id']}/status", headers=headers)
        assert resp.json()["status"] == "COMPLETED"

        paid = await client.get(f"{API}/orders/{order['id']}", headers=headers)
        assert paid.json()["paymentStatus"] == "PAID"

        again = await client.post(
            f"{API}/payments",
            json={
                "orderId": order["id"],
                "method": "WAVE",
                "amount": order["totalPrice"],
                "phoneNumber": "0701020304",
            },
            headers=headers,
        )
        assert again.status_code == 409
        assert again.json()["code"] == "ALREADY_PAID"

    @pytest.mark.asyncio
    async def test_wrong_amount(self, client, users):
        order = await _create_order(client, users.client)
        resp = await client.post(
            f"{API}/payments",
            json={"orderId": order["id"], "method": "CASH", "amount": 1},
            headers=auth(users.client),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "AMOUNT_MISMATCH"

    @pytest.mark.asyncio
    async def test_card_needs_pin(self, client, users):
        order = await _create_order(client, users.client, paymentMethod="CARD")
        card = {
            "cardNumber": "5531886652142950",
            "cvv": "564",
            "expiryMonth": "09",
            "expiryYear": "32",
        }
        headers = auth(users.client)
        resp = await client.post(
            f"{API}/payments",
            json={"orderId": order["id"], "method": "CARD", "amount": order["totalPrice"], "card": card},
            headers=headers,
        )
        tx = resp.json()
        assert tx["status"] == "PENDING"
        assert tx["errorCode"] == "PIN_REQUIRED"

        resp = await client.post(
            f"{API}/payments/{tx['id']}/authorize",
            json={"pin": "3310", "card": card},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] in ("PROCESSING", "COMPLETED")

    @pytest.mark.asyncio
    async def test_cancel_payment(self, client, users):
        order = await _create_order(client, users.client, paymentMethod="WAVE")
        headers = auth(users.client)
        tx = (
            await client.post(
                f"{API}/payments",
                json={
                    "orderId": order["id"],
                    "method": "WAVE",
                    "amount": order["totalPrice"],
                    "phoneNumber": "+2250701020304",
                },
                headers=headers,
            )
        ).json()

        resp = await client.post(f"{API}/payments/{tx['id']}/cancel", headers=headers)
        assert resp.json()["status"] == "CANCELLED"

        resp = await client.post(f"{API}/payments/{tx['id']}/cancel", headers=headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "TERMINAL_STATE"

    @pytest.mark.asyncio
    async def test_someone_elses_payment(self, client, users):
        order = await _create_order(client, users.client)
        tx = (
            await client.post(
                f"{API}/payments",
                json={"orderId": order["id"], "method": "CASH", "amount": order["totalPrice"]},
                headers=auth(users.client),
            )
        ).json()
        resp = await client.get(
            f"{API}/payments/{tx['id']}/status", headers=auth(users.other_client)
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_webhook(self, client, users, monkeypatch):
        monkeypatch.setattr(settings, "flutterwave_webhook_hash", "wali-webhook-secret")
        order = await _create_order(client, users.client, paymentMethod="MTN_MONEY")
        tx = (
            await client.post(
                f"{API}/payments",
                json={
                    "orderId": order["id"],
                    "method": "MTN_MONEY",
                    "amount": order["totalPrice"],
                    "phoneNumber": "0505060708",
                },
                headers=auth(users.client),
            )
        ).json()
        payload = {
            "event": "charge.completed",
            "data": {
                "id": 9001,
                "tx_ref": tx["reference"],
                "status": "successful",
                "amount": order["totalPrice"],
            },
        }

        forged = await client.post(
            f"{API}/payments/webhooks/flutterwave", json=payload, headers={"verif-hash": "x"}
        )
        assert forged.status_code == 401

        resp = await client.post(
            f"{API}/payments/webhooks/flutterwave",
            json=payload,
            headers={"verif-hash": "wali-webhook-secret"},
        )
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "reference": tx["reference"]}

        paid = await client.get(f"{API}/orders/{order['id']}", headers=auth(users.client))
        assert paid.json()["paymentStatus"] == "PAID"


# ── Admin ─────────────────────────────────────────────────────────────


class TestAdmin:
    @pytest.mark.asyncio
    async def test_demand(self, client, users):
        await _create_order(client, users.client)
        await _create_order(client, users.other_client)

        resp = await client.get(f"{API}/admin/demand", headers=auth(users.admin))
        assert resp.status_code == 200
        assert resp.json() == {
            "pendingOrders": 2,
            "availableDrivers": 2,
            "demandRatio": 1.0,
            "multiplier": 1.0,
        }

    @pytest.mark.asyncio
    async def test_demand_is_admin_only(self, client, users):
        resp = await client.get(f"{API}/admin/demand", headers=auth(users.client))
        assert resp.status_code == 403
