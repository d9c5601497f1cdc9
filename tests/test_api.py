"""End-to-end tests through the HTTP API."""

import httpx
import pytest
import pytest_asyncio

from conftest import PASSWORD
from mock_services import mock_mail_service, mock_payment_service
from pizza_service.main import create_app
from pizza_service.models import TokenRecord, now_ms

USER = {
    "email": "mario@pizza.com",
    "password": PASSWORD,
    "firstName": "Mario",
    "lastName": "Rossi",
    "tosAgreement": True,
    "streetAddress": "Via Roma 1",
}


@pytest_asyncio.fixture
async def app(store, payment, mailer, menu):
    application = create_app(store=store, payment=payment, mailer=mailer)
    yield application
    await application.state.services.workflow.background.drain()


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://pizza.test") as http:
        yield http


@pytest_asyncio.fixture
async def token_id(client):
    assert (await client.post("/users", json=USER)).status_code == 200
    response = await client.post("/user/login", json={"email": USER["email"], "password": PASSWORD})
    assert response.status_code == 200
    return response.json()["id"]


def auth(token_id):
    return {"tokenid": token_id}


@pytest.mark.asyncio
async def test_ping_and_health(client):
    assert (await client.get("/ping")).json() == "OK"
    assert (await client.get("/health")).json() == {"status": "ok"}


class TestCheckoutOverHttp:

    @pytest.mark.asyncio
    async def test_checkout(self, client, token_id, menu):
        item_id = menu["itemX"].id
        response = await client.put("/user/addToCart", json={"email": USER["email"], "itemId": item_id, "quantity": 2}, headers=auth(token_id))
        assert response.status_code == 200
        assert response.json()["cart"] == {item_id: 2}

        response = await client.put("/user/checkout", json={"email": USER["email"]}, headers=auth(token_id))
        assert response.status_code == 200
        result = response.json()
        assert result["total"] == 15.00
        assert result["invoice"] == "sent"

        user = (await client.get("/users", params={"email": USER["email"]}, headers=auth(token_id))).json()
        assert user["orders"] == [result["orderId"]]
        assert user["cart"] == {}
        assert "password" not in user

        order = (await client.get("/orders", params={"id": result["orderId"]})).json()
        assert order["completedOn"] >= order["createdOn"]
        assert order["paymentInfo"]["status"] == "succeeded"
        assert len(mock_mail_service.outbox) == 1

    @pytest.mark.asyncio
    async def test_empty_cart_is_forbidden(self, client, token_id):
        response = await client.put("/user/checkout", json={"email": USER["email"]}, headers=auth(token_id))
        assert response.status_code == 403
        assert response.json()["error"] == "empty_cart"

    @pytest.mark.asyncio
    async def test_missing_token(self, client, token_id):
        response = await client.put("/user/checkout", json={"email": USER["email"]})
        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_expired_token(self, client, store, token_id, menu):
        added = await client.put("/user/addToCart", json={"email": USER["email"], "itemId": menu["cola"].id}, headers=auth(token_id))
        assert added.status_code == 200
        expired = TokenRecord(id="e" * 20, email=USER["email"], expiration=now_ms() - 1)
        await store.create_record("tokens", expired.id, expired)

        response = await client.put("/user/checkout", json={"email": USER["email"]}, headers=auth(expired.id))
        assert response.status_code == 403
        assert not await store.exists("tokens", expired.id)
        assert await store.list_keys("orders") == []
        assert mock_payment_service.charges_by_key == {}

    @pytest.mark.asyncio
    async def test_declined_card(self, client, token_id, menu):
        await client.put("/user/addToCart", json={"email": USER["email"], "itemId": menu["cola"].id}, headers=auth(token_id))
        response = await client.put(
            "/user/checkout",
            json={"email": USER["email"], "paymentToken": "tok_chargeDeclined"},
            headers=auth(token_id),
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "payment_failed"
        assert body["paymentDetails"]["error"]["code"] == "card_declined"

    @pytest.mark.asyncio
    async def test_stripe_token_field_is_honoured(self, client, store, token_id, menu):
        await client.put("/user/addToCart", json={"email": USER["email"], "itemId": menu["cola"].id}, headers=auth(token_id))
        response = await client.put(
            "/user/checkout",
            json={"email": USER["email"], "stripeToken": "tok_chargeDeclined"},
            headers=auth(token_id),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "payment_failed"
        user = (await client.get("/users", params={"email": USER["email"]}, headers=auth(token_id))).json()
        assert user["orders"] == []


class TestResources:

    @pytest.mark.asyncio
    async def test_invalid_user_payload(self, client):
        response = await client.post("/users", json={"email": "mario@pizza.com"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    @pytest.mark.asyncio
    async def test_duplicate_user(self, client, token_id):
        response = await client.post("/users", json=USER)
        assert response.status_code == 400
        assert response.json()["error"] == "conflict"

    @pytest.mark.asyncio
    async def test_items(self, client, menu):
        items = (await client.get("/items")).json()
        assert len(items) == len(menu)
        one = await client.get("/items", params={"id": menu["pepperoni"].id})
        assert one.json()["unitPrice"] == 12.50
        assert (await client.get("/items", params={"id": "zzzzzzzzzz"})).status_code == 404

    @pytest.mark.asyncio
    async def test_tokens(self, client, token_id):
        assert (await client.get("/tokens", params={"id": token_id})).json()["email"] == USER["email"]
        assert (await client.put("/tokens", json={"id": token_id, "extend": True})).status_code == 200
        assert (await client.put("/tokens", json={"id": token_id, "extend": False})).status_code == 400
        assert (await client.put("/user/logout", json={"tokenId": token_id})).status_code == 200
        assert (await client.get("/tokens", params={"id": token_id})).status_code == 404

    @pytest.mark.asyncio
    async def test_order_totals_not_writable(self, client, menu):
        created = await client.post("/orders", json={"email": USER["email"], "items": {menu["cola"].id: 1}})
        assert created.status_code == 200
        order_id = created.json()["id"]
        response = await client.put("/orders", json={"id": order_id, "total": 0.01})
        assert response.status_code == 400
        assert (await client.get("/orders", params={"id": order_id})).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_delete_user_cascades(self, client, store, token_id, menu):
        await client.put("/user/addToCart", json={"email": USER["email"], "itemId": menu["cola"].id}, headers=auth(token_id))
        order_id = (await client.put("/user/checkout", json={"email": USER["email"]}, headers=auth(token_id))).json()["orderId"]

        response = await client.delete("/users", params={"email": USER["email"]}, headers=auth(token_id))
        assert response.status_code == 200
        assert not await store.exists("users", USER["email"])
        assert not await store.exists("orders", order_id)
        assert not await store.exists("tokens", token_id)
