"""
tests/test_payment_methods.py
Saved payment methods: exactly one default per owner, ownership checks.
"""

import pytest
from httpx import AsyncClient

from shared.models.models import User
from tests.conftest import auth_headers


async def _add(client: AsyncClient, user: User, name: str, **extra) -> dict:
    payload = {"type": "orange", "name": name, "details": {"phone": "+2250700000001"}}
    payload.update(extra)
    response = await client.post("/payment-methods", headers=auth_headers(user), json=payload)
    assert response.status_code == 201
    return response.json()["data"]


async def _defaults(client: AsyncClient, user: User):
    response = await client.get("/payment-methods", headers=auth_headers(user))
    return [m["name"] for m in response.json()["data"] if m["is_default"]]


@pytest.mark.asyncio
async def test_first_method_becomes_default(client: AsyncClient, booker: User):
    method = await _add(client, booker, "Orange Money")
    assert method["is_default"] is True
    assert method["owner_type"] == "booker"
    assert method["owner_id"] == str(booker.id)


@pytest.mark.asyncio
async def test_second_method_is_not_default(client: AsyncClient, booker: User):
    await _add(client, booker, "Orange Money")
    second = await _add(client, booker, "Wave", type="wave")
    assert second["is_default"] is False
    assert await _defaults(client, booker) == ["Orange Money"]


@pytest.mark.asyncio
async def test_adding_default_clears_previous(client: AsyncClient, booker: User):
    await _add(client, booker, "Orange Money")
    await _add(client, booker, "Wave", type="wave", is_default=True)
    assert await _defaults(client, booker) == ["Wave"]


@pytest.mark.asyncio
async def test_set_default(client: AsyncClient, booker: User):
    await _add(client, booker, "Orange Money")
    second = await _add(client, booker, "Wave", type="wave")

    response = await client.put(
        f"/payment-methods/{second['id']}/default", headers=auth_headers(booker)
    )
    assert response.status_code == 200
    assert response.json()["data"]["is_default"] is True
    assert await _defaults(client, booker) == ["Wave"]


@pytest.mark.asyncio
async def test_list_puts_default_first(client: AsyncClient, booker: User):
    await _add(client, booker, "Orange Money")
    await _add(client, booker, "Wave", type="wave")
    await _add(client, booker, "MTN", type="mtn")

    response = await client.get("/payment-methods", headers=auth_headers(booker))
    names = [m["name"] for m in response.json()["data"]]
    assert names == ["Orange Money", "MTN", "Wave"]


@pytest.mark.asyncio
async def test_update_method(client: AsyncClient, booker: User):
    method = await _add(client, booker, "Orange Money")
    response = await client.put(
        f"/payment-methods/{method['id']}",
        headers=auth_headers(booker),
        json={"name": "Orange Money (pro)"},
    )
    assert response.status_code == 200
    assert response.json()["data"]["name"] == "Orange Money (pro)"
    assert response.json()["data"]["is_default"] is True


@pytest.mark.asyncio
async def test_card_details_are_masked(client: AsyncClient, booker: User):
    method = await _add(
        client, booker, "Visa",
        type="credit_card",
        details={"cardNumber": "4000056655665556", "cvv": "999", "expiry": "12/28"},
    )
    assert method["details"] == {"cardLast4": "5556", "expiry": "12/28"}


@pytest.mark.asyncio
async def test_delete_default_promotes_oldest(client: AsyncClient, booker: User):
    first = await _add(client, booker, "Orange Money")
    await _add(client, booker, "Wave", type="wave")
    await _add(client, booker, "MTN", type="mtn")

    response = await client.delete(f"/payment-methods/{first['id']}", headers=auth_headers(booker))
    assert response.status_code == 200
    assert await _defaults(client, booker) == ["Wave"]


@pytest.mark.asyncio
async def test_cannot_delete_only_method(client: AsyncClient, booker: User):
    method = await _add(client, booker, "Orange Money")
    response = await client.delete(f"/payment-methods/{method['id']}", headers=auth_headers(booker))
    assert response.status_code == 409
    assert response.json()["code"] == "conflict"


@pytest.mark.asyncio
async def test_other_owner_is_forbidden(client: AsyncClient, booker: User, other_booker: User):
    method = await _add(client, booker, "Orange Money")
    await _add(client, other_booker, "Wave", type="wave")

    for call in (
        client.get(f"/payment-methods/{method['id']}", headers=auth_headers(other_booker)),
        client.put(f"/payment-methods/{method['id']}/default", headers=auth_headers(other_booker)),
        client.delete(f"/payment-methods/{method['id']}", headers=auth_headers(other_booker)),
    ):
        response = await call
        assert response.status_code == 403

    assert await _defaults(client, booker) == ["Orange Money"]
    assert await _defaults(client, other_booker) == ["Wave"]


@pytest.mark.asyncio
async def test_unknown_method(client: AsyncClient, booker: User):
    response = await client.get(
        "/payment-methods/00000000-0000-0000-0000-000000000000", headers=auth_headers(booker)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_artist_and_booker_defaults_are_independent(
    client: AsyncClient, booker: User, artist: User
):
    await _add(client, booker, "Orange Money")
    artist_method = await _add(client, artist, "Payout wallet", type="moov")
    assert artist_method["is_default"] is True
    assert artist_method["owner_type"] == "artist"
    assert await _defaults(client, booker) == ["Orange Money"]


@pytest.mark.asyncio
async def test_admin_has_no_payment_methods(client: AsyncClient, admin: User):
    response = await client.get("/payment-methods", headers=auth_headers(admin))
    assert response.status_code == 400
    assert response.json()["code"] == "identity_missing"
