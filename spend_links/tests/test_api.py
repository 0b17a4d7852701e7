import uuid

import pytest
from fastapi.testclient import TestClient

from ..core.errors import ValidationError
from ..services import WalletService
from .conftest import OWNER_PIN


def _wallet(client: TestClient, name: str = "Chinedu", pin: str | None = OWNER_PIN, balance: int = 0) -> dict:
    body = {"owner_name": name}
    if pin is not None:
        body["pin"] = pin
    response = client.post("/wallets", json=body)
    assert response.status_code == 201
    headers = {"X-Wallet-Id": response.json()["id"]}
    if balance:
        deposit = client.post(
            "/wallets/me/deposit",
            json={"amount": balance},
            headers={**headers, "Idempotency-Key": str(uuid.uuid4())},
        )
        assert deposit.status_code == 200
    return headers


def _create_link(client: TestClient, headers: dict, amount: int, passcode: str = "1234") -> dict:
    response = client.post(
        "/links",
        json={"amount": amount, "passcode": passcode, "description": "Pocket money"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_create_wallet_and_deposit(client: TestClient) -> None:
    headers = _wallet(client, balance=1000)

    wallet = client.get("/wallets/me", headers=headers).json()
    assert wallet["balance"] == 1000
    assert wallet["currency"] == "NGN"
    assert wallet["has_pin"] is True
    assert wallet["escrowed"] == 0
    assert "pin_hash" not in wallet


def test_deposit_idempotency(client: TestClient) -> None:
    headers = _wallet(client, name="Eve")
    key = str(uuid.uuid4())
    first = client.post(
        "/wallets/me/deposit",
        json={"amount": 500},
        headers={**headers, "Idempotency-Key": key},
    )
    second = client.post(
        "/wallets/me/deposit",
        json={"amount": 500},
        headers={**headers, "Idempotency-Key": key},
    )
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json() == second.json()
    assert client.get("/wallets/me", headers=headers).json()["balance"] == 500

    conflicting = client.post(
        "/wallets/me/deposit",
        json={"amount": 900},
        headers={**headers, "Idempotency-Key": key},
    )
    assert conflicting.status_code == 409


def test_unknown_wallet_returns_404(client: TestClient) -> None:
    response = client.get("/wallets/me", headers={"X-Wallet-Id": str(uuid.uuid4())})
    assert response.status_code == 404


def test_set_pin_requires_current_pin(client: TestClient) -> None:
    headers = _wallet(client, pin=None)

    assert client.put("/wallets/me/pin", json={"pin": "1111"}, headers=headers).status_code == 200
    assert client.put("/wallets/me/pin", json={"pin": "2222"}, headers=headers).status_code == 401
    updated = client.put(
        "/wallets/me/pin", json={"pin": "2222", "current_pin": "1111"}, headers=headers
    )
    assert updated.status_code == 200
    assert client.put("/wallets/me/pin", json={"pin": "12"}, headers=headers).status_code == 400


def test_statement_pagination(client: TestClient) -> None:
    headers = _wallet(client, name="Frank")

    for amount in (100, 200, 300):
        client.post(
            "/wallets/me/deposit",
            json={"amount": amount},
            headers={**headers, "Idempotency-Key": str(uuid.uuid4())},
        )

    first_page = client.get("/wallets/me/statement", params={"limit": 2}, headers=headers)
    assert first_page.status_code == 200
    items = first_page.json()["items"]
    assert [entry["amount"] for entry in items] == [300, 200]

    cursor = first_page.json()["next_cursor"]
    second_page = client.get("/wallets/me/statement", params={"cursor": cursor}, headers=headers)
    remain = second_page.json()["items"]
    assert [entry["amount"] for entry in remain] == [100]
    assert second_page.json()["next_cursor"] is None


def test_statement_invalid_cursor_returns_400(client: TestClient) -> None:
    headers = _wallet(client, name="Helen", balance=100)

    response = client.get(
        "/wallets/me/statement",
        params={"cursor": "not-a-valid-timestamp"},
        headers=headers,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid cursor"


def test_statement_rejects_non_positive_limit(client: TestClient) -> None:
    headers = _wallet(client, name="Ivy", balance=100)

    for limit in (0, -1):
        response = client.get("/wallets/me/statement", params={"limit": limit}, headers=headers)
        assert response.status_code == 422


def test_statement_limit_guard_in_service(session, settings, make_wallet) -> None:
    wallet_id = make_wallet(balance=100)

    with pytest.raises(ValidationError):
        WalletService(session, settings=settings).get_statement(wallet_id, limit=0)


def test_request_and_approve_flow(client: TestClient) -> None:
    owner = _wallet(client, balance=500000)
    link = _create_link(client, owner, 500000)
    assert link["status"] == "active"
    assert len(link["code"]) == 8
    assert client.get("/wallets/me", headers=owner).json()["balance"] == 0
    assert client.get("/wallets/me", headers=owner).json()["escrowed"] == 500000

    public = client.get(f"/public/links/{link['code'].lower()}")
    assert public.status_code == 200
    assert set(public.json()) == {"code", "amount", "status", "description"}

    submitted = client.post(
        f"/public/links/{link['code']}/request",
        json={
            "passcode": "1234",
            "requested_amount": 500000,
            "target_account_number": "0123456789",
            "target_bank_name": "GTBank",
        },
    )
    assert submitted.status_code == 200
    assert submitted.json()["status"] == "pending_approval"

    pending = client.get("/links/pending", headers=owner).json()
    assert [item["id"] for item in pending] == [link["link_id"]]

    approved = client.post(f"/links/{link['link_id']}/approve", json={"pin": OWNER_PIN}, headers=owner)
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    again = client.post(f"/links/{link['link_id']}/approve", json={"pin": OWNER_PIN}, headers=owner)
    assert again.status_code == 409


def test_wrong_passcode_and_unknown_code_look_identical(client: TestClient) -> None:
    owner = _wallet(client, balance=1000)
    link = _create_link(client, owner, 1000)

    wrong = client.post(f"/public/links/{link['code']}/claim", json={"passcode": "0000"})
    unknown = client.post("/public/links/ZZZZ9999/claim", json={"passcode": "1234"})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"detail": "Invalid credentials"}


def test_claim_into_wallet(client: TestClient) -> None:
    owner = _wallet(client, balance=2000)
    claimant = _wallet(client, name="Tunde", pin=None)
    link = _create_link(client, owner, 2000)

    claimed = client.post(
        f"/public/links/{link['code']}/claim",
        json={"passcode": "1234", "claimant_wallet_id": claimant["X-Wallet-Id"]},
    )

    assert claimed.status_code == 200
    assert claimed.json() == {"status": "claimed", "amount": 2000}
    assert client.get("/wallets/me", headers=claimant).json()["balance"] == 2000
    assert client.get(f"/public/links/{link['code']}").json()["status"] == "claimed"


def test_cancel_returns_escrow_and_blocks_claims(client: TestClient) -> None:
    owner = _wallet(client, balance=200000)
    link = _create_link(client, owner, 200000)

    cancelled = client.post(f"/links/{link['link_id']}/cancel", headers=owner)
    assert cancelled.json()["status"] == "cancelled"
    assert client.get("/wallets/me", headers=owner).json()["balance"] == 200000

    claim = client.post(f"/public/links/{link['code']}/claim", json={"passcode": "1234"})
    assert claim.status_code == 409


def test_owner_routes_reject_other_wallets(client: TestClient) -> None:
    owner = _wallet(client, balance=1000)
    stranger = _wallet(client, name="Ada")
    link = _create_link(client, owner, 1000)

    assert client.get(f"/links/{link['link_id']}", headers=stranger).status_code == 401
    assert client.post(f"/links/{link['link_id']}/cancel", headers=stranger).status_code == 401
    assert client.get("/links", headers=stranger).json() == []


def test_create_link_validation_and_funds(client: TestClient) -> None:
    owner = _wallet(client, balance=1000)

    assert client.post("/links", json={"amount": 0, "passcode": "1234"}, headers=owner).status_code == 400
    assert client.post("/links", json={"amount": 10, "passcode": "12"}, headers=owner).status_code == 400
    assert client.post("/links", json={"amount": 5000, "passcode": "1234"}, headers=owner).status_code == 409
    assert client.post("/links", json={"amount": 10, "passcode": "1234"}).status_code == 422


def test_list_links_by_status(client: TestClient) -> None:
    owner = _wallet(client, balance=3000)
    first = _create_link(client, owner, 1000)
    second = _create_link(client, owner, 1000)
    client.post(f"/links/{first['link_id']}/cancel", headers=owner)

    everything = client.get("/links", headers=owner).json()
    active = client.get("/links", params={"status": "active"}, headers=owner).json()

    assert [item["id"] for item in everything] == [second["link_id"], first["link_id"]]
    assert [item["id"] for item in active] == [second["link_id"]]


def test_sweep_endpoint_with_nothing_due(client: TestClient) -> None:
    owner = _wallet(client, balance=1000)
    _create_link(client, owner, 1000)

    assert client.post("/links/sweep").json() == {"expired": 0}


def test_advisor_action_endpoint(client: TestClient) -> None:
    owner = _wallet(client, balance=600000)

    chat_only = client.post("/advisor/actions", json={"output": "Try budgeting 20% for savings."}, headers=owner)
    assert chat_only.json() == {"action": None, "result": None}

    proposed = client.post(
        "/advisor/actions",
        json={"output": {"action": "create_link", "amount": 5000}},
        headers=owner,
    )
    assert proposed.json()["action"]["action"] == "create_link"
    assert proposed.json()["result"] is None
    assert client.get("/wallets/me", headers=owner).json()["balance"] == 600000

    executed = client.post(
        "/advisor/actions",
        json={"output": {"action": "create_link", "amount": 5000}, "execute": True, "passcode": "2468"},
        headers=owner,
    )
    result = executed.json()["result"]
    assert result["passcode_is_default"] is False
    assert client.get("/wallets/me", headers=owner).json()["balance"] == 100000
