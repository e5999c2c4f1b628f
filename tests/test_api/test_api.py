"""HTTP-level tests: routing, the X-User-Id contract, error mapping and idempotent create."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Iterator
from decimal import Decimal

import httpx
import pytest

from escrow_exchange.api.middleware import status_for
from escrow_exchange.domain.exceptions import (
    CurrencyMismatchError,
    DuplicateOperationError,
    EscrowExchangeError,
    EscrowNotFoundError,
    InvalidAmountError,
    NotAPartyError,
    OrganizationNotFoundError,
    SelfEscrowError,
    TransientStoreError,
)
from escrow_exchange.infrastructure.redis_client import set_redis
from escrow_exchange.main import create_app

TRAFFIC_METADATA = {
    "validatorPartyId": "validator::1220ab",
    "trafficAmountBytes": 5_000_000_000,
    "domainId": "global-domain::1220",
}


class FakeRedis:
    """In-memory stand-in for the few Redis commands the idempotency helpers use."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


@pytest.fixture
async def client(engine) -> AsyncIterator[httpx.AsyncClient]:  # noqa: ANN001
    """Client over the app without its lifespan; the engine fixture provides the database."""
    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def fake_redis() -> Iterator[FakeRedis]:
    redis = FakeRedis()
    set_redis(redis)  # type: ignore[arg-type]
    yield redis
    set_redis(None)


def as_user(person) -> dict[str, str]:  # noqa: ANN001
    return {"X-User-Id": str(person.user_id)}


async def create(client: httpx.AsyncClient, person, **overrides) -> httpx.Response:  # noqa: ANN001
    body = {
        "service_type_id": "TRAFFIC_BUY",
        "amount": "100.00",
        "currency": "USD",
        "counterparty": {"is_open": True},
        "metadata": TRAFFIC_METADATA,
    }
    body.update(overrides)
    return await client.post("/api/v1/escrows", json=body, headers=as_user(person))


async def deposit(client: httpx.AsyncClient, person, amount: str = "200.00") -> httpx.Response:  # noqa: ANN001
    return await client.post(
        "/api/v1/accounts/deposit",
        json={"amount": amount, "currency": "USD", "org_id": str(person.org_id)},
        headers=as_user(person),
    )


class TestHealth:
    async def test_degraded_without_redis(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["database"] == "healthy"
        assert body["redis"] == "disabled"
        assert body["status"] == "degraded"

    async def test_ok_with_redis(self, client: httpx.AsyncClient, fake_redis: FakeRedis) -> None:
        body = (await client.get("/health")).json()
        assert body["status"] == "ok"

    async def test_request_id_is_echoed(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/health", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"


class TestCallerIdentity:
    async def test_missing_header(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/api/v1/escrows")
        assert resp.status_code == 401

    async def test_malformed_header(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/api/v1/escrows", headers={"X-User-Id": "not-a-uuid"})
        assert resp.status_code == 401

    async def test_unknown_user(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/api/v1/escrows", headers={"X-User-Id": str(uuid.uuid4())})
        assert resp.status_code == 404
        assert resp.json()["error"] == "USER_NOT_FOUND"


class TestLifecycleOverHttp:
    async def test_happy_path(self, client: httpx.AsyncClient, alice, bob) -> None:
        assert (await deposit(client, alice)).status_code == 200

        resp = await create(client, alice, title="5 GB of traffic")
        assert resp.status_code == 201
        escrow = resp.json()
        escrow_id = escrow["id"]
        assert escrow["status"] == "PENDING_ACCEPTANCE"
        assert Decimal(escrow["platform_fee"]) == Decimal("15.00")
        assert escrow["metadata"] == TRAFFIC_METADATA
        assert [o["id"] for o in escrow["obligations"]] == ["obl_a", "obl_b"]

        pending = await client.get("/api/v1/escrows/pending", headers=as_user(bob))
        assert [e["id"] for e in pending.json()] == [escrow_id]

        base = f"/api/v1/escrows/{escrow_id}"
        assert (await client.post(f"{base}/accept", headers=as_user(bob))).json()[
            "status"
        ] == "PENDING_FUNDING"
        assert (await client.post(f"{base}/fund", headers=as_user(alice))).json()[
            "status"
        ] == "FUNDED"
        assert (await client.post(f"{base}/confirm", headers=as_user(bob))).json()[
            "status"
        ] == "PARTY_B_CONFIRMED"

        status = (await client.get(f"{base}/status")).json()
        assert status["party_b_confirmed"] is True
        assert "confirm_a" in status["allowed_events"]

        final = (await client.post(f"{base}/confirm", headers=as_user(alice))).json()
        assert final["status"] == "COMPLETED"
        assert all(o["status"] == "completed" for o in final["obligations"])

        events = (await client.get(f"{base}/events")).json()
        assert [e["event_type"] for e in events] == [
            "CREATED",
            "ACCEPTED",
            "FUNDED",
            "PARTY_B_CONFIRMED",
            "PARTY_A_CONFIRMED",
            "COMPLETED",
        ]

        mine = (await client.get("/api/v1/accounts/me", headers=as_user(alice))).json()
        org_account = next(a for a in mine if a["org_id"] == str(alice.org_id))
        assert Decimal(org_account["available_balance"]) == Decimal("85.00")
        assert Decimal(org_account["in_contract_balance"]) == Decimal("0")

    async def test_status_filter_on_my_escrows(
        self, client: httpx.AsyncClient, alice
    ) -> None:
        await create(client, alice)
        resp = await client.get(
            "/api/v1/escrows", params={"status": "FUNDED"}, headers=as_user(alice)
        )
        assert resp.json() == []
        resp = await client.get("/api/v1/escrows", headers=as_user(alice))
        assert len(resp.json()) == 1


class TestErrorMapping:
    async def test_unknown_escrow_is_404(self, client: httpx.AsyncClient) -> None:
        resp = await client.get(f"/api/v1/escrows/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error"] == "ESCROW_NOT_FOUND"

    async def test_self_accept_is_409(self, client: httpx.AsyncClient, alice) -> None:
        escrow_id = (await create(client, alice)).json()["id"]
        resp = await client.post(f"/api/v1/escrows/{escrow_id}/accept", headers=as_user(alice))
        assert resp.status_code == 409

    async def test_second_accept_is_409(self, client: httpx.AsyncClient, alice, bob, carol) -> None:
        escrow_id = (await create(client, alice)).json()["id"]
        await client.post(f"/api/v1/escrows/{escrow_id}/accept", headers=as_user(bob))
        resp = await client.post(f"/api/v1/escrows/{escrow_id}/accept", headers=as_user(carol))
        assert resp.status_code == 409
        assert set(resp.json()) == {"error", "message"}

    async def test_outsider_fund_is_403(self, client: httpx.AsyncClient, alice, bob) -> None:
        escrow_id = (await create(client, alice)).json()["id"]
        await client.post(f"/api/v1/escrows/{escrow_id}/accept", headers=as_user(bob))
        resp = await client.post(f"/api/v1/escrows/{escrow_id}/fund", headers=as_user(bob))
        assert resp.status_code == 403

    async def test_insufficient_funds_is_422(
        self, client: httpx.AsyncClient, alice, bob
    ) -> None:
        await deposit(client, alice, "50.00")
        escrow_id = (await create(client, alice)).json()["id"]
        await client.post(f"/api/v1/escrows/{escrow_id}/accept", headers=as_user(bob))
        resp = await client.post(f"/api/v1/escrows/{escrow_id}/fund", headers=as_user(alice))
        assert resp.status_code == 422
        assert resp.json()["error"] == "INSUFFICIENT_FUNDS"

        status = (await client.get(f"/api/v1/escrows/{escrow_id}/status")).json()
        assert status["status"] == "PENDING_FUNDING"

    async def test_bad_metadata_is_422(self, client: httpx.AsyncClient, alice) -> None:
        resp = await create(client, alice, metadata={"domainId": "global"})
        assert resp.status_code == 422

    async def test_unknown_service_type_is_422(self, client: httpx.AsyncClient, alice) -> None:
        resp = await create(client, alice, service_type_id="NOPE")
        assert resp.status_code == 422

    async def test_body_validation(self, client: httpx.AsyncClient, alice) -> None:
        resp = await create(client, alice, amount="-1")
        assert resp.status_code == 422


class TestIdempotentCreate:
    async def test_repeated_key_returns_first_escrow(
        self, client: httpx.AsyncClient, alice, fake_redis: FakeRedis
    ) -> None:
        first = await create(client, alice, idempotency_key="order-7")
        second = await create(client, alice, idempotency_key="order-7")
        assert first.status_code == 201
        assert second.json()["id"] == first.json()["id"]

        listed = (await client.get("/api/v1/escrows", headers=as_user(alice))).json()
        assert len(listed) == 1

    async def test_keys_are_scoped_per_user(
        self, client: httpx.AsyncClient, alice, bob, fake_redis: FakeRedis
    ) -> None:
        first = await create(client, alice, idempotency_key="same")
        second = await create(client, bob, idempotency_key="same")
        assert first.json()["id"] != second.json()["id"]

    async def test_in_flight_key_is_a_duplicate(
        self, client: httpx.AsyncClient, alice, fake_redis: FakeRedis
    ) -> None:
        fake_redis.store[f"idempotency:create_escrow:{alice.user_id}:busy"] = "pending"
        resp = await create(client, alice, idempotency_key="busy")
        assert resp.status_code == 409
        assert resp.json()["error"] == "DUPLICATE_OPERATION"

    async def test_failed_create_releases_key(
        self, client: httpx.AsyncClient, alice, fake_redis: FakeRedis
    ) -> None:
        bad = await create(client, alice, service_type_id="NOPE", idempotency_key="retry-me")
        assert bad.status_code == 422
        assert fake_redis.store == {}

        good = await create(client, alice, idempotency_key="retry-me")
        assert good.status_code == 201


class TestAccountsApi:
    async def test_deposit_to_own_account_by_default(
        self, client: httpx.AsyncClient, alice
    ) -> None:
        resp = await client.post(
            "/api/v1/accounts/deposit", json={"amount": "12.50"}, headers=as_user(alice)
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["user_id"] == str(alice.user_id)
        assert body["org_id"] is None
        assert Decimal(body["total_balance"]) == Decimal("12.50")

    async def test_foreign_org_deposit_is_403(
        self, client: httpx.AsyncClient, alice, bob
    ) -> None:
        resp = await client.post(
            "/api/v1/accounts/deposit",
            json={"amount": "1.00", "org_id": str(bob.org_id)},
            headers=as_user(alice),
        )
        assert resp.status_code == 403

    async def test_entries_and_reconcile(self, client: httpx.AsyncClient, alice) -> None:
        account_id = (await deposit(client, alice, "40.00")).json()["id"]
        await client.post(
            "/api/v1/accounts/withdraw",
            json={"amount": "15.00", "currency": "USD", "org_id": str(alice.org_id)},
            headers=as_user(alice),
        )

        entries = (
            await client.get(f"/api/v1/accounts/{account_id}/entries", headers=as_user(alice))
        ).json()
        assert sorted(e["entry_type"] for e in entries) == ["DEPOSIT", "WITHDRAW"]

        report = (
            await client.get(f"/api/v1/accounts/{account_id}/reconcile", headers=as_user(alice))
        ).json()
        assert report["is_balanced"] is True
        assert Decimal(report["ledger_available"]) == Decimal("25.00")

    async def test_foreign_account_entries_are_404(
        self, client: httpx.AsyncClient, alice, bob
    ) -> None:
        account_id = (await deposit(client, bob)).json()["id"]
        resp = await client.get(f"/api/v1/accounts/{account_id}/entries", headers=as_user(alice))
        assert resp.status_code == 404

    async def test_overdraw_is_422(self, client: httpx.AsyncClient, alice) -> None:
        await deposit(client, alice, "5.00")
        resp = await client.post(
            "/api/v1/accounts/withdraw",
            json={"amount": "6.00", "currency": "USD", "org_id": str(alice.org_id)},
            headers=as_user(alice),
        )
        assert resp.status_code == 422


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("exc", "status_code"),
        [
            (EscrowNotFoundError("e-1"), 404),
            (OrganizationNotFoundError("o-1"), 404),
            (NotAPartyError("e-1", "u-1", operation="fund"), 403),
            (SelfEscrowError("PENDING_ACCEPTANCE"), 409),
            (DuplicateOperationError("k"), 409),
            (InvalidAmountError("bad amount"), 422),
            (TransientStoreError("deadlock"), 503),
            (CurrencyMismatchError("EUR", "USD"), 400),
        ],
    )
    def test_status_for(self, exc: EscrowExchangeError, status_code: int) -> None:
        assert status_for(exc) == status_code


class TestCreateReferences:
    async def test_unknown_counterparty_org_is_404(self, client: httpx.AsyncClient, alice) -> None:
        resp = await create(client, alice, counterparty={"org_id": str(uuid.uuid4())})
        assert resp.status_code == 404
        assert resp.json()["error"] == "ORG_NOT_FOUND"

    async def test_colleague_as_counterparty_is_422(
        self, client: httpx.AsyncClient, directory, alice
    ) -> None:
        colleague = await directory.user("Colleague", org_id=alice.org_id)
        resp = await create(client, alice, counterparty={"user_id": str(colleague.user_id)})
        assert resp.status_code == 422


class TestMessagesApi:
    async def test_post_and_list(self, client: httpx.AsyncClient, alice, bob) -> None:
        escrow_id = (await create(client, alice)).json()["id"]

        resp = await client.post(
            f"/api/v1/escrows/{escrow_id}/messages",
            json={"message": "Which validator?"},
            headers=as_user(bob),
        )
        assert resp.status_code == 201
        assert resp.json()["user_id"] == str(bob.user_id)
        assert resp.json()["is_system_message"] is False

        thread = await client.get(f"/api/v1/escrows/{escrow_id}/messages", headers=as_user(alice))
        assert thread.status_code == 200
        assert [m["message"] for m in thread.json()] == ["Which validator?"]

    async def test_outsider_is_403(self, client: httpx.AsyncClient, alice, bob, carol) -> None:
        escrow_id = (await create(client, alice)).json()["id"]
        await client.post(f"/api/v1/escrows/{escrow_id}/accept", headers=as_user(bob))

        resp = await client.post(
            f"/api/v1/escrows/{escrow_id}/messages",
            json={"message": "hello"},
            headers=as_user(carol),
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "NOT_A_PARTY"

    async def test_empty_message_is_422(self, client: httpx.AsyncClient, alice) -> None:
        escrow_id = (await create(client, alice)).json()["id"]
        resp = await client.post(
            f"/api/v1/escrows/{escrow_id}/messages", json={"message": ""}, headers=as_user(alice)
        )
        assert resp.status_code == 422


class TestProvidersApi:
    async def test_service_types(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/api/v1/service-types")
        assert resp.status_code == 200
        assert "TRAFFIC_BUY" in [t["id"] for t in resp.json()]

    async def test_setting_round_trip(self, client: httpx.AsyncClient, bob) -> None:
        resp = await client.put(
            "/api/v1/provider-settings/TRAFFIC_BUY",
            json={"auto_accept_enabled": True, "min_amount": "10.00", "max_amount": "500.00"},
            headers=as_user(bob),
        )
        assert resp.status_code == 200
        assert resp.json()["auto_accept_enabled"] is True

        listed = await client.get("/api/v1/provider-settings", headers=as_user(bob))
        assert [s["service_type_id"] for s in listed.json()] == ["TRAFFIC_BUY"]

        deleted = await client.delete("/api/v1/provider-settings/TRAFFIC_BUY", headers=as_user(bob))
        assert deleted.status_code == 204
        missing = await client.get("/api/v1/provider-settings/TRAFFIC_BUY", headers=as_user(bob))
        assert missing.status_code == 404

    async def test_reversed_bounds_are_rejected(self, client: httpx.AsyncClient, bob) -> None:
        resp = await client.put(
            "/api/v1/provider-settings/TRAFFIC_BUY",
            json={"auto_accept_enabled": True, "min_amount": "500.00", "max_amount": "10.00"},
            headers=as_user(bob),
        )
        assert resp.status_code == 422

    async def test_create_is_auto_accepted(self, client: httpx.AsyncClient, alice, bob) -> None:
        await client.put(
            "/api/v1/provider-settings/TRAFFIC_BUY",
            json={"auto_accept_enabled": True},
            headers=as_user(bob),
        )
        resp = await create(client, alice)
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "PENDING_FUNDING"
        assert body["party_b_user_id"] == str(bob.user_id)

    async def test_create_without_provider_stays_pending(
        self, client: httpx.AsyncClient, alice
    ) -> None:
        resp = await create(client, alice)
        assert resp.json()["status"] == "PENDING_ACCEPTANCE"
