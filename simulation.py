#!/usr/bin/env python3
"""Escrow Exchange - End-to-End Simulation.

Runs the four reference scenarios against a real database:

    Scenario 1: Happy Path
        - Org A (200.00 available) creates an open 100.00 TRAFFIC_BUY escrow
          (15% fee -> 15.00)
        - Provider accepts, Org A funds (85.00 available / 115.00 in contract)
        - Both confirm -> COMPLETED, provider's org +100.00, platform +15.00

    Scenario 2: Racing Accepts
        - Two providers accept the same open escrow at once
        - Exactly one wins; the other gets a state conflict

    Scenario 3: Insufficient Funds
        - Org A holds 50.00 and tries to fund 115.00
        - Funding fails, the escrow stays PENDING_FUNDING, no ledger entries

    Scenario 4: Funded Cancel -> Arbiter Refund
        - Party A cannot cancel a funded escrow
        - The platform admin cancels with a refund; 115.00 returns to available

Usage:
    # SQLite file in a temp directory (no services needed):
    python simulation.py --sqlite

    # PostgreSQL from DATABASE_URL:
    python simulation.py

    # Run a specific scenario:
    python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from escrow_exchange.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from escrow_exchange.config import get_settings  # noqa: E402
from escrow_exchange.domain.enums import OrgRole, UserRole  # noqa: E402
from escrow_exchange.domain.exceptions import EscrowExchangeError  # noqa: E402
from escrow_exchange.domain.values import AccountOwner, Counterparty, EscrowTerms  # noqa: E402
from escrow_exchange.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    close_db,
    init_db,
    session_scope,
    use_engine,
)
from escrow_exchange.infrastructure.database.orm_models import (  # noqa: E402
    Organization,
    OrgMember,
    User,
)
from escrow_exchange.infrastructure.database.seed import seed_reference_data  # noqa: E402
from escrow_exchange.services.escrow_service import EscrowService  # noqa: E402
from escrow_exchange.services.ledger_service import AccountService  # noqa: E402
from escrow_exchange.services.retry import run_with_retry  # noqa: E402

_tmpdir: tempfile.TemporaryDirectory | None = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize the engine, create tables and seed reference data."""
    global _tmpdir
    settings = get_settings()

    if use_sqlite:
        # A file, not :memory:, so concurrent sessions share one database
        _tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(_tmpdir.name) / "simulation.db"
        engine = build_engine(f"sqlite+aiosqlite:///{db_path}")
        use_engine(engine)
        await init_db(engine)
        logger.info("database.sqlite_initialized", path=str(db_path))
    else:
        await init_db()

    async with session_scope() as session:
        await seed_reference_data(
            session, settings.platform_org_id, settings.default_platform_fee_percent
        )


async def shutdown_database() -> None:
    global _tmpdir
    await close_db()
    if _tmpdir is not None:
        _tmpdir.cleanup()
        _tmpdir = None


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------
@dataclass
class Participant:
    """A simulated user acting for one organization."""

    name: str
    user_id: uuid.UUID
    org_id: uuid.UUID | None

    async def call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Invoke an EscrowService method in a fresh session, as the HTTP layer would."""
        async with session_scope() as session:
            svc = EscrowService(session)
            return await run_with_retry(lambda: getattr(svc, method)(*args, **kwargs))


async def register(name: str, role: UserRole = UserRole.USER, with_org: bool = True) -> Participant:
    """Create a user (and an org they administer) directly in the directory tables."""
    async with session_scope() as session:
        org_id = None
        if with_org:
            org = Organization(id=uuid.uuid4(), name=f"{name} Inc.")
            session.add(org)
            org_id = org.id
        user = User(
            id=uuid.uuid4(),
            email=f"{name.lower()}@example.com",
            email_verified=True,
            display_name=name,
            role=role.value,
            primary_org_id=org_id,
        )
        session.add(user)
        await session.flush()
        if org_id is not None:
            session.add(OrgMember(organization_id=org_id, user_id=user.id, role=OrgRole.ADMIN.value))
        await session.commit()
    return Participant(name=name, user_id=user.id, org_id=org_id)


async def deposit(participant: Participant, amount: str) -> None:
    async with session_scope() as session:
        await AccountService(session).deposit(
            AccountOwner.org(participant.org_id), amount, "USD", description="simulation top-up"
        )


async def balances(owner: AccountOwner) -> tuple[Decimal, Decimal]:
    async with session_scope() as session:
        svc = AccountService(session)
        account = await svc.get_or_create_account(owner, "USD")
        report = await svc.assert_reconciled(account.id)
        return report.stored_available, report.stored_in_contract


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    print(f"\n--- {text} ---\n")


async def print_balances(label: str, owner: AccountOwner) -> None:
    available, in_contract = await balances(owner)
    print(f"  {label:<10} available={available:>10}  in_contract={in_contract:>10}")


async def print_audit_trail(escrow_id: uuid.UUID) -> None:
    async with session_scope() as session:
        events = await EscrowService(session).get_events(escrow_id)
    print("\n  Audit Trail:")
    for evt in events:
        old = evt.old_status or "-"
        new = evt.new_status or "-"
        actor = evt.actor_user_id or "system"
        print(f"    {evt.sequence}. [{evt.event_type}] {old} -> {new} (by {actor})")
    print()


async def _open_escrow(creator: Participant, amount: str = "100.00") -> uuid.UUID:
    escrow = await creator.call(
        "create_escrow",
        creator_user_id=creator.user_id,
        service_type_id="TRAFFIC_BUY",
        amount=amount,
        currency="USD",
        counterparty=Counterparty(is_open=True),
        terms=EscrowTerms(
            title="Validator bandwidth top-up",
            metadata={
                "validatorPartyId": "validator::1220ab",
                "trafficAmountBytes": 5_000_000_000,
                "domainId": "global-domain::1220",
            },
        ),
    )
    return escrow.id


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path (create -> accept -> fund -> confirm x2)")
    alice = await register("Alice")
    xavier = await register("Xavier")
    await deposit(alice, "200.00")

    escrow_id = await _open_escrow(alice)
    section("Xavier accepts, Alice funds")
    await xavier.call("accept_escrow", escrow_id, xavier.user_id)
    await alice.call("fund_escrow", escrow_id, alice.user_id)
    await print_balances("Org A", AccountOwner.org(alice.org_id))

    section("Both parties confirm")
    await xavier.call("confirm_escrow", escrow_id, xavier.user_id)
    escrow = await alice.call("confirm_escrow", escrow_id, alice.user_id)
    print(f"  Status: {escrow.status}")
    await print_balances("Org A", AccountOwner.org(alice.org_id))
    await print_balances("Org X", AccountOwner.org(xavier.org_id))
    await print_balances("Platform", AccountOwner.org(get_settings().platform_org_id))
    await print_audit_trail(escrow_id)


# ===========================================================================
# Scenario 2: Racing Accepts
# ===========================================================================
async def scenario_2_racing_accepts() -> None:
    banner("SCENARIO 2: Two providers accept the same escrow at once")
    alice = await register("Alicia")
    first, second = await register("Yuki"), await register("Zane")
    escrow_id = await _open_escrow(alice)

    results = await asyncio.gather(
        first.call("accept_escrow", escrow_id, first.user_id),
        second.call("accept_escrow", escrow_id, second.user_id),
        return_exceptions=True,
    )
    for who, result in zip((first, second), results, strict=True):
        if isinstance(result, EscrowExchangeError):
            print(f"  {who.name}: rejected ({result.code})")
        elif isinstance(result, BaseException):
            raise result
        else:
            print(f"  {who.name}: accepted -> {result.status}")
    await print_audit_trail(escrow_id)


# ===========================================================================
# Scenario 3: Insufficient Funds
# ===========================================================================
async def scenario_3_insufficient_funds() -> None:
    banner("SCENARIO 3: Funding 115.00 from an account holding 50.00")
    alice = await register("Amara")
    xavier = await register("Xena")
    await deposit(alice, "50.00")

    escrow_id = await _open_escrow(alice)
    await xavier.call("accept_escrow", escrow_id, xavier.user_id)
    try:
        await alice.call("fund_escrow", escrow_id, alice.user_id)
    except EscrowExchangeError as exc:
        print(f"  Funding rejected: {exc.code} - {exc.message}")

    escrow = await alice.call("get_escrow", escrow_id)
    print(f"  Status after failure: {escrow.status}")
    await print_balances("Org A", AccountOwner.org(alice.org_id))


# ===========================================================================
# Scenario 4: Funded Cancel -> Arbiter Refund
# ===========================================================================
async def scenario_4_arbiter_refund() -> None:
    banner("SCENARIO 4: Party A cannot cancel a funded escrow; the arbiter refunds")
    alice = await register("Aiko")
    xavier = await register("Xiomara")
    admin = await register("Root", role=UserRole.PLATFORM_ADMIN, with_org=False)
    await deposit(alice, "200.00")

    escrow_id = await _open_escrow(alice)
    await xavier.call("accept_escrow", escrow_id, xavier.user_id)
    await alice.call("fund_escrow", escrow_id, alice.user_id)
    try:
        await alice.call("cancel_escrow", escrow_id, alice.user_id, "changed my mind")
    except EscrowExchangeError as exc:
        print(f"  Self-cancel rejected: {exc.code} - {exc.message}")

    escrow = await admin.call(
        "admin_cancel_escrow", escrow_id, admin.user_id, "support ticket", refund_party_a=True
    )
    print(f"  Status: {escrow.status}")
    await print_balances("Org A", AccountOwner.org(alice.org_id))
    await print_audit_trail(escrow_id)


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_racing_accepts,
    3: scenario_3_insufficient_funds,
    4: scenario_4_arbiter_refund,
}


# ===========================================================================
# Main
# ===========================================================================
async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    await init_database(use_sqlite=use_sqlite)
    try:
        if scenario == 0:
            for run_one in SCENARIOS.values():
                await run_one()
            banner("ALL SCENARIOS COMPLETED")
        elif scenario in SCENARIOS:
            await SCENARIOS[scenario]()
        else:
            print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Escrow Exchange Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use a temporary SQLite file instead of DATABASE_URL.",
    )
    args = parser.parse_args()
    asyncio.run(run(scenario=args.scenario, use_sqlite=args.sqlite))
