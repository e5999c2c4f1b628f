"""Shared test fixtures for the Escrow Exchange test suite.

Provides:
    - A file-backed SQLite database per test (schema created, reference data seeded)
    - A Directory helper for creating users, organizations and memberships
    - Ready-made parties: alice (Org A), bob (Org B), carol (Org C) and a platform admin
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from escrow_exchange.config import Settings, get_settings
from escrow_exchange.domain.enums import OrgRole, UserRole
from escrow_exchange.domain.values import AccountOwner, Counterparty, EscrowTerms
from escrow_exchange.infrastructure.database.engine import (
    build_engine,
    close_db,
    init_db,
    make_session_factory,
    use_engine,
)
from escrow_exchange.infrastructure.database.orm_models import Organization, OrgMember, User
from escrow_exchange.infrastructure.database.seed import seed_reference_data
from escrow_exchange.services.escrow_service import EscrowService
from escrow_exchange.services.ledger_service import AccountService

TRAFFIC_METADATA = {
    "validatorPartyId": "validator::1220ab",
    "trafficAmountBytes": 5_000_000_000,
    "domainId": "global-domain::1220",
}

_NEW_ORG = object()


@dataclass(frozen=True)
class Person:
    """A directory user as the tests see it."""

    user_id: uuid.UUID
    org_id: uuid.UUID | None
    email: str | None

    @property
    def org(self) -> AccountOwner:
        return AccountOwner.org(self.org_id)


class Directory:
    """Creates directory rows in their own committed transactions."""

    def __init__(self, factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = factory

    async def org(self, name: str) -> uuid.UUID:
        async with self._factory() as session:
            org = Organization(id=uuid.uuid4(), name=name)
            session.add(org)
            await session.commit()
            return org.id

    async def user(
        self,
        name: str,
        org_id: uuid.UUID | None | object = _NEW_ORG,
        role: UserRole = UserRole.USER,
        org_role: OrgRole = OrgRole.ADMIN,
        email_verified: bool = True,
    ) -> Person:
        if org_id is _NEW_ORG:
            org_id = await self.org(f"{name} Org")
        email = f"{name.lower()}@example.com"
        async with self._factory() as session:
            user = User(
                id=uuid.uuid4(),
                email=email,
                email_verified=email_verified,
                display_name=name,
                role=role.value,
                primary_org_id=org_id,
            )
            session.add(user)
            await session.flush()
            if org_id is not None:
                session.add(
                    OrgMember(organization_id=org_id, user_id=user.id, role=org_role.value)
                )
            await session.commit()
        return Person(user_id=user.id, org_id=org_id, email=email)

    async def add_member(
        self, org_id: uuid.UUID, user_id: uuid.UUID, role: OrgRole = OrgRole.MEMBER
    ) -> None:
        async with self._factory() as session:
            session.add(OrgMember(organization_id=org_id, user_id=user_id, role=role.value))
            await session.commit()


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
async def engine(tmp_path, settings: Settings) -> AsyncIterator[AsyncEngine]:
    """A fresh SQLite database, installed as the application engine."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}")
    use_engine(engine)
    await init_db(engine)
    factory = make_session_factory(engine)
    async with factory() as session:
        await seed_reference_data(
            session, settings.platform_org_id, settings.default_platform_fee_percent
        )
    yield engine
    await close_db()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def svc(session: AsyncSession) -> EscrowService:
    return EscrowService(session)


@pytest.fixture
def accounts(session: AsyncSession) -> AccountService:
    return AccountService(session)


@pytest.fixture
def directory(session_factory: async_sessionmaker[AsyncSession]) -> Directory:
    return Directory(session_factory)


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------


@pytest.fixture
async def alice(directory: Directory) -> Person:
    """Party A: admin of Org A."""
    return await directory.user("Alice")


@pytest.fixture
async def bob(directory: Directory) -> Person:
    """A provider in Org B."""
    return await directory.user("Bob")


@pytest.fixture
async def carol(directory: Directory) -> Person:
    """Another provider, in Org C."""
    return await directory.user("Carol")


@pytest.fixture
async def admin(directory: Directory) -> Person:
    return await directory.user("Admin", org_id=None, role=UserRole.PLATFORM_ADMIN)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def open_escrow(svc: EscrowService):  # noqa: ANN201
    """Factory: create an open TRAFFIC_BUY escrow for a creator and return its id."""

    async def _create(
        creator: Person,
        amount: str = "100.00",
        counterparty: Counterparty | None = None,
        **terms,
    ) -> uuid.UUID:
        escrow = await svc.create_escrow(
            creator_user_id=creator.user_id,
            service_type_id="TRAFFIC_BUY",
            amount=amount,
            currency="USD",
            counterparty=counterparty or Counterparty(is_open=True),
            terms=EscrowTerms(metadata=TRAFFIC_METADATA, **terms),
        )
        return escrow.id

    return _create


@pytest.fixture
def balance_of(accounts: AccountService):  # noqa: ANN201
    """Factory: (available, in_contract) of an owner's USD account, checked against its entries."""

    async def _balance(owner: AccountOwner) -> tuple[Decimal, Decimal]:
        account = await accounts.get_or_create_account(owner, "USD")
        report = await accounts.assert_reconciled(account.id)
        return report.stored_available, report.stored_in_contract

    return _balance
