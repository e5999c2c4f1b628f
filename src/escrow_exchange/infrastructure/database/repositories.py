"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Row locks (`SELECT ... FOR UPDATE`) are taken with populate_existing so a row
already in the identity map is refreshed from the locked read instead of
keeping a stale copy.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import and_, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_exchange.domain.enums import (
    FUNDS_LOCKED_STATUSES,
    PRE_FUNDING_STATUSES,
    ArbiterType,
    EscrowStatus,
    EventType,
    LedgerBucket,
    OrgRole,
    UserRole,
)
from escrow_exchange.domain.values import AccountOwner, Actor
from escrow_exchange.infrastructure.database.orm_models import (
    Account,
    Escrow,
    EscrowEvent,
    EscrowMessage,
    LedgerEntry,
    Organization,
    OrgMember,
    ProviderSetting,
    ServiceType,
    User,
)

_ZERO = Decimal("0")


def _values(statuses: Iterable[EscrowStatus]) -> list[str]:
    return [s.value for s in statuses]


class EscrowRepository:
    """Data access for escrows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: Escrow) -> Escrow:
        """Insert a new escrow."""
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_id(self, escrow_id: uuid.UUID) -> Escrow | None:
        """Fetch an escrow by its UUID (no lock)."""
        result = await self._session.execute(
            select(Escrow)
            .where(Escrow.id == escrow_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, escrow_id: uuid.UUID) -> Escrow | None:
        """Fetch and row-lock an escrow for the rest of the transaction."""
        result = await self._session.execute(
            select(Escrow)
            .where(Escrow.id == escrow_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_participant(
        self,
        user_id: uuid.UUID,
        org_ids: Iterable[uuid.UUID],
        status: EscrowStatus | None = None,
    ) -> list[Escrow]:
        """Escrows where the user or one of their orgs is on either side."""
        org_ids = list(org_ids)
        conditions = [
            Escrow.created_by_user_id == user_id,
            Escrow.party_b_user_id == user_id,
            Escrow.accepted_by_user_id == user_id,
        ]
        if org_ids:
            conditions.append(Escrow.party_a_org_id.in_(org_ids))
            conditions.append(Escrow.party_b_org_id.in_(org_ids))

        stmt = select(Escrow).where(or_(*conditions))
        if status is not None:
            stmt = stmt.where(Escrow.status == status.value)
        result = await self._session.execute(stmt.order_by(Escrow.created_at.desc()))
        return list(result.scalars().all())

    async def list_awaiting_acceptance(self, service_type_id: str | None = None) -> list[Escrow]:
        """Escrows still open to a counterparty, newest first."""
        stmt = select(Escrow).where(
            Escrow.status.in_(
                [EscrowStatus.CREATED.value, EscrowStatus.PENDING_ACCEPTANCE.value]
            )
        )
        if service_type_id is not None:
            stmt = stmt.where(Escrow.service_type_id == service_type_id)
        result = await self._session.execute(stmt.order_by(Escrow.created_at.desc()))
        return list(result.scalars().all())

    async def list_arbitrable(self, include_platform_only: bool) -> list[Escrow]:
        """Funds-locked escrows an arbiter could resolve."""
        stmt = select(Escrow).where(Escrow.status.in_(_values(FUNDS_LOCKED_STATUSES)))
        if not include_platform_only:
            stmt = stmt.where(
                Escrow.arbiter_type.in_(
                    [ArbiterType.PERSON.value, ArbiterType.ORGANIZATION.value]
                )
            )
        result = await self._session.execute(stmt.order_by(Escrow.created_at.asc()))
        return list(result.scalars().all())

    async def list_overdue_ids(self, now: datetime) -> list[uuid.UUID]:
        """IDs of unfunded escrows whose expiry has passed."""
        result = await self._session.execute(
            select(Escrow.id)
            .where(
                and_(
                    Escrow.status.in_(_values(PRE_FUNDING_STATUSES)),
                    Escrow.expires_at.is_not(None),
                    Escrow.expires_at < now,
                )
            )
            .order_by(Escrow.expires_at.asc())
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        escrow: Escrow,
        event_type: EventType,
        old_status: EscrowStatus | None,
        new_status: EscrowStatus | None,
        actor_user_id: uuid.UUID | None = None,
        details: dict | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed.

        The caller must hold the escrow row lock; the sequence number is taken
        from the escrow's counter.
        """
        escrow.event_count = (escrow.event_count or 0) + 1
        evt = EscrowEvent(
            escrow_id=escrow.id,
            sequence=escrow.event_count,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value if new_status else None,
            actor_user_id=actor_user_id,
            details=details,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_escrow(self, escrow_id: uuid.UUID) -> list[EscrowEvent]:
        """Fetch all events for an escrow in the order they were written."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(EscrowEvent.escrow_id == escrow_id)
            .order_by(EscrowEvent.sequence.asc())
        )
        return list(result.scalars().all())


class AccountRepository:
    """Data access for accounts. Balance changes go through the ledger only."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _owner_clause(owner: AccountOwner):  # noqa: ANN205
        if owner.user_id is not None:
            return Account.user_id == owner.user_id
        return Account.org_id == owner.org_id

    async def get_by_id(self, account_id: uuid.UUID) -> Account | None:
        result = await self._session.execute(
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find(self, owner: AccountOwner, currency: str) -> Account | None:
        result = await self._session.execute(
            select(Account).where(self._owner_clause(owner), Account.currency == currency)
        )
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner: AccountOwner) -> list[Account]:
        result = await self._session.execute(
            select(Account).where(self._owner_clause(owner)).order_by(Account.currency)
        )
        return list(result.scalars().all())

    async def insert_if_absent(self, owner: AccountOwner, currency: str) -> None:
        """Create the (owner, currency) account unless it already exists.

        Uses INSERT ... ON CONFLICT DO NOTHING so two racing first references
        cannot both create it and neither fails.
        """
        values = {
            "id": uuid.uuid4(),
            "user_id": owner.user_id,
            "org_id": owner.org_id,
            "currency": currency,
            "available_balance": _ZERO,
            "in_contract_balance": _ZERO,
        }
        dialect = self._session.bind.dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        await self._session.execute(
            insert(Account).values(**values).on_conflict_do_nothing()
        )

    async def get_for_update(self, account_id: uuid.UUID) -> Account | None:
        """Fetch and row-lock an account for the rest of the transaction."""
        result = await self._session.execute(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


class LedgerEntryRepository:
    """Data access for the append-only ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, entry: LedgerEntry) -> LedgerEntry:
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_for_account(
        self, account_id: uuid.UUID, limit: int = 50, offset: int = 0
    ) -> list[LedgerEntry]:
        """Entries for an account, newest first."""
        result = await self._session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def sums_by_bucket(self, account_id: uuid.UUID) -> dict[LedgerBucket, Decimal]:
        """Sum of signed entry amounts per bucket (zero for an empty bucket)."""
        result = await self._session.execute(
            select(LedgerEntry.bucket, func.coalesce(func.sum(LedgerEntry.amount), 0))
            .where(LedgerEntry.account_id == account_id)
            .group_by(LedgerEntry.bucket)
        )
        sums = {bucket: _ZERO for bucket in LedgerBucket}
        for bucket, total in result.all():
            sums[LedgerBucket(bucket)] = Decimal(str(total))
        return sums


class DirectoryRepository:
    """Read-only access to users, organizations and memberships."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        return await self._session.get(User, user_id)

    async def get_org(self, org_id: uuid.UUID) -> Organization | None:
        return await self._session.get(Organization, org_id)

    async def get_memberships(self, user_id: uuid.UUID) -> dict[uuid.UUID, OrgRole]:
        result = await self._session.execute(
            select(OrgMember.organization_id, OrgMember.role).where(OrgMember.user_id == user_id)
        )
        return {org_id: OrgRole(role) for org_id, role in result.all()}

    async def get_membership_role(self, org_id: uuid.UUID, user_id: uuid.UUID) -> OrgRole | None:
        result = await self._session.execute(
            select(OrgMember.role).where(
                OrgMember.organization_id == org_id, OrgMember.user_id == user_id
            )
        )
        role = result.scalar_one_or_none()
        return OrgRole(role) if role is not None else None

    async def is_member(self, org_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        return await self.get_membership_role(org_id, user_id) is not None

    async def load_actor(self, user_id: uuid.UUID) -> Actor | None:
        """Resolve a user id into the Actor the policies evaluate."""
        user = await self.get_user(user_id)
        if user is None:
            return None
        return Actor(
            user_id=user.id,
            email=user.email,
            email_verified=bool(user.email_verified),
            role=UserRole(user.role),
            primary_org_id=user.primary_org_id,
            memberships=await self.get_memberships(user.id),
        )


class ServiceTypeRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, service_type_id: str) -> ServiceType | None:
        return await self._session.get(ServiceType, service_type_id)

    async def list_active(self) -> list[ServiceType]:
        result = await self._session.execute(
            select(ServiceType).where(ServiceType.is_active.is_(True)).order_by(ServiceType.id)
        )
        return list(result.scalars().all())


class MessageRepository:
    """Data access for escrow message threads."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, message: EscrowMessage) -> EscrowMessage:
        self._session.add(message)
        await self._session.flush()
        return message

    async def list_for_escrow(self, escrow_id: uuid.UUID) -> list[EscrowMessage]:
        """The thread oldest first."""
        result = await self._session.execute(
            select(EscrowMessage)
            .where(EscrowMessage.escrow_id == escrow_id)
            .order_by(EscrowMessage.created_at.asc(), EscrowMessage.id)
        )
        return list(result.scalars().all())


class ProviderSettingsRepository:
    """Data access for provider auto-accept settings."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: uuid.UUID, service_type_id: str) -> ProviderSetting | None:
        result = await self._session.execute(
            select(ProviderSetting)
            .where(
                ProviderSetting.user_id == user_id,
                ProviderSetting.service_type_id == service_type_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: uuid.UUID) -> list[ProviderSetting]:
        result = await self._session.execute(
            select(ProviderSetting)
            .where(ProviderSetting.user_id == user_id)
            .order_by(ProviderSetting.service_type_id)
        )
        return list(result.scalars().all())

    async def upsert(self, user_id: uuid.UUID, service_type_id: str, **fields) -> ProviderSetting:
        """Insert or replace the (user, service type) row and return it.

        INSERT ... ON CONFLICT DO UPDATE keeps two racing first writes from
        failing on the unique constraint.
        """
        dialect = self._session.bind.dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        now = datetime.now(UTC)
        stmt = insert(ProviderSetting).values(
            id=uuid.uuid4(),
            user_id=user_id,
            service_type_id=service_type_id,
            created_at=now,
            updated_at=now,
            **fields,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ProviderSetting.user_id, ProviderSetting.service_type_id],
            set_={**fields, "updated_at": now},
        ).returning(ProviderSetting)
        result = await self._session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        return result.scalar_one()

    async def delete(self, user_id: uuid.UUID, service_type_id: str) -> bool:
        setting = await self.get(user_id, service_type_id)
        if setting is None:
            return False
        await self._session.delete(setting)
        await self._session.flush()
        return True

    async def list_auto_acceptors(
        self, service_type_id: str, amount: Decimal
    ) -> list[ProviderSetting]:
        """Enabled settings whose amount range admits the amount, oldest first."""
        result = await self._session.execute(
            select(ProviderSetting)
            .where(
                ProviderSetting.service_type_id == service_type_id,
                ProviderSetting.auto_accept_enabled.is_(True),
                or_(ProviderSetting.min_amount.is_(None), ProviderSetting.min_amount <= amount),
                or_(ProviderSetting.max_amount.is_(None), ProviderSetting.max_amount >= amount),
            )
            .order_by(ProviderSetting.created_at.asc(), ProviderSetting.id)
        )
        return list(result.scalars().all())
