"""Escrow Service - the escrow lifecycle engine.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Acceptance and arbiter policies
    - Account ledger (fund movements)
    - Obligation tracker (embedded obligations)
    - Event log (audit trail)

Every mutating operation runs as exactly one unit of work that row-locks the
escrow, re-validates its precondition against the locked row, performs the
ledger and obligation side effects, writes the new status and timestamp and
appends an event. Any failure rolls the whole operation back.

Both REST routes and MCP tools call into this service,
ensuring a single source of truth for all business rules.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from statemachine.exceptions import TransitionNotAllowed

from escrow_exchange.config import Settings, get_settings
from escrow_exchange.domain.acceptance import AcceptancePolicy
from escrow_exchange.domain.arbiter import is_authorized
from escrow_exchange.domain.enums import (
    FUNDS_LOCKED_STATUSES,
    PRE_FUNDING_STATUSES,
    ArbiterType,
    EscrowStatus,
    EventType,
    ObligationStatus,
    Party,
)
from escrow_exchange.domain.exceptions import (
    AlreadyConfirmedError,
    EscrowNotFoundError,
    InvalidServiceTypeError,
    NoPrimaryOrgError,
    NotAPartyError,
    NotEligibleError,
    OrganizationNotFoundError,
    SelfEscrowError,
    StateConflictError,
    TransientStoreError,
    UnauthorizedArbiterError,
    UserNotFoundError,
    ValidationError,
)
from escrow_exchange.domain.money import (
    compute_fee,
    format_amount,
    normalize_currency,
    parse_amount,
)
from escrow_exchange.domain.obligations import Obligation, party_for_purpose
from escrow_exchange.domain.service_metadata import (
    dump_service_metadata,
    parse_service_metadata,
)
from escrow_exchange.domain.state_machine import EscrowStateMachine
from escrow_exchange.domain.values import (
    AccountOwner,
    Actor,
    ArbiterDesignation,
    Counterparty,
    EscrowTerms,
)
from escrow_exchange.infrastructure.database.engine import atomic
from escrow_exchange.infrastructure.database.orm_models import (
    Escrow,
    EscrowEvent,
    EscrowMessage,
)
from escrow_exchange.infrastructure.database.repositories import (
    DirectoryRepository,
    EscrowRepository,
    EventRepository,
    MessageRepository,
    ProviderSettingsRepository,
    ServiceTypeRepository,
)
from escrow_exchange.logging_config import get_logger
from escrow_exchange.services.ledger_service import AccountLedger
from escrow_exchange.services.obligation_tracker import ObligationTracker

logger = get_logger(__name__)

MAX_EXPIRY_DAYS = 365
MAX_MESSAGE_LENGTH = 5000


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class EscrowService:
    """Manages the escrow lifecycle."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._escrow_repo = EscrowRepository(session)
        self._event_repo = EventRepository(session)
        self._directory = DirectoryRepository(session)
        self._service_types = ServiceTypeRepository(session)
        self._messages = MessageRepository(session)
        self._providers = ProviderSettingsRepository(session)
        self._obligations = ObligationTracker()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_escrow(
        self,
        creator_user_id: uuid.UUID,
        service_type_id: str,
        amount: Decimal | str,
        currency: str | None = None,
        counterparty: Counterparty | None = None,
        arbiter: ArbiterDesignation | None = None,
        terms: EscrowTerms | None = None,
    ) -> Escrow:
        """Create an escrow and publish it for acceptance.

        Party A is the creator's primary organization. The platform fee is
        computed here from the service type and never recomputed.

        Raises:
            InvalidServiceTypeError, InvalidAmountError, InvalidMetadataError,
            ValidationError, UserNotFoundError, OrganizationNotFoundError,
            NoPrimaryOrgError.
        """
        currency = normalize_currency(currency or self._settings.default_currency)
        amount = parse_amount(amount, currency)
        counterparty = counterparty or Counterparty(is_open=True)
        arbiter = arbiter or ArbiterDesignation()
        terms = terms or EscrowTerms()
        metadata = parse_service_metadata(service_type_id, terms.metadata)
        self._validate_arbiter(arbiter)
        expires_in_days = terms.expires_in_days or self._settings.default_expiry_days
        if not 0 < expires_in_days <= MAX_EXPIRY_DAYS:
            raise ValidationError(f"expires_in_days must be between 1 and {MAX_EXPIRY_DAYS}")
        if counterparty.user_id is not None and counterparty.user_id == creator_user_id:
            raise ValidationError("Counterparty cannot be the creator")

        async with atomic(self._session):
            actor = await self._load_actor(creator_user_id)
            if actor.primary_org_id is None:
                raise NoPrimaryOrgError(str(creator_user_id))
            await self._check_counterparty(actor, counterparty)
            await self._check_arbiter(arbiter)

            service_type = await self._service_types.get(service_type_id)
            if service_type is None or not service_type.is_active:
                raise InvalidServiceTypeError(service_type_id)

            fee = compute_fee(amount, service_type.platform_fee_percent, currency)
            now = _utcnow()
            escrow = Escrow(
                id=uuid.uuid4(),
                service_type_id=service_type.id,
                party_a_org_id=actor.primary_org_id,
                created_by_user_id=actor.user_id,
                party_b_org_id=counterparty.org_id,
                party_b_user_id=counterparty.user_id,
                counterparty_email=counterparty.email,
                is_open=counterparty.is_open,
                amount=amount,
                platform_fee=fee,
                currency=currency,
                status=EscrowStatus.CREATED.value,
                title=terms.title,
                description=terms.description,
                metadata_json=dump_service_metadata(metadata),
                arbiter_type=arbiter.arbiter_type.value,
                arbiter_org_id=arbiter.org_id,
                arbiter_user_id=arbiter.user_id,
                arbiter_email=arbiter.email,
                event_count=0,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(days=expires_in_days),
            )
            self._obligations.initialize(escrow, service_type, amount, currency)
            new_status = self._fire_transition(escrow, "publish")
            escrow.status = new_status.value
            await self._escrow_repo.create(escrow)

            await self._event_repo.append(
                escrow,
                EventType.CREATED,
                old_status=None,
                new_status=new_status,
                actor_user_id=actor.user_id,
                details={
                    "amount": format_amount(amount, currency),
                    "platformFee": format_amount(fee, currency),
                    "currency": currency,
                    "serviceType": service_type.id,
                    "partyAOrgId": str(actor.primary_org_id),
                },
            )

        logger.info(
            "escrow.created",
            escrow_id=str(escrow.id),
            service_type=service_type_id,
            amount=str(amount),
            fee=str(fee),
            currency=currency,
        )
        return escrow

    # ------------------------------------------------------------------
    # Acceptance
    # ------------------------------------------------------------------

    async def accept_escrow(
        self, escrow_id: uuid.UUID, actor_user_id: uuid.UUID, auto_accepted: bool = False
    ) -> Escrow:
        """Take the Party B side. Exactly one of several racing accepts succeeds."""
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            old_status = EscrowStatus(escrow.status)
            new_status = self._fire_transition(escrow, "accept")

            actor = await self._load_actor(actor_user_id)
            decision = self._acceptance_policy(escrow).evaluate(actor)
            if not decision.allowed:
                if decision.self_escrow:
                    raise SelfEscrowError(escrow.status)
                raise NotEligibleError(str(escrow.id), decision.reason)

            now = _utcnow()
            if escrow.party_b_user_id is None:
                escrow.party_b_user_id = actor.user_id
            if escrow.party_b_org_id is None:
                escrow.party_b_org_id = actor.primary_org_id
            escrow.accepted_by_user_id = actor.user_id
            escrow.accepted_at = now
            escrow.status = new_status.value

            await self._event_repo.append(
                escrow,
                EventType.ACCEPTED,
                old_status=old_status,
                new_status=new_status,
                actor_user_id=actor.user_id,
                details={
                    "route": decision.route.value if decision.route else None,
                    "partyBOrgId": str(escrow.party_b_org_id) if escrow.party_b_org_id else None,
                    "autoAccepted": auto_accepted,
                },
            )

        logger.info(
            "escrow.accepted",
            escrow_id=str(escrow_id),
            by=str(actor_user_id),
            route=decision.route.value if decision.route else None,
            auto=auto_accepted,
        )
        return escrow

    async def auto_accept(self, escrow_id: uuid.UUID) -> Escrow | None:
        """Accept a freshly published escrow for the first matching provider.

        Providers opt in per service type with an amount range. Candidates are
        tried oldest setting first and must pass the escrow's acceptance
        policy; the accept itself is the ordinary locked accept, so a manual
        accept that lands first simply wins. Returns the accepted escrow, or
        None when nobody matched.
        """
        escrow = await self.get_escrow(escrow_id)
        if escrow.status != EscrowStatus.PENDING_ACCEPTANCE:
            return None
        policy = self._acceptance_policy(escrow)
        candidates = await self._providers.list_auto_acceptors(
            escrow.service_type_id, escrow.amount
        )

        for setting in candidates:
            provider = await self._directory.load_actor(setting.user_id)
            if provider is None or not policy.admits(provider):
                continue
            try:
                await self.accept_escrow(escrow_id, provider.user_id, auto_accepted=True)
            except StateConflictError:
                logger.info("escrow.auto_accept_lost", escrow_id=str(escrow_id))
                return None
            await self.add_system_message(
                escrow_id,
                "Escrow accepted automatically by provider",
                metadata={"providerUserId": str(provider.user_id), "autoAccepted": True},
            )
            return await self.get_escrow(escrow_id)
        return None

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def fund_escrow(self, escrow_id: uuid.UUID, actor_user_id: uuid.UUID) -> Escrow:
        """Lock amount + fee from Party A's available balance.

        Insufficient funds abort the whole operation; the escrow stays
        PENDING_FUNDING and no ledger entry is written.
        """
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            old_status = EscrowStatus(escrow.status)
            new_status = self._fire_transition(escrow, "fund")
            if actor_user_id != escrow.created_by_user_id:
                raise NotAPartyError(str(escrow.id), str(actor_user_id), operation="fund")

            total = escrow.amount + escrow.platform_fee
            ledger = AccountLedger(self._session)
            payer = await ledger.get_or_create_account(
                AccountOwner.org(escrow.party_a_org_id), escrow.currency
            )
            await ledger.lock_accounts([payer.id])
            await ledger.lock_for_escrow(payer, total, escrow.id, escrow.currency)

            now = _utcnow()
            self._obligations.update_status(escrow, Party.A, ObligationStatus.COMPLETED, now)
            escrow.funded_at = now
            escrow.status = new_status.value

            await self._event_repo.append(
                escrow,
                EventType.FUNDED,
                old_status=old_status,
                new_status=new_status,
                actor_user_id=actor_user_id,
                details={
                    "amount": format_amount(escrow.amount, escrow.currency),
                    "platformFee": format_amount(escrow.platform_fee, escrow.currency),
                    "totalLocked": format_amount(total, escrow.currency),
                    "accountId": str(payer.id),
                },
            )

        logger.info("escrow.funded", escrow_id=str(escrow_id), total=str(total))
        return escrow

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def confirm_escrow(self, escrow_id: uuid.UUID, actor_user_id: uuid.UUID) -> Escrow:
        """Record a party's confirmation; the second confirmation completes and releases."""
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            party = self._party_of(escrow, actor_user_id, operation="confirm")
            old_status = EscrowStatus(escrow.status)

            if old_status not in {
                EscrowStatus.FUNDED,
                EscrowStatus.PARTY_A_CONFIRMED,
                EscrowStatus.PARTY_B_CONFIRMED,
            }:
                raise StateConflictError(escrow.status, "confirm")
            confirmed_at = (
                escrow.party_a_confirmed_at if party == Party.A else escrow.party_b_confirmed_at
            )
            if confirmed_at is not None:
                raise AlreadyConfirmedError(escrow.status, party.value)

            event_name = "confirm_a" if party == Party.A else "confirm_b"
            new_status = self._fire_transition(escrow, event_name)

            now = _utcnow()
            if party == Party.B:
                escrow.party_b_confirmed_at = now
                self._obligations.update_status(escrow, Party.B, ObligationStatus.COMPLETED, now)
                event_type = EventType.PARTY_B_CONFIRMED
            else:
                escrow.party_a_confirmed_at = now
                event_type = EventType.PARTY_A_CONFIRMED
            escrow.status = new_status.value

            await self._event_repo.append(
                escrow,
                event_type,
                old_status=old_status,
                new_status=new_status,
                actor_user_id=actor_user_id,
            )
            if new_status == EscrowStatus.COMPLETED:
                await self._complete(escrow)

        logger.info(
            "escrow.confirmed",
            escrow_id=str(escrow_id),
            party=party.value,
            status=new_status.value,
        )
        return escrow

    # ------------------------------------------------------------------
    # Party-initiated exits
    # ------------------------------------------------------------------

    async def cancel_escrow(
        self, escrow_id: uuid.UUID, actor_user_id: uuid.UUID, reason: str | None = None
    ) -> Escrow:
        """Cancel before funding. Once funds are locked only an arbiter can resolve."""
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            self._party_of(escrow, actor_user_id, operation="cancel")
            old_status = EscrowStatus(escrow.status)
            if old_status in FUNDS_LOCKED_STATUSES:
                raise StateConflictError(
                    escrow.status,
                    "cancel",
                    message=(
                        "Cannot cancel a funded escrow. "
                        "Raise a dispute for the arbiter to resolve it."
                    ),
                )
            new_status = self._fire_transition(escrow, "cancel")

            escrow.canceled_at = _utcnow()
            escrow.canceled_by_user_id = actor_user_id
            escrow.cancellation_reason = reason
            escrow.status = new_status.value

            await self._event_repo.append(
                escrow,
                EventType.CANCELED,
                old_status=old_status,
                new_status=new_status,
                actor_user_id=actor_user_id,
                details={"reason": reason},
            )

        logger.info("escrow.canceled", escrow_id=str(escrow_id), by=str(actor_user_id))
        return escrow

    async def raise_dispute(
        self, escrow_id: uuid.UUID, actor_user_id: uuid.UUID, reason: str
    ) -> Escrow:
        """Freeze a funded escrow for arbiter resolution."""
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            party = self._party_of(escrow, actor_user_id, operation="dispute")
            old_status = EscrowStatus(escrow.status)
            new_status = self._fire_transition(escrow, "raise_dispute")

            other = self._obligations.get(escrow, party.other)
            if other.status == ObligationStatus.PENDING:
                self._obligations.update_status(escrow, party.other, ObligationStatus.DISPUTED)
            escrow.disputed_at = _utcnow()
            escrow.dispute_reason = reason
            escrow.status = new_status.value

            await self._event_repo.append(
                escrow,
                EventType.DISPUTED,
                old_status=old_status,
                new_status=new_status,
                actor_user_id=actor_user_id,
                details={"reason": reason, "raisedBy": party.value},
            )

        logger.info("escrow.disputed", escrow_id=str(escrow_id), party=party.value)
        return escrow

    # ------------------------------------------------------------------
    # Arbiter overrides
    # ------------------------------------------------------------------

    async def admin_cancel_escrow(
        self,
        escrow_id: uuid.UUID,
        admin_user_id: uuid.UUID,
        reason: str,
        refund_party_a: bool = True,
    ) -> Escrow:
        """Cancel any non-terminal escrow, refunding Party A if funds are locked."""
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            await self._authorize_arbiter(escrow, admin_user_id)
            old_status = EscrowStatus(escrow.status)
            funds_locked = old_status in FUNDS_LOCKED_STATUSES
            if funds_locked and not refund_party_a:
                raise StateConflictError(
                    escrow.status,
                    "admin cancel",
                    message=(
                        "Funds are locked: cancel with a refund to Party A, "
                        "or force-complete to pay Party B"
                    ),
                )
            new_status = self._fire_transition(escrow, "admin_cancel")

            refunded = None
            if funds_locked:
                total = escrow.amount + escrow.platform_fee
                ledger = AccountLedger(self._session)
                payer = await ledger.get_or_create_account(
                    AccountOwner.org(escrow.party_a_org_id), escrow.currency
                )
                await ledger.lock_accounts([payer.id])
                await ledger.refund_escrow(payer, total, escrow.id, escrow.currency)
                refunded = format_amount(total, escrow.currency)

            escrow.canceled_at = _utcnow()
            escrow.canceled_by_user_id = admin_user_id
            escrow.cancellation_reason = reason
            escrow.status = new_status.value

            await self._event_repo.append(
                escrow,
                EventType.ADMIN_CANCELED,
                old_status=old_status,
                new_status=new_status,
                actor_user_id=admin_user_id,
                details={
                    "reason": reason,
                    "refundToPartyA": refund_party_a,
                    "refundedAmount": refunded,
                    "adminAction": True,
                },
            )

        logger.info(
            "escrow.admin_canceled",
            escrow_id=str(escrow_id),
            by=str(admin_user_id),
            refunded=refunded,
        )
        return escrow

    async def admin_force_complete(
        self, escrow_id: uuid.UUID, admin_user_id: uuid.UUID, reason: str
    ) -> Escrow:
        """Release a funds-locked escrow to Party B without both confirmations."""
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            await self._authorize_arbiter(escrow, admin_user_id)
            old_status = EscrowStatus(escrow.status)
            new_status = self._fire_transition(escrow, "admin_complete")
            escrow.status = new_status.value

            await self._event_repo.append(
                escrow,
                EventType.ADMIN_COMPLETED,
                old_status=old_status,
                new_status=new_status,
                actor_user_id=admin_user_id,
                details={"reason": reason, "adminAction": True},
            )
            await self._complete(escrow)

        logger.info("escrow.admin_completed", escrow_id=str(escrow_id), by=str(admin_user_id))
        return escrow

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    async def expire_overdue(self, now: datetime | None = None) -> list[uuid.UUID]:
        """Move every unfunded escrow past its expiry to EXPIRED.

        Each escrow is expired in its own unit of work under its row lock and
        re-checked there, so a concurrent accept or fund wins cleanly. Funded
        escrows are never auto-expired.
        """
        now = now or _utcnow()
        candidates = await self._escrow_repo.list_overdue_ids(now)
        expired: list[uuid.UUID] = []

        for escrow_id in candidates:
            try:
                async with atomic(self._session):
                    escrow = await self._escrow_repo.get_for_update(escrow_id)
                    if (
                        escrow is None
                        or EscrowStatus(escrow.status) not in PRE_FUNDING_STATUSES
                        or escrow.expires_at is None
                        or _as_utc(escrow.expires_at) >= now
                    ):
                        continue
                    old_status = EscrowStatus(escrow.status)
                    new_status = self._fire_transition(escrow, "expire")
                    escrow.expired_at = now
                    escrow.status = new_status.value
                    await self._event_repo.append(
                        escrow,
                        EventType.EXPIRED,
                        old_status=old_status,
                        new_status=new_status,
                        actor_user_id=None,
                        details={"expiresAt": _as_utc(escrow.expires_at).isoformat()},
                    )
                expired.append(escrow_id)
            except TransientStoreError as exc:
                logger.warning("escrow.expire_skipped", escrow_id=str(escrow_id), error=str(exc))

        if expired:
            logger.info("escrow.expired", count=len(expired))
        return expired

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    async def link_attachment(
        self,
        escrow_id: uuid.UUID,
        attachment_id: str,
        purpose: str | None,
        actor_user_id: uuid.UUID | None = None,
    ) -> Escrow:
        """Link an attachment to the obligation its purpose tag evidences.

        Purposes without a party (or a repeated attachment id) leave the escrow
        untouched. Linking never changes an obligation's status.
        """
        party = party_for_purpose(purpose)
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            if actor_user_id is not None:
                self._party_of(escrow, actor_user_id, operation="attach evidence to")
            if party is None:
                logger.debug("escrow.attachment_ignored", escrow_id=str(escrow_id), purpose=purpose)
                return escrow
            if not self._obligations.link_attachment(escrow, party, attachment_id):
                return escrow

            await self._event_repo.append(
                escrow,
                EventType.ATTACHMENT_LINKED,
                old_status=None,
                new_status=None,
                actor_user_id=actor_user_id,
                details={
                    "attachmentId": attachment_id,
                    "purpose": purpose,
                    "obligationId": self._obligations.get(escrow, party).id,
                },
            )

        logger.info(
            "escrow.attachment_linked",
            escrow_id=str(escrow_id),
            attachment_id=attachment_id,
            party=party.value,
        )
        return escrow

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def add_message(
        self,
        escrow_id: uuid.UUID,
        author_user_id: uuid.UUID,
        message: str,
        metadata: dict | None = None,
    ) -> EscrowMessage:
        """Post to an escrow's thread and record MESSAGE_ADDED.

        Parties may always post. While an offer still waits for a counterparty,
        anyone the acceptance policy admits may ask questions on it.
        """
        text = self._clean_message(message, metadata)
        async with atomic(self._session):
            escrow = await self._lock_escrow(escrow_id)
            actor = await self._load_actor(author_user_id)
            if not self._may_converse(escrow, actor):
                raise NotAPartyError(str(escrow_id), str(author_user_id), operation="message")

            posted = await self._messages.add(
                EscrowMessage(
                    id=uuid.uuid4(),
                    escrow_id=escrow.id,
                    user_id=actor.user_id,
                    message=text,
                    is_system_message=False,
                    metadata_json=metadata,
                    created_at=_utcnow(),
                )
            )
            await self._event_repo.append(
                escrow,
                EventType.MESSAGE_ADDED,
                old_status=None,
                new_status=None,
                actor_user_id=actor.user_id,
                details={"messageId": str(posted.id)},
            )

        logger.info(
            "escrow.message_added",
            escrow_id=str(escrow_id),
            message_id=str(posted.id),
            by=str(author_user_id),
        )
        return posted

    async def add_system_message(
        self, escrow_id: uuid.UUID, message: str, metadata: dict | None = None
    ) -> EscrowMessage:
        """Post an unattributed note. System notes are not audit events."""
        text = self._clean_message(message, metadata)
        async with atomic(self._session):
            await self.get_escrow(escrow_id)
            posted = await self._messages.add(
                EscrowMessage(
                    id=uuid.uuid4(),
                    escrow_id=escrow_id,
                    user_id=None,
                    message=text,
                    is_system_message=True,
                    metadata_json=metadata,
                    created_at=_utcnow(),
                )
            )
        logger.debug("escrow.system_message_added", escrow_id=str(escrow_id))
        return posted

    async def get_messages(
        self, escrow_id: uuid.UUID, viewer_user_id: uuid.UUID
    ) -> list[EscrowMessage]:
        """The thread oldest first, for anyone who may post to it or arbitrate it."""
        escrow = await self.get_escrow(escrow_id)
        actor = await self._load_actor(viewer_user_id)
        if not (
            self._may_converse(escrow, actor) or is_authorized(actor, self._arbiter_of(escrow))
        ):
            raise NotAPartyError(str(escrow_id), str(viewer_user_id), operation="read messages on")
        return await self._messages.list_for_escrow(escrow_id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_escrow(self, escrow_id: uuid.UUID) -> Escrow:
        """Get an escrow or raise."""
        escrow = await self._escrow_repo.get_by_id(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(str(escrow_id))
        return escrow

    async def get_status(self, escrow_id: uuid.UUID) -> dict:
        """Get escrow status with the operations the state machine would allow."""
        escrow = await self.get_escrow(escrow_id)
        sm = EscrowStateMachine(current_status=escrow.status)
        return {
            "escrow_id": str(escrow.id),
            "status": escrow.status,
            "party_a_confirmed": escrow.party_a_confirmed_at is not None,
            "party_b_confirmed": escrow.party_b_confirmed_at is not None,
            "allowed_events": sm.get_allowed_events(),
        }

    async def get_events(self, escrow_id: uuid.UUID) -> list[EscrowEvent]:
        """Get audit trail."""
        await self.get_escrow(escrow_id)
        return await self._event_repo.get_by_escrow(escrow_id)

    async def get_obligations(self, escrow_id: uuid.UUID) -> list[Obligation]:
        escrow = await self.get_escrow(escrow_id)
        return self._obligations.all(escrow)

    async def list_escrows_for_user(
        self, user_id: uuid.UUID, status: EscrowStatus | None = None
    ) -> list[Escrow]:
        actor = await self._load_actor(user_id)
        org_ids = set(actor.memberships)
        if actor.primary_org_id is not None:
            org_ids.add(actor.primary_org_id)
        return await self._escrow_repo.list_for_participant(user_id, org_ids, status)

    async def list_pending_for_provider(
        self, user_id: uuid.UUID, service_type_id: str | None = None
    ) -> list[Escrow]:
        """Escrows awaiting acceptance that this user would be allowed to accept."""
        actor = await self._load_actor(user_id)
        candidates = await self._escrow_repo.list_awaiting_acceptance(service_type_id)
        return [e for e in candidates if self._acceptance_policy(e).admits(actor)]

    async def list_escrows_as_arbiter(self, user_id: uuid.UUID) -> list[Escrow]:
        """Funds-locked escrows this user may force-resolve."""
        actor = await self._load_actor(user_id)
        candidates = await self._escrow_repo.list_arbitrable(
            include_platform_only=actor.is_platform_admin
        )
        return [e for e in candidates if is_authorized(actor, self._arbiter_of(e))]

    async def is_arbiter(self, user_id: uuid.UUID, escrow_id: uuid.UUID) -> bool:
        escrow = await self.get_escrow(escrow_id)
        actor = await self._directory.load_actor(user_id)
        return actor is not None and is_authorized(actor, self._arbiter_of(escrow))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _lock_escrow(self, escrow_id: uuid.UUID) -> Escrow:
        escrow = await self._escrow_repo.get_for_update(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(str(escrow_id))
        return escrow

    async def _load_actor(self, user_id: uuid.UUID) -> Actor:
        actor = await self._directory.load_actor(user_id)
        if actor is None:
            raise UserNotFoundError(str(user_id))
        return actor

    async def _authorize_arbiter(self, escrow: Escrow, user_id: uuid.UUID) -> Actor:
        actor = await self._load_actor(user_id)
        if not is_authorized(actor, self._arbiter_of(escrow)):
            raise UnauthorizedArbiterError(str(escrow.id), str(user_id))
        return actor

    async def _check_counterparty(self, creator: Actor, counterparty: Counterparty) -> None:
        """Named counterparties must exist and sit outside Party A's organization."""
        if counterparty.org_id is not None:
            if counterparty.org_id == creator.primary_org_id:
                raise ValidationError("Counterparty organization must differ from Party A's")
            if await self._directory.get_org(counterparty.org_id) is None:
                raise OrganizationNotFoundError(str(counterparty.org_id))
        if counterparty.user_id is not None:
            assignee = await self._load_actor(counterparty.user_id)
            if assignee.belongs_to(creator.primary_org_id):
                raise ValidationError("Counterparty cannot be a member of Party A's organization")

    async def _check_arbiter(self, arbiter: ArbiterDesignation) -> None:
        if arbiter.user_id is not None and await self._directory.get_user(arbiter.user_id) is None:
            raise UserNotFoundError(str(arbiter.user_id))
        if arbiter.org_id is not None and await self._directory.get_org(arbiter.org_id) is None:
            raise OrganizationNotFoundError(str(arbiter.org_id))

    async def _complete(self, escrow: Escrow) -> None:
        """Release locked funds to Party B and the platform. Runs at most once per escrow."""
        if escrow.completed_at is not None:
            raise StateConflictError(escrow.status, "complete", message="Escrow already settled")

        if escrow.party_b_org_id is not None:
            payee_owner = AccountOwner.org(escrow.party_b_org_id)
        elif escrow.party_b_user_id is not None:
            payee_owner = AccountOwner.user(escrow.party_b_user_id)
        else:
            raise StateConflictError(escrow.status, "complete", message="Escrow has no Party B")

        ledger = AccountLedger(self._session)
        payer = await ledger.get_or_create_account(
            AccountOwner.org(escrow.party_a_org_id), escrow.currency
        )
        payee = await ledger.get_or_create_account(payee_owner, escrow.currency)
        platform = await ledger.get_or_create_account(
            AccountOwner.org(self._settings.platform_org_id), escrow.currency
        )
        await ledger.lock_accounts([payer.id, payee.id, platform.id])

        total = escrow.amount + escrow.platform_fee
        await ledger.release_escrow(
            payer, payee, platform, total, escrow.platform_fee, escrow.id, escrow.currency
        )
        escrow.completed_at = _utcnow()

        await self._event_repo.append(
            escrow,
            EventType.COMPLETED,
            old_status=None,
            new_status=EscrowStatus.COMPLETED,
            actor_user_id=None,
            details={
                "releasedAmount": format_amount(escrow.amount, escrow.currency),
                "platformFee": format_amount(escrow.platform_fee, escrow.currency),
                "payeeAccountId": str(payee.id),
            },
        )
        logger.info(
            "escrow.completed",
            escrow_id=str(escrow.id),
            payout=str(escrow.amount),
            fee=str(escrow.platform_fee),
        )

    @staticmethod
    def _party_of(escrow: Escrow, user_id: uuid.UUID, operation: str) -> Party:
        if user_id == escrow.created_by_user_id:
            return Party.A
        if escrow.party_b_user_id is not None and user_id == escrow.party_b_user_id:
            return Party.B
        raise NotAPartyError(str(escrow.id), str(user_id), operation=operation)

    @staticmethod
    def _acceptance_policy(escrow: Escrow) -> AcceptancePolicy:
        return AcceptancePolicy(
            party_a_org_id=escrow.party_a_org_id,
            counterparty=Counterparty(
                user_id=escrow.party_b_user_id,
                org_id=escrow.party_b_org_id,
                email=escrow.counterparty_email,
                is_open=escrow.is_open,
            ),
        )

    @staticmethod
    def _arbiter_of(escrow: Escrow) -> ArbiterDesignation:
        return ArbiterDesignation(
            arbiter_type=ArbiterType(escrow.arbiter_type),
            org_id=escrow.arbiter_org_id,
            user_id=escrow.arbiter_user_id,
            email=escrow.arbiter_email,
        )

    def _may_converse(self, escrow: Escrow, actor: Actor) -> bool:
        if actor.user_id in (escrow.created_by_user_id, escrow.party_b_user_id):
            return True
        return (
            escrow.status == EscrowStatus.PENDING_ACCEPTANCE
            and escrow.party_b_user_id is None
            and self._acceptance_policy(escrow).admits(actor)
        )

    @staticmethod
    def _clean_message(message: str, metadata: dict | None) -> str:
        text = (message or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message exceeds {MAX_MESSAGE_LENGTH} characters")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("Message metadata must be an object")
        return text

    @staticmethod
    def _validate_arbiter(arbiter: ArbiterDesignation) -> None:
        if arbiter.arbiter_type == ArbiterType.PERSON and not (arbiter.user_id or arbiter.email):
            raise ValidationError("A person arbiter needs a user id or an email")
        if arbiter.arbiter_type == ArbiterType.ORGANIZATION and arbiter.org_id is None:
            raise ValidationError("An organization arbiter needs an organization id")

    @staticmethod
    def _fire_transition(escrow: Escrow, event_name: str) -> EscrowStatus:
        """Validate a state machine transition and return the resulting status.

        Raises StateConflictError if the transition is illegal from the
        escrow's current (locked) status.
        """
        sm = EscrowStateMachine(current_status=escrow.status)
        try:
            sm.send(event_name)
        except TransitionNotAllowed as err:
            raise StateConflictError(escrow.status, event_name.replace("_", " ")) from err
        return EscrowStatus(sm.status)
