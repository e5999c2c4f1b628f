"""Account Ledger - the only component allowed to mutate balances.

Two layers:
    - AccountLedger: balance mutations inside a caller-owned unit of work. It
      refuses to touch an account the unit of work has not row-locked, and
      every bucket change writes exactly one ledger entry, so for every
      account the entries of a bucket always sum to the stored balance.
    - AccountService: account-facing use cases (deposit, withdraw, balances,
      entries, reconciliation), each in its own unit of work.

Locks are taken through lock_accounts() in ascending account id order. All
accounts a unit of work needs must be locked in one call, after the escrow row.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from escrow_exchange.domain.enums import LedgerBucket, LedgerEntryType
from escrow_exchange.domain.exceptions import (
    AccountNotFoundError,
    AccountNotLockedError,
    AuthorizationError,
    CurrencyMismatchError,
    InsufficientFundsError,
    InvalidAmountError,
    LedgerError,
    LedgerImbalanceError,
)
from escrow_exchange.domain.money import ZERO, normalize_currency, parse_amount
from escrow_exchange.domain.values import AccountOwner, BalanceSnapshot
from escrow_exchange.infrastructure.database.engine import atomic
from escrow_exchange.infrastructure.database.orm_models import Account, LedgerEntry
from escrow_exchange.infrastructure.database.repositories import (
    AccountRepository,
    DirectoryRepository,
    LedgerEntryRepository,
)
from escrow_exchange.logging_config import get_logger

logger = get_logger(__name__)

ESCROW_REFERENCE = "escrow"


@dataclass(frozen=True)
class ReconciliationReport:
    """Stored balances of an account against the sum of its ledger entries."""

    account_id: uuid.UUID
    currency: str
    stored_available: Decimal
    stored_in_contract: Decimal
    ledger_available: Decimal
    ledger_in_contract: Decimal

    @property
    def is_balanced(self) -> bool:
        return (
            self.stored_available == self.ledger_available
            and self.stored_in_contract == self.ledger_in_contract
        )

    @property
    def differences(self) -> dict[str, str]:
        diffs = {}
        if self.stored_available != self.ledger_available:
            diffs["available"] = str(self.stored_available - self.ledger_available)
        if self.stored_in_contract != self.ledger_in_contract:
            diffs["in_contract"] = str(self.stored_in_contract - self.ledger_in_contract)
        return diffs


class AccountLedger:
    """Balance mutations for one unit of work.

    Instantiate per transaction; the set of locked accounts does not outlive it.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._accounts = AccountRepository(session)
        self._entries = LedgerEntryRepository(session)
        self._locked: dict[uuid.UUID, Account] = {}

    # ------------------------------------------------------------------
    # Accounts and locks
    # ------------------------------------------------------------------

    async def get_or_create_account(self, owner: AccountOwner, currency: str) -> Account:
        """Return the (owner, currency) account, creating it with zero balances if absent."""
        currency = normalize_currency(currency)
        account = await self._accounts.find(owner, currency)
        if account is None:
            await self._accounts.insert_if_absent(owner, currency)
            account = await self._accounts.find(owner, currency)
            logger.info("ledger.account_created", owner=str(owner), currency=currency)
        if account is None:
            raise LedgerError(f"Account for {owner} in {currency} could not be created")
        return account

    async def lock_accounts(self, account_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Account]:
        """Row-lock accounts in ascending id order and register them as held.

        Raises:
            AccountNotFoundError: if an id does not exist.
            LedgerError: if this would lock an id below one already held
                (the fixed global order would be broken).
        """
        account_ids = list(account_ids)
        wanted = sorted(set(account_ids) - set(self._locked))
        if wanted and self._locked and wanted[0] < max(self._locked):
            raise LedgerError("Accounts must be locked in one ascending batch per unit of work")

        for account_id in wanted:
            account = await self._accounts.get_for_update(account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            self._locked[account_id] = account
        return {account_id: self._locked[account_id] for account_id in account_ids}

    def _held(self, account: Account) -> Account:
        held = self._locked.get(account.id)
        if held is None:
            raise AccountNotLockedError(str(account.id))
        return held

    @staticmethod
    def ensure_currency(account: Account, currency: str) -> None:
        if account.currency != currency:
            raise CurrencyMismatchError(account.currency, currency)

    # ------------------------------------------------------------------
    # The single write path
    # ------------------------------------------------------------------

    async def _post(
        self,
        account: Account,
        bucket: LedgerBucket,
        amount: Decimal,
        entry_type: LedgerEntryType,
        reference_type: str | None,
        reference_id: str | None,
        description: str | None = None,
    ) -> LedgerEntry:
        """Apply one signed change to one bucket and write its entry."""
        account = self._held(account)
        if amount == ZERO:
            raise LedgerError("Ledger entries must move a non-zero amount")

        if bucket == LedgerBucket.AVAILABLE:
            new_balance = account.available_balance + amount
            if new_balance < ZERO:
                raise InsufficientFundsError(
                    required=str(-amount),
                    available=str(account.available_balance),
                    currency=account.currency,
                )
            account.available_balance = new_balance
        else:
            new_balance = account.in_contract_balance + amount
            if new_balance < ZERO:
                raise LedgerError(
                    f"In-contract balance of account {account.id} would become negative"
                )
            account.in_contract_balance = new_balance

        return await self._entries.add(
            LedgerEntry(
                account_id=account.id,
                amount=amount,
                bucket=bucket.value,
                entry_type=entry_type.value,
                reference_type=reference_type,
                reference_id=reference_id,
                description=description,
            )
        )

    # ------------------------------------------------------------------
    # Collaborator money movements (available bucket only)
    # ------------------------------------------------------------------

    async def deposit(
        self,
        account: Account,
        amount: Decimal,
        reference_type: str = "deposit",
        reference_id: str | None = None,
        description: str | None = None,
    ) -> Account:
        amount = parse_amount(amount, account.currency)
        await self._post(
            account, LedgerBucket.AVAILABLE, amount, LedgerEntryType.DEPOSIT,
            reference_type, reference_id, description,
        )
        logger.info("ledger.deposited", account_id=str(account.id), amount=str(amount))
        return self._held(account)

    async def withdraw(
        self,
        account: Account,
        amount: Decimal,
        reference_type: str = "withdrawal",
        reference_id: str | None = None,
        description: str | None = None,
    ) -> Account:
        amount = parse_amount(amount, account.currency)
        await self._post(
            account, LedgerBucket.AVAILABLE, -amount, LedgerEntryType.WITHDRAW,
            reference_type, reference_id, description,
        )
        logger.info("ledger.withdrawn", account_id=str(account.id), amount=str(amount))
        return self._held(account)

    # ------------------------------------------------------------------
    # Escrow movements
    # ------------------------------------------------------------------

    async def lock_for_escrow(
        self, account: Account, amount: Decimal, escrow_id: uuid.UUID, currency: str
    ) -> None:
        """Move amount from available to in_contract.

        Raises:
            InsufficientFundsError: if available < amount; nothing is written.
        """
        account = self._held(account)
        self.ensure_currency(account, currency)
        if amount <= ZERO:
            raise InvalidAmountError(f"Lock amount must be positive, got {amount}")
        if account.available_balance < amount:
            raise InsufficientFundsError(
                required=str(amount),
                available=str(account.available_balance),
                currency=currency,
            )

        ref = str(escrow_id)
        await self._post(
            account, LedgerBucket.AVAILABLE, -amount, LedgerEntryType.ESCROW_LOCK,
            ESCROW_REFERENCE, ref, "Funds locked for escrow",
        )
        await self._post(
            account, LedgerBucket.IN_CONTRACT, amount, LedgerEntryType.ESCROW_LOCK,
            ESCROW_REFERENCE, ref, "Funds locked for escrow",
        )
        logger.info(
            "ledger.locked", account_id=str(account.id), escrow_id=ref, amount=str(amount)
        )

    async def release_escrow(
        self,
        payer: Account,
        payee: Account,
        fee_account: Account,
        total_amount: Decimal,
        fee: Decimal,
        escrow_id: uuid.UUID,
        currency: str,
    ) -> None:
        """Settle a locked escrow.

        Payer's in_contract -total; payee's available +(total - fee); the fee
        account's available +fee. No fee entry is written for a zero fee.
        """
        payer, payee, fee_account = self._held(payer), self._held(payee), self._held(fee_account)
        for account in (payer, payee, fee_account):
            self.ensure_currency(account, currency)
        if fee < ZERO or fee > total_amount:
            raise LedgerError(f"Fee {fee} out of range for total {total_amount}")

        ref = str(escrow_id)
        payout = total_amount - fee
        await self._post(
            payer, LedgerBucket.IN_CONTRACT, -total_amount, LedgerEntryType.ESCROW_RELEASE,
            ESCROW_REFERENCE, ref, "Escrow released",
        )
        if payout > ZERO:
            await self._post(
                payee, LedgerBucket.AVAILABLE, payout, LedgerEntryType.ESCROW_RECEIVE,
                ESCROW_REFERENCE, ref, "Escrow payout received",
            )
        if fee > ZERO:
            await self._post(
                fee_account, LedgerBucket.AVAILABLE, fee, LedgerEntryType.PLATFORM_FEE,
                ESCROW_REFERENCE, ref, "Platform fee",
            )
        logger.info(
            "ledger.released",
            escrow_id=ref,
            payer_account_id=str(payer.id),
            payee_account_id=str(payee.id),
            payout=str(payout),
            fee=str(fee),
        )

    async def refund_escrow(
        self, account: Account, total_amount: Decimal, escrow_id: uuid.UUID, currency: str
    ) -> None:
        """Reverse a lock: in_contract -total, available +total."""
        account = self._held(account)
        self.ensure_currency(account, currency)
        ref = str(escrow_id)
        await self._post(
            account, LedgerBucket.IN_CONTRACT, -total_amount, LedgerEntryType.REFUND,
            ESCROW_REFERENCE, ref, "Escrow refunded",
        )
        await self._post(
            account, LedgerBucket.AVAILABLE, total_amount, LedgerEntryType.REFUND,
            ESCROW_REFERENCE, ref, "Escrow refunded",
        )
        logger.info(
            "ledger.refunded", account_id=str(account.id), escrow_id=ref, amount=str(total_amount)
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def reconcile(self, account_id: uuid.UUID) -> ReconciliationReport:
        account = await self._accounts.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        sums = await self._entries.sums_by_bucket(account_id)
        return ReconciliationReport(
            account_id=account.id,
            currency=account.currency,
            stored_available=account.available_balance,
            stored_in_contract=account.in_contract_balance,
            ledger_available=sums[LedgerBucket.AVAILABLE],
            ledger_in_contract=sums[LedgerBucket.IN_CONTRACT],
        )


class AccountService:
    """Account use cases, each in its own unit of work."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._accounts = AccountRepository(session)
        self._entries = LedgerEntryRepository(session)
        self._directory = DirectoryRepository(session)

    async def get_or_create_account(self, owner: AccountOwner, currency: str) -> Account:
        async with atomic(self._session):
            return await AccountLedger(self._session).get_or_create_account(owner, currency)

    async def list_accounts(self, owner: AccountOwner) -> list[Account]:
        return await self._accounts.list_for_owner(owner)

    async def get_account(self, account_id: uuid.UUID) -> Account:
        account = await self._accounts.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    async def get_balance(self, account_id: uuid.UUID) -> BalanceSnapshot:
        account = await self.get_account(account_id)
        return BalanceSnapshot(
            account_id=account.id,
            currency=account.currency,
            available=account.available_balance,
            in_contract=account.in_contract_balance,
            as_of=account.updated_at,
        )

    async def get_entries(
        self, account_id: uuid.UUID, limit: int = 50, offset: int = 0
    ) -> list[LedgerEntry]:
        await self.get_account(account_id)
        return await self._entries.list_for_account(account_id, limit=limit, offset=offset)

    async def deposit(
        self,
        owner: AccountOwner,
        amount: Decimal | str,
        currency: str,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> Account:
        """Credit an owner's available balance (e.g. after an external payment settled)."""
        async with atomic(self._session):
            ledger = AccountLedger(self._session)
            account = await ledger.get_or_create_account(owner, currency)
            await ledger.lock_accounts([account.id])
            return await ledger.deposit(
                account, amount, reference_id=reference_id, description=description
            )

    async def withdraw(
        self,
        owner: AccountOwner,
        amount: Decimal | str,
        currency: str,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> Account:
        async with atomic(self._session):
            ledger = AccountLedger(self._session)
            account = await self._accounts.find(owner, normalize_currency(currency))
            if account is None:
                raise AccountNotFoundError(f"{owner}/{currency}")
            await ledger.lock_accounts([account.id])
            return await ledger.withdraw(
                account, amount, reference_id=reference_id, description=description
            )

    async def reconcile(self, account_id: uuid.UUID) -> ReconciliationReport:
        return await AccountLedger(self._session).reconcile(account_id)

    async def assert_reconciled(self, account_id: uuid.UUID) -> ReconciliationReport:
        report = await self.reconcile(account_id)
        if not report.is_balanced:
            logger.error(
                "ledger.imbalance", account_id=str(account_id), differences=report.differences
            )
            raise LedgerImbalanceError(str(account_id), report.differences)
        return report

    # ------------------------------------------------------------------
    # Caller-scoped access
    # ------------------------------------------------------------------

    async def owners_for(self, user_id: uuid.UUID) -> list[AccountOwner]:
        """The user's own owner plus every organization they belong to."""
        actor = await self._directory.load_actor(user_id)
        if actor is None:
            return [AccountOwner.user(user_id)]
        org_ids = set(actor.memberships)
        if actor.primary_org_id is not None:
            org_ids.add(actor.primary_org_id)
        return [AccountOwner.user(user_id)] + [AccountOwner.org(o) for o in sorted(org_ids)]

    async def list_accounts_for_user(self, user_id: uuid.UUID) -> list[Account]:
        accounts: list[Account] = []
        for owner in await self.owners_for(user_id):
            accounts.extend(await self._accounts.list_for_owner(owner))
        return accounts

    async def authorize_owner(self, owner: AccountOwner, user_id: uuid.UUID) -> None:
        if owner not in await self.owners_for(user_id):
            raise AuthorizationError(f"User {user_id} cannot act for {owner}")

    async def get_account_for_user(self, account_id: uuid.UUID, user_id: uuid.UUID) -> Account:
        """Fetch an account the user owns or belongs to; others look like missing."""
        account = await self.get_account(account_id)
        owner = (
            AccountOwner.user(account.user_id)
            if account.user_id is not None
            else AccountOwner.org(account.org_id)
        )
        if owner not in await self.owners_for(user_id):
            raise AccountNotFoundError(str(account_id))
        return account
