"""Tests for the account ledger and the account use cases."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_exchange.domain.enums import LedgerBucket, LedgerEntryType, OrgRole
from escrow_exchange.domain.exceptions import (
    AccountNotFoundError,
    AccountNotLockedError,
    AuthorizationError,
    CurrencyMismatchError,
    InsufficientFundsError,
    InvalidAmountError,
    LedgerError,
)
from escrow_exchange.domain.values import AccountOwner
from escrow_exchange.infrastructure.database.engine import atomic
from escrow_exchange.services.ledger_service import AccountLedger, AccountService


class TestDeposit:
    async def test_deposit_credits_available(self, accounts: AccountService, alice) -> None:
        account = await accounts.deposit(alice.org, "200.00", "usd", reference_id="wire-1")
        assert account.currency == "USD"
        assert account.available_balance == Decimal("200.00")
        assert account.in_contract_balance == Decimal("0")

        entries = await accounts.get_entries(account.id)
        assert len(entries) == 1
        assert entries[0].entry_type == LedgerEntryType.DEPOSIT.value
        assert entries[0].bucket == LedgerBucket.AVAILABLE.value
        assert entries[0].reference_id == "wire-1"

    async def test_deposits_accumulate_on_one_account(
        self, accounts: AccountService, alice
    ) -> None:
        first = await accounts.deposit(alice.org, "10.00", "USD")
        second = await accounts.deposit(alice.org, "5.50", "USD")
        assert first.id == second.id
        report = await accounts.assert_reconciled(second.id)
        assert report.stored_available == Decimal("15.50")

    @pytest.mark.parametrize("amount", ["0", "-5", "1.001"])
    async def test_invalid_amount(self, accounts: AccountService, alice, amount: str) -> None:
        with pytest.raises(InvalidAmountError):
            await accounts.deposit(alice.org, amount, "USD")


class TestWithdraw:
    async def test_withdraw_debits_available(self, accounts: AccountService, alice) -> None:
        await accounts.deposit(alice.org, "50.00", "USD")
        account = await accounts.withdraw(alice.org, "20.00", "USD")
        assert account.available_balance == Decimal("30.00")

    async def test_overdraw_rejected_without_writes(
        self, accounts: AccountService, alice
    ) -> None:
        account = await accounts.deposit(alice.org, "50.00", "USD")
        account_id = account.id
        with pytest.raises(InsufficientFundsError):
            await accounts.withdraw(alice.org, "50.01", "USD")

        report = await accounts.assert_reconciled(account_id)
        assert report.stored_available == Decimal("50.00")
        assert len(await accounts.get_entries(account_id)) == 1

    async def test_withdraw_without_account(self, accounts: AccountService, alice) -> None:
        with pytest.raises(AccountNotFoundError):
            await accounts.withdraw(alice.org, "1.00", "EUR")


class TestAccountLedgerGuards:
    async def test_get_or_create_is_idempotent(self, session: AsyncSession, alice) -> None:
        async with atomic(session):
            ledger = AccountLedger(session)
            first = await ledger.get_or_create_account(alice.org, "USD")
            second = await ledger.get_or_create_account(alice.org, "usd")
        assert first.id == second.id

    async def test_mutation_requires_lock(self, session: AsyncSession, alice) -> None:
        with pytest.raises(AccountNotLockedError):
            async with atomic(session):
                ledger = AccountLedger(session)
                account = await ledger.get_or_create_account(alice.org, "USD")
                await ledger.deposit(account, Decimal("1.00"))

    async def test_locks_must_be_taken_in_one_ascending_batch(
        self, session: AsyncSession, alice, bob
    ) -> None:
        with pytest.raises(LedgerError, match="ascending"):
            async with atomic(session):
                ledger = AccountLedger(session)
                a = await ledger.get_or_create_account(alice.org, "USD")
                b = await ledger.get_or_create_account(bob.org, "USD")
                low, high = sorted([a.id, b.id])
                await ledger.lock_accounts([high])
                await ledger.lock_accounts([low])

    async def test_lock_unknown_account(self, session: AsyncSession) -> None:
        with pytest.raises(AccountNotFoundError):
            async with atomic(session):
                await AccountLedger(session).lock_accounts([uuid.uuid4()])

    async def test_currency_mismatch(self, session: AsyncSession, alice) -> None:
        with pytest.raises(CurrencyMismatchError):
            async with atomic(session):
                ledger = AccountLedger(session)
                account = await ledger.get_or_create_account(alice.org, "EUR")
                await ledger.lock_accounts([account.id])
                await ledger.lock_for_escrow(account, Decimal("1.00"), uuid.uuid4(), "USD")

    async def test_lock_more_than_available(self, session: AsyncSession, alice) -> None:
        with pytest.raises(InsufficientFundsError):
            async with atomic(session):
                ledger = AccountLedger(session)
                account = await ledger.get_or_create_account(alice.org, "USD")
                await ledger.lock_accounts([account.id])
                await ledger.lock_for_escrow(account, Decimal("0.01"), uuid.uuid4(), "USD")


class TestEscrowMovements:
    async def test_lock_then_release_with_zero_fee(
        self, session: AsyncSession, accounts: AccountService, alice, bob, settings
    ) -> None:
        await accounts.deposit(alice.org, "30.00", "USD")
        escrow_id = uuid.uuid4()

        async with atomic(session):
            ledger = AccountLedger(session)
            payer = await ledger.get_or_create_account(alice.org, "USD")
            payee = await ledger.get_or_create_account(bob.org, "USD")
            platform = await ledger.get_or_create_account(
                AccountOwner.org(settings.platform_org_id), "USD"
            )
            await ledger.lock_accounts([payer.id, payee.id, platform.id])
            await ledger.lock_for_escrow(payer, Decimal("30.00"), escrow_id, "USD")
            await ledger.release_escrow(
                payer, payee, platform, Decimal("30.00"), Decimal("0"), escrow_id, "USD"
            )
        payer_id, payee_id, platform_id = payer.id, payee.id, platform.id

        assert (await accounts.assert_reconciled(payer_id)).stored_in_contract == Decimal("0")
        assert (await accounts.assert_reconciled(payee_id)).stored_available == Decimal("30.00")
        assert await accounts.get_entries(platform_id) == []

    async def test_refund_restores_available(
        self, session: AsyncSession, accounts: AccountService, alice
    ) -> None:
        await accounts.deposit(alice.org, "115.00", "USD")
        escrow_id = uuid.uuid4()
        async with atomic(session):
            ledger = AccountLedger(session)
            account = await ledger.get_or_create_account(alice.org, "USD")
            await ledger.lock_accounts([account.id])
            await ledger.lock_for_escrow(account, Decimal("115.00"), escrow_id, "USD")
            await ledger.refund_escrow(account, Decimal("115.00"), escrow_id, "USD")
        account_id = account.id

        report = await accounts.assert_reconciled(account_id)
        assert report.stored_available == Decimal("115.00")
        assert report.stored_in_contract == Decimal("0")
        # deposit + 2 lock legs + 2 refund legs
        assert len(await accounts.get_entries(account_id)) == 5


class TestCallerScopedAccess:
    async def test_owners_include_every_membership(
        self, accounts: AccountService, directory, alice, bob
    ) -> None:
        await directory.add_member(bob.org_id, alice.user_id, OrgRole.VIEWER)
        owners = await accounts.owners_for(alice.user_id)
        assert AccountOwner.user(alice.user_id) in owners
        assert alice.org in owners
        assert bob.org in owners

    async def test_authorize_owner(self, accounts: AccountService, alice, bob) -> None:
        await accounts.authorize_owner(alice.org, alice.user_id)
        with pytest.raises(AuthorizationError):
            await accounts.authorize_owner(bob.org, alice.user_id)

    async def test_foreign_account_looks_missing(
        self, accounts: AccountService, alice, bob
    ) -> None:
        account = await accounts.deposit(bob.org, "1.00", "USD")
        account_id = account.id
        assert (await accounts.get_account_for_user(account_id, bob.user_id)).id == account_id
        with pytest.raises(AccountNotFoundError):
            await accounts.get_account_for_user(account_id, alice.user_id)

    async def test_list_accounts_for_user(self, accounts: AccountService, alice) -> None:
        await accounts.deposit(alice.org, "1.00", "USD")
        await accounts.deposit(alice.org, "1.00", "EUR")
        listed = await accounts.list_accounts_for_user(alice.user_id)
        assert sorted(a.currency for a in listed) == ["EUR", "USD"]
