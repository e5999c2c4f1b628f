"""MCP Tool definitions for the Escrow Exchange.

These tools expose the escrow lifecycle via the Model Context Protocol,
allowing agents to discover and call them programmatically.

Tools:
    - create_escrow: Create an escrow as Party A
    - accept_escrow / fund_escrow / confirm_escrow: Move an escrow forward
    - cancel_escrow / raise_dispute: Party-initiated exits
    - admin_cancel_escrow / admin_force_complete: Arbiter overrides
    - check_status / get_escrow_events / list_pending_escrows: Reads
    - link_attachment: Attach evidence to an obligation
    - get_escrow_messages / post_escrow_message: The escrow's message thread
    - list_service_types / get_provider_settings / set_provider_settings: What a
      provider serves and auto-accepts
    - get_balances / deposit_funds: Account balances and credits
    - expire_overdue_escrows: The expiry sweep

The MCP server is mounted into FastAPI at /mcp via app.mount().
Each tool manages its own database session (no FastAPI Depends available)
and returns {"error", "code"} instead of raising.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.server.fastmcp import FastMCP
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_exchange.config import get_settings
from escrow_exchange.domain.enums import ArbiterType
from escrow_exchange.domain.exceptions import EscrowExchangeError
from escrow_exchange.domain.values import (
    AccountOwner,
    ArbiterDesignation,
    Counterparty,
    EscrowTerms,
)
from escrow_exchange.infrastructure.database.engine import session_scope
from escrow_exchange.infrastructure.database.orm_models import Escrow, ProviderSetting
from escrow_exchange.logging_config import get_logger
from escrow_exchange.services.escrow_service import EscrowService
from escrow_exchange.services.ledger_service import AccountService
from escrow_exchange.services.provider_settings import ProviderSettingsService
from escrow_exchange.services.retry import run_with_retry

logger = get_logger(__name__)

# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "Escrow Exchange",
    json_response=True,
)


def _summary(escrow: Escrow, message: str | None = None) -> dict:
    data = {
        "escrow_id": str(escrow.id),
        "status": escrow.status,
        "service_type_id": escrow.service_type_id,
        "amount": str(escrow.amount),
        "platform_fee": str(escrow.platform_fee),
        "currency": escrow.currency,
        "party_a_org_id": str(escrow.party_a_org_id),
        "party_b_org_id": str(escrow.party_b_org_id) if escrow.party_b_org_id else None,
        "party_b_user_id": str(escrow.party_b_user_id) if escrow.party_b_user_id else None,
        "obligations": [escrow.obligation_a, escrow.obligation_b],
    }
    if message:
        data["message"] = message
    return data


async def _run(
    tool: str, operation: Callable[[AsyncSession], Awaitable[dict]]
) -> dict:
    """Run one tool call in its own session, retrying transient store failures."""
    try:
        async with session_scope() as session:
            return await run_with_retry(lambda: operation(session))
    except EscrowExchangeError as exc:
        logger.warning(f"mcp.{tool}.rejected", code=exc.code, error=exc.message)
        return {"error": exc.message, "code": exc.code}
    except ValueError as exc:
        return {"error": str(exc), "code": "VALIDATION_ERROR"}
    except Exception as exc:
        logger.exception(f"mcp.{tool}.error")
        return {"error": str(exc), "code": "INTERNAL_ERROR"}


def _uuid(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@mcp.tool()
async def create_escrow(
    user_id: str,
    service_type_id: str,
    amount: str,
    currency: str = "",
    counterparty_user_id: str = "",
    counterparty_org_id: str = "",
    counterparty_email: str = "",
    is_open: bool = False,
    arbiter_type: str = "platform_only",
    arbiter_id: str = "",
    arbiter_email: str = "",
    title: str = "",
    description: str = "",
    expires_in_days: int = 0,
    metadata: dict[str, Any] | None = None,
) -> dict:
    """Create an escrow with your primary organization as Party A.

    Args:
        user_id: Your user id.
        service_type_id: TRAFFIC_BUY, API_KEY_EXCHANGE, DOCUMENT_DELIVERY or CUSTOM.
        amount: Decimal string, e.g. "100.00". The platform fee is added on top.
        currency: Currency code; defaults to the platform currency.
        counterparty_user_id / counterparty_org_id / counterparty_email: Who may accept.
        is_open: Let anyone accept (also the fallback for an unmatched email invite).
        arbiter_type: platform_only, person or organization.
        arbiter_id: User id (person) or org id (organization) of the arbiter.
        arbiter_email: Email of a person arbiter without a user id.
        metadata: Service-specific fields, validated against the service type.

    Returns:
        Escrow summary including the escrow_id you'll need for future calls.
    """

    async def op(session: AsyncSession) -> dict:
        arbiter_kind = ArbiterType(arbiter_type)
        arbiter = ArbiterDesignation(
            arbiter_type=arbiter_kind,
            user_id=_uuid(arbiter_id) if arbiter_kind == ArbiterType.PERSON else None,
            org_id=_uuid(arbiter_id) if arbiter_kind == ArbiterType.ORGANIZATION else None,
            email=arbiter_email or None,
        )
        counterparty = Counterparty(
            user_id=_uuid(counterparty_user_id),
            org_id=_uuid(counterparty_org_id),
            email=counterparty_email or None,
            is_open=is_open,
        )
        terms = EscrowTerms(
            title=title or None,
            description=description or None,
            expires_in_days=expires_in_days or None,
            metadata=metadata,
        )
        svc = EscrowService(session)
        escrow = await svc.create_escrow(
            creator_user_id=uuid.UUID(user_id),
            service_type_id=service_type_id,
            amount=amount,
            currency=currency or None,
            counterparty=counterparty,
            arbiter=arbiter,
            terms=terms,
        )
        escrow_id = escrow.id
        try:
            accepted = await svc.auto_accept(escrow_id)
        except EscrowExchangeError as exc:
            logger.warning(
                "mcp.create_escrow.auto_accept_failed", escrow_id=str(escrow_id), error=exc.message
            )
            accepted = None
        if accepted is not None:
            return _summary(accepted, "Escrow created and auto-accepted. Next step: fund it.")
        return _summary(
            await svc.get_escrow(escrow_id),
            "Escrow created. Next step: the counterparty accepts it.",
        )

    return await _run("create_escrow", op)


@mcp.tool()
async def accept_escrow(escrow_id: str, user_id: str) -> dict:
    """Accept an escrow as Party B.

    Args:
        escrow_id: UUID of the escrow.
        user_id: Your user id.
    """

    async def op(session: AsyncSession) -> dict:
        escrow = await EscrowService(session).accept_escrow(
            uuid.UUID(escrow_id), uuid.UUID(user_id)
        )
        return _summary(escrow, "Accepted. Next step: Party A funds the escrow.")

    return await _run("accept_escrow", op)


@mcp.tool()
async def fund_escrow(escrow_id: str, user_id: str) -> dict:
    """Lock amount + platform fee from Party A's available balance.

    Args:
        escrow_id: UUID of the escrow.
        user_id: The creator's user id.
    """

    async def op(session: AsyncSession) -> dict:
        escrow = await EscrowService(session).fund_escrow(uuid.UUID(escrow_id), uuid.UUID(user_id))
        return _summary(escrow, "Funded. Both parties confirm once delivery is done.")

    return await _run("fund_escrow", op)


@mcp.tool()
async def confirm_escrow(escrow_id: str, user_id: str) -> dict:
    """Confirm your side of a funded escrow. The second confirmation releases the funds."""

    async def op(session: AsyncSession) -> dict:
        escrow = await EscrowService(session).confirm_escrow(
            uuid.UUID(escrow_id), uuid.UUID(user_id)
        )
        return _summary(escrow)

    return await _run("confirm_escrow", op)


@mcp.tool()
async def cancel_escrow(escrow_id: str, user_id: str, reason: str = "") -> dict:
    """Cancel an escrow that has not been funded yet."""

    async def op(session: AsyncSession) -> dict:
        escrow = await EscrowService(session).cancel_escrow(
            uuid.UUID(escrow_id), uuid.UUID(user_id), reason or None
        )
        return _summary(escrow)

    return await _run("cancel_escrow", op)


@mcp.tool()
async def raise_dispute(escrow_id: str, user_id: str, reason: str) -> dict:
    """Raise a dispute on a funded escrow so the arbiter can resolve it.

    Args:
        escrow_id: UUID of the escrow.
        user_id: Your user id (must be a party).
        reason: Why the escrow is disputed.
    """

    async def op(session: AsyncSession) -> dict:
        escrow = await EscrowService(session).raise_dispute(
            uuid.UUID(escrow_id), uuid.UUID(user_id), reason
        )
        return _summary(escrow, "Dispute raised. The arbiter will cancel or force-complete.")

    return await _run("raise_dispute", op)


@mcp.tool()
async def admin_cancel_escrow(
    escrow_id: str, user_id: str, reason: str, refund_party_a: bool = True
) -> dict:
    """Arbiter: cancel an escrow, refunding Party A if funds are locked."""

    async def op(session: AsyncSession) -> dict:
        escrow = await EscrowService(session).admin_cancel_escrow(
            uuid.UUID(escrow_id), uuid.UUID(user_id), reason, refund_party_a=refund_party_a
        )
        return _summary(escrow)

    return await _run("admin_cancel_escrow", op)


@mcp.tool()
async def admin_force_complete(escrow_id: str, user_id: str, reason: str) -> dict:
    """Arbiter: release a funds-locked escrow to Party B."""

    async def op(session: AsyncSession) -> dict:
        escrow = await EscrowService(session).admin_force_complete(
            uuid.UUID(escrow_id), uuid.UUID(user_id), reason
        )
        return _summary(escrow)

    return await _run("admin_force_complete", op)


@mcp.tool()
async def link_attachment(
    escrow_id: str, attachment_id: str, purpose: str, user_id: str = ""
) -> dict:
    """Link an uploaded attachment to the obligation its purpose evidences.

    Args:
        purpose: evidence_a, deliverable_a, evidence_b or deliverable_b.
    """

    async def op(session: AsyncSession) -> dict:
        escrow = await EscrowService(session).link_attachment(
            uuid.UUID(escrow_id), attachment_id, purpose, _uuid(user_id)
        )
        return _summary(escrow)

    return await _run("link_attachment", op)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@mcp.tool()
async def check_status(escrow_id: str) -> dict:
    """Check the current status of an escrow and which events can fire next."""

    async def op(session: AsyncSession) -> dict:
        return await EscrowService(session).get_status(uuid.UUID(escrow_id))

    return await _run("check_status", op)


@mcp.tool()
async def get_escrow_events(escrow_id: str) -> dict:
    """Return the audit trail of an escrow, oldest first."""

    async def op(session: AsyncSession) -> dict:
        events = await EscrowService(session).get_events(uuid.UUID(escrow_id))
        return {
            "escrow_id": escrow_id,
            "events": [
                {
                    "sequence": e.sequence,
                    "event_type": e.event_type,
                    "old_status": e.old_status,
                    "new_status": e.new_status,
                    "actor_user_id": str(e.actor_user_id) if e.actor_user_id else None,
                    "details": e.details,
                    "created_at": e.created_at.isoformat(),
                }
                for e in events
            ],
        }

    return await _run("get_escrow_events", op)


@mcp.tool()
async def list_pending_escrows(user_id: str, service_type_id: str = "") -> dict:
    """List escrows awaiting acceptance that you are allowed to accept."""

    async def op(session: AsyncSession) -> dict:
        escrows = await EscrowService(session).list_pending_for_provider(
            uuid.UUID(user_id), service_type_id or None
        )
        return {"escrows": [_summary(e) for e in escrows]}

    return await _run("list_pending_escrows", op)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_escrow_messages(escrow_id: str, user_id: str) -> dict:
    """Return an escrow's message thread, oldest first."""

    async def op(session: AsyncSession) -> dict:
        messages = await EscrowService(session).get_messages(
            uuid.UUID(escrow_id), uuid.UUID(user_id)
        )
        return {
            "escrow_id": escrow_id,
            "messages": [
                {
                    "message_id": str(m.id),
                    "user_id": str(m.user_id) if m.user_id else None,
                    "message": m.message,
                    "is_system_message": m.is_system_message,
                    "created_at": m.created_at.isoformat(),
                }
                for m in messages
            ],
        }

    return await _run("get_escrow_messages", op)


@mcp.tool()
async def post_escrow_message(escrow_id: str, user_id: str, message: str) -> dict:
    """Post a message on an escrow.

    Parties may always post. While an offer still waits for a counterparty,
    anyone allowed to accept it may ask questions.
    """

    async def op(session: AsyncSession) -> dict:
        posted = await EscrowService(session).add_message(
            uuid.UUID(escrow_id), uuid.UUID(user_id), message
        )
        return {"escrow_id": escrow_id, "message_id": str(posted.id)}

    return await _run("post_escrow_message", op)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


def _setting(setting: ProviderSetting) -> dict:
    return {
        "service_type_id": setting.service_type_id,
        "auto_accept_enabled": setting.auto_accept_enabled,
        "min_amount": str(setting.min_amount) if setting.min_amount is not None else None,
        "max_amount": str(setting.max_amount) if setting.max_amount is not None else None,
        "capabilities": setting.capabilities,
    }


@mcp.tool()
async def list_service_types() -> dict:
    """List the service types escrows can be created from, with their fees."""

    async def op(session: AsyncSession) -> dict:
        service_types = await ProviderSettingsService(session).list_service_types()
        return {
            "service_types": [
                {
                    "id": t.id,
                    "name": t.name,
                    "platform_fee_percent": str(t.platform_fee_percent),
                    "party_a_delivers": t.party_a_delivers,
                    "party_b_delivers": t.party_b_delivers,
                }
                for t in service_types
            ]
        }

    return await _run("list_service_types", op)


@mcp.tool()
async def get_provider_settings(user_id: str) -> dict:
    """Your provider settings, one per service type."""

    async def op(session: AsyncSession) -> dict:
        settings = await ProviderSettingsService(session).list_settings(uuid.UUID(user_id))
        return {"settings": [_setting(s) for s in settings]}

    return await _run("get_provider_settings", op)


@mcp.tool()
async def set_provider_settings(
    user_id: str,
    service_type_id: str,
    auto_accept_enabled: bool = False,
    min_amount: str = "",
    max_amount: str = "",
) -> dict:
    """Create or replace your setting for one service type.

    Args:
        user_id: Your user id.
        service_type_id: The service type this setting covers.
        auto_accept_enabled: Accept new escrows of this type for you automatically.
        min_amount / max_amount: Inclusive amount range; leave empty for no bound.
    """

    async def op(session: AsyncSession) -> dict:
        setting = await ProviderSettingsService(session).set_setting(
            uuid.UUID(user_id),
            service_type_id,
            auto_accept_enabled=auto_accept_enabled,
            min_amount=min_amount or None,
            max_amount=max_amount or None,
        )
        return _setting(setting)

    return await _run("set_provider_settings", op)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_balances(user_id: str) -> dict:
    """Balances of your own accounts and those of your organizations."""

    async def op(session: AsyncSession) -> dict:
        accounts = await AccountService(session).list_accounts_for_user(uuid.UUID(user_id))
        return {
            "accounts": [
                {
                    "account_id": str(a.id),
                    "org_id": str(a.org_id) if a.org_id else None,
                    "currency": a.currency,
                    "available": str(a.available_balance),
                    "in_contract": str(a.in_contract_balance),
                }
                for a in accounts
            ]
        }

    return await _run("get_balances", op)


@mcp.tool()
async def deposit_funds(user_id: str, amount: str, currency: str = "", org_id: str = "") -> dict:
    """Credit your (or your organization's) available balance after an external payment."""

    async def op(session: AsyncSession) -> dict:
        svc = AccountService(session)
        caller = uuid.UUID(user_id)
        owner = AccountOwner.org(uuid.UUID(org_id)) if org_id else AccountOwner.user(caller)
        await svc.authorize_owner(owner, caller)
        account = await svc.deposit(owner, amount, currency or get_settings().default_currency)
        return {
            "account_id": str(account.id),
            "currency": account.currency,
            "available": str(account.available_balance),
        }

    return await _run("deposit_funds", op)


@mcp.tool()
async def expire_overdue_escrows() -> dict:
    """Expire every unfunded escrow whose expiry has passed."""

    async def op(session: AsyncSession) -> dict:
        expired = await EscrowService(session).expire_overdue()
        return {"expired": [str(e) for e in expired]}

    return await _run("expire_overdue_escrows", op)


if __name__ == "__main__":
    mcp.run(transport=get_settings().mcp_transport)
