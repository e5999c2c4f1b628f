"""Escrow REST API routes.

These endpoints provide the HTTP interface for the escrow lifecycle. The MCP
tools in mcp_server/tools.py call the same service layer, ensuring consistency.
Every mutating call is wrapped in run_with_retry so a transient store failure
re-runs the whole operation under fresh locks.

Routes:
    POST   /api/v1/escrows                       - Create an escrow
    GET    /api/v1/escrows                       - Escrows the caller takes part in
    GET    /api/v1/escrows/pending               - Escrows the caller may accept
    GET    /api/v1/escrows/arbitrable            - Escrows the caller may force-resolve
    GET    /api/v1/escrows/{id}                  - Escrow details
    GET    /api/v1/escrows/{id}/status           - Lightweight status check
    GET    /api/v1/escrows/{id}/events           - Audit trail
    GET    /api/v1/escrows/{id}/messages         - Message thread
    POST   /api/v1/escrows/{id}/messages         - Post to the thread
    POST   /api/v1/escrows/{id}/accept           - Take the Party B side
    POST   /api/v1/escrows/{id}/fund             - Lock Party A's funds
    POST   /api/v1/escrows/{id}/confirm          - Confirm delivery
    POST   /api/v1/escrows/{id}/cancel           - Cancel before funding
    POST   /api/v1/escrows/{id}/dispute          - Raise a dispute
    POST   /api/v1/escrows/{id}/admin-cancel     - Arbiter cancel (refund)
    POST   /api/v1/escrows/{id}/admin-complete   - Arbiter force-complete
    POST   /api/v1/escrows/{id}/attachments      - Link evidence to an obligation
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from escrow_exchange.api.deps import get_current_user_id, get_escrow_service
from escrow_exchange.domain.enums import EscrowStatus
from escrow_exchange.domain.exceptions import DuplicateOperationError, EscrowExchangeError
from escrow_exchange.infrastructure.redis_client import (
    claim_idempotency,
    complete_idempotency,
    get_idempotency_result,
    redis_available,
    release_idempotency,
)
from escrow_exchange.logging_config import get_logger
from escrow_exchange.schemas.escrow import (
    AdminCancelRequest,
    AdminCompleteRequest,
    CancelEscrowRequest,
    CreateEscrowRequest,
    EscrowEventResponse,
    EscrowMessageResponse,
    EscrowResponse,
    EscrowStatusResponse,
    LinkAttachmentRequest,
    PostMessageRequest,
    RaiseDisputeRequest,
)
from escrow_exchange.services.escrow_service import EscrowService
from escrow_exchange.services.retry import run_with_retry

router = APIRouter(prefix="/api/v1/escrows", tags=["Escrow"])
logger = get_logger(__name__)

CREATE_SCOPE = "create_escrow"


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=EscrowResponse,
    status_code=201,
    summary="Create an escrow",
)
async def create_escrow(
    request: CreateEscrowRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Create an escrow in PENDING_ACCEPTANCE with the caller's org as Party A.

    A provider with a matching auto-accept setting takes the escrow straight
    away, in which case it comes back PENDING_FUNDING.

    With an idempotency_key and Redis available, a repeated request returns the
    escrow the first one created instead of creating another.
    """
    key = None
    if request.idempotency_key and redis_available():
        key = f"{user_id}:{request.idempotency_key}"
        if not await claim_idempotency(CREATE_SCOPE, key):
            existing = await get_idempotency_result(CREATE_SCOPE, key)
            if existing is None:
                raise DuplicateOperationError(request.idempotency_key)
            logger.info("idempotency.replayed", escrow_id=existing)
            return EscrowResponse.from_escrow(await svc.get_escrow(uuid.UUID(existing)))

    try:
        escrow = await run_with_retry(
            lambda: svc.create_escrow(
                creator_user_id=user_id,
                service_type_id=request.service_type_id,
                amount=request.amount,
                currency=request.currency,
                counterparty=request.counterparty.to_domain(),
                arbiter=request.arbiter.to_domain(),
                terms=request.terms(),
            )
        )
    except Exception:
        if key is not None:
            await release_idempotency(CREATE_SCOPE, key)
        raise

    escrow_id = escrow.id
    if key is not None:
        await complete_idempotency(CREATE_SCOPE, key, str(escrow_id))

    try:
        accepted = await run_with_retry(lambda: svc.auto_accept(escrow_id))
    except EscrowExchangeError as exc:
        logger.warning("escrow.auto_accept_failed", escrow_id=str(escrow_id), error=exc.message)
        accepted = None
    return EscrowResponse.from_escrow(accepted or await svc.get_escrow(escrow_id))


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


@router.get("", response_model=list[EscrowResponse], summary="List my escrows")
async def list_my_escrows(
    status: EscrowStatus | None = Query(default=None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowResponse]:
    escrows = await svc.list_escrows_for_user(user_id, status)
    return [EscrowResponse.from_escrow(e) for e in escrows]


@router.get("/pending", response_model=list[EscrowResponse], summary="Escrows I can accept")
async def list_pending(
    service_type_id: str | None = Query(default=None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowResponse]:
    escrows = await svc.list_pending_for_provider(user_id, service_type_id)
    return [EscrowResponse.from_escrow(e) for e in escrows]


@router.get(
    "/arbitrable", response_model=list[EscrowResponse], summary="Escrows I can force-resolve"
)
async def list_arbitrable(
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowResponse]:
    escrows = await svc.list_escrows_as_arbiter(user_id)
    return [EscrowResponse.from_escrow(e) for e in escrows]


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get("/{escrow_id}", response_model=EscrowResponse, summary="Get escrow details")
async def get_escrow(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Fetch an escrow by its UUID."""
    return EscrowResponse.from_escrow(await svc.get_escrow(escrow_id))


@router.get(
    "/{escrow_id}/status",
    response_model=EscrowStatusResponse,
    summary="Get lightweight status check",
)
async def get_status(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowStatusResponse:
    """Return the current status and the state machine events allowed from it."""
    return EscrowStatusResponse(**await svc.get_status(escrow_id))


@router.get(
    "/{escrow_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get audit trail",
)
async def get_events(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowEventResponse]:
    """Return the full audit trail for an escrow, oldest first."""
    events = await svc.get_events(escrow_id)
    return [EscrowEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Party actions
# ---------------------------------------------------------------------------


@router.post("/{escrow_id}/accept", response_model=EscrowResponse, summary="Accept an escrow")
async def accept_escrow(
    escrow_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Take the Party B side. Transitions PENDING_ACCEPTANCE -> PENDING_FUNDING."""
    escrow = await run_with_retry(lambda: svc.accept_escrow(escrow_id, user_id))
    return EscrowResponse.from_escrow(escrow)


@router.post("/{escrow_id}/fund", response_model=EscrowResponse, summary="Fund an escrow")
async def fund_escrow(
    escrow_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Lock amount + fee from Party A. Transitions PENDING_FUNDING -> FUNDED."""
    escrow = await run_with_retry(lambda: svc.fund_escrow(escrow_id, user_id))
    return EscrowResponse.from_escrow(escrow)


@router.post("/{escrow_id}/confirm", response_model=EscrowResponse, summary="Confirm delivery")
async def confirm_escrow(
    escrow_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Record the caller's confirmation; the second one completes and releases."""
    escrow = await run_with_retry(lambda: svc.confirm_escrow(escrow_id, user_id))
    return EscrowResponse.from_escrow(escrow)


@router.post("/{escrow_id}/cancel", response_model=EscrowResponse, summary="Cancel an escrow")
async def cancel_escrow(
    escrow_id: uuid.UUID,
    request: CancelEscrowRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Cancel before funding. Funded escrows go through dispute and the arbiter."""
    escrow = await run_with_retry(
        lambda: svc.cancel_escrow(escrow_id, user_id, request.reason)
    )
    return EscrowResponse.from_escrow(escrow)


@router.post("/{escrow_id}/dispute", response_model=EscrowResponse, summary="Raise a dispute")
async def raise_dispute(
    escrow_id: uuid.UUID,
    request: RaiseDisputeRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Raise a dispute on a funded escrow."""
    escrow = await run_with_retry(
        lambda: svc.raise_dispute(escrow_id, user_id, request.reason)
    )
    return EscrowResponse.from_escrow(escrow)


@router.post(
    "/{escrow_id}/attachments",
    response_model=EscrowResponse,
    summary="Link evidence to an obligation",
)
async def link_attachment(
    escrow_id: uuid.UUID,
    request: LinkAttachmentRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow = await run_with_retry(
        lambda: svc.link_attachment(escrow_id, request.attachment_id, request.purpose, user_id)
    )
    return EscrowResponse.from_escrow(escrow)


# ---------------------------------------------------------------------------
# Arbiter actions
# ---------------------------------------------------------------------------


@router.post(
    "/{escrow_id}/admin-cancel",
    response_model=EscrowResponse,
    summary="Arbiter cancel",
)
async def admin_cancel(
    escrow_id: uuid.UUID,
    request: AdminCancelRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Cancel any non-terminal escrow; locked funds go back to Party A."""
    escrow = await run_with_retry(
        lambda: svc.admin_cancel_escrow(
            escrow_id, user_id, request.reason, refund_party_a=request.refund_party_a
        )
    )
    return EscrowResponse.from_escrow(escrow)


@router.post(
    "/{escrow_id}/admin-complete",
    response_model=EscrowResponse,
    summary="Arbiter force-complete",
)
async def admin_complete(
    escrow_id: uuid.UUID,
    request: AdminCompleteRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    """Release a funds-locked escrow to Party B."""
    escrow = await run_with_retry(
        lambda: svc.admin_force_complete(escrow_id, user_id, request.reason)
    )
    return EscrowResponse.from_escrow(escrow)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get(
    "/{escrow_id}/messages",
    response_model=list[EscrowMessageResponse],
    summary="Get the message thread",
)
async def get_messages(
    escrow_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowMessageResponse]:
    messages = await svc.get_messages(escrow_id, user_id)
    return [EscrowMessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{escrow_id}/messages",
    response_model=EscrowMessageResponse,
    status_code=201,
    summary="Post a message",
)
async def add_message(
    escrow_id: uuid.UUID,
    request: PostMessageRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowMessageResponse:
    """Parties may always post; open offers also take questions from prospective acceptors."""
    message = await run_with_retry(
        lambda: svc.add_message(escrow_id, user_id, request.message, request.metadata)
    )
    return EscrowMessageResponse.model_validate(message)
