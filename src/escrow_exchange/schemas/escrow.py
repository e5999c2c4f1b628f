"""Pydantic schemas for the Escrow API.

These schemas define the request/response shapes for the REST API and
MCP tools. They are separate from the ORM models to maintain clean
boundaries between the API and database layers.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from escrow_exchange.domain.enums import ArbiterType
from escrow_exchange.domain.obligations import Obligation
from escrow_exchange.domain.values import ArbiterDesignation, Counterparty, EscrowTerms

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CounterpartyIn(BaseModel):
    """Who may accept the escrow. Leave everything empty and set is_open for anyone."""

    user_id: uuid.UUID | None = None
    org_id: uuid.UUID | None = None
    email: str | None = Field(default=None, max_length=320)
    is_open: bool = False

    @model_validator(mode="after")
    def _require_target(self) -> CounterpartyIn:
        if not self.is_open and not (self.user_id or self.org_id or self.email):
            raise ValueError("Name a counterparty (user, org or email) or mark the escrow open")
        return self

    def to_domain(self) -> Counterparty:
        return Counterparty(
            user_id=self.user_id, org_id=self.org_id, email=self.email, is_open=self.is_open
        )


class ArbiterIn(BaseModel):
    arbiter_type: ArbiterType = ArbiterType.PLATFORM_ONLY
    org_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    email: str | None = Field(default=None, max_length=320)

    def to_domain(self) -> ArbiterDesignation:
        return ArbiterDesignation(
            arbiter_type=self.arbiter_type,
            org_id=self.org_id,
            user_id=self.user_id,
            email=self.email,
        )


class CreateEscrowRequest(BaseModel):
    """Request body for creating a new escrow."""

    service_type_id: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Service type id, e.g. TRAFFIC_BUY",
        examples=["DOCUMENT_DELIVERY"],
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Escrow amount in the currency's major unit; the platform fee is added on top",
        examples=["100.00"],
    )
    currency: str | None = Field(
        default=None,
        min_length=3,
        max_length=10,
        description="ISO-like currency code; defaults to the platform currency",
    )
    counterparty: CounterpartyIn = Field(default_factory=lambda: CounterpartyIn(is_open=True))
    arbiter: ArbiterIn = Field(default_factory=ArbiterIn)
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    expires_in_days: int | None = Field(default=None, ge=1, le=365)
    metadata: dict[str, Any] | None = Field(
        default=None,
        description="Service-specific payload, validated against the service type's schema",
    )
    idempotency_key: str | None = Field(
        default=None,
        max_length=200,
        description="Optional idempotency key to prevent duplicate escrow creation",
    )

    def terms(self) -> EscrowTerms:
        return EscrowTerms(
            title=self.title,
            description=self.description,
            expires_in_days=self.expires_in_days,
            metadata=self.metadata,
        )


class CancelEscrowRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class RaiseDisputeRequest(BaseModel):
    """Request body for raising a dispute against a funded escrow."""

    reason: str = Field(
        ...,
        min_length=3,
        max_length=2000,
        description="Why the escrow is disputed",
    )


class AdminCancelRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)
    refund_party_a: bool = Field(
        default=True,
        description="Return locked funds to Party A; required when funds are locked",
    )


class AdminCompleteRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class LinkAttachmentRequest(BaseModel):
    attachment_id: str = Field(..., min_length=1, max_length=200)
    purpose: str | None = Field(
        default=None,
        description="evidence_a / deliverable_a / evidence_b / deliverable_b; others are ignored",
    )


class PostMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ObligationResponse(BaseModel):
    id: str
    party: str
    description: str
    type: str
    status: str
    completed_at: datetime | None
    evidence_attachment_ids: list[str]

    @classmethod
    def from_obligation(cls, obligation: Obligation) -> ObligationResponse:
        return cls(
            id=obligation.id,
            party=obligation.party.value,
            description=obligation.description,
            type=obligation.type,
            status=obligation.status.value,
            completed_at=obligation.completed_at,
            evidence_attachment_ids=list(obligation.evidence_attachment_ids),
        )


class EscrowResponse(BaseModel):
    """Response schema for an escrow."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    service_type_id: str
    status: str
    amount: Decimal
    platform_fee: Decimal
    currency: str
    party_a_org_id: uuid.UUID
    created_by_user_id: uuid.UUID
    party_b_org_id: uuid.UUID | None
    party_b_user_id: uuid.UUID | None
    counterparty_email: str | None
    is_open: bool
    accepted_by_user_id: uuid.UUID | None
    title: str | None
    description: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    arbiter_type: str
    arbiter_org_id: uuid.UUID | None
    arbiter_user_id: uuid.UUID | None
    arbiter_email: str | None
    obligations: list[ObligationResponse] = Field(default_factory=list)
    cancellation_reason: str | None
    dispute_reason: str | None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None
    accepted_at: datetime | None
    funded_at: datetime | None
    party_b_confirmed_at: datetime | None
    party_a_confirmed_at: datetime | None
    disputed_at: datetime | None
    completed_at: datetime | None
    canceled_at: datetime | None
    expired_at: datetime | None

    @classmethod
    def from_escrow(cls, escrow: Any) -> EscrowResponse:
        response = cls.model_validate(escrow)
        response.obligations = [
            ObligationResponse.from_obligation(Obligation.model_validate(raw))
            for raw in (escrow.obligation_a, escrow.obligation_b)
        ]
        return response


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_id: uuid.UUID
    sequence: int
    event_type: str
    old_status: str | None
    new_status: str | None
    actor_user_id: uuid.UUID | None
    details: dict | None = None
    created_at: datetime


class EscrowMessageResponse(BaseModel):
    """A message on an escrow's thread; user_id is null for system messages."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_id: uuid.UUID
    user_id: uuid.UUID | None
    message: str
    is_system_message: bool
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class EscrowStatusResponse(BaseModel):
    """Lightweight status check response."""

    escrow_id: uuid.UUID
    status: str
    party_a_confirmed: bool
    party_b_confirmed: bool
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
