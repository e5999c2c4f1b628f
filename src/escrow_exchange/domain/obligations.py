"""Per-escrow delivery obligations.

Every escrow owns exactly two obligations, obl_a (Party A's delivery, normally
the payment) and obl_b (Party B's delivery), derived at creation from the
service type's delivery descriptors. They are immutable values; a change
produces a new Obligation that the tracker writes back to its escrow field.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from escrow_exchange.domain.enums import ObligationStatus, Party
from escrow_exchange.domain.money import format_amount

OBLIGATION_IDS = {Party.A: "obl_a", Party.B: "obl_b"}

# Attachment purpose tag -> party whose obligation it evidences
PURPOSE_PARTY: dict[str, Party] = {
    "evidence_a": Party.A,
    "deliverable_a": Party.A,
    "evidence_b": Party.B,
    "deliverable_b": Party.B,
}


class DeliveryDescriptor(BaseModel):
    """What one side of a service type delivers, e.g. {"type": "FIAT_USD", "label": "Payment"}."""

    model_config = ConfigDict(frozen=True)

    type: str
    label: str


class Obligation(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    party: Party
    description: str
    type: str
    status: ObligationStatus = ObligationStatus.PENDING
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    evidence_attachment_ids: tuple[str, ...] = Field(
        default=(), alias="evidenceAttachmentIds"
    )

    def with_status(self, status: ObligationStatus, at: datetime | None = None) -> Obligation:
        completed_at = at if status == ObligationStatus.COMPLETED else self.completed_at
        return self.model_copy(update={"status": status, "completed_at": completed_at})

    def with_attachment(self, attachment_id: str) -> Obligation:
        if attachment_id in self.evidence_attachment_ids:
            return self
        return self.model_copy(
            update={"evidence_attachment_ids": (*self.evidence_attachment_ids, attachment_id)}
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def build_obligations(
    party_a_delivers: DeliveryDescriptor,
    party_b_delivers: DeliveryDescriptor,
    amount: Decimal,
    currency: str,
) -> tuple[Obligation, Obligation]:
    """Derive the two pending obligations for a new escrow."""
    obl_a = Obligation(
        id=OBLIGATION_IDS[Party.A],
        party=Party.A,
        description=f"{party_a_delivers.label}: {currency} {format_amount(amount, currency)}",
        type=party_a_delivers.type,
    )
    obl_b = Obligation(
        id=OBLIGATION_IDS[Party.B],
        party=Party.B,
        description=party_b_delivers.label,
        type=party_b_delivers.type,
    )
    return obl_a, obl_b


def party_for_purpose(purpose: str | None) -> Party | None:
    """Map an attachment purpose tag to the party it evidences, if any."""
    if purpose is None:
        return None
    return PURPOSE_PARTY.get(purpose.strip().lower())
