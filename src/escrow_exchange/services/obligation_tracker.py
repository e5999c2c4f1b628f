"""Obligation Tracker - keeps an escrow's two embedded obligations in step.

Only the lifecycle engine calls into this, and only while it holds the escrow
row lock. Each update replaces the whole obligation_a / obligation_b value so
the JSON column is always rewritten as a unit.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from escrow_exchange.domain.enums import ObligationStatus, Party
from escrow_exchange.domain.obligations import (
    DeliveryDescriptor,
    Obligation,
    build_obligations,
)
from escrow_exchange.infrastructure.database.orm_models import Escrow, ServiceType
from escrow_exchange.logging_config import get_logger

logger = get_logger(__name__)

_FIELDS = {Party.A: "obligation_a", Party.B: "obligation_b"}


class ObligationTracker:
    def initialize(
        self, escrow: Escrow, service_type: ServiceType, amount: Decimal, currency: str
    ) -> tuple[Obligation, Obligation]:
        """Derive both pending obligations from the service type and attach them."""
        obl_a, obl_b = build_obligations(
            DeliveryDescriptor.model_validate(service_type.party_a_delivers),
            DeliveryDescriptor.model_validate(service_type.party_b_delivers),
            amount,
            currency,
        )
        escrow.obligation_a = obl_a.to_json()
        escrow.obligation_b = obl_b.to_json()
        return obl_a, obl_b

    def get(self, escrow: Escrow, party: Party) -> Obligation:
        return Obligation.model_validate(getattr(escrow, _FIELDS[party]))

    def all(self, escrow: Escrow) -> list[Obligation]:
        return [self.get(escrow, Party.A), self.get(escrow, Party.B)]

    def update_status(
        self,
        escrow: Escrow,
        party: Party,
        status: ObligationStatus,
        at: datetime | None = None,
        evidence_attachment_ids: list[str] | None = None,
    ) -> Obligation:
        obligation = self.get(escrow, party).with_status(status, at)
        for attachment_id in evidence_attachment_ids or []:
            obligation = obligation.with_attachment(attachment_id)
        setattr(escrow, _FIELDS[party], obligation.to_json())
        logger.debug(
            "obligation.status_updated",
            escrow_id=str(escrow.id),
            obligation_id=obligation.id,
            status=status.value,
        )
        return obligation

    def link_attachment(self, escrow: Escrow, party: Party, attachment_id: str) -> bool:
        """Attach evidence to a party's obligation. Returns False if already linked."""
        current = self.get(escrow, party)
        updated = current.with_attachment(attachment_id)
        if updated is current:
            return False
        setattr(escrow, _FIELDS[party], updated.to_json())
        return True
