"""Tests for obligation values."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from escrow_exchange.domain.enums import ObligationStatus, Party
from escrow_exchange.domain.obligations import (
    DeliveryDescriptor,
    Obligation,
    build_obligations,
    party_for_purpose,
)


@pytest.fixture
def obligations() -> tuple[Obligation, Obligation]:
    return build_obligations(
        DeliveryDescriptor(type="FIAT_USD", label="Payment"),
        DeliveryDescriptor(type="NETWORK_TRAFFIC", label="Traffic (bytes)"),
        Decimal("100"),
        "USD",
    )


class TestBuildObligations:
    def test_two_pending_obligations(self, obligations: tuple[Obligation, Obligation]) -> None:
        obl_a, obl_b = obligations
        assert (obl_a.id, obl_a.party) == ("obl_a", Party.A)
        assert (obl_b.id, obl_b.party) == ("obl_b", Party.B)
        assert obl_a.status == obl_b.status == ObligationStatus.PENDING
        assert obl_a.description == "Payment: USD 100.00"
        assert obl_b.type == "NETWORK_TRAFFIC"


class TestObligationUpdates:
    def test_with_status_is_a_copy(self, obligations: tuple[Obligation, Obligation]) -> None:
        obl_a, _ = obligations
        at = datetime(2026, 1, 1, tzinfo=UTC)
        done = obl_a.with_status(ObligationStatus.COMPLETED, at)
        assert done.completed_at == at
        assert obl_a.status == ObligationStatus.PENDING

    def test_disputed_keeps_completed_at(self, obligations: tuple[Obligation, Obligation]) -> None:
        _, obl_b = obligations
        assert obl_b.with_status(ObligationStatus.DISPUTED).completed_at is None

    def test_attachment_is_linked_once(self, obligations: tuple[Obligation, Obligation]) -> None:
        _, obl_b = obligations
        linked = obl_b.with_attachment("att-1")
        assert linked.evidence_attachment_ids == ("att-1",)
        assert linked.with_attachment("att-1") is linked

    def test_json_uses_wire_names(self, obligations: tuple[Obligation, Obligation]) -> None:
        obl_a, _ = obligations
        data = obl_a.with_attachment("att-9").to_json()
        assert data["evidenceAttachmentIds"] == ["att-9"]
        assert "completedAt" in data
        assert Obligation.model_validate(data) == obl_a.with_attachment("att-9")


class TestPurposeMapping:
    @pytest.mark.parametrize(
        ("purpose", "party"),
        [
            ("evidence_a", Party.A),
            ("deliverable_a", Party.A),
            ("Evidence_B", Party.B),
            ("deliverable_b", Party.B),
            ("avatar", None),
            (None, None),
        ],
    )
    def test_party_for_purpose(self, purpose: str | None, party: Party | None) -> None:
        assert party_for_purpose(purpose) == party
