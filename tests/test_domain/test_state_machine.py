"""Tests for the EscrowStateMachine domain guard.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. The convenience function validate_transition works.
    4. Terminal states accept no further events.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from escrow_exchange.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)


class TestHappyPath:
    """Test the full happy-path lifecycle: CREATED -> COMPLETED."""

    def test_party_b_confirms_first(self) -> None:
        sm = EscrowStateMachine("CREATED")
        assert sm.status == "CREATED"

        sm.publish()
        assert sm.status == "PENDING_ACCEPTANCE"

        sm.accept()
        assert sm.status == "PENDING_FUNDING"

        sm.fund()
        assert sm.status == "FUNDED"

        sm.confirm_b()
        assert sm.status == "PARTY_B_CONFIRMED"

        sm.confirm_a()
        assert sm.status == "COMPLETED"

    def test_party_a_confirms_first(self) -> None:
        sm = EscrowStateMachine("FUNDED")
        sm.confirm_a()
        assert sm.status == "PARTY_A_CONFIRMED"

        sm.confirm_b()
        assert sm.status == "COMPLETED"

    def test_accept_directly_from_created(self) -> None:
        sm = EscrowStateMachine("CREATED")
        sm.accept()
        assert sm.status == "PENDING_FUNDING"


class TestDisputePath:
    @pytest.mark.parametrize("status", ["FUNDED", "PARTY_A_CONFIRMED", "PARTY_B_CONFIRMED"])
    def test_dispute_from_funds_locked(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        sm.raise_dispute()
        assert sm.status == "DISPUTED"

    def test_disputed_can_only_be_resolved_by_arbiter(self) -> None:
        sm = EscrowStateMachine("DISPUTED")
        assert set(sm.get_allowed_events()) == {"admin_cancel", "admin_complete"}

    def test_dispute_resolved_for_party_b(self) -> None:
        sm = EscrowStateMachine("DISPUTED")
        sm.admin_complete()
        assert sm.status == "COMPLETED"

    def test_dispute_resolved_for_party_a(self) -> None:
        sm = EscrowStateMachine("DISPUTED")
        sm.admin_cancel()
        assert sm.status == "CANCELED"

    def test_cannot_dispute_before_funding(self) -> None:
        sm = EscrowStateMachine("PENDING_FUNDING")
        with pytest.raises(TransitionNotAllowed):
            sm.raise_dispute()


class TestExitPaths:
    @pytest.mark.parametrize("status", ["CREATED", "PENDING_ACCEPTANCE", "PENDING_FUNDING"])
    def test_cancel_before_funding(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        sm.cancel()
        assert sm.status == "CANCELED"

    @pytest.mark.parametrize("status", ["CREATED", "PENDING_ACCEPTANCE", "PENDING_FUNDING"])
    def test_expire_before_funding(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        sm.expire()
        assert sm.status == "EXPIRED"

    @pytest.mark.parametrize(
        "status", ["FUNDED", "PARTY_A_CONFIRMED", "PARTY_B_CONFIRMED", "DISPUTED"]
    )
    def test_no_party_cancel_or_expiry_once_funded(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        with pytest.raises(TransitionNotAllowed):
            sm.cancel()
        with pytest.raises(TransitionNotAllowed):
            sm.expire()

    def test_admin_cancel_from_any_non_terminal(self) -> None:
        for status in (
            "CREATED",
            "PENDING_ACCEPTANCE",
            "PENDING_FUNDING",
            "FUNDED",
            "PARTY_A_CONFIRMED",
            "PARTY_B_CONFIRMED",
            "DISPUTED",
        ):
            assert validate_transition(status, "admin_cancel") == "CANCELED"


class TestIllegalTransitions:
    """Verify that illegal transitions raise TransitionNotAllowed."""

    def test_pending_funding_to_completed(self) -> None:
        sm = EscrowStateMachine("PENDING_FUNDING")
        with pytest.raises(TransitionNotAllowed):
            sm.admin_complete()

    def test_fund_twice(self) -> None:
        sm = EscrowStateMachine("FUNDED")
        with pytest.raises(TransitionNotAllowed):
            sm.fund()

    def test_accept_twice(self) -> None:
        sm = EscrowStateMachine("PENDING_FUNDING")
        with pytest.raises(TransitionNotAllowed):
            sm.accept()

    def test_same_party_cannot_confirm_twice(self) -> None:
        sm = EscrowStateMachine("PARTY_B_CONFIRMED")
        with pytest.raises(TransitionNotAllowed):
            sm.confirm_b()

    @pytest.mark.parametrize("status", ["COMPLETED", "CANCELED", "EXPIRED"])
    def test_terminal_states_are_final(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        assert sm.get_allowed_events() == []


class TestAllowedEvents:
    """Test the get_allowed_events helper."""

    def test_created_allowed(self) -> None:
        sm = EscrowStateMachine("CREATED")
        assert set(sm.get_allowed_events()) == {
            "publish",
            "accept",
            "cancel",
            "expire",
            "admin_cancel",
        }

    def test_funded_allowed(self) -> None:
        sm = EscrowStateMachine("FUNDED")
        assert set(sm.get_allowed_events()) == {
            "confirm_a",
            "confirm_b",
            "raise_dispute",
            "admin_cancel",
            "admin_complete",
        }


class TestValidateTransitionFunction:
    """Test the convenience function."""

    def test_valid_transition(self) -> None:
        assert validate_transition("PENDING_FUNDING", "fund") == "FUNDED"

    def test_invalid_event_name(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("FUNDED", "nonexistent_event")

    def test_illegal_transition(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("COMPLETED", "admin_cancel")

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            EscrowStateMachine("INVALID_STATUS")
