"""Escrow Lifecycle State Machine Guard.

Uses python-statemachine to enforce legal status transitions at the domain level.
No matter what the API or a tool call does, an illegal transition
(e.g., PENDING_FUNDING -> COMPLETED) raises TransitionNotAllowed.

The state machine is instantiated per-escrow from the locked row's status and
validates transitions before the ORM model's status field is updated.

Transition table:
    CREATED             -> PENDING_ACCEPTANCE (publish)
    CREATED             -> PENDING_FUNDING    (accept)
    PENDING_ACCEPTANCE  -> PENDING_FUNDING    (accept)
    PENDING_FUNDING     -> FUNDED             (fund)
    FUNDED              -> PARTY_B_CONFIRMED  (confirm_b)
    PARTY_A_CONFIRMED   -> COMPLETED          (confirm_b)
    FUNDED              -> PARTY_A_CONFIRMED  (confirm_a)
    PARTY_B_CONFIRMED   -> COMPLETED          (confirm_a)
    <pre-funding>       -> CANCELED           (cancel)
    <pre-funding>       -> EXPIRED            (expire)
    <any non-terminal>  -> CANCELED           (admin_cancel)
    <funds locked>      -> COMPLETED          (admin_complete)
    FUNDED | PARTY_A_CONFIRMED | PARTY_B_CONFIRMED -> DISPUTED (raise_dispute)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class EscrowStateMachine(StateMachine):
    """State machine that guards the escrow lifecycle.

    Usage:
        sm = EscrowStateMachine(current_status="FUNDED")
        sm.confirm_b()  # transitions to PARTY_B_CONFIRMED
        sm.status       # "PARTY_B_CONFIRMED"
    """

    # --- States ---
    CREATED = State("CREATED", initial=True)
    PENDING_ACCEPTANCE = State("PENDING_ACCEPTANCE")
    PENDING_FUNDING = State("PENDING_FUNDING")
    FUNDED = State("FUNDED")
    PARTY_B_CONFIRMED = State("PARTY_B_CONFIRMED")
    PARTY_A_CONFIRMED = State("PARTY_A_CONFIRMED")
    DISPUTED = State("DISPUTED")
    COMPLETED = State("COMPLETED", final=True)
    CANCELED = State("CANCELED", final=True)
    EXPIRED = State("EXPIRED", final=True)

    # --- Events / Transitions ---

    # Publication and acceptance
    publish = CREATED.to(PENDING_ACCEPTANCE)
    accept = CREATED.to(PENDING_FUNDING) | PENDING_ACCEPTANCE.to(PENDING_FUNDING)

    # Funding
    fund = PENDING_FUNDING.to(FUNDED)

    # Two-party confirmation; the second confirmation completes
    confirm_b = FUNDED.to(PARTY_B_CONFIRMED) | PARTY_A_CONFIRMED.to(COMPLETED)
    confirm_a = FUNDED.to(PARTY_A_CONFIRMED) | PARTY_B_CONFIRMED.to(COMPLETED)

    # Party-initiated exits
    cancel = (
        CREATED.to(CANCELED)
        | PENDING_ACCEPTANCE.to(CANCELED)
        | PENDING_FUNDING.to(CANCELED)
    )
    raise_dispute = (
        FUNDED.to(DISPUTED)
        | PARTY_B_CONFIRMED.to(DISPUTED)
        | PARTY_A_CONFIRMED.to(DISPUTED)
    )

    # Expiry sweep
    expire = (
        CREATED.to(EXPIRED)
        | PENDING_ACCEPTANCE.to(EXPIRED)
        | PENDING_FUNDING.to(EXPIRED)
    )

    # Arbiter overrides
    admin_cancel = (
        CREATED.to(CANCELED)
        | PENDING_ACCEPTANCE.to(CANCELED)
        | PENDING_FUNDING.to(CANCELED)
        | FUNDED.to(CANCELED)
        | PARTY_B_CONFIRMED.to(CANCELED)
        | PARTY_A_CONFIRMED.to(CANCELED)
        | DISPUTED.to(CANCELED)
    )
    admin_complete = (
        FUNDED.to(COMPLETED)
        | PARTY_B_CONFIRMED.to(COMPLETED)
        | PARTY_A_CONFIRMED.to(COMPLETED)
        | DISPUTED.to(COMPLETED)
    )

    def __init__(self, current_status: str = "CREATED") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowStatus value (e.g., "FUNDED").
                           Must match one of the State value strings exactly.
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        # start_value expects the string value, not the State object
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowStatus enum)."""
        return str(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns the
    resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method) or event_name.startswith("_"):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
