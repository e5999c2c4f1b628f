"""Acceptance policy: who may take the Party B side of an escrow.

The policy is evaluated once, against the locked escrow row, with a fixed
precedence. The first targeting field that is set decides:

    1. assigned user    -> only that user
    2. assigned org     -> any member of that org
    3. invited email    -> a user whose verified email matches, or anyone if open
    4. nothing targeted -> anyone if open, otherwise nobody

Independently of the route, a member of Party A's organization can never accept.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from escrow_exchange.domain.enums import AcceptanceRoute
from escrow_exchange.domain.values import Actor, Counterparty


@dataclass(frozen=True)
class AcceptanceDecision:
    allowed: bool
    route: AcceptanceRoute | None = None
    reason: str = ""
    self_escrow: bool = False


@dataclass(frozen=True)
class AcceptancePolicy:
    party_a_org_id: uuid.UUID
    counterparty: Counterparty

    def evaluate(self, actor: Actor) -> AcceptanceDecision:
        if actor.belongs_to(self.party_a_org_id):
            return AcceptanceDecision(
                allowed=False,
                reason="cannot accept an escrow from your own organization",
                self_escrow=True,
            )

        target = self.counterparty
        if target.user_id is not None:
            if target.user_id == actor.user_id:
                return AcceptanceDecision(True, AcceptanceRoute.ASSIGNED_USER)
            return AcceptanceDecision(False, reason="escrow is assigned to a specific user")

        if target.org_id is not None:
            if target.org_id in actor.memberships:
                return AcceptanceDecision(True, AcceptanceRoute.ASSIGNED_ORG)
            return AcceptanceDecision(
                False, reason="escrow is assigned to a specific organization"
            )

        if target.email is not None:
            if actor.verified_email is not None and actor.verified_email == target.email:
                return AcceptanceDecision(True, AcceptanceRoute.INVITED_EMAIL)
            if target.is_open:
                return AcceptanceDecision(True, AcceptanceRoute.OPEN)
            return AcceptanceDecision(False, reason="escrow was offered to another email")

        if target.is_open:
            return AcceptanceDecision(True, AcceptanceRoute.OPEN)
        return AcceptanceDecision(False, reason="escrow is not open for acceptance")

    def admits(self, actor: Actor) -> bool:
        return self.evaluate(actor).allowed
