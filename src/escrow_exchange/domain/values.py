"""Value objects passed between the directory, the policies and the services.

The domain layer has ZERO imports from SQLAlchemy or FastAPI; the services
build these from ORM rows.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from escrow_exchange.domain.enums import ArbiterType, OrgRole, UserRole


def _normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


@dataclass(frozen=True)
class Actor:
    """The resolved identity acting on an escrow.

    Attributes:
        user_id: Directory user id.
        email: Email on file, if any.
        email_verified: Only a verified email may be used for invite or arbiter matching.
        role: Platform-level role.
        primary_org_id: Organization the user acts for when creating escrows.
        memberships: org_id -> role for every organization the user belongs to.
    """

    user_id: uuid.UUID
    email: str | None = None
    email_verified: bool = False
    role: UserRole = UserRole.USER
    primary_org_id: uuid.UUID | None = None
    memberships: dict[uuid.UUID, OrgRole] = field(default_factory=dict)

    @property
    def is_platform_admin(self) -> bool:
        return self.role == UserRole.PLATFORM_ADMIN

    @property
    def verified_email(self) -> str | None:
        """Lower-cased email, or None when it has not been verified."""
        return _normalize_email(self.email) if self.email_verified else None

    def belongs_to(self, org_id: uuid.UUID | None) -> bool:
        if org_id is None:
            return False
        return org_id in self.memberships or org_id == self.primary_org_id

    def org_role(self, org_id: uuid.UUID) -> OrgRole | None:
        return self.memberships.get(org_id)


@dataclass(frozen=True)
class Counterparty:
    """Who may accept an escrow. All empty plus is_open=True means anyone."""

    user_id: uuid.UUID | None = None
    org_id: uuid.UUID | None = None
    email: str | None = None
    is_open: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "email", _normalize_email(self.email))


@dataclass(frozen=True)
class ArbiterDesignation:
    """Who besides a platform admin may force-resolve a funds-locked escrow."""

    arbiter_type: ArbiterType = ArbiterType.PLATFORM_ONLY
    org_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "email", _normalize_email(self.email))


@dataclass(frozen=True)
class EscrowTerms:
    """Optional creation terms beyond amount and service type."""

    title: str | None = None
    description: str | None = None
    expires_in_days: int | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class AccountOwner:
    """Exactly one of a user or an organization."""

    user_id: uuid.UUID | None = None
    org_id: uuid.UUID | None = None

    def __post_init__(self) -> None:
        if (self.user_id is None) == (self.org_id is None):
            raise ValueError("An account owner is exactly one of a user or an organization")

    @classmethod
    def user(cls, user_id: uuid.UUID) -> AccountOwner:
        return cls(user_id=user_id)

    @classmethod
    def org(cls, org_id: uuid.UUID) -> AccountOwner:
        return cls(org_id=org_id)

    def __str__(self) -> str:
        return f"user:{self.user_id}" if self.user_id else f"org:{self.org_id}"


@dataclass(frozen=True)
class BalanceSnapshot:
    account_id: uuid.UUID
    currency: str
    available: Decimal
    in_contract: Decimal
    as_of: datetime | None = None

    @property
    def total(self) -> Decimal:
        return self.available + self.in_contract
