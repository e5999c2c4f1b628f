"""Arbiter resolution policy.

Gates AdminCancel and AdminForceComplete only; it never gates the
two-party flow.
"""

from __future__ import annotations

from escrow_exchange.domain.enums import ArbiterType, OrgRole
from escrow_exchange.domain.values import Actor, ArbiterDesignation


def is_authorized(actor: Actor, arbiter: ArbiterDesignation) -> bool:
    """Return True if the actor may force-resolve an escrow with this arbiter.

    Platform admins always may. Otherwise dispatch on the designated arbiter type:
        platform_only -> nobody else
        person        -> matching user id, or matching verified email
        organization  -> an admin of the arbiter organization
        platform_ai   -> reserved, nobody
    """
    if actor.is_platform_admin:
        return True

    if arbiter.arbiter_type == ArbiterType.PERSON:
        if arbiter.user_id is not None and arbiter.user_id == actor.user_id:
            return True
        return (
            arbiter.email is not None
            and actor.verified_email is not None
            and actor.verified_email == arbiter.email
        )

    if arbiter.arbiter_type == ArbiterType.ORGANIZATION:
        if arbiter.org_id is None:
            return False
        return actor.org_role(arbiter.org_id) == OrgRole.ADMIN

    # platform_only and platform_ai
    return False
