"""Reference data every deployment needs: service types and the platform org."""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from escrow_exchange.infrastructure.database.orm_models import Organization, ServiceType
from escrow_exchange.logging_config import get_logger

logger = get_logger(__name__)

SERVICE_TYPES: list[dict] = [
    {
        "id": "TRAFFIC_BUY",
        "name": "Traffic Purchase",
        "description": "Buy network traffic for a validator that has run out of bandwidth",
        "party_a_delivers": {"type": "FIAT_USD", "label": "Payment"},
        "party_b_delivers": {"type": "NETWORK_TRAFFIC", "label": "Traffic (bytes)"},
        "platform_fee_percent": Decimal("15.00"),
    },
    {
        "id": "API_KEY_EXCHANGE",
        "name": "API Key Exchange",
        "description": "Exchange payment for API key access",
        "party_a_delivers": {"type": "FIAT_USD", "label": "Payment"},
        "party_b_delivers": {"type": "API_KEY", "label": "API Key"},
        "platform_fee_percent": Decimal("10.00"),
    },
    {
        "id": "DOCUMENT_DELIVERY",
        "name": "Document Delivery",
        "description": "Pay for secure document delivery",
        "party_a_delivers": {"type": "FIAT_USD", "label": "Payment"},
        "party_b_delivers": {"type": "DOCUMENT", "label": "Document"},
        "platform_fee_percent": Decimal("10.00"),
    },
    {
        "id": "CUSTOM",
        "name": "Custom Escrow",
        "description": "User-defined escrow terms",
        "party_a_delivers": {"type": "ANY", "label": "Item A"},
        "party_b_delivers": {"type": "ANY", "label": "Item B"},
    },
]


async def seed_reference_data(
    session: AsyncSession,
    platform_org_id: uuid.UUID,
    default_fee_percent: Decimal = Decimal("15.00"),
) -> None:
    """Insert missing service types and the platform organization. Idempotent.

    Service types without their own fee get default_fee_percent.
    """
    created: list[str] = []

    if await session.get(Organization, platform_org_id) is None:
        session.add(Organization(id=platform_org_id, name="Platform"))
        created.append("platform_org")

    for row in SERVICE_TYPES:
        if await session.get(ServiceType, row["id"]) is None:
            session.add(
                ServiceType(is_active=True, **{"platform_fee_percent": default_fee_percent, **row})
            )
            created.append(row["id"])

    await session.commit()
    if created:
        logger.info("database.seeded", created=created)
