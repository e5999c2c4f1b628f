"""Typed service-specific escrow metadata.

Each service type carries its own metadata shape. The variant is selected by
the escrow's service_type_id and validated before any lock is taken; the typed
variants reject unknown keys while CUSTOM accepts any JSON object.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from escrow_exchange.domain.exceptions import InvalidMetadataError


class _TypedMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)


class TrafficBuyMetadata(_TypedMetadata):
    """Bandwidth purchase for a validator node."""

    validator_party_id: str = Field(..., alias="validatorPartyId", min_length=1)
    traffic_amount_bytes: int = Field(..., alias="trafficAmountBytes", gt=0)
    domain_id: str = Field(..., alias="domainId", min_length=1)


class ApiKeyExchangeMetadata(_TypedMetadata):
    api_name: str = Field(..., alias="apiName", min_length=1)
    duration_days: int | None = Field(default=None, alias="durationDays", gt=0)


class DocumentDeliveryMetadata(_TypedMetadata):
    document_description: str | None = Field(
        default=None, alias="documentDescription", max_length=2000
    )


class CustomMetadata(BaseModel):
    """Free-form metadata for user-defined escrows."""

    model_config = ConfigDict(extra="allow", frozen=True)


ServiceMetadata = (
    TrafficBuyMetadata | ApiKeyExchangeMetadata | DocumentDeliveryMetadata | CustomMetadata
)

METADATA_VARIANTS: dict[str, type[BaseModel]] = {
    "TRAFFIC_BUY": TrafficBuyMetadata,
    "API_KEY_EXCHANGE": ApiKeyExchangeMetadata,
    "DOCUMENT_DELIVERY": DocumentDeliveryMetadata,
    "CUSTOM": CustomMetadata,
}


def parse_service_metadata(
    service_type_id: str, raw: dict[str, Any] | None
) -> ServiceMetadata:
    """Validate raw metadata against the variant for the given service type.

    Service types without a registered variant fall back to CustomMetadata.

    Raises:
        InvalidMetadataError: if the payload does not fit the variant.
    """
    variant = METADATA_VARIANTS.get(service_type_id, CustomMetadata)
    if raw is not None and not isinstance(raw, dict):
        raise InvalidMetadataError(service_type_id, ["metadata must be a JSON object"])
    try:
        return variant.model_validate(raw or {})
    except PydanticValidationError as exc:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        raise InvalidMetadataError(service_type_id, errors) from exc


def dump_service_metadata(metadata: BaseModel) -> dict[str, Any]:
    """Serialize metadata for storage using its wire (camelCase) field names."""
    return metadata.model_dump(mode="json", by_alias=True, exclude_none=True)
