"""Tests for typed service metadata."""

from __future__ import annotations

import pytest

from escrow_exchange.domain.exceptions import InvalidMetadataError
from escrow_exchange.domain.service_metadata import (
    ApiKeyExchangeMetadata,
    CustomMetadata,
    TrafficBuyMetadata,
    dump_service_metadata,
    parse_service_metadata,
)

TRAFFIC = {
    "validatorPartyId": "validator::1220",
    "trafficAmountBytes": 1024,
    "domainId": "global",
}


class TestTypedVariants:
    def test_traffic_buy(self) -> None:
        meta = parse_service_metadata("TRAFFIC_BUY", TRAFFIC)
        assert isinstance(meta, TrafficBuyMetadata)
        assert meta.traffic_amount_bytes == 1024
        assert dump_service_metadata(meta) == TRAFFIC

    def test_traffic_buy_requires_fields(self) -> None:
        with pytest.raises(InvalidMetadataError) as exc_info:
            parse_service_metadata("TRAFFIC_BUY", {"domainId": "global"})
        assert any("validatorPartyId" in e for e in exc_info.value.errors)

    def test_unknown_keys_rejected(self) -> None:
        with pytest.raises(InvalidMetadataError):
            parse_service_metadata("API_KEY_EXCHANGE", {"apiName": "geo", "extra": 1})

    def test_optional_fields_dropped_when_unset(self) -> None:
        meta = parse_service_metadata("API_KEY_EXCHANGE", {"apiName": "geo"})
        assert isinstance(meta, ApiKeyExchangeMetadata)
        assert dump_service_metadata(meta) == {"apiName": "geo"}

    def test_document_delivery_accepts_empty(self) -> None:
        assert dump_service_metadata(parse_service_metadata("DOCUMENT_DELIVERY", None)) == {}


class TestCustom:
    def test_accepts_any_object(self) -> None:
        meta = parse_service_metadata("CUSTOM", {"anything": ["goes", 1]})
        assert isinstance(meta, CustomMetadata)
        assert dump_service_metadata(meta) == {"anything": ["goes", 1]}

    def test_unregistered_service_type_falls_back(self) -> None:
        assert isinstance(parse_service_metadata("NEW_TYPE", {"k": "v"}), CustomMetadata)

    def test_rejects_non_object(self) -> None:
        with pytest.raises(InvalidMetadataError):
            parse_service_metadata("CUSTOM", ["not", "an", "object"])  # type: ignore[arg-type]
