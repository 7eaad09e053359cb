from decimal import Decimal

import pytest
from pydantic import ValidationError

from rental_billing.exceptions import MeterReadingParseError
from rental_billing.schemas import (
    Device,
    MultiProduct,
    PaperSize,
    RentalPaymentEntryCreate,
    SingleProduct,
    SizeReadings,
    parse_size_readings,
    resolve_product_payload,
)


def test_encoded_readings_are_decoded():
    readings = parse_size_readings('{"bw_new_count": "250", "color_new_count": 12}')

    assert readings.bw_new_count == Decimal("250")
    assert readings.color_new_count == Decimal("12")
    assert readings.color_scanning_new_count == 0


def test_malformed_readings_become_zero_when_lenient(caplog):
    readings = parse_size_readings("{bw_new_count: 250", strict=False)

    assert readings == SizeReadings()
    assert "malformed meter readings" in caplog.text


def test_non_numeric_counts_become_zero():
    readings = parse_size_readings({"bw_new_count": "n/a", "color_new_count": None})

    assert readings.bw_new_count == 0
    assert readings.color_new_count == 0


def test_malformed_readings_raise_when_strict():
    with pytest.raises(MeterReadingParseError):
        parse_size_readings("{bw_new_count: 250", strict=True)
    with pytest.raises(MeterReadingParseError):
        parse_size_readings([1, 2, 3], strict=True)


def test_absent_readings_stay_absent():
    assert parse_size_readings(None) is None
    assert parse_size_readings("  ") == SizeReadings()


def test_payload_with_products_resolves_to_multi_product():
    payload = RentalPaymentEntryCreate.model_validate(
        {"company_id": "cmp-1", "products": [{"device_id": "dev-1"}, {"device_id": "dev-2"}]}
    )

    resolved = resolve_product_payload(payload)

    assert isinstance(resolved, MultiProduct)
    assert [line.device_id for line in resolved.lines] == ["dev-1", "dev-2"]


def test_payload_with_device_resolves_to_single_product():
    payload = RentalPaymentEntryCreate.model_validate(
        {"company_id": "cmp-1", "device_id": "dev-1", "a5_config": '{"bw_new_count": 40}'}
    )

    resolved = resolve_product_payload(payload)

    assert isinstance(resolved, SingleProduct)
    assert list(resolved.line.readings_by_size()) == [PaperSize.A5]


def test_payload_without_devices_resolves_to_nothing():
    assert resolve_product_payload(RentalPaymentEntryCreate(company_id="cmp-1")) is None


def test_device_tolerates_sparse_catalog_records():
    device = Device.model_validate({"id": "dev-1", "base_price": "", "gst_rates": None})

    assert device.base_price == 0
    assert device.gst_rates == []
    assert device.meter_configs_by_size == {}


def test_invalid_invoice_type_is_rejected():
    with pytest.raises(ValidationError):
        RentalPaymentEntryCreate.model_validate({"company_id": "cmp-1", "invoice_type": "receipt"})


def test_device_accepts_a_single_gst_rate():
    assert Device.model_validate({"id": "dev-1", "gst_rates": "18"}).gst_rates == [Decimal("18")]
    assert Device.model_validate({"id": "dev-1", "gst_rates": 12.5}).gst_rates == [Decimal("12.5")]
    assert Device.model_validate({"id": "dev-1", "gst_rates": {"gst_percentage": 28}}).gst_rates == [Decimal("28")]
