import datetime
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .config import settings
from .exceptions import MeterReadingParseError

logger = logging.getLogger(__name__)


class InvoiceType(str, Enum):
    QUOTATION = "quotation"
    INVOICE = "invoice"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"


class EntryKind(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


class PaperSize(str, Enum):
    A3 = "a3"
    A4 = "a4"
    A5 = "a5"


class CopyCategory(str, Enum):
    BW = "bw"
    COLOR = "color"
    COLOR_SCANNING = "color_scanning"


def coerce_decimal(value: Any) -> Decimal:
    """Lenient numeric coercion: anything unparseable counts as zero."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return Decimal("0")
    if not number.is_finite():
        return Decimal("0")
    return number


def _money(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return f"{Decimal(value):.2f}"


# === METER READINGS ===

class SizeReadings(BaseModel):
    """Submitted meter readings for one paper size"""

    bw_old_count: Decimal = Decimal("0")
    bw_new_count: Decimal = Decimal("0")
    color_old_count: Decimal = Decimal("0")
    color_new_count: Decimal = Decimal("0")
    color_scanning_old_count: Decimal = Decimal("0")
    color_scanning_new_count: Decimal = Decimal("0")

    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def lenient_count(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    def new_count(self, category: CopyCategory) -> Decimal:
        return getattr(self, f"{category.value}_new_count")


def parse_size_readings(raw: Any, *, strict: Optional[bool] = None) -> Optional[SizeReadings]:
    """
    Parse per-size readings that may arrive as an object or as JSON-encoded text.

    Malformed input yields an empty (all-zero) reading unless strict parsing is
    enabled, in which case MeterReadingParseError is raised.
    """
    if strict is None:
        strict = settings.STRICT_METER_PARSING

    if raw is None:
        return None
    if isinstance(raw, SizeReadings):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return SizeReadings()
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            if strict:
                raise MeterReadingParseError(f"Meter readings are not valid JSON: {exc}") from exc
            logger.warning("Ignoring malformed meter readings payload %r; counting it as zero", text[:80])
            return SizeReadings()
    if isinstance(raw, dict):
        return SizeReadings.model_validate(raw)

    if strict:
        raise MeterReadingParseError(f"Meter readings must be an object, got {type(raw).__name__}")
    logger.warning("Ignoring meter readings of type %s; counting it as zero", type(raw).__name__)
    return SizeReadings()


class ProductLineIn(BaseModel):
    """One device reference plus its submitted readings"""

    device_id: Optional[str] = None
    a3_config: Optional[SizeReadings] = None
    a4_config: Optional[SizeReadings] = None
    a5_config: Optional[SizeReadings] = None

    @field_validator("a3_config", "a4_config", "a5_config", mode="before")
    @classmethod
    def parse_encoded_readings(cls, v: Any) -> Optional[SizeReadings]:
        return parse_size_readings(v)

    def readings_by_size(self) -> Dict[PaperSize, SizeReadings]:
        readings: Dict[PaperSize, SizeReadings] = {}
        for size in PaperSize:
            value = getattr(self, f"{size.value}_config")
            if value is not None:
                readings[size] = value
        return readings

    def has_readings(self) -> bool:
        return any(getattr(self, f"{size.value}_config") is not None for size in PaperSize)


@dataclass(frozen=True)
class SingleProduct:
    line: ProductLineIn


@dataclass(frozen=True)
class MultiProduct:
    lines: Tuple[ProductLineIn, ...]


ProductPayload = Union[SingleProduct, MultiProduct]


def resolve_product_payload(payload: ProductLineIn) -> Optional[ProductPayload]:
    """Decide once whether a payload carries one device or a list of devices."""
    products = getattr(payload, "products", None)
    if products:
        return MultiProduct(lines=tuple(products))
    if payload.device_id or payload.has_readings():
        return SingleProduct(
            line=ProductLineIn(
                device_id=payload.device_id,
                a3_config=payload.a3_config,
                a4_config=payload.a4_config,
                a5_config=payload.a5_config,
            )
        )
    return None


# === DEVICE CATALOG ===

class DeviceSizeConfig(BaseModel):
    """Billing terms stored on a device for one paper size"""

    bw_old_count: Decimal = Decimal("0")
    free_copies_bw: Decimal = Decimal("0")
    extra_amount_bw: Decimal = Decimal("0")
    bw_unlimited: bool = False
    color_old_count: Decimal = Decimal("0")
    free_copies_color: Decimal = Decimal("0")
    extra_amount_color: Decimal = Decimal("0")
    color_unlimited: bool = False
    color_scanning_old_count: Decimal = Decimal("0")
    free_copies_color_scanning: Decimal = Decimal("0")
    extra_amount_color_scanning: Decimal = Decimal("0")
    color_scanning_unlimited: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator(
        "bw_old_count", "free_copies_bw", "extra_amount_bw",
        "color_old_count", "free_copies_color", "extra_amount_color",
        "color_scanning_old_count", "free_copies_color_scanning", "extra_amount_color_scanning",
        mode="before",
    )
    @classmethod
    def lenient_number(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    def old_count(self, category: CopyCategory) -> Decimal:
        return getattr(self, f"{category.value}_old_count")

    def free_copies(self, category: CopyCategory) -> Decimal:
        return getattr(self, f"free_copies_{category.value}")

    def extra_amount(self, category: CopyCategory) -> Decimal:
        return getattr(self, f"extra_amount_{category.value}")

    def unlimited(self, category: CopyCategory) -> bool:
        return getattr(self, f"{category.value}_unlimited")


class Device(BaseModel):
    id: str
    model_name: Optional[str] = None
    serial_no: Optional[str] = None
    base_price: Decimal = Decimal("0")
    gst_rates: List[Decimal] = Field(default_factory=list)
    commission_rate: Decimal = Decimal("0")
    meter_configs_by_size: Dict[PaperSize, DeviceSizeConfig] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    @field_validator("base_price", "commission_rate", mode="before")
    @classmethod
    def lenient_number(cls, v: Any) -> Decimal:
        return coerce_decimal(v)

    @field_validator("gst_rates", mode="before")
    @classmethod
    def flatten_gst_rates(cls, v: Any) -> List[Decimal]:
        # Catalog may return bare percentages or populated GST records
        if not v:
            return []
        if not isinstance(v, (list, tuple)):
            v = [v]
        rates = []
        for item in v:
            if isinstance(item, dict):
                item = item.get("gst_percentage", item.get("percentage"))
            rates.append(coerce_decimal(item))
        return rates


# === ENTRY PAYLOADS ===

class RentalPaymentEntryCreate(ProductLineIn):
    company_id: Optional[str] = None
    products: Optional[List[ProductLineIn]] = None
    invoice_type: InvoiceType = InvoiceType.QUOTATION
    invoice_number: Optional[str] = Field(None, max_length=100)
    status: PaymentStatus = PaymentStatus.UNPAID
    rental_id: Optional[str] = None
    assigned_to: Optional[str] = None
    send_details_to: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = Field(None, max_length=2000)
    count_image: Optional[str] = Field(None, description="Meter photo evidence (data URI or remote URL)")


class RentalPaymentEntryUpdate(ProductLineIn):
    company_id: Optional[str] = None
    products: Optional[List[ProductLineIn]] = None
    invoice_type: Optional[InvoiceType] = None
    invoice_number: Optional[str] = Field(None, max_length=100)
    status: Optional[PaymentStatus] = None
    rental_id: Optional[str] = None
    assigned_to: Optional[str] = None
    send_details_to: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = Field(None, max_length=2000)
    count_image: Optional[str] = None
    invoice_links: Optional[List[str]] = None

    mode_of_payment: Optional[str] = None
    bank_name: Optional[str] = None
    transaction_details: Optional[str] = None
    cheque_date: Optional[datetime.date] = None
    transfer_date: Optional[datetime.date] = None
    company_name_payment: Optional[str] = None
    other_payment_mode: Optional[str] = None


# === RESPONSES ===

class AssetReference(BaseModel):
    public_id: str
    url: str


class ProductEntry(BaseModel):
    id: str
    device_id: str
    position: int
    a3_config: Optional[SizeReadings] = None
    a4_config: Optional[SizeReadings] = None
    a5_config: Optional[SizeReadings] = None
    base_price: Decimal
    gst_percentage: Decimal
    commission_rate: Decimal
    amount_with_tax: Decimal
    commission_amount: Decimal
    computed_total: Decimal

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("base_price", "amount_with_tax", "commission_amount", "computed_total")
    def serialize_money(self, value: Decimal) -> str:
        return _money(value)


class RentalPaymentEntry(BaseModel):
    id: str
    company_id: str
    entry_kind: EntryKind
    invoice_type: InvoiceType
    invoice_number: Optional[str] = None
    status: PaymentStatus
    grand_total: Decimal

    rental_id: Optional[str] = None
    assigned_to: Optional[str] = None
    send_details_to: Optional[str] = None
    remarks: Optional[str] = None
    count_image: Optional[AssetReference] = None
    invoice_links: List[str] = Field(default_factory=list)

    mode_of_payment: Optional[str] = None
    bank_name: Optional[str] = None
    transaction_details: Optional[str] = None
    cheque_date: Optional[datetime.date] = None
    transfer_date: Optional[datetime.date] = None
    company_name_payment: Optional[str] = None
    other_payment_mode: Optional[str] = None

    entry_date: datetime.datetime
    created_at: datetime.datetime
    updated_at: datetime.datetime

    products: List[ProductEntry] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("invoice_links", mode="before")
    @classmethod
    def default_links(cls, v: Any) -> List[str]:
        return v or []

    @field_serializer("grand_total")
    def serialize_money(self, value: Decimal) -> str:
        return _money(value)


class SendDetailsOptions(BaseModel):
    options: List[str]


# === GLOBAL COUNTER ===

class CommonDetails(BaseModel):
    sequence_value: int
    format_template: Optional[str] = None
    from_mail: Optional[str] = None
    next_invoice_number: str


class CommonDetailsUpdate(BaseModel):
    sequence_value: Optional[int] = Field(None, ge=0)
    format_template: Optional[str] = Field(None, max_length=100)
    from_mail: Optional[str] = Field(None, max_length=200)
