"""
Create and update rental payment entries.

Every entry goes through the same pipeline: resolve the product payload, look
devices up, bill them, attach the meter photo, assign an invoice number when
the entry is (or becomes) an invoice, then persist.

Numbering runs in one of two modes. ``atomic`` reserves the next sequence value
in a single statement right before the entry is saved, so concurrent requests
never share a number (a failed save leaves a gap). ``snapshot`` keeps the
legacy read, save, then increment sequence; concurrent requests may be issued
the same number and a failed increment is only logged.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models
from .config import NumberingMode, settings
from .counter_store import GlobalCounterStore
from .exceptions import (
    AssetUploadError,
    DeviceNotFoundError,
    EntryNotFoundError,
    InvalidTransitionError,
    MissingIdentifierError,
)
from .invoice_numbering import InvoiceSequenceFormatter
from .meter_billing import DeviceBill, DeviceBillingAggregator, sum_grand_total
from .schemas import (
    AssetReference,
    EntryKind,
    InvoiceType,
    MultiProduct,
    PaperSize,
    PaymentStatus,
    ProductLineIn,
    ProductPayload,
    RentalPaymentEntryCreate,
    RentalPaymentEntryUpdate,
    SingleProduct,
    SizeReadings,
    resolve_product_payload,
)

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    PaymentStatus.UNPAID: {PaymentStatus.PARTIALLY_PAID, PaymentStatus.PAID, PaymentStatus.CANCELLED},
    PaymentStatus.PARTIALLY_PAID: {PaymentStatus.PAID, PaymentStatus.UNPAID, PaymentStatus.CANCELLED},
    PaymentStatus.PAID: {PaymentStatus.UNPAID, PaymentStatus.PARTIALLY_PAID},
    PaymentStatus.CANCELLED: set(),
}

# Plain fields copied from an update payload when present
DETAIL_FIELDS = (
    "rental_id",
    "assigned_to",
    "send_details_to",
    "remarks",
    "invoice_links",
    "mode_of_payment",
    "bank_name",
    "transaction_details",
    "cheque_date",
    "transfer_date",
    "company_name_payment",
    "other_payment_mode",
)

Readings = Dict[PaperSize, SizeReadings]


def _validate_status_transition(
    current_status: PaymentStatus,
    target_status: PaymentStatus,
    invoice_type: InvoiceType,
) -> None:
    if current_status == target_status:
        return
    if invoice_type == InvoiceType.QUOTATION and target_status != PaymentStatus.CANCELLED:
        raise InvalidTransitionError(
            f"Quotations can only be cancelled, not marked '{target_status.value}'"
        )
    allowed = STATUS_TRANSITIONS.get(current_status, set())
    if target_status not in allowed:
        raise InvalidTransitionError(
            f"Status transition not allowed: '{current_status.value}' -> '{target_status.value}'"
        )


def _readings_snapshot(readings: Readings) -> Dict[str, Dict[str, Any]]:
    return {size.value: value.model_dump(mode="json") for size, value in readings.items()}


def stored_readings(product: models.RentalProductEntry) -> Readings:
    readings: Readings = {}
    for size in PaperSize:
        raw = getattr(product, f"{size.value}_config")
        if raw is not None:
            readings[size] = SizeReadings.model_validate(raw)
    return readings


def merge_readings(current: Readings, submitted: Readings) -> Readings:
    """Overlay only the counts the caller actually sent onto the stored readings"""
    merged = dict(current)
    for size, values in submitted.items():
        base = merged.get(size) or SizeReadings()
        merged[size] = base.model_copy(update=values.model_dump(exclude_unset=True))
    return merged


def product_row_values(readings: Readings, bill: DeviceBill) -> Dict[str, Any]:
    values: Dict[str, Any] = {
        "device_id": bill.device_id,
        "base_price": bill.base_price,
        "gst_percentage": bill.gst_percentage,
        "commission_rate": bill.commission_rate,
        "amount_with_tax": bill.amount_with_tax,
        "commission_amount": bill.commission_amount,
        "computed_total": bill.total,
    }
    for size in PaperSize:
        size_readings = readings.get(size)
        values[f"{size.value}_config"] = size_readings.model_dump(mode="json") if size_readings else None
    return values


class InvoiceEntryOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        device_catalog,
        counter_store: GlobalCounterStore,
        asset_storage=None,
        *,
        numbering_mode: NumberingMode = settings.INVOICE_NUMBERING_MODE,
        formatter: Optional[InvoiceSequenceFormatter] = None,
        aggregator: Optional[DeviceBillingAggregator] = None,
    ):
        self.db = db
        self.device_catalog = device_catalog
        self.counter_store = counter_store
        self.asset_storage = asset_storage
        self.numbering_mode = NumberingMode(numbering_mode)
        self.formatter = formatter or InvoiceSequenceFormatter()
        self.aggregator = aggregator or DeviceBillingAggregator()

    # === CREATE ===

    async def create_entry(self, payload: RentalPaymentEntryCreate) -> models.RentalPaymentEntry:
        if not payload.company_id:
            raise MissingIdentifierError("company_id is required")

        product_payload = resolve_product_payload(payload)
        lines = self._product_lines(product_payload)
        if any(not line.device_id for line in lines):
            raise MissingIdentifierError("device_id is required for every product")
        if payload.invoice_type == InvoiceType.QUOTATION:
            _validate_status_transition(PaymentStatus.UNPAID, payload.status, payload.invoice_type)

        devices = await asyncio.gather(*(self._fetch_device(line.device_id) for line in lines))
        product_rows = []
        for position, (line, device) in enumerate(zip(lines, devices)):
            readings = line.readings_by_size()
            bill = self.aggregator.bill_device(device, readings)
            logger.debug("Billed device %s: %s", device.id, self.aggregator.bucket_summary(bill))
            product_rows.append({**product_row_values(readings, bill), "position": position})
        grand_total = sum_grand_total(row["computed_total"] for row in product_rows)

        count_image = None
        if payload.count_image:
            count_image = (await self._upload_count_image(payload.count_image)).model_dump()

        invoice_number = None
        pending_increment = False
        if payload.invoice_type == InvoiceType.INVOICE:
            if payload.invoice_number:
                # Caller-supplied numbers do not consume the sequence
                invoice_number = await self._accept_supplied_number(payload.invoice_number)
            else:
                invoice_number, pending_increment = await self._issue_invoice_number()

        try:
            entry = await crud.create_rental_payment_entry(
                self.db,
                products=product_rows,
                company_id=payload.company_id,
                entry_kind=(
                    EntryKind.MULTI.value if isinstance(product_payload, MultiProduct) else EntryKind.SINGLE.value
                ),
                invoice_type=payload.invoice_type.value,
                invoice_number=invoice_number,
                status=payload.status.value,
                grand_total=grand_total,
                rental_id=payload.rental_id,
                assigned_to=payload.assigned_to,
                send_details_to=payload.send_details_to,
                remarks=payload.remarks,
                count_image=count_image,
                invoice_links=[],
            )
        except Exception:
            await self.db.rollback()
            if invoice_number and self.numbering_mode == NumberingMode.ATOMIC and not payload.invoice_number:
                logger.error("Entry save failed; reserved invoice number %s is left unused", invoice_number)
            raise

        if pending_increment:
            await self._commit_increment(entry.id, invoice_number)

        logger.info(
            "Created %s %s for company %s (%s product(s), total %s)",
            entry.invoice_type,
            entry.id,
            entry.company_id,
            len(entry.products),
            entry.grand_total,
        )
        return entry

    # === UPDATE ===

    async def update_entry(self, entry_id: str, payload: RentalPaymentEntryUpdate) -> models.RentalPaymentEntry:
        entry = await crud.get_rental_payment_entry(self.db, entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)

        fields_set = payload.model_fields_set
        becomes_invoice = self._plan_type_transition(entry, payload.invoice_type)
        target_type = InvoiceType.INVOICE if becomes_invoice else InvoiceType(entry.invoice_type)
        if payload.status is not None:
            _validate_status_transition(PaymentStatus(entry.status), payload.status, target_type)

        if "company_id" in fields_set and not payload.company_id:
            raise MissingIdentifierError("company_id cannot be cleared")

        product_payload = resolve_product_payload(payload)
        if product_payload is not None:
            await self._apply_product_updates(entry, product_payload)

        replaced_image = None
        if payload.count_image:
            uploaded = await self._upload_count_image(payload.count_image)
            replaced_image = entry.count_image
            entry.count_image = uploaded.model_dump()

        if payload.company_id:
            entry.company_id = payload.company_id
        for field_name in DETAIL_FIELDS:
            if field_name in fields_set:
                setattr(entry, field_name, getattr(payload, field_name))
        if payload.status is not None:
            entry.status = payload.status.value

        pending_increment = False
        issued_number = None
        if becomes_invoice:
            entry.invoice_type = InvoiceType.INVOICE.value
        if payload.invoice_number and target_type == InvoiceType.INVOICE:
            if payload.invoice_number != entry.invoice_number:
                entry.invoice_number = await self._accept_supplied_number(payload.invoice_number)
        elif becomes_invoice and not entry.invoice_number:
            issued_number, pending_increment = await self._issue_invoice_number()
            entry.invoice_number = issued_number

        try:
            entry = await crud.save_rental_payment_entry(self.db, entry)
        except Exception:
            await self.db.rollback()
            if issued_number and self.numbering_mode == NumberingMode.ATOMIC:
                logger.error("Entry save failed; reserved invoice number %s is left unused", issued_number)
            raise

        if pending_increment:
            await self._commit_increment(entry.id, issued_number)
        if replaced_image:
            await self._discard_asset(replaced_image)

        logger.info("Updated %s %s", entry.invoice_type, entry.id)
        return entry

    @staticmethod
    def _plan_type_transition(entry: models.RentalPaymentEntry, target: Optional[InvoiceType]) -> bool:
        """True when this update turns a quotation into an invoice"""
        if target is None or target.value == entry.invoice_type:
            return False
        if target == InvoiceType.QUOTATION:
            raise InvalidTransitionError("An invoice cannot be turned back into a quotation")
        if entry.status == PaymentStatus.CANCELLED.value:
            raise InvalidTransitionError("A cancelled quotation cannot be invoiced")
        return True

    async def _apply_product_updates(self, entry: models.RentalPaymentEntry, product_payload: ProductPayload) -> None:
        changed = False
        if isinstance(product_payload, SingleProduct):
            changed = await self._update_single_product(entry, product_payload.line)
        else:
            for line in product_payload.lines:
                if not line.device_id:
                    raise MissingIdentifierError("device_id is required for every product")
                changed = await self._update_device_product(entry, line) or changed

        if changed:
            entry.grand_total = sum_grand_total(product.computed_total for product in entry.products)
            if len(entry.products) > 1:
                entry.entry_kind = EntryKind.MULTI.value

    async def _update_single_product(self, entry: models.RentalPaymentEntry, line: ProductLineIn) -> bool:
        if entry.entry_kind == EntryKind.MULTI.value or len(entry.products) != 1:
            if not line.device_id:
                raise MissingIdentifierError("device_id is required to update a multi-device entry")
            return await self._update_device_product(entry, line)

        product = entry.products[0]
        device_id = line.device_id or product.device_id
        current = stored_readings(product)
        merged = merge_readings(current, line.readings_by_size())
        if device_id == product.device_id and _readings_snapshot(merged) == _readings_snapshot(current):
            return False

        if device_id != product.device_id:
            logger.info("Entry %s moves from device %s to %s", entry.id, product.device_id, device_id)
        await self._rebill_product(product, device_id, merged)
        return True

    async def _update_device_product(self, entry: models.RentalPaymentEntry, line: ProductLineIn) -> bool:
        product = next((p for p in entry.products if p.device_id == line.device_id), None)
        if product is None:
            device = await self._fetch_device(line.device_id)
            readings = line.readings_by_size()
            bill = self.aggregator.bill_device(device, readings)
            entry.products.append(
                models.RentalProductEntry(**product_row_values(readings, bill), position=len(entry.products))
            )
            return True

        current = stored_readings(product)
        merged = merge_readings(current, line.readings_by_size())
        if _readings_snapshot(merged) == _readings_snapshot(current):
            return False
        await self._rebill_product(product, product.device_id, merged)
        return True

    async def _rebill_product(self, product: models.RentalProductEntry, device_id: str, readings: Readings) -> None:
        device = await self._fetch_device(device_id)
        bill = self.aggregator.bill_device(device, readings)
        for column, value in product_row_values(readings, bill).items():
            setattr(product, column, value)

    # === COLLABORATORS ===

    @staticmethod
    def _product_lines(product_payload: Optional[ProductPayload]) -> Sequence[ProductLineIn]:
        if product_payload is None:
            raise MissingIdentifierError("device_id or products is required")
        if isinstance(product_payload, SingleProduct):
            return (product_payload.line,)
        return product_payload.lines

    async def _fetch_device(self, device_id: str):
        device = await self.device_catalog.get_device(device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)
        return device

    async def _upload_count_image(self, content: str) -> AssetReference:
        if self.asset_storage is None:
            raise AssetUploadError("No asset storage is configured for meter photos")
        return await self.asset_storage.upload(content)

    async def _discard_asset(self, asset: Dict[str, Any]) -> None:
        public_id = asset.get("public_id") if isinstance(asset, dict) else None
        if not public_id or self.asset_storage is None:
            return
        try:
            await self.asset_storage.delete(public_id)
        except Exception as exc:
            # The entry already points at the new photo
            logger.warning("Could not delete replaced meter photo %s: %s", public_id, exc)

    # === NUMBERING ===

    async def _accept_supplied_number(self, invoice_number: str) -> str:
        existing = await crud.find_entries_by_invoice_number(self.db, invoice_number)
        if existing:
            logger.warning(
                "Supplied invoice number %s is already used by %s other entries",
                invoice_number,
                len(existing),
            )
        return invoice_number

    async def _issue_invoice_number(self) -> Tuple[str, bool]:
        """Returns the formatted number and whether the counter still has to be advanced"""
        if self.numbering_mode == NumberingMode.ATOMIC:
            snapshot = await self.counter_store.reserve_next()
            number = self.formatter.format(snapshot.sequence_value, snapshot.format_template)
            logger.info("Reserved invoice number %s (sequence %s)", number, snapshot.sequence_value)
            return number, False

        snapshot = await self.counter_store.read()
        number = self.formatter.format(snapshot.sequence_value + 1, snapshot.format_template)
        logger.info("Issued invoice number %s from counter snapshot %s", number, snapshot.sequence_value)
        return number, True

    async def _commit_increment(self, entry_id: str, invoice_number: str) -> None:
        try:
            new_value = await self.counter_store.commit_increment()
        except Exception:
            # The entry is already saved; the next invoice may repeat this number
            logger.exception(
                "Entry %s saved with invoice number %s but the global counter was not advanced",
                entry_id,
                invoice_number,
            )
            return
        logger.info("Global invoice counter advanced to %s", new_value)
