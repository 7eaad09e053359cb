from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping

from .schemas import CopyCategory, Device, PaperSize, SizeReadings, coerce_decimal

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def round_currency(amount: Decimal) -> Decimal:
    """Round to 2 decimal places for currency"""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_bucket_charge(
    old_count: Any,
    new_count: Any,
    free_copies: Any,
    extra_amount_per_copy: Any,
) -> Decimal:
    """
    Chargeable amount for one metered bucket (one paper size x copy category).

    Readings are cumulative meter totals, so a non-positive delta (no usage or a
    meter reset) bills nothing. Copies inside the free allowance are not charged.
    """
    old = coerce_decimal(old_count)
    new = coerce_decimal(new_count)
    free = coerce_decimal(free_copies)
    rate = coerce_decimal(extra_amount_per_copy)

    copies_used = new - old
    if copies_used <= 0:
        return Decimal("0")

    billable = max(Decimal("0"), copies_used - free)
    return billable * rate


@dataclass(frozen=True)
class BucketCharge:
    size: PaperSize
    category: CopyCategory
    copies_used: Decimal
    free_copies: Decimal
    amount: Decimal
    unlimited: bool


@dataclass(frozen=True)
class DeviceBill:
    device_id: str
    base_price: Decimal
    subtotal: Decimal
    gst_percentage: Decimal
    commission_rate: Decimal
    amount_with_tax: Decimal
    commission_amount: Decimal
    total: Decimal
    buckets: List[BucketCharge] = field(default_factory=list)


class DeviceBillingAggregator:
    """Combines base price, metered buckets, stacked GST and commission for one device"""

    def bill_device(self, device: Device, readings: Mapping[PaperSize, SizeReadings]) -> DeviceBill:
        subtotal = device.base_price
        buckets: List[BucketCharge] = []

        for size, size_config in device.meter_configs_by_size.items():
            submitted = readings.get(size)
            if submitted is None:
                continue
            for category in CopyCategory:
                old_count = size_config.old_count(category)
                new_count = submitted.new_count(category)
                amount = calculate_bucket_charge(
                    old_count,
                    new_count,
                    size_config.free_copies(category),
                    size_config.extra_amount(category),
                )
                subtotal += amount
                buckets.append(
                    BucketCharge(
                        size=size,
                        category=category,
                        copies_used=max(Decimal("0"), new_count - old_count),
                        free_copies=size_config.free_copies(category),
                        amount=amount,
                        # Recorded only; unlimited plans are still billed
                        unlimited=size_config.unlimited(category),
                    )
                )

        gst_percentage = self.stacked_gst(device.gst_rates)
        amount_with_tax = subtotal * (1 + gst_percentage / HUNDRED)
        # Commission is a markup on the tax-inclusive total
        commission_amount = amount_with_tax * device.commission_rate / HUNDRED

        return DeviceBill(
            device_id=device.id,
            base_price=device.base_price,
            subtotal=subtotal,
            gst_percentage=gst_percentage,
            commission_rate=device.commission_rate,
            amount_with_tax=round_currency(amount_with_tax),
            commission_amount=round_currency(commission_amount),
            total=round_currency(amount_with_tax + commission_amount),
            buckets=buckets,
        )

    @staticmethod
    def stacked_gst(rates: Iterable[Decimal]) -> Decimal:
        return sum((coerce_decimal(rate) for rate in rates), Decimal("0"))

    def bucket_summary(self, bill: DeviceBill) -> Dict[str, Decimal]:
        return {
            f"{bucket.size.value}_{bucket.category.value}": round_currency(bucket.amount)
            for bucket in bill.buckets
        }


def sum_grand_total(totals: Iterable[Decimal]) -> Decimal:
    """Grand total of already-rounded per-product totals"""
    return round_currency(sum((Decimal(total) for total in totals), Decimal("0")))
