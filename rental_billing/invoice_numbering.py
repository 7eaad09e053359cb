"""
Invoice number formatting from a user-defined template.

The rightmost run of digits in the template is the sequence slot: its width sets
the zero padding and everything before it is kept verbatim. Text after the slot
is not carried into the issued number.
"""

import datetime
import re
from typing import Callable, Optional, Tuple

FALLBACK_WIDTH = 5

_SEQUENCE_SLOT = re.compile(r"(\d+)(?=\D*$)")
_LONG_FISCAL_YEAR = re.compile(r"(?<!\d)(\d{4})-(\d{4})(?!\d)")
_SHORT_FISCAL_YEAR = re.compile(r"(?<!\d)(\d{2})-(\d{2})(?!\d)")


def fiscal_year_bounds(today: datetime.date, start_month: int = 4) -> Tuple[int, int]:
    start_year = today.year if today.month >= start_month else today.year - 1
    return start_year, start_year + 1


def refresh_fiscal_year_markers(
    template: str,
    today: datetime.date,
    start_month: int = 4,
) -> str:
    """Rewrite YYYY-YYYY and YY-YY fiscal-year markers to the year containing `today`."""
    start_year, end_year = fiscal_year_bounds(today, start_month)

    def _long(match: re.Match) -> str:
        first, second = int(match.group(1)), int(match.group(2))
        if second != first + 1:
            return match.group(0)
        return f"{start_year}-{end_year}"

    def _short(match: re.Match) -> str:
        first, second = int(match.group(1)), int(match.group(2))
        if second != (first + 1) % 100:
            return match.group(0)
        return f"{start_year % 100:02d}-{end_year % 100:02d}"

    template = _LONG_FISCAL_YEAR.sub(_long, template)
    return _SHORT_FISCAL_YEAR.sub(_short, template)


def format_invoice_number(
    next_value: int,
    template: Optional[str],
    *,
    refresh_fiscal_year: bool = False,
    today: Optional[datetime.date] = None,
    fiscal_year_start_month: int = 4,
) -> str:
    """Render `next_value` into `template`'s sequence slot."""
    if next_value < 0:
        raise ValueError("Invoice sequence value cannot be negative")

    if template is None or not template.strip():
        return str(next_value)

    template = template.strip()
    if refresh_fiscal_year:
        template = refresh_fiscal_year_markers(
            template,
            today or datetime.date.today(),
            fiscal_year_start_month,
        )

    slot = _SEQUENCE_SLOT.search(template)
    if slot is None:
        return f"{template}{next_value:0{FALLBACK_WIDTH}d}"

    width = len(slot.group(1))
    return f"{template[:slot.start()]}{next_value:0{width}d}"


class InvoiceSequenceFormatter:
    """Formats sequence values with the service's fiscal-year policy applied"""

    def __init__(
        self,
        refresh_fiscal_year: bool = False,
        fiscal_year_start_month: int = 4,
        clock: Callable[[], datetime.date] = datetime.date.today,
    ):
        self.refresh_fiscal_year = refresh_fiscal_year
        self.fiscal_year_start_month = fiscal_year_start_month
        self.clock = clock

    def format(self, next_value: int, template: Optional[str]) -> str:
        return format_invoice_number(
            next_value,
            template,
            refresh_fiscal_year=self.refresh_fiscal_year,
            today=self.clock(),
            fiscal_year_start_month=self.fiscal_year_start_month,
        )
