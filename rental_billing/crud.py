from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from . import models

# === RENTAL PAYMENT ENTRY OPERATIONS ===

async def create_rental_payment_entry(
    db: AsyncSession,
    *,
    products: List[Dict[str, Any]],
    **entry_fields: Any,
) -> models.RentalPaymentEntry:
    """Persist an entry together with its product billing snapshots"""
    db_entry = models.RentalPaymentEntry(**entry_fields)
    db_entry.products = [
        models.RentalProductEntry(**product_fields) for product_fields in products
    ]

    db.add(db_entry)
    await db.commit()
    return await get_rental_payment_entry(db, db_entry.id)


async def get_rental_payment_entry(db: AsyncSession, entry_id: str) -> Optional[models.RentalPaymentEntry]:
    result = await db.execute(
        select(models.RentalPaymentEntry)
        .options(selectinload(models.RentalPaymentEntry.products))
        .filter(models.RentalPaymentEntry.id == entry_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def list_rental_payment_entries(
    db: AsyncSession,
    invoice_type: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> List[models.RentalPaymentEntry]:
    """Entries newest first, optionally filtered by type and assignee"""
    query = select(models.RentalPaymentEntry).options(selectinload(models.RentalPaymentEntry.products))

    if invoice_type:
        query = query.filter(models.RentalPaymentEntry.invoice_type == invoice_type)
    if assigned_to:
        query = query.filter(models.RentalPaymentEntry.assigned_to == assigned_to)

    query = query.order_by(models.RentalPaymentEntry.created_at.desc(), models.RentalPaymentEntry.id.desc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def save_rental_payment_entry(
    db: AsyncSession,
    entry: models.RentalPaymentEntry,
) -> models.RentalPaymentEntry:
    await db.commit()
    return await get_rental_payment_entry(db, entry.id)


async def find_entries_by_invoice_number(db: AsyncSession, invoice_number: str) -> List[models.RentalPaymentEntry]:
    result = await db.execute(
        select(models.RentalPaymentEntry).filter(models.RentalPaymentEntry.invoice_number == invoice_number)
    )
    return list(result.scalars().all())
