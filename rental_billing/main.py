import datetime
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, schemas
from .asset_storage import HttpAssetStorage
from .config import settings
from .counter_store import CounterSnapshot, GlobalCounterStore
from .database import AsyncSessionLocal, Base, engine, get_db
from .device_catalog import HttpDeviceCatalog
from .exceptions import (
    AssetUploadError,
    DeviceCatalogError,
    DeviceNotFoundError,
    EntryNotFoundError,
    InvalidTransitionError,
    MeterReadingParseError,
    MissingIdentifierError,
    RentalBillingError,
)
from .invoice_numbering import InvoiceSequenceFormatter
from .logging_config import setup_logging
from .orchestrator import InvoiceEntryOrchestrator

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    MissingIdentifierError: status.HTTP_400_BAD_REQUEST,
    DeviceNotFoundError: status.HTTP_404_NOT_FOUND,
    EntryNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    MeterReadingParseError: 422,
    AssetUploadError: status.HTTP_502_BAD_GATEWAY,
    DeviceCatalogError: status.HTTP_502_BAD_GATEWAY,
}


def _http_error(exc: RentalBillingError) -> HTTPException:
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=status_code, detail=str(exc))


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    if settings.AUTO_CREATE_SCHEMA:
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
    else:
        async with AsyncSessionLocal() as db:
            try:
                await db.execute(text("SELECT 1 FROM global_counter LIMIT 1"))
            except Exception as exc:
                raise RuntimeError(
                    "Rental billing schema is not initialized. "
                    "Run `alembic upgrade head` or set AUTO_CREATE_SCHEMA=true for local bootstrapping."
                ) from exc
    logger.info("%s started (numbering mode: %s)", settings.APP_NAME, settings.INVOICE_NUMBERING_MODE.value)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Usage-metered rental invoices and quotations with monotonic invoice numbering",
    version=settings.VERSION,
    lifespan=lifespan,
    tags_metadata=[
        {"name": "rental-payments", "description": "Rental invoice and quotation entries"},
        {"name": "common-details", "description": "Global invoice counter and numbering template"},
    ],
)

if settings.ENABLE_METRICS:
    Instrumentator().instrument(app).expose(app)

if settings.ENABLE_TELEMETRY:
    from .telemetry import setup_telemetry

    setup_telemetry(app)


# === DEPENDENCIES ===

def get_device_catalog() -> HttpDeviceCatalog:
    return HttpDeviceCatalog()


def get_asset_storage() -> HttpAssetStorage:
    return HttpAssetStorage()


def get_counter_store() -> GlobalCounterStore:
    return GlobalCounterStore(AsyncSessionLocal)


def get_invoice_formatter() -> InvoiceSequenceFormatter:
    return InvoiceSequenceFormatter(
        refresh_fiscal_year=settings.INVOICE_REFRESH_FISCAL_YEAR,
        fiscal_year_start_month=settings.FISCAL_YEAR_START_MONTH,
    )


def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    device_catalog=Depends(get_device_catalog),
    counter_store: GlobalCounterStore = Depends(get_counter_store),
    asset_storage=Depends(get_asset_storage),
    formatter: InvoiceSequenceFormatter = Depends(get_invoice_formatter),
) -> InvoiceEntryOrchestrator:
    return InvoiceEntryOrchestrator(
        db,
        device_catalog,
        counter_store,
        asset_storage,
        numbering_mode=settings.INVOICE_NUMBERING_MODE,
        formatter=formatter,
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "service": "rental-billing",
        "timestamp": datetime.datetime.now(datetime.UTC),
    }


# === RENTAL PAYMENT ENTRY ENDPOINTS ===

@app.post(
    "/rental-payments",
    response_model=schemas.RentalPaymentEntry,
    status_code=status.HTTP_201_CREATED,
    tags=["rental-payments"],
)
async def create_rental_payment_entry(
    payload: schemas.RentalPaymentEntryCreate,
    orchestrator: InvoiceEntryOrchestrator = Depends(get_orchestrator),
):
    """Bill the referenced devices and store the entry, numbering it when it is an invoice"""
    try:
        return await orchestrator.create_entry(payload)
    except RentalBillingError as exc:
        raise _http_error(exc) from exc


@app.get("/rental-payments", response_model=List[schemas.RentalPaymentEntry], tags=["rental-payments"])
async def list_rental_payment_entries(
    invoice_type: Optional[schemas.InvoiceType] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await crud.list_rental_payment_entries(
        db,
        invoice_type=invoice_type.value if invoice_type else None,
    )


@app.get(
    "/rental-payments/send-details-options",
    response_model=schemas.SendDetailsOptions,
    tags=["rental-payments"],
)
async def get_send_details_options():
    return schemas.SendDetailsOptions(options=settings.SEND_DETAILS_OPTIONS)


@app.get(
    "/rental-payments/assigned/{assigned_to}",
    response_model=List[schemas.RentalPaymentEntry],
    tags=["rental-payments"],
)
async def list_rental_payment_entries_by_assignee(
    assigned_to: str,
    invoice_type: Optional[schemas.InvoiceType] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    entries = await crud.list_rental_payment_entries(
        db,
        invoice_type=invoice_type.value if invoice_type else None,
        assigned_to=assigned_to,
    )
    if not entries:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No rental payment entries assigned to {assigned_to}",
        )
    return entries


@app.get("/rental-payments/{entry_id}", response_model=schemas.RentalPaymentEntry, tags=["rental-payments"])
async def get_rental_payment_entry(entry_id: str, db: AsyncSession = Depends(get_db)):
    entry = await crud.get_rental_payment_entry(db, entry_id)
    if entry is None:
        raise _http_error(EntryNotFoundError(entry_id))
    return entry


@app.put("/rental-payments/{entry_id}", response_model=schemas.RentalPaymentEntry, tags=["rental-payments"])
async def update_rental_payment_entry(
    entry_id: str,
    payload: schemas.RentalPaymentEntryUpdate,
    orchestrator: InvoiceEntryOrchestrator = Depends(get_orchestrator),
):
    """Merge readings, move a quotation to invoice, or record payment details"""
    try:
        return await orchestrator.update_entry(entry_id, payload)
    except RentalBillingError as exc:
        raise _http_error(exc) from exc


# === GLOBAL COUNTER ENDPOINTS ===

def _common_details(snapshot: CounterSnapshot, formatter: InvoiceSequenceFormatter) -> schemas.CommonDetails:
    return schemas.CommonDetails(
        sequence_value=snapshot.sequence_value,
        format_template=snapshot.format_template,
        from_mail=snapshot.from_mail,
        next_invoice_number=formatter.format(snapshot.sequence_value + 1, snapshot.format_template),
    )


@app.get("/common-details", response_model=schemas.CommonDetails, tags=["common-details"])
async def get_common_details(
    counter_store: GlobalCounterStore = Depends(get_counter_store),
    formatter: InvoiceSequenceFormatter = Depends(get_invoice_formatter),
):
    """Counter state plus a preview of the next number (not reserved)"""
    return _common_details(await counter_store.read(), formatter)


@app.put("/common-details", response_model=schemas.CommonDetails, tags=["common-details"])
async def update_common_details(
    payload: schemas.CommonDetailsUpdate,
    counter_store: GlobalCounterStore = Depends(get_counter_store),
    formatter: InvoiceSequenceFormatter = Depends(get_invoice_formatter),
):
    snapshot = await counter_store.update_settings(
        sequence_value=payload.sequence_value,
        format_template=payload.format_template,
        from_mail=payload.from_mail,
    )
    return _common_details(snapshot, formatter)


@app.post("/common-details/increment-invoice", response_model=schemas.CommonDetails, tags=["common-details"])
async def increment_invoice_counter(
    counter_store: GlobalCounterStore = Depends(get_counter_store),
    formatter: InvoiceSequenceFormatter = Depends(get_invoice_formatter),
):
    await counter_store.commit_increment()
    return _common_details(await counter_store.read(), formatter)
