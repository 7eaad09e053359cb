import asyncio
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from rental_billing.counter_store import CounterSnapshot
from rental_billing.database import Base
from rental_billing.exceptions import AssetUploadError
from rental_billing.schemas import AssetReference, Device


def make_device(device_id: str = "dev-1", **overrides) -> Device:
    """A4 black/white metered copier: 50 free copies, 0.50 per extra copy, 18% GST"""
    data = {
        "id": device_id,
        "model_name": "Copier 5000",
        "base_price": "1000",
        "gst_rates": ["18"],
        "commission_rate": "0",
        "meter_configs_by_size": {
            "a4": {
                "bw_old_count": "100",
                "free_copies_bw": "50",
                "extra_amount_bw": "0.5",
            }
        },
    }
    data.update(overrides)
    return Device.model_validate(data)


class FakeDeviceCatalog:
    def __init__(self, devices: Optional[List[Device]] = None):
        self.devices: Dict[str, Device] = {device.id: device for device in devices or []}
        self.calls: List[str] = []

    async def get_device(self, device_id: str) -> Optional[Device]:
        self.calls.append(device_id)
        return self.devices.get(device_id)


class FakeAssetStorage:
    def __init__(self, fail_uploads: bool = False, fail_deletes: bool = False):
        self.fail_uploads = fail_uploads
        self.fail_deletes = fail_deletes
        self.uploaded: List[str] = []
        self.deleted: List[str] = []

    async def upload(self, content: str) -> AssetReference:
        if self.fail_uploads:
            raise AssetUploadError("Could not upload meter photo: asset service unavailable")
        self.uploaded.append(content)
        public_id = f"rental_payment_entries/photo-{len(self.uploaded)}"
        return AssetReference(public_id=public_id, url=f"https://assets.example.com/{public_id}.jpg")

    async def delete(self, public_id: str) -> None:
        if self.fail_deletes:
            raise RuntimeError("asset service unavailable")
        self.deleted.append(public_id)


class SnapshotRaceCounterStore:
    """
    In-memory counter whose `read` waits until every contender has taken its
    snapshot, reproducing the interleaving where concurrent creations all read
    the same value before any of them commits.
    """

    def __init__(self, contenders: int = 1, sequence_value: int = 0, format_template: Optional[str] = None):
        self.sequence_value = sequence_value
        self.format_template = format_template
        self.increments = 0
        self.fail_commits = False
        self._barrier = asyncio.Barrier(contenders)

    async def read(self) -> CounterSnapshot:
        snapshot = CounterSnapshot(self.sequence_value, self.format_template)
        await self._barrier.wait()
        return snapshot

    async def commit_increment(self) -> int:
        if self.fail_commits:
            raise RuntimeError("counter row locked")
        self.sequence_value += 1
        self.increments += 1
        return self.sequence_value

    async def reserve_next(self) -> CounterSnapshot:
        self.sequence_value += 1
        self.increments += 1
        return CounterSnapshot(self.sequence_value, self.format_template)


@pytest.fixture()
def engine(tmp_path):
    database_path = tmp_path / "rental_billing.db"
    schema_engine = create_engine(f"sqlite:///{database_path}")
    Base.metadata.create_all(schema_engine)
    schema_engine.dispose()

    # NullPool: the app under TestClient runs on its own event loop
    return create_async_engine(f"sqlite+aiosqlite:///{database_path}", poolclass=NullPool)


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db(session_factory):
    async with session_factory() as session:
        yield session
