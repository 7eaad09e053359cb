import pytest
from fastapi.testclient import TestClient

from rental_billing.config import settings
from rental_billing.counter_store import GlobalCounterStore
from rental_billing.database import get_db
from rental_billing.exceptions import MeterReadingParseError
from rental_billing.main import _http_error, app, get_asset_storage, get_counter_store, get_device_catalog

from .conftest import FakeAssetStorage, FakeDeviceCatalog, make_device


@pytest.fixture()
def asset_storage():
    return FakeAssetStorage()


@pytest.fixture()
def client(session_factory, asset_storage):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    catalog = FakeDeviceCatalog([make_device("dev-1"), make_device("dev-2", meter_configs_by_size={})])
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_device_catalog] = lambda: catalog
    app.dependency_overrides[get_asset_storage] = lambda: asset_storage
    app.dependency_overrides[get_counter_store] = lambda: GlobalCounterStore(session_factory)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _entry(**overrides):
    body = {
        "company_id": "cmp-1",
        "device_id": "dev-1",
        "a4_config": {"bw_new_count": 300},
        "invoice_type": "invoice",
        "assigned_to": "agent-7",
    }
    body.update(overrides)
    return body


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_invoice_uses_configured_template(client):
    settings_response = client.put("/common-details", json={"format_template": "INV-0000"})
    assert settings_response.status_code == 200
    assert settings_response.json()["next_invoice_number"] == "INV-0001"

    response = client.post("/rental-payments", json=_entry())
    assert response.status_code == 201
    entry = response.json()
    assert entry["invoice_number"] == "INV-0001"
    assert entry["grand_total"] == "1268.50"
    assert entry["products"][0]["computed_total"] == "1268.50"

    details = client.get("/common-details").json()
    assert details["sequence_value"] == 1
    assert details["next_invoice_number"] == "INV-0002"


def test_create_quotation_has_null_number(client):
    response = client.post("/rental-payments", json=_entry(invoice_type="quotation"))
    assert response.status_code == 201
    assert response.json()["invoice_number"] is None
    assert client.get("/common-details").json()["sequence_value"] == 0


def test_create_errors_map_to_status_codes(client, asset_storage):
    assert client.post("/rental-payments", json=_entry(company_id=None)).status_code == 400
    assert client.post("/rental-payments", json=_entry(device_id="dev-404")).status_code == 404

    asset_storage.fail_uploads = True
    response = client.post("/rental-payments", json=_entry(count_image="data:image/png;base64,AAAA"))
    assert response.status_code == 502
    assert client.get("/rental-payments").json() == []


def test_malformed_readings_count_as_zero_by_default(client):
    response = client.post("/rental-payments", json=_entry(a4_config="{not json"))
    assert response.status_code == 201
    # Base price plus GST only
    assert response.json()["grand_total"] == "1180.00"


def test_malformed_readings_rejected_in_strict_mode(client, monkeypatch):
    monkeypatch.setattr(settings, "STRICT_METER_PARSING", True)
    response = client.post("/rental-payments", json=_entry(a4_config="{not json"))
    assert response.status_code == 422


def test_meter_parse_errors_map_to_unprocessable():
    assert _http_error(MeterReadingParseError("bad readings")).status_code == 422


def test_list_and_filter_entries(client):
    client.post("/rental-payments", json=_entry())
    client.post("/rental-payments", json=_entry(invoice_type="quotation"))

    all_entries = client.get("/rental-payments").json()
    assert len(all_entries) == 2

    quotations = client.get("/rental-payments", params={"invoice_type": "quotation"}).json()
    assert [e["invoice_type"] for e in quotations] == ["quotation"]


def test_list_by_assignee(client):
    client.post("/rental-payments", json=_entry())

    response = client.get("/rental-payments/assigned/agent-7")
    assert response.status_code == 200
    assert len(response.json()) == 1

    assert client.get("/rental-payments/assigned/agent-7", params={"invoice_type": "quotation"}).status_code == 404
    assert client.get("/rental-payments/assigned/nobody").status_code == 404


def test_send_details_options(client):
    response = client.get("/rental-payments/send-details-options")
    assert response.status_code == 200
    assert response.json()["options"] == ["Email", "WhatsApp", "Physical Copy", "Other"]


def test_get_entry(client):
    created = client.post("/rental-payments", json=_entry()).json()

    response = client.get(f"/rental-payments/{created['id']}")
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]

    assert client.get("/rental-payments/missing").status_code == 404


def test_update_transitions_quotation_to_invoice(client):
    quotation = client.post("/rental-payments", json=_entry(invoice_type="quotation")).json()

    response = client.put(f"/rental-payments/{quotation['id']}", json={"invoice_type": "invoice"})
    assert response.status_code == 200
    assert response.json()["invoice_number"] == "1"

    back = client.put(f"/rental-payments/{quotation['id']}", json={"invoice_type": "quotation"})
    assert back.status_code == 409

    assert client.put("/rental-payments/missing", json={"remarks": "x"}).status_code == 404


def test_update_merges_readings(client):
    created = client.post("/rental-payments", json=_entry()).json()

    response = client.put(f"/rental-payments/{created['id']}", json={"a4_config": '{"bw_new_count": 400}'})
    assert response.status_code == 200
    assert response.json()["grand_total"] == "1327.50"


def test_increment_invoice_counter(client):
    response = client.post("/common-details/increment-invoice")
    assert response.status_code == 200
    assert response.json()["sequence_value"] == 1
    assert response.json()["next_invoice_number"] == "2"


def test_update_common_details_rejects_negative_sequence(client):
    assert client.put("/common-details", json={"sequence_value": -1}).status_code == 422
