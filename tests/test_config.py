import pytest
from pydantic import ValidationError

from rental_billing.config import NumberingMode, Settings


def test_send_details_options_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("SEND_DETAILS_OPTIONS", "Email, WhatsApp,,Courier")

    assert Settings().SEND_DETAILS_OPTIONS == ["Email", "WhatsApp", "Courier"]


def test_send_details_options_default():
    assert Settings().SEND_DETAILS_OPTIONS == ["Email", "WhatsApp", "Physical Copy", "Other"]


def test_numbering_mode_and_log_level_from_env(monkeypatch):
    monkeypatch.setenv("INVOICE_NUMBERING_MODE", "snapshot")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    configured = Settings()

    assert configured.INVOICE_NUMBERING_MODE is NumberingMode.SNAPSHOT
    assert configured.LOG_LEVEL == "DEBUG"


@pytest.mark.parametrize("name, value", [("FISCAL_YEAR_START_MONTH", "13"), ("HTTP_RETRY_ATTEMPTS", "0")])
def test_out_of_range_settings_are_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings()
