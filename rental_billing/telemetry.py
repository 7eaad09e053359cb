import logging

from opentelemetry.distro import OpenTelemetryDistro
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

logger = logging.getLogger(__name__)


def setup_telemetry(app):
    """Configures OpenTelemetry for the application."""
    OpenTelemetryDistro().configure()
    FastAPIInstrumentor.instrument_app(app)
    logger.info("OpenTelemetry instrumentation complete.")
