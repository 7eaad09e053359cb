import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from . import schemas
from .config import settings
from .exceptions import DeviceCatalogError
from .http_retry import get_json_with_retry

logger = logging.getLogger(__name__)


class HttpDeviceCatalog:
    """Fetches rental devices from the rental product service"""

    def __init__(
        self,
        base_url: str = settings.DEVICE_CATALOG_URL,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        attempts: int = settings.HTTP_RETRY_ATTEMPTS,
        base_delay_seconds: float = settings.HTTP_RETRY_BASE_DELAY_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.attempts = attempts
        self.base_delay_seconds = base_delay_seconds

    async def get_device(self, device_id: str) -> Optional[schemas.Device]:
        url = f"{self.base_url}/devices/{device_id}"
        try:
            payload = await get_json_with_retry(
                url,
                timeout=self.timeout,
                attempts=self.attempts,
                base_delay_seconds=self.base_delay_seconds,
                not_found_as_none=True,
            )
        except httpx.HTTPError as exc:
            logger.error("Device catalog lookup for %s failed: %s", device_id, exc)
            raise DeviceCatalogError(f"Device catalog unavailable: {exc}") from exc

        if payload is None:
            return None
        if isinstance(payload, dict) and "device" in payload:
            payload = payload["device"]
        if isinstance(payload, dict):
            payload.setdefault("id", device_id)

        try:
            return schemas.Device.model_validate(payload)
        except ValidationError as exc:
            raise DeviceCatalogError(f"Device catalog returned an invalid device {device_id}") from exc
