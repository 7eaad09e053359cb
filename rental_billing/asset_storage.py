import logging

import httpx

from . import schemas
from .config import settings
from .exceptions import AssetUploadError
from .http_retry import delete_with_retry, post_json_with_retry

logger = logging.getLogger(__name__)


class HttpAssetStorage:
    """Stores meter-photo evidence in the shared asset service"""

    def __init__(
        self,
        base_url: str = settings.ASSET_STORAGE_URL,
        folder: str = settings.ASSET_FOLDER,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        attempts: int = settings.HTTP_RETRY_ATTEMPTS,
        base_delay_seconds: float = settings.HTTP_RETRY_BASE_DELAY_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.folder = folder
        self.timeout = timeout
        self.attempts = attempts
        self.base_delay_seconds = base_delay_seconds

    async def upload(self, content: str) -> schemas.AssetReference:
        try:
            response_data = await post_json_with_retry(
                f"{self.base_url}/assets",
                json_body={"folder": self.folder, "content": content},
                timeout=self.timeout,
                attempts=self.attempts,
                base_delay_seconds=self.base_delay_seconds,
            )
        except httpx.HTTPError as exc:
            logger.error("Meter photo upload failed: %s", exc)
            raise AssetUploadError(f"Could not upload meter photo: {exc}") from exc

        if not isinstance(response_data, dict) or not response_data.get("public_id"):
            raise AssetUploadError("Asset service returned no asset reference")
        return schemas.AssetReference(
            public_id=str(response_data["public_id"]),
            url=str(response_data.get("secure_url") or response_data.get("url") or ""),
        )

    async def delete(self, public_id: str) -> None:
        await delete_with_retry(
            f"{self.base_url}/assets/{public_id}",
            timeout=self.timeout,
            attempts=self.attempts,
            base_delay_seconds=self.base_delay_seconds,
        )
