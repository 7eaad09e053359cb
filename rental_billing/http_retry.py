import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


def _is_retryable_error(exc: Exception) -> bool:
    if isinstance(exc, httpx.RequestError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


async def _retry_delay(attempt: int, base_delay_seconds: float) -> None:
    await asyncio.sleep(base_delay_seconds * (2 ** (attempt - 1)))


async def _request_with_retry(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    json_body: dict[str, Any] | None = None,
    timeout: float = 10.0,
    attempts: int = 3,
    base_delay_seconds: float = 0.25,
) -> httpx.Response:
    async with httpx.AsyncClient() as client:
        for attempt in range(1, attempts + 1):
            try:
                response = await client.request(method, url, headers=headers, json=json_body, timeout=timeout)
                response.raise_for_status()
                return response
            except (httpx.RequestError, httpx.HTTPStatusError) as exc:
                if attempt >= attempts or not _is_retryable_error(exc):
                    raise
                logger.warning("%s %s failed (attempt %s/%s): %s", method, url, attempt, attempts, exc)
                await _retry_delay(attempt, base_delay_seconds)
    raise RuntimeError("unreachable")


async def get_json_with_retry(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    timeout: float = 10.0,
    attempts: int = 3,
    base_delay_seconds: float = 0.25,
    not_found_as_none: bool = False,
) -> Any:
    try:
        response = await _request_with_retry(
            "GET",
            url,
            headers=headers,
            timeout=timeout,
            attempts=attempts,
            base_delay_seconds=base_delay_seconds,
        )
    except httpx.HTTPStatusError as exc:
        if not_found_as_none and exc.response.status_code == 404:
            return None
        raise
    return response.json()


async def post_json_with_retry(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    json_body: dict[str, Any] | None = None,
    timeout: float = 10.0,
    attempts: int = 3,
    base_delay_seconds: float = 0.25,
    expect_json: bool = True,
) -> Any:
    response = await _request_with_retry(
        "POST",
        url,
        headers=headers,
        json_body=json_body,
        timeout=timeout,
        attempts=attempts,
        base_delay_seconds=base_delay_seconds,
    )
    if not expect_json or not response.content:
        return None
    return response.json()


async def delete_with_retry(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    timeout: float = 10.0,
    attempts: int = 3,
    base_delay_seconds: float = 0.25,
) -> None:
    await _request_with_retry(
        "DELETE",
        url,
        headers=headers,
        timeout=timeout,
        attempts=attempts,
        base_delay_seconds=base_delay_seconds,
    )
