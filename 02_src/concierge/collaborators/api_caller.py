"""HTTP call helper with timeout, bounded retry and uniform result shape."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx

from ..logging_config import get_logger

logger = get_logger(__name__)


DEFAULT_TIMEOUT = 30.0


@dataclass
class ApiResponse:
    """Outcome of an HTTP call. Transport failures never raise."""

    success: bool
    data: Any = None
    error: str | None = None
    status_code: int | None = None


async def call_api(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    json: Any = None,
    data: dict[str, Any] | None = None,
    files: dict[str, Any] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = 0,
    backoff: float = 1.0,
    log_prefix: str = "[API]",
) -> ApiResponse:
    """Perform an HTTP request.

    A non-2xx response is returned as a failure immediately. Transport errors
    and timeouts are retried up to ``retries`` times, waiting
    ``backoff * attempt`` seconds before each retry.
    """
    start = time.monotonic()
    logger.info("%s %s %s", log_prefix, method, url)
    last_error = "request not attempted"

    for attempt in range(retries + 1):
        if attempt > 0:
            logger.warning("%s retry %s/%s", log_prefix, attempt, retries)
            await asyncio.sleep(backoff * attempt)

        try:
            response = await client.request(
                method,
                url,
                headers=headers,
                json=json,
                data=data,
                files=files,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            last_error = str(e) or type(e).__name__
            logger.error("%s request failed: %s", log_prefix, last_error)
            continue

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "%s status %s in %sms", log_prefix, response.status_code, duration_ms
        )

        if not response.is_success:
            logger.error(
                "%s API error (%s): %s", log_prefix, response.status_code, response.text
            )
            return ApiResponse(
                success=False,
                error=f"API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                payload = response.json()
            except ValueError as e:
                return ApiResponse(
                    success=False,
                    error=f"Invalid JSON response: {e}",
                    status_code=response.status_code,
                )
        elif content_type.startswith("audio/"):
            payload = response.content
        else:
            payload = response.text

        return ApiResponse(success=True, data=payload, status_code=response.status_code)

    return ApiResponse(success=False, error=last_error)
