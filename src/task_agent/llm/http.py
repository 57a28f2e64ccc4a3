"""Blocking JSON-over-HTTP helper shared by the provider clients."""

from __future__ import annotations

import json
import logging
import time
from typing import Any
from urllib import error, request

logger = logging.getLogger(__name__)


class ProviderRequestError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


# 4xx other than throttling will not improve on retry.
_RETRYABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504, 529}


def post_json_with_retry(
    *,
    url: str,
    headers: dict[str, str],
    body: dict[str, Any],
    timeout_s: float,
    max_retries: int,
    backoff_s: float,
    provider: str,
) -> dict[str, Any]:
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            return post_json(url=url, headers=headers, body=body, timeout_s=timeout_s)
        except ProviderRequestError as exc:
            last_error = exc
            logger.warning(
                "llm_request event=failed provider=%s attempt=%d/%d status=%s reason=%s",
                provider,
                attempt + 1,
                max_retries + 1,
                exc.status,
                exc,
            )
            if exc.status is not None and exc.status not in _RETRYABLE_STATUSES:
                break
            if attempt < max_retries and backoff_s > 0:
                time.sleep(backoff_s * (2**attempt))

    if last_error is None:
        raise RuntimeError(f"{provider} request failed with unknown error")
    raise last_error


def post_json(
    *,
    url: str,
    headers: dict[str, str],
    body: dict[str, Any],
    timeout_s: float,
) -> dict[str, Any]:
    req = request.Request(
        url=url,
        data=json.dumps(body).encode("utf-8"),
        method="POST",
        headers={"Content-Type": "application/json", **headers},
    )
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        message = exc.read().decode("utf-8", errors="replace")
        raise ProviderRequestError(
            f"request failed with status {exc.code}: {message[:400]}",
            status=exc.code,
        ) from exc
    except error.URLError as exc:
        raise ProviderRequestError(f"request failed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise ProviderRequestError(f"request timed out after {timeout_s:.1f}s") from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderRequestError("provider returned non-JSON response") from exc
    if not isinstance(parsed, dict):
        raise ProviderRequestError("provider response must be a JSON object")
    return parsed
