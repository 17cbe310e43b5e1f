"""Client for the per-user AI quota gate."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from http_client import ResilientHttpClient, parse_retry_after

logger = logging.getLogger(__name__)

DENIED_STATUS_CODES = {401, 403, 429}


class QuotaCheckError(RuntimeError):
    """The quota service answered with something other than allow or deny."""


@dataclass(frozen=True, slots=True)
class QuotaDecision:
    allowed: bool
    retry_after: float | None = None


class QuotaClient:
    def __init__(self, http: ResilientHttpClient, url: str) -> None:
        self._http = http
        self._url = url

    async def consume(
        self,
        *,
        token: str,
        request_type: str,
        prompt_chars: int,
        request_id: str,
    ) -> QuotaDecision:
        """Spend one unit of quota. Transport failures propagate as httpx errors."""

        response, _ = await self._http.post(
            self._url,
            request_id=request_id,
            headers={"Authorization": f"Bearer {token}"},
            json={"requestType": request_type, "promptChars": prompt_chars},
        )
        if response.is_success:
            return QuotaDecision(allowed=True)
        if response.status_code in DENIED_STATUS_CODES:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.info(
                {
                    "event": "quota_denied",
                    "request_id": request_id,
                    "status_code": response.status_code,
                    "retry_after_seconds": retry_after,
                }
            )
            return QuotaDecision(allowed=False, retry_after=retry_after)
        raise QuotaCheckError(f"Quota service returned {response.status_code}")

