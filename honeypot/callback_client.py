import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from .errors import ReportError
from .models import FinalResultPayload

logger = logging.getLogger(__name__)

# ======================================================================
# RELIABLE, NON-BLOCKING FINAL-RESULT REPORT
# ----------------------------------------------------------------------
# 1. The engagement controller schedules report() as a background task,
#    so the API response never waits on the reporting endpoint.
# 2. Up to 3 attempts with exponential backoff between them (2s, 4s).
# 3. Final failure is logged and returned as success=False. Nothing is
#    raised and the session's reportSent flag is never reset.
# ======================================================================


@dataclass
class ReportOutcome:
    success: bool
    attempts: int
    status_code: Optional[int] = None
    error: Optional[str] = None


class ReportClient:

    def __init__(
        self,
        url: str,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.url = url
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self.transport = transport
        self.sleep = sleep

    async def _send_once(self, client: httpx.AsyncClient, payload: FinalResultPayload) -> int:
        """Single POST. Returns the status code, raises ReportError on failure."""
        try:
            response = await client.post(
                self.url,
                json=payload.model_dump(),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise ReportError(f"request failed: {e}") from e

        if not response.is_success:
            raise ReportError(f"unexpected status {response.status_code}")
        return response.status_code

    async def report(self, session_id: str, payload: FinalResultPayload) -> ReportOutcome:
        """Deliver the final snapshot with bounded retries"""
        logger.info(
            f"Sending final result for {session_id}: scamDetected={payload.scamDetected}, "
            f"messages={payload.totalMessagesExchanged}"
        )

        last_error = None
        async with httpx.AsyncClient(transport=self.transport) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    status = await self._send_once(client, payload)
                except ReportError as e:
                    last_error = str(e)
                    if attempt < self.max_attempts:
                        delay = self.base_delay * (2 ** (attempt - 1))  # 2s, 4s
                        logger.warning(
                            f"⚠️ Report attempt {attempt} for {session_id} failed ({e}), "
                            f"retrying in {delay}s..."
                        )
                        await self.sleep(delay)
                    continue

                logger.info(f"✅ Report for {session_id} succeeded on attempt {attempt}")
                return ReportOutcome(success=True, attempts=attempt, status_code=status)

        logger.error(f"❌ Report for {session_id} failed after {self.max_attempts} attempts: {last_error}")
        return ReportOutcome(success=False, attempts=self.max_attempts, error=last_error)
