"""Monero daemon client used to broadcast funding transactions.

Talks to ``monerod``'s ``/send_raw_transaction`` endpoint when a daemon URL
is configured, otherwise answers with synthetic transaction hashes.
"""

from __future__ import annotations

import uuid

import httpx
from pydantic import BaseModel

from aegis.config import settings
from aegis.integrations.base import BaseIntegration


class BroadcastOutcome(BaseModel):
    success: bool
    reference: str | None = None
    reason: str | None = None


class MoneroDaemonClient(BaseIntegration):
    def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
        super().__init__("monero_daemon", url or settings.MONERO_DAEMON_URL)
        self.timeout = timeout or settings.BROADCAST_TIMEOUT_SECONDS

    async def health_check(self) -> bool:
        if self.is_mock:
            self.logger.info("Monero daemon health check: OK (mock)")
            return True
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(f"{self.endpoint}/get_height")
                return resp.status_code == 200
        except httpx.HTTPError as e:
            self.logger.error("Monero daemon health check failed: %s", e)
            return False

    async def broadcast(self, signed_tx_hex: str) -> BroadcastOutcome:
        """Relay a signed funding transaction; never raises."""
        payload = (signed_tx_hex or "").strip()
        if not payload:
            return BroadcastOutcome(success=False, reason="empty transaction payload")

        if self.is_mock:
            reference = f"mock_tx_{uuid.uuid4().hex}"
            self.logger.info("Mock broadcast accepted: %s", reference)
            return BroadcastOutcome(success=True, reference=reference)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.endpoint}/send_raw_transaction",
                    json={"tx_as_hex": payload, "do_not_relay": False},
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error("Broadcast to %s failed: %s", self.endpoint, e)
            return BroadcastOutcome(success=False, reason=f"daemon unreachable: {e}")

        if data.get("status") != "OK":
            reason = data.get("reason") or data.get("status") or "rejected by daemon"
            self.logger.error("Daemon rejected transaction: %s", reason)
            return BroadcastOutcome(success=False, reason=reason)

        reference = data.get("tx_hash") or f"tx_{uuid.uuid4().hex}"
        self.logger.info("Broadcast accepted: %s", reference)
        return BroadcastOutcome(success=True, reference=reference)
