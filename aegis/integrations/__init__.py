"""Clients for services the escrow backend depends on."""

from aegis.integrations.base import BaseIntegration
from aegis.integrations.monero_daemon import BroadcastOutcome, MoneroDaemonClient

__all__ = [
    "BaseIntegration",
    "BroadcastOutcome",
    "MoneroDaemonClient",
]
