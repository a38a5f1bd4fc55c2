from aegis.db.models.escrow import Escrow
from aegis.db.models.notification import Notification

__all__ = [
    "Escrow",
    "Notification",
]
