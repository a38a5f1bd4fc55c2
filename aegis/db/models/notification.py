from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aegis.common.enums import NotificationSeverity
from aegis.db.base import UUIDModel


class Notification(UUIDModel):
    __tablename__ = "notifications"

    # No foreign key: notifications outlive escrows removed by delete_unfunded.
    escrow_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    severity: Mapped[str] = mapped_column(
        String(10), nullable=False, default=NotificationSeverity.INFO.value
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
