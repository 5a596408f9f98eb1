from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any

from sqlalchemy import JSON, Enum as SAEnum, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from formbridge.db.base import Base
from formbridge.models.mixins import TimestampMixin

Identifier = Annotated[str, mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))]


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class Payment(TimestampMixin, Base):
    """
    One attempted capture against a payment integration.

    Rows are created either terminal or ``PENDING`` (awaiting a 3-D Secure
    challenge). A pending row moves to a terminal status exactly once, and
    terminal rows are never updated again.
    """

    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("reference", name="uq_payment_reference"),)

    id: Mapped[Identifier]
    integration_handle: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    submission_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    field_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(SAEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
