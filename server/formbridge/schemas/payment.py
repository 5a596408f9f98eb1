from typing import Any

from formbridge.models.payment import PaymentStatus
from formbridge.schemas.common import Timestamped


class PaymentRead(Timestamped):
    id: str
    integration_handle: str
    submission_id: str | None
    field_id: str | None
    amount: int | None
    currency: str | None
    status: PaymentStatus
    reference: str | None
    response: dict[str, Any] | None
