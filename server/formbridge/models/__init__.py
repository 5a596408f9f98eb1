from formbridge.models.payment import Payment, PaymentStatus

__all__ = [
    "Payment",
    "PaymentStatus",
]
