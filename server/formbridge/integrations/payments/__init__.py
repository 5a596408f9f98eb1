"""
Payment integration modules

Provides payment adapters that capture card payments for a form's
payment field, including challenge (3-D Secure) completion callbacks.
"""

from .base import (
    CallbackResponse,
    PaymentConsistencyError,
    PaymentError,
    PaymentIntegration,
    PaymentValidationError,
    to_minor_units,
)
from .opayo_adapter import OpayoAdapter

__all__ = [
    "CallbackResponse",
    "OpayoAdapter",
    "PaymentConsistencyError",
    "PaymentError",
    "PaymentIntegration",
    "PaymentValidationError",
    "to_minor_units",
]
