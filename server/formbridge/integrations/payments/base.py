"""
Payment Integration Base Classes

Shared behaviour for payment integrations: amount and currency
resolution from the payment field's settings, pre/post processing hooks,
callback responses and payment error types.
"""

import json
from abc import abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from formbridge.models.payment import Payment, PaymentStatus

from ..base import Integration, IntegrationCategory, IntegrationError, ValidationResult
from ..context import RequestContext
from ..hooks import IntegrationEvent, ProcessPaymentEvent
from ..submission import FormField, Submission

CALLBACK_PATH = "payment-webhooks/process-callback"

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = {
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}

CURRENCIES = {
    "AUD": "Australian Dollar",
    "CAD": "Canadian Dollar",
    "CHF": "Swiss Franc",
    "CZK": "Czech Koruna",
    "DKK": "Danish Krone",
    "EUR": "Euro",
    "GBP": "British Pound",
    "HKD": "Hong Kong Dollar",
    "HUF": "Hungarian Forint",
    "JPY": "Japanese Yen",
    "NOK": "Norwegian Krone",
    "NZD": "New Zealand Dollar",
    "PLN": "Polish Zloty",
    "SEK": "Swedish Krona",
    "SGD": "Singapore Dollar",
    "USD": "US Dollar",
    "ZAR": "South African Rand",
}


class PaymentError(IntegrationError):
    """The payment vendor rejected or could not complete a transaction."""


class PaymentConsistencyError(PaymentError):
    """A callback referenced a payment that cannot be located or is no longer pending."""


class PaymentValidationError(Exception):
    """Submitted payment values are missing or malformed."""


@dataclass
class CallbackResponse:
    """Framework-neutral response returned from a payment callback."""
    content: Any
    media_type: str = "text/plain"
    status_code: int = 200

    @classmethod
    def json(cls, data: Dict[str, Any], status_code: int = 200) -> "CallbackResponse":
        return cls(content=data, media_type="application/json", status_code=status_code)

    @classmethod
    def html(cls, markup: str) -> "CallbackResponse":
        return cls(content=markup, media_type="text/html")

    @classmethod
    def text(cls, body: str) -> "CallbackResponse":
        return cls(content=body, media_type="text/plain")

    @classmethod
    def post_message(cls, message: str, value: Dict[str, Any]) -> "CallbackResponse":
        """Markup that hands ``value`` to the parent browsing context."""
        encoded = json.dumps(value).replace("</", "<\\/")
        return cls.html(
            f'<script>window.parent.postMessage({{ message: "{message}", value: {encoded} }}, "*");</script>'
        )


def to_minor_units(amount: Any, currency: Optional[str]) -> Optional[int]:
    """Convert a major-unit amount to integer minor units, or None if it is not positive."""
    if amount is None or amount == "":
        return None

    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        return None

    exponent = 0 if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES else 2
    minor = int((value * (10 ** exponent)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    return minor if minor > 0 else None


class PaymentIntegration(Integration):
    """Base class for payment integrations attached to a form's payment field."""

    category = IntegrationCategory.PAYMENT

    AMOUNT_TYPE_FIXED = "fixed"
    AMOUNT_TYPE_DYNAMIC = "dynamic"

    def __init__(self, handle: str, **config):
        super().__init__(handle, **config)
        field_config = self.config.get("field") or {}
        self.field: Optional[FormField] = FormField(**field_config) if field_config else None
        self.field_settings: Dict[str, Any] = self.config.get("field_settings") or {}

    @abstractmethod
    async def process_payment(
        self,
        submission: Submission,
        *,
        session: AsyncSession,
        context: RequestContext,
    ) -> bool:
        """
        Capture the payment for ``submission``.

        Returns:
            True when the payment succeeded (or was not applicable), False
            when the submission must not proceed. Errors are attached to the
            payment field rather than raised.
        """
        pass

    def supports_callbacks(self) -> bool:
        return False

    async def process_callback(
        self,
        params: Dict[str, Any],
        *,
        session: AsyncSession,
        context: RequestContext,
        redis_client: Any = None,
    ) -> CallbackResponse:
        raise NotImplementedError(f"{self.display_name} does not support callbacks")

    def get_field(self) -> FormField:
        if self.field is None:
            raise PaymentValidationError(f"{self.display_name} integration is not attached to a payment field.")
        return self.field

    def get_field_setting(self, path: str, default: Any = None) -> Any:
        """Read a (dotted) key from the payment field's settings."""
        value: Any = self.field_settings
        for key in path.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(key)
        return default if value is None else value

    def get_currency(self) -> Optional[str]:
        currency = self.get_field_setting("currency")
        return currency.upper() if isinstance(currency, str) and currency else None

    def get_amount(self, submission: Submission) -> Optional[int]:
        """Resolve the amount in minor units from a fixed value or a submitted field."""
        currency = self.get_currency()

        if self.get_field_setting("amount_type", self.AMOUNT_TYPE_FIXED) == self.AMOUNT_TYPE_DYNAMIC:
            reference = self.get_field_setting("amount_variable")
            if not reference:
                return None
            if isinstance(reference, str) and not self.TOKEN_PATTERN.fullmatch(reference.strip()):
                reference = f"{{{reference}}}"
            amount = self.get_mapped_field_value(reference, submission)
        else:
            amount = self.get_field_setting("amount_fixed")

        return to_minor_units(amount, currency)

    @classmethod
    def get_currency_options(cls) -> List[Dict[str, str]]:
        return [
            {"label": f"{name} ({code})", "value": code}
            for code, name in sorted(CURRENCIES.items(), key=lambda item: item[1])
        ]

    def _validate_field_settings(self, result: ValidationResult) -> None:
        if self.field is None:
            result.add_error("field", "A payment field must be configured.")

        if not self.get_currency():
            result.add_error("field_settings.currency", "Payment Currency cannot be blank.")

        if self.get_field_setting("amount_type", self.AMOUNT_TYPE_FIXED) == self.AMOUNT_TYPE_DYNAMIC:
            if not self.get_field_setting("amount_variable"):
                result.add_error("field_settings.amount_variable", "Payment Amount field must be selected.")
        elif to_minor_units(self.get_field_setting("amount_fixed"), self.get_currency()) is None:
            result.add_error("field_settings.amount_fixed", "Payment Amount must be greater than zero.")

    def before_process_payment(self, submission: Submission) -> bool:
        """Return False when an observer cancelled processing. A failing observer cancels nothing."""
        event = ProcessPaymentEvent(integration=self, submission=submission)

        try:
            self.hooks.trigger(IntegrationEvent.BEFORE_PROCESS_PAYMENT, event)
        except Exception as e:
            self.log_error(
                e,
                event="integration.hook_error",
                hook=IntegrationEvent.BEFORE_PROCESS_PAYMENT.value,
                submission_id=submission.id,
            )
            return True

        return event.is_valid

    def after_process_payment(self, submission: Submission, result: bool) -> bool:
        """Return the result as overridden by observers. A failing observer leaves ``result`` unchanged."""
        event = ProcessPaymentEvent(integration=self, submission=submission, result=result)

        try:
            self.hooks.trigger(IntegrationEvent.AFTER_PROCESS_PAYMENT, event)
        except Exception as e:
            self.log_error(
                e,
                event="integration.hook_error",
                hook=IntegrationEvent.AFTER_PROCESS_PAYMENT.value,
                submission_id=submission.id,
            )
            return result

        return bool(event.result)

    def _new_payment(
        self,
        *,
        submission_id: Optional[str],
        field_id: Optional[str],
        amount: Optional[int],
        currency: Optional[str],
        status: PaymentStatus,
        reference: Optional[str] = None,
        response: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        return Payment(
            integration_handle=self.handle,
            submission_id=submission_id,
            field_id=field_id,
            amount=amount,
            currency=currency,
            status=status,
            reference=reference,
            response=response,
        )
