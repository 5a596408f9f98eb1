"""
Opayo Payment Adapter

Card payments through Opayo (formerly Sage Pay) Pi. Card details are
tokenised in the browser; the server captures the transaction and, when
the issuer requests it, hands the browser a 3-D Secure challenge which is
finalized later through ``process_callback``.
"""

import re
import uuid
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from formbridge.core.logging import get_logger
from formbridge.models.payment import Payment, PaymentStatus
from formbridge.services.payment_service import (
    acquire_callback_lock,
    complete_pending_payment,
    get_payment_by_reference,
    record_orphan_failure,
    save_payment,
)

from ..base import IntegrationField, IntegrationFieldType, IntegrationType, ValidationResult
from ..context import RequestContext
from ..hooks import IntegrationEvent, ModifyPayloadEvent
from ..submission import FormField, Submission
from .base import (
    CALLBACK_PATH,
    CallbackResponse,
    PaymentConsistencyError,
    PaymentError,
    PaymentIntegration,
    PaymentValidationError,
)
from .bundle import ChallengeSessionData, decode_session_data, encode_session_data

logger = get_logger(__name__)

PRODUCTION_URL = "https://pi.sagepay.com/api/v1/"
SANDBOX_URL = "https://pi-test.sagepay.com/api/v1/"

CHALLENGE_EVENT = "FormPaymentOpayo3DS"
CHALLENGE_RESPONSE_MESSAGE = "FormPaymentOpayo3DSResponse"
CHALLENGE_REQUIRED_MESSAGE = (
    "This payment requires 3D Secure authentication. Please follow the instructions on-screen to continue."
)

# Opayo rejects transactions without a customer name and billing address
FALLBACK_NAME = {"firstName": "Customer", "lastName": "Name"}
FALLBACK_ADDRESS = {
    "address1": "407 St. John Street",
    "city": "London",
    "zip": "EC1V 4AB",
    "country": "GB",
}


def _titleize(value: Optional[str]) -> str:
    if not value:
        return "Unknown"
    words = re.sub(r"(?<=[a-z])(?=[A-Z])", " ", str(value)).replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


class OpayoAdapter(PaymentIntegration):
    """Opayo Pi payment adapter."""

    display_name = "Opayo"
    description = "Provide payment capabilities for your forms with Opayo."
    error_class = PaymentError

    def __init__(self, handle: str, **config):
        """
        Initialize Opayo adapter.

        Args:
            handle: Integration handle
            **config: ``vendor_name``, ``integration_key``,
                ``integration_password``, ``use_sandbox``, ``signing_secret``
                plus the payment ``field`` and its ``field_settings``
        """
        super().__init__(handle, **config)
        self.use_sandbox = self.secrets.resolve_bool(self.config.get("use_sandbox", False))
        self.signing_secret: str = self.config.get("signing_secret") or ""

    def _get_integration_type(self) -> IntegrationType:
        return IntegrationType.OPAYO

    def supports_callbacks(self) -> bool:
        return True

    def _validate_settings(self, result: ValidationResult, scenario: str) -> None:
        self._require(result, "vendor_name", "Vendor Name")
        self._require(result, "integration_key", "Integration Key")
        self._require(result, "integration_password", "Integration Password")

        if not self.signing_secret:
            result.add_error("signing_secret", "Signing Secret cannot be blank.")

        if scenario == self.SCENARIO_FORM:
            self._validate_field_settings(result)

    def get_front_end_js_variables(self) -> Optional[Dict[str, Any]]:
        """Settings handed to the browser-side card widget."""
        if not self.has_valid_settings():
            return None

        return {
            "module": "FormOpayo",
            "settings": {
                "useSandbox": self.use_sandbox,
                "currency": self.get_currency(),
                "amountType": self.get_field_setting("amount_type", self.AMOUNT_TYPE_FIXED),
                "amountFixed": self.get_field_setting("amount_fixed"),
                "amountVariable": self.get_field_setting("amount_variable"),
            },
        }

    async def process_payment(
        self,
        submission: Submission,
        *,
        session: AsyncSession,
        context: RequestContext,
    ) -> bool:
        # Allow observers to cancel processing
        if not self.before_process_payment(submission):
            return True

        try:
            field = self.get_field()
        except PaymentValidationError as e:
            self.log_error(e, event="payment.misconfigured", submission_id=submission.id)
            return False

        amount = self.get_amount(submission)
        currency = self.get_currency()
        field_value = submission.get_field_value(field.handle) or {}

        if not isinstance(field_value, dict):
            field_value = {}

        token_id = field_value.get("opayoTokenId")
        session_key = field_value.get("opayoSessionKey")
        challenge_complete = field_value.get("opayo3DSComplete")

        if challenge_complete:
            # Returning from a challenge: the payment was captured and recorded by the callback
            payment = await get_payment_by_reference(session, str(challenge_complete))
            if self._is_completed_challenge(payment, field, amount, currency):
                logger.info("payment.challenge.resumed", integration=self.handle, reference=payment.reference)
                return True

            error = PaymentConsistencyError(
                f'Unable to find payment by "{challenge_complete}".',
                provider=self.integration_type.value,
            )
            await self._record_failure(session, submission, field, amount, currency, error)
            return False

        try:
            self._validate_payment_values(token_id, session_key, amount, currency)
        except PaymentValidationError as e:
            logger.warning(
                "payment.validation_failed",
                integration=self.handle,
                submission_id=submission.id,
                message=str(e),
            )
            submission.add_error(field.handle, str(e))
            return False

        response: Optional[Dict[str, Any]] = None

        try:
            payload = self._get_payload(session_key, token_id, submission, amount, currency, context)

            event = self.hooks.trigger(
                IntegrationEvent.MODIFY_PAYMENT_PAYLOAD,
                ModifyPayloadEvent(integration=self, submission=submission, payload=payload),
            )

            response = await self.request("POST", "transactions", json=event.payload)

            acs_url = response.get("acsUrl")

            if acs_url:
                return await self._request_challenge(session, submission, field, amount, currency, response, context)

            status = response.get("status")
            if status != "Ok":
                raise PaymentError(
                    f"{_titleize(status)}: {response.get('statusDetail')}",
                    error_code=response.get("statusCode"),
                    provider=self.integration_type.value,
                    response=response,
                )

            await save_payment(
                session,
                self._new_payment(
                    submission_id=submission.id,
                    field_id=field.id,
                    amount=amount,
                    currency=currency,
                    status=PaymentStatus.SUCCESS,
                    reference=response.get("transactionId") or None,
                    response=response,
                ),
            )
            logger.info(
                "payment.captured",
                integration=self.handle,
                submission_id=submission.id,
                reference=response.get("transactionId"),
            )
            result = True

        except Exception as e:
            await self._record_failure(session, submission, field, amount, currency, e, response)
            return False

        # Allow observers to override the result
        return self.after_process_payment(submission, result)

    async def process_callback(
        self,
        params: Dict[str, Any],
        *,
        session: AsyncSession,
        context: RequestContext,
        redis_client: Any = None,
    ) -> CallbackResponse:
        """
        Handle a request to the payment callback endpoint.

        Either hands the browser a merchant session key, or completes a
        3-D Secure challenge and reports the outcome to the parent window.
        """
        if params.get("merchantSessionKey"):
            try:
                response = await self._create_merchant_session_key()
            except PaymentError as e:
                self.api_error(e)
                return CallbackResponse.json({"merchantSessionKey": None}, status_code=502)

            return CallbackResponse.json({"merchantSessionKey": response.get("merchantSessionKey")})

        cres = params.get("cres")
        raw_data = params.get("threeDSSessionData")

        if not cres or not raw_data:
            logger.warning("payment.callback.incomplete", integration=self.handle)
            return CallbackResponse.text("ok")

        data = decode_session_data(str(raw_data), self.signing_secret)

        if data is None:
            return CallbackResponse.text("ok")

        reference = data.reference

        if not await acquire_callback_lock(redis_client, reference):
            logger.info("payment.callback.locked", integration=self.handle, reference=reference)
            existing = await get_payment_by_reference(session, reference)
            return self._challenge_response(existing, reference)

        existing = await get_payment_by_reference(session, reference)

        if existing is not None and existing.status.is_terminal:
            logger.info(
                "payment.callback.duplicate",
                integration=self.handle,
                reference=reference,
                status=existing.status.value,
            )
            return self._challenge_response(existing, reference)

        response: Optional[Dict[str, Any]] = None

        try:
            response = await self.request(
                "POST",
                f"transactions/{reference}/3d-secure-challenge",
                json={"threeDSSessionData": reference, "cRes": cres},
            )

            status = response.get("status")
            if status != "Ok":
                raise PaymentError(
                    f"{_titleize(status)}: {response.get('statusDetail')}",
                    error_code=response.get("statusCode"),
                    provider=self.integration_type.value,
                    response=response,
                )

            if existing is None:
                raise PaymentConsistencyError(
                    f'Unable to find payment by "{reference}".',
                    provider=self.integration_type.value,
                )

            if not await complete_pending_payment(session, reference, PaymentStatus.SUCCESS, response):
                current = await get_payment_by_reference(session, reference)
                if current is None or current.status is not PaymentStatus.SUCCESS:
                    raise PaymentConsistencyError(
                        f'Payment "{reference}" is no longer pending.',
                        provider=self.integration_type.value,
                    )

            response_data: Dict[str, Any] = {"success": True, "transactionId": reference}

        except Exception as e:
            self.api_error(e, event="payment.error", reference=reference, response=response)
            error = {"message": str(e)}
            await self._record_callback_failure(session, data, error)
            response_data = {"error": error}

        # Tell the challenge iframe's parent to continue or abort the submission
        return CallbackResponse.post_message(CHALLENGE_RESPONSE_MESSAGE, response_data)

    async def _fetch_connection(self) -> None:
        await self._create_merchant_session_key()

    async def _fetch_form_settings(self) -> Dict[str, Any]:
        return {
            "billing_details": [
                IntegrationField(handle="billing_name", name="Billing Name", type=IntegrationFieldType.ARRAY),
                IntegrationField(handle="billing_email", name="Billing Email"),
                IntegrationField(handle="billing_address", name="Billing Address", type=IntegrationFieldType.ARRAY),
            ],
        }

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=SANDBOX_URL if self.use_sandbox else PRODUCTION_URL,
            auth=(
                self.secrets.resolve(self.config.get("integration_key")) or "",
                self.secrets.resolve(self.config.get("integration_password")) or "",
            ),
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _create_merchant_session_key(self) -> Dict[str, Any]:
        return await self.request(
            "POST",
            "merchant-session-keys",
            json={"vendorName": self.secrets.resolve(self.config.get("vendor_name"))},
        )

    def _validate_payment_values(
        self,
        token_id: Any,
        session_key: Any,
        amount: Optional[int],
        currency: Optional[str],
    ) -> None:
        if not token_id or not isinstance(token_id, str):
            raise PaymentValidationError(f"Missing `opayoTokenId` from payload: {token_id}.")

        if not session_key or not isinstance(session_key, str):
            raise PaymentValidationError(f"Missing `opayoSessionKey` from payload: {session_key}.")

        if not amount:
            raise PaymentValidationError(f"Missing `amount` from payload: {amount}.")

        if not currency:
            raise PaymentValidationError(f"Missing `currency` from payload: {currency}.")

    async def _request_challenge(
        self,
        session: AsyncSession,
        submission: Submission,
        field: FormField,
        amount: int,
        currency: str,
        response: Dict[str, Any],
        context: RequestContext,
    ) -> bool:
        reference = response.get("transactionId")

        if not reference:
            raise PaymentError(
                "3D Secure challenge requested without a transaction reference.",
                provider=self.integration_type.value,
                response=response,
            )

        await save_payment(
            session,
            self._new_payment(
                submission_id=submission.id,
                field_id=field.id,
                amount=amount,
                currency=currency,
                status=PaymentStatus.PENDING,
                reference=reference,
                response=response,
            ),
        )

        session_data = ChallengeSessionData(
            submission_id=submission.id,
            field_id=field.id,
            amount=amount,
            currency=currency,
            reference=reference,
        )

        submission.add_front_end_js_event({
            "event": CHALLENGE_EVENT,
            "data": {
                "acsUrl": response["acsUrl"],
                "creq": response.get("cReq", ""),
                "returnUrl": context.url_for(CALLBACK_PATH, handle=self.handle),
                "threeDSSessionData": encode_session_data(session_data, self.signing_secret),
            },
        })

        # Halt the submission until the challenge is completed in the browser
        submission.add_error(field.handle, CHALLENGE_REQUIRED_MESSAGE)

        logger.info(
            "payment.challenge.requested",
            integration=self.handle,
            submission_id=submission.id,
            reference=reference,
        )
        return False

    async def _record_failure(
        self,
        session: AsyncSession,
        submission: Submission,
        field: FormField,
        amount: Optional[int],
        currency: Optional[str],
        exception: Exception,
        response: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.api_error(exception, event="payment.error", submission_id=submission.id, response=response)

        submission.add_error(field.handle, str(exception))

        snapshot: Dict[str, Any] = {"message": str(exception)}
        if response:
            snapshot["response"] = response

        await save_payment(
            session,
            self._new_payment(
                submission_id=submission.id,
                field_id=field.id,
                amount=amount,
                currency=currency,
                status=PaymentStatus.FAILED,
                reference=(response or {}).get("transactionId") or None,
                response=snapshot,
            ),
        )

    async def _record_callback_failure(
        self,
        session: AsyncSession,
        data: ChallengeSessionData,
        error: Dict[str, Any],
    ) -> Payment:
        if await complete_pending_payment(session, data.reference, PaymentStatus.FAILED, error):
            return await get_payment_by_reference(session, data.reference)

        existing = await get_payment_by_reference(session, data.reference)
        if existing is not None:
            # Already terminal; leave it untouched
            return existing

        return await record_orphan_failure(
            session,
            self._new_payment(
                submission_id=data.submission_id,
                field_id=data.field_id,
                amount=data.amount,
                currency=data.currency,
                status=PaymentStatus.FAILED,
                reference=data.reference,
                response=error,
            ),
        )

    def _is_completed_challenge(
        self,
        payment: Optional[Payment],
        field: FormField,
        amount: Optional[int],
        currency: Optional[str],
    ) -> bool:
        """A resumed submission may only reuse a successful capture made for this field and total."""
        return (
            payment is not None
            and payment.status is PaymentStatus.SUCCESS
            and payment.integration_handle == self.handle
            and payment.field_id == field.id
            and payment.amount == amount
            and payment.currency == currency
        )

    def _challenge_response(self, payment: Optional[Payment], reference: str) -> CallbackResponse:
        if payment is not None and payment.status is PaymentStatus.SUCCESS:
            value: Dict[str, Any] = {"success": True, "transactionId": reference}
        elif payment is not None and payment.status is PaymentStatus.FAILED:
            value = {"error": payment.response or {"message": "Payment failed."}}
        else:
            value = {"error": {"message": f'Payment "{reference}" is still being processed.'}}

        return CallbackResponse.post_message(CHALLENGE_RESPONSE_MESSAGE, value)

    def _get_payload(
        self,
        session_key: str,
        token_id: str,
        submission: Submission,
        amount: int,
        currency: str,
        context: RequestContext,
    ) -> Dict[str, Any]:
        vendor_name = self.secrets.resolve(self.config.get("vendor_name"))

        payload: Dict[str, Any] = {
            "transactionType": "Payment",
            "paymentMethod": {
                "card": {
                    "merchantSessionKey": session_key,
                    "cardIdentifier": token_id,
                },
            },
            "vendorTxCode": f"{vendor_name}-{submission.id}-{uuid.uuid4().hex[:12]}",
            "amount": amount,
            "currency": currency,
            "description": str(submission.id),
            "apply3DSecure": "UseMSPSetting",
            "strongCustomerAuthentication": self._get_request_detail(context),
        }

        full_name = self._get_billing_value("billing_details.billing_name", submission) or {}
        if isinstance(full_name, str):
            first, _, last = full_name.strip().partition(" ")
            full_name = {"firstName": first, "lastName": last}
        if not full_name.get("firstName") and not full_name.get("lastName"):
            full_name = dict(FALLBACK_NAME)

        payload["customerFirstName"] = full_name.get("firstName")
        payload["customerLastName"] = full_name.get("lastName")

        email = self._get_billing_value("billing_details.billing_email", submission, IntegrationFieldType.STRING)
        if email:
            payload["customerEmail"] = email

        address = self._get_billing_value("billing_details.billing_address", submission) or {}
        if not isinstance(address, dict) or not address.get("address1"):
            address = dict(FALLBACK_ADDRESS)

        payload["billingAddress"] = {
            "address1": address.get("address1"),
            "city": address.get("city"),
            "postalCode": address.get("zip"),
            "country": address.get("country"),
        }

        return payload

    def _get_billing_value(
        self,
        setting: str,
        submission: Submission,
        field_type: IntegrationFieldType = IntegrationFieldType.ARRAY,
    ) -> Any:
        reference = self.get_field_setting(setting)
        if not reference:
            return None

        value = self.get_mapped_field_value(
            reference,
            submission,
            IntegrationField(handle=setting, name=setting, type=field_type),
        )

        if isinstance(value, list):
            return value[0] if len(value) == 1 else None

        return value

    def _get_request_detail(self, context: RequestContext) -> Dict[str, Any]:
        return {
            "website": context.origin or context.site_url,
            "notificationURL": context.url_for(CALLBACK_PATH, handle=self.handle),
            "browserIP": context.client_ip,
            "browserAcceptHeader": context.accept,
            "browserJavascriptEnabled": False,
            "browserJavaEnabled": False,
            "browserLanguage": context.language,
            "browserColorDepth": "16",
            "browserScreenHeight": "768",
            "browserScreenWidth": "1200",
            "browserTZ": "+300",
            "browserUserAgent": context.user_agent,
            "challengeWindowSize": "Small",
            "threeDSRequestorChallengeInd": "02",
            "requestSCAExemption": False,
            "transType": "GoodsAndServicePurchase",
            "threeDSRequestorDecReqInd": "N",
        }
