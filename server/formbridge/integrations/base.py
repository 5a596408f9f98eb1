"""
Integration Base Classes and Interfaces

Defines the contract and shared plumbing for every outbound vendor
integration: configuration validation, schema (form settings) discovery,
connection checks, field-mapping resolution and vendor HTTP requests.
"""

import re
import traceback
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from formbridge.core.logging import get_logger

from .context import SecretResolver
from .hooks import ApiErrorEvent, IntegrationEvent, IntegrationHooks
from .submission import Submission

logger = get_logger(__name__)


class IntegrationType(str, Enum):
    """Supported integration types."""
    MERCURY = "mercury"
    OPAYO = "opayo"


class IntegrationCategory(str, Enum):
    """Broad family an integration belongs to."""
    CRM = "crm"
    PAYMENT = "payment"


class IntegrationFieldType(str, Enum):
    """Value shape expected by a remote attribute."""
    STRING = "string"
    NUMBER = "number"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    ARRAY = "array"


@dataclass(frozen=True)
class IntegrationField:
    """A single mappable attribute on a remote object."""
    handle: str
    name: str
    required: bool = False
    type: IntegrationFieldType = IntegrationFieldType.STRING
    options: Optional[List[Dict[str, Any]]] = None


# Remote attribute handle -> local reference. A reference is either a
# constant or a token such as ``{email}`` / ``{address.city}`` that is
# read from the submission. Insertion order is preserved.
FieldMapping = Dict[str, Any]


@dataclass
class IntegrationFormSettings:
    """Mappable fields an integration exposes, keyed by remote object type."""
    settings: Dict[str, List[IntegrationField]] = field(default_factory=dict)

    def get_setting_value(self, key: str) -> List[IntegrationField]:
        return self.settings.get(key, [])

    def is_empty(self) -> bool:
        return not any(self.settings.values())

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            key: [
                {
                    "handle": integration_field.handle,
                    "name": integration_field.name,
                    "required": integration_field.required,
                    "type": integration_field.type.value,
                }
                for integration_field in fields
            ]
            for key, fields in self.settings.items()
        }


@dataclass
class ValidationResult:
    """Field-level configuration errors."""
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not any(self.errors.values())

    def add_error(self, attribute: str, message: str) -> None:
        self.errors.setdefault(attribute, []).append(message)


class IntegrationError(Exception):
    """Vendor or transport failure raised by an integration."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.error_message = message
        self.error_code = error_code
        self.provider = provider
        self.status_code = status_code
        self.response = response


class ConfigurationError(Exception):
    """Integration configuration cannot be used."""


class Integration(ABC):
    """Abstract base class for vendor integrations."""

    SCENARIO_SETTINGS = "settings"
    SCENARIO_FORM = "form"

    category: IntegrationCategory
    display_name: str = ""
    description: str = ""
    error_class: type = IntegrationError

    TOKEN_PATTERN = re.compile(r"\{([^{}]+)\}")

    def __init__(self, handle: str, **config):
        """
        Initialize the integration.

        Args:
            handle: Stable identifier of this configured instance
            **config: Adapter settings. ``hooks``, ``secrets``, ``transport``
                and ``timeout`` are reserved for collaborators.
        """
        self.handle = handle
        self.hooks: IntegrationHooks = config.pop("hooks", None) or IntegrationHooks()
        self.secrets: SecretResolver = config.pop("secrets", None) or SecretResolver()
        self.transport: Optional[httpx.AsyncBaseTransport] = config.pop("transport", None)
        self.timeout: float = config.pop("timeout", 30.0)
        self.enabled: bool = config.pop("enabled", True)
        self.config = config
        self.integration_type = self._get_integration_type()
        self._client: Optional[httpx.AsyncClient] = None

    @abstractmethod
    def _get_integration_type(self) -> IntegrationType:
        """Return the integration type identifier."""
        pass

    @abstractmethod
    def _validate_settings(self, result: ValidationResult, scenario: str) -> None:
        """Add configuration errors for ``scenario`` to ``result``."""
        pass

    @abstractmethod
    async def _fetch_form_settings(self) -> Dict[str, List[IntegrationField]]:
        """Return mappable fields keyed by remote object type."""
        pass

    @abstractmethod
    async def _fetch_connection(self) -> None:
        """Issue a lightweight read call; raise on failure."""
        pass

    @abstractmethod
    def _create_client(self) -> httpx.AsyncClient:
        """Build the HTTP client for the configured environment."""
        pass

    def validate_configuration(self, scenario: str = SCENARIO_SETTINGS) -> ValidationResult:
        """Check required settings for ``scenario``. Never raises."""
        result = ValidationResult()

        try:
            self._validate_settings(result, scenario)
        except Exception as e:
            self.log_error(e)
            result.add_error("general", f"Unable to validate settings: {e}")

        return result

    def has_valid_settings(self) -> bool:
        return self.validate_configuration().is_valid

    async def fetch_form_settings(self) -> IntegrationFormSettings:
        """
        Fetch the remote fields available for mapping.

        Returns:
            IntegrationFormSettings keyed by remote object type. Failures are
            logged and produce an empty result; they never propagate.
        """
        settings: Dict[str, List[IntegrationField]] = {}

        try:
            settings = await self._fetch_form_settings()
        except Exception as e:
            self.api_error(e)

        return IntegrationFormSettings(settings)

    async def fetch_connection(self) -> bool:
        """
        Check the vendor is reachable with the configured credentials.

        Returns:
            True if the vendor responded, False (after logging) otherwise
        """
        try:
            await self._fetch_connection()
        except Exception as e:
            self.api_error(e)
            return False

        return True

    def get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Make a request against the vendor API and decode the JSON body.

        Raises:
            IntegrationError (or the adapter's ``error_class``): on transport
            failures, timeouts and non-2xx responses
        """
        client = self.get_client()

        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise self.error_class(
                f"Transport error calling {method} {path}: {e}",
                error_code="transport_error",
                provider=self.integration_type.value,
            ) from e

        data = self._decode_response(response)

        if response.status_code >= 400:
            raise self.error_class(
                self._get_error_message(response, data),
                error_code=str(response.status_code),
                provider=self.integration_type.value,
                status_code=response.status_code,
                response=data,
            )

        return data

    def _decode_response(self, response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {"body": response.text}
        return data if isinstance(data, dict) else {"data": data}

    def _get_error_message(self, response: httpx.Response, data: Dict[str, Any]) -> str:
        detail = data.get("description") or data.get("message") or data.get("statusDetail") or response.text
        return f"{self.display_name} API error ({response.status_code}): {detail}"

    def log_error(self, exception: BaseException, event: str = "integration.api_error", **extra: Any) -> None:
        """Log ``exception`` with the file and line it was raised from."""
        frames = traceback.extract_tb(exception.__traceback__) if exception.__traceback__ else []
        origin = frames[-1] if frames else None

        logger.error(
            event,
            integration=self.handle,
            integration_type=self.integration_type.value,
            message=str(exception),
            file=origin.filename if origin else None,
            line=origin.lineno if origin else None,
            **extra,
        )

    def api_error(self, exception: BaseException, **extra: Any) -> None:
        """Log a vendor failure and notify ``API_ERROR`` observers. Never raises."""
        self.log_error(exception, **extra)

        try:
            self.hooks.trigger(IntegrationEvent.API_ERROR, ApiErrorEvent(integration=self, exception=exception))
        except Exception as e:
            self.log_error(e, event="integration.hook_error", hook=IntegrationEvent.API_ERROR.value)

    def _require(self, result: ValidationResult, attribute: str, label: str) -> None:
        value = self.secrets.resolve(self.config.get(attribute))
        if value is None or (isinstance(value, str) and not value.strip()):
            result.add_error(attribute, f"{label} cannot be blank.")

    def _validate_field_mapping(
        self,
        result: ValidationResult,
        attribute: str,
        fields: List[IntegrationField],
    ) -> None:
        mapping = self.config.get(attribute) or {}
        for integration_field in fields:
            if integration_field.required and not mapping.get(integration_field.handle):
                result.add_error(attribute, f"{integration_field.name} must be configured.")

    def get_field_mapping_values(
        self,
        submission: Submission,
        field_mapping: Optional[FieldMapping],
        fields: List[IntegrationField],
    ) -> Dict[str, Any]:
        """Resolve ``field_mapping`` against ``submission``, dropping empty values."""
        fields_by_handle = {integration_field.handle: integration_field for integration_field in fields}
        values: Dict[str, Any] = {}

        for handle, reference in (field_mapping or {}).items():
            integration_field = fields_by_handle.get(handle) or IntegrationField(handle=handle, name=handle)
            value = self.get_mapped_field_value(reference, submission, integration_field)

            if value is None or value == "" or value == [] or value == {}:
                continue

            values[handle] = value

        return values

    def get_mapped_field_value(
        self,
        reference: Any,
        submission: Submission,
        integration_field: Optional[IntegrationField] = None,
    ) -> Any:
        """
        Resolve a single mapping reference.

        A reference that is exactly one token returns the raw submission value
        (so structured values such as names and addresses survive); tokens
        embedded in text are interpolated as strings.
        """
        if reference is None or reference == "":
            return None

        if isinstance(reference, str):
            match = self.TOKEN_PATTERN.fullmatch(reference.strip())
            if match:
                value = submission.get_field_value(self._token_path(match.group(1)))
            else:
                value = self.TOKEN_PATTERN.sub(
                    lambda m: self._stringify(submission.get_field_value(self._token_path(m.group(1)))),
                    reference,
                )
        else:
            value = reference

        return self._convert_value(value, integration_field)

    def _token_path(self, token: str) -> str:
        token = token.strip()
        if token.startswith("field:"):
            token = token[len("field:"):]
        return token

    def _stringify(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, dict):
            return " ".join(self._stringify(item) for item in value.values() if item not in (None, ""))
        if isinstance(value, (list, tuple)):
            return ", ".join(self._stringify(item) for item in value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return str(value)

    def _convert_value(self, value: Any, integration_field: Optional[IntegrationField]) -> Any:
        field_type = integration_field.type if integration_field else IntegrationFieldType.STRING

        if value is None:
            return [] if field_type is IntegrationFieldType.ARRAY else None

        if field_type is IntegrationFieldType.ARRAY:
            if isinstance(value, (dict, list)):
                return value
            if isinstance(value, tuple):
                return list(value)
            return [value]

        if field_type in (IntegrationFieldType.NUMBER, IntegrationFieldType.FLOAT):
            try:
                number = Decimal(str(value).strip())
            except (InvalidOperation, ValueError):
                return None
            if field_type is IntegrationFieldType.NUMBER and number == number.to_integral_value():
                return int(number)
            return float(number)

        if field_type is IntegrationFieldType.BOOLEAN:
            if isinstance(value, str):
                return value.strip().lower() in SecretResolver.TRUE_VALUES
            return bool(value)

        if field_type is IntegrationFieldType.DATE:
            if isinstance(value, datetime):
                return value.date().isoformat()
            if isinstance(value, date):
                return value.isoformat()
            return self._stringify(value)

        if field_type is IntegrationFieldType.DATETIME:
            if isinstance(value, (datetime, date)):
                return value.isoformat()
            return self._stringify(value)

        return self._stringify(value)


class IntegrationFactory:
    """Registry of integration implementations keyed by type."""

    _integrations: Dict[IntegrationType, type] = {}

    @classmethod
    def register_integration(
        cls,
        integration_type: IntegrationType,
        integration_class: type[Integration]
    ):
        """Register an integration implementation."""
        cls._integrations[IntegrationType(integration_type)] = integration_class

    @classmethod
    def create_integration(
        cls,
        integration_type: IntegrationType,
        handle: str,
        **config
    ) -> Integration:
        """Create an integration instance."""
        try:
            integration_class = cls._integrations[IntegrationType(integration_type)]
        except (KeyError, ValueError):
            raise ConfigurationError(f"Unsupported integration type: {integration_type}")

        return integration_class(handle, **config)

    @classmethod
    def get_supported_integrations(cls) -> List[IntegrationType]:
        """Get list of registered integration types."""
        return list(cls._integrations.keys())
