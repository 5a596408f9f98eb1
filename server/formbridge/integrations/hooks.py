"""
Integration Hooks

Observer registry for the extension points adapters expose around
payload delivery and payment processing. Observers run synchronously in
registration order and receive a mutable event object.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, DefaultDict, Dict, List, Optional

from formbridge.core.logging import get_logger

if TYPE_CHECKING:
    from .base import Integration
    from .submission import Submission

logger = get_logger(__name__)


class IntegrationEvent(str, Enum):
    """Extension points raised by integrations."""
    BEFORE_PROCESS_PAYMENT = "before_process_payment"
    MODIFY_PAYMENT_PAYLOAD = "modify_payment_payload"
    AFTER_PROCESS_PAYMENT = "after_process_payment"
    BEFORE_SEND_PAYLOAD = "before_send_payload"
    AFTER_SEND_PAYLOAD = "after_send_payload"
    API_ERROR = "api_error"


@dataclass
class ProcessPaymentEvent:
    """
    Raised before and after a payment is processed.

    Before processing, setting ``is_valid`` to False cancels the payment and
    lets the submission continue. After processing, observers may replace
    ``result``.
    """
    integration: "Integration"
    submission: "Submission"
    is_valid: bool = True
    result: Optional[bool] = None


@dataclass
class ModifyPayloadEvent:
    """Raised with the vendor payload before it is transmitted."""
    integration: "Integration"
    submission: "Submission"
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SendPayloadEvent:
    """Raised around each CRM delivery call."""
    integration: "Integration"
    submission: "Submission"
    endpoint: str
    payload: Dict[str, Any] = field(default_factory=dict)
    response: Optional[Dict[str, Any]] = None
    is_valid: bool = True


@dataclass
class ApiErrorEvent:
    """Raised whenever a vendor call fails."""
    integration: "Integration"
    exception: BaseException


HookCallback = Callable[[Any], None]


class IntegrationHooks:
    """Registry of observers keyed by :class:`IntegrationEvent`."""

    def __init__(self):
        self._callbacks: DefaultDict[IntegrationEvent, List[HookCallback]] = defaultdict(list)

    def register(self, event: IntegrationEvent, callback: HookCallback) -> None:
        """Register an observer. Observers run in the order they were registered."""
        self._callbacks[IntegrationEvent(event)].append(callback)

    def unregister(self, event: IntegrationEvent, callback: HookCallback) -> None:
        """Remove a previously registered observer."""
        callbacks = self._callbacks.get(IntegrationEvent(event), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def has_observers(self, event: IntegrationEvent) -> bool:
        return bool(self._callbacks.get(IntegrationEvent(event)))

    def trigger(self, event_name: IntegrationEvent, event: Any) -> Any:
        """Invoke every observer for ``event_name`` and return the (possibly mutated) event."""
        for callback in list(self._callbacks.get(IntegrationEvent(event_name), [])):
            callback(event)

        if self._callbacks.get(IntegrationEvent(event_name)):
            logger.debug("integration.hook.triggered", hook=IntegrationEvent(event_name).value)

        return event
