"""
CRM Integration Base

Shared delivery logic for CRM adapters: payload hooks, vendor error
handling and the policy that decides whether a vendor rejection blocks
the local submission.
"""

from abc import abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from formbridge.core.logging import get_logger

from ..base import Integration, IntegrationCategory, IntegrationError
from ..hooks import IntegrationEvent, SendPayloadEvent
from ..submission import Submission

logger = get_logger(__name__)


class CrmFailurePolicy(str, Enum):
    """What ``send_payload`` reports when the vendor rejects a delivery."""
    DO_NOT_BLOCK = "do_not_block"  # report success so the submission completes
    BLOCK = "block"  # report failure so the caller can react


class Crm(Integration):
    """Base class for CRM integrations."""

    category = IntegrationCategory.CRM

    def __init__(self, handle: str, **config):
        super().__init__(handle, **config)
        self.failure_policy = CrmFailurePolicy(self.config.get("failure_policy", CrmFailurePolicy.DO_NOT_BLOCK))

    @abstractmethod
    async def send_payload(self, submission: Submission) -> bool:
        """
        Deliver ``submission`` to the CRM.

        Returns:
            True when delivered, or when the vendor rejected the delivery and
            the failure policy is ``DO_NOT_BLOCK``. False on unexpected errors
            or a rejection under ``BLOCK``.
        """
        pass

    async def deliver_payload(
        self,
        submission: Submission,
        endpoint: str,
        payload: Dict[str, Any],
        method: str = "POST",
    ) -> Optional[Dict[str, Any]]:
        """
        Send one payload to ``endpoint``.

        Returns:
            The decoded vendor response, or None if an observer cancelled the
            delivery or the vendor rejected it (already logged).
        """
        event = self.hooks.trigger(
            IntegrationEvent.BEFORE_SEND_PAYLOAD,
            SendPayloadEvent(integration=self, submission=submission, endpoint=endpoint, payload=payload),
        )

        if not event.is_valid:
            logger.info(
                "integration.payload.cancelled",
                integration=self.handle,
                endpoint=endpoint,
                submission_id=submission.id,
            )
            return None

        try:
            response = await self.request(method, endpoint, json=event.payload)
        except IntegrationError as e:
            self.api_error(e, endpoint=endpoint, response=e.response)
            return None

        event.response = response
        self.hooks.trigger(IntegrationEvent.AFTER_SEND_PAYLOAD, event)

        logger.info(
            "integration.payload.delivered",
            integration=self.handle,
            endpoint=endpoint,
            submission_id=submission.id,
        )
        return response

    def _soft_failure_result(self, submission: Submission, endpoint: str) -> bool:
        blocking = self.failure_policy is CrmFailurePolicy.BLOCK
        logger.warning(
            "integration.payload.rejected",
            integration=self.handle,
            endpoint=endpoint,
            submission_id=submission.id,
            blocking=blocking,
        )
        return not blocking
