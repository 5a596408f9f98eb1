"""
3-D Secure session bundle.

The context needed to finish a challenged payment travels through the
browser and the card issuer as ``threeDSSessionData``: base64 encoded JSON
carrying an HMAC-SHA256 signature over the remaining keys.
"""

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from formbridge.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChallengeSessionData:
    submission_id: Optional[str]
    field_id: Optional[str]
    amount: Optional[int]
    currency: Optional[str]
    reference: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "submissionId": self.submission_id,
            "fieldId": self.field_id,
            "amount": self.amount,
            "currency": self.currency,
            "reference": self.reference,
        }


def _sign(payload: Dict[str, Any], secret: str) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), canonical, hashlib.sha256).hexdigest()


def encode_session_data(data: ChallengeSessionData, secret: str) -> str:
    payload = data.to_payload()
    payload["signature"] = _sign(data.to_payload(), secret)
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_session_data(raw: str, secret: str) -> Optional[ChallengeSessionData]:
    """
    Decode and verify a bundle produced by :func:`encode_session_data`.

    Returns:
        The decoded data, or None when the bundle is malformed, unsigned,
        tampered with or missing its reference.
    """
    try:
        payload = json.loads(base64.b64decode(raw.encode("ascii"), validate=True))
    except (binascii.Error, UnicodeError, ValueError):
        logger.warning("payment.bundle.malformed")
        return None

    if not isinstance(payload, dict):
        logger.warning("payment.bundle.malformed")
        return None

    signature = payload.pop("signature", None)
    if not isinstance(signature, str) or not hmac.compare_digest(_sign(payload, secret), signature):
        logger.warning("payment.bundle.signature_invalid", reference=payload.get("reference"))
        return None

    reference = payload.get("reference")
    if not reference:
        logger.warning("payment.bundle.missing_reference")
        return None

    return ChallengeSessionData(
        submission_id=payload.get("submissionId"),
        field_id=payload.get("fieldId"),
        amount=payload.get("amount"),
        currency=payload.get("currency"),
        reference=str(reference),
    )
