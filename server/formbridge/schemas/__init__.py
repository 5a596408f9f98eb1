from formbridge.schemas.integration import (
    ConnectionResult,
    FormSettingsRead,
    IntegrationSummary,
    SubmissionCreate,
    SubmissionResult,
)
from formbridge.schemas.payment import PaymentRead

__all__ = [
    "ConnectionResult",
    "FormSettingsRead",
    "IntegrationSummary",
    "PaymentRead",
    "SubmissionCreate",
    "SubmissionResult",
]
