from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from formbridge.api.dependencies.database import get_db
from formbridge.api.dependencies.integrations import (
    get_integration_registry,
    get_request_context,
    resolve_integration,
)
from formbridge.core.logging import get_logger
from formbridge.integrations.base import Integration
from formbridge.integrations.context import RequestContext
from formbridge.integrations.crm.base import Crm
from formbridge.integrations.payments.base import PaymentIntegration
from formbridge.integrations.submission import FormField, Submission
from formbridge.schemas.integration import (
    ConnectionResult,
    FormSettingsRead,
    IntegrationSummary,
    SubmissionCreate,
    SubmissionResult,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("", response_model=list[IntegrationSummary])
async def list_integrations(
    integrations: dict[str, Integration] = Depends(get_integration_registry),
) -> list[IntegrationSummary]:
    summaries = []
    for handle, integration in integrations.items():
        result = integration.validate_configuration()
        summaries.append(
            IntegrationSummary(
                handle=handle,
                type=integration.integration_type,
                category=integration.category,
                name=integration.display_name,
                enabled=integration.enabled,
                valid=result.is_valid,
                errors=result.errors,
            )
        )
    return summaries


@router.get("/{handle}/form-settings", response_model=FormSettingsRead)
async def get_form_settings(integration: Integration = Depends(resolve_integration)) -> FormSettingsRead:
    form_settings = await integration.fetch_form_settings()
    return FormSettingsRead(handle=integration.handle, settings=form_settings.to_dict())


@router.post("/{handle}/check-connection", response_model=ConnectionResult)
async def check_connection(integration: Integration = Depends(resolve_integration)) -> ConnectionResult:
    return ConnectionResult(success=await integration.fetch_connection())


@router.post("/{handle}/submissions", response_model=SubmissionResult)
async def process_submission(
    payload: SubmissionCreate,
    integration: Integration = Depends(resolve_integration),
    context: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_db),
) -> SubmissionResult:
    if not integration.enabled:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Integration is disabled")

    submission = Submission(
        id=payload.id,
        form_handle=payload.form_handle,
        fields=[FormField(**form_field.model_dump()) for form_field in payload.fields],
        values=payload.values,
    )

    if isinstance(integration, PaymentIntegration):
        success = await integration.process_payment(submission, session=session, context=context)
        await session.commit()
    elif isinstance(integration, Crm):
        success = await integration.send_payload(submission)
    else:  # pragma: no cover - every registered adapter is a CRM or payment integration
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Unsupported integration")

    logger.info(
        "submission.processed",
        integration=integration.handle,
        submission_id=submission.id,
        success=success,
    )

    return SubmissionResult(
        success=success and not submission.has_errors(),
        errors=submission.errors,
        front_end_js_events=submission.front_end_js_events,
    )
