from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from formbridge.api.dependencies.database import get_db
from formbridge.api.dependencies.integrations import get_request_context, resolve_integration
from formbridge.api.dependencies.redis import get_redis_client
from formbridge.integrations.base import Integration
from formbridge.integrations.context import RequestContext
from formbridge.integrations.payments.base import CallbackResponse, PaymentIntegration
from formbridge.models.payment import Payment
from formbridge.schemas.payment import PaymentRead
from formbridge.services.payment_service import get_payment_by_reference

router = APIRouter(prefix="/payment-webhooks", tags=["payments"])


async def _callback_params(request: Request) -> dict[str, Any]:
    params: dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            body = await request.json()
            if isinstance(body, dict):
                params.update(body)
        else:
            form = await request.form()
            params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


def _to_response(callback_response: CallbackResponse) -> Response:
    if callback_response.media_type == "application/json":
        return JSONResponse(callback_response.content, status_code=callback_response.status_code)
    if callback_response.media_type == "text/html":
        return HTMLResponse(callback_response.content, status_code=callback_response.status_code)
    return PlainTextResponse(callback_response.content, status_code=callback_response.status_code)


@router.api_route("/process-callback", methods=["GET", "POST"])
async def process_callback(
    request: Request,
    integration: Integration = Depends(resolve_integration),
    context: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_db),
    redis_client: Redis | None = Depends(get_redis_client),
) -> Response:
    if not isinstance(integration, PaymentIntegration) or not integration.supports_callbacks():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration does not accept callbacks")

    params = await _callback_params(request)
    callback_response = await integration.process_callback(
        params,
        session=session,
        context=context,
        redis_client=redis_client,
    )
    await session.commit()
    return _to_response(callback_response)


@router.get("/payments/{reference}", response_model=PaymentRead)
async def read_payment(reference: str, session: AsyncSession = Depends(get_db)) -> PaymentRead:
    payment: Payment | None = await get_payment_by_reference(session, reference)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    await session.refresh(payment)
    return PaymentRead.model_validate(payment)
