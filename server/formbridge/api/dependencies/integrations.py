from fastapi import Depends, HTTPException, Request, status

from formbridge.core.config import Settings, get_settings
from formbridge.integrations.base import ConfigurationError, Integration
from formbridge.integrations.context import RequestContext
from formbridge.services.integration_service import get_integration, get_integrations


def get_integration_registry() -> dict[str, Integration]:
    return get_integrations()


def resolve_integration(
    handle: str,
    integrations: dict[str, Integration] = Depends(get_integration_registry),
) -> Integration:
    try:
        return get_integration(handle, integrations)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


def get_request_context(request: Request, settings: Settings = Depends(get_settings)) -> RequestContext:
    return RequestContext.from_request(request, settings.site_url)
