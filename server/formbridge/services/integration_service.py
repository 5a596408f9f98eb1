from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Optional

from formbridge.core.config import Settings, get_settings
from formbridge.core.logging import get_logger
from formbridge.integrations.base import (
    ConfigurationError,
    Integration,
    IntegrationFactory,
    IntegrationType,
)
from formbridge.integrations.context import SecretResolver
from formbridge.integrations.hooks import IntegrationHooks

logger = get_logger(__name__)


def build_integrations(
    settings: Settings,
    hooks: Optional[IntegrationHooks] = None,
    secrets: Optional[SecretResolver] = None,
    **collaborators: Any,
) -> Dict[str, Integration]:
    """
    Create every configured integration, keyed by handle.

    The concrete adapter for each entry is resolved from its ``type``
    through :class:`IntegrationFactory`. Payment adapters sign their
    challenge bundles with ``settings.secret_key`` unless the entry
    provides its own ``signing_secret``.
    """
    hooks = hooks or IntegrationHooks()
    secrets = secrets or SecretResolver()
    integrations: Dict[str, Integration] = {}

    for handle, entry in settings.integrations.items():
        config = dict(entry)
        integration_type = IntegrationType(config.pop("type"))

        if integration_type is IntegrationType.OPAYO:
            config.setdefault("signing_secret", settings.secret_key)

        options = {
            "hooks": hooks,
            "secrets": secrets,
            "timeout": settings.http_timeout_seconds,
            **collaborators,
            **config,
        }
        integrations[handle] = IntegrationFactory.create_integration(integration_type, handle, **options)
        logger.info("integration.loaded", integration=handle, integration_type=integration_type.value)

    return integrations


@lru_cache(maxsize=None)
def get_integrations() -> Dict[str, Integration]:
    """Integrations built from the cached settings, resolved once per process."""
    return build_integrations(get_settings())


def get_integration(handle: str, integrations: Optional[Dict[str, Integration]] = None) -> Integration:
    integrations = get_integrations() if integrations is None else integrations
    try:
        return integrations[handle]
    except KeyError:
        raise ConfigurationError(f"Unknown integration handle: {handle}")


def clear_integrations_cache() -> None:
    get_integrations.cache_clear()


async def close_integrations() -> None:
    """Release the HTTP clients of integrations that have been loaded."""
    if get_integrations.cache_info().currsize == 0:
        return

    for integration in get_integrations().values():
        await integration.close()

    clear_integrations_cache()
