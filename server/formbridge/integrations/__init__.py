"""
Integration modules for formbridge

Contains adapters for external systems a form submission is sent to:
- CRM systems (Mercury)
- Payment gateways (Opayo)
"""

from .base import IntegrationFactory, IntegrationType


def _register_builtin_integrations():
    """Register built-in integration implementations."""
    from .crm.mercury_adapter import MercuryAdapter
    from .payments.opayo_adapter import OpayoAdapter

    IntegrationFactory.register_integration(IntegrationType.MERCURY, MercuryAdapter)
    IntegrationFactory.register_integration(IntegrationType.OPAYO, OpayoAdapter)


_register_builtin_integrations()
