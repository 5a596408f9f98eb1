"""
CRM integration modules

Adapters that push form submissions into customer relationship
management systems.
"""

from .base import Crm, CrmFailurePolicy
from .mercury_adapter import MercuryAdapter

__all__ = [
    "Crm",
    "CrmFailurePolicy",
    "MercuryAdapter",
]
