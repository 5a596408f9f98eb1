"""
Integration test modules

Tests for external system integrations including:
- CRM systems (Mercury)
- Payment gateways (Opayo), including 3-D Secure callbacks
"""
