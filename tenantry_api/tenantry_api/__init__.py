"""Tenantry API: team invitations and billing reconciliation over HTTP."""

__version__ = "0.3.0"
