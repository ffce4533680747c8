"""Tenantry core: state store, transition guard, and domain vocabulary."""

__version__ = "0.3.0"
