"""Business logic services for the Tenantry API."""
