"""Services package."""
from services.integration_store import IntegrationStore

__all__ = ["IntegrationStore"]
