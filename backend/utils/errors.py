"""
Error taxonomy for the hazard map backend.

- ValidationError: bad or missing input from the caller (HTTP 400)
- RoutingProviderError: the external routing engine failed (HTTP 500)
- StorageError: the persistent incident backend failed; recovered inside
  the store by falling back to memory and never returned to the caller
"""
from typing import Optional


class ValidationError(Exception):
    """Raised when required input is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        payload = {'error': self.message}
        if self.field:
            payload['field'] = self.field
        return payload


class RoutingProviderError(Exception):
    """Raised when the routing provider call fails or returns a failure status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider_status: Optional[int] = None,
        is_gateway_error: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider_status = provider_status
        self.is_gateway_error = is_gateway_error


class StorageError(Exception):
    """Raised when the persistent incident backend cannot be reached."""
    pass
