"""
Domain exceptions for the payment reconciliation flow.

Routes translate these into HTTP responses; the M-Pesa callback handler
never lets them escape.
"""
from typing import Optional


class BillingError(Exception):
    """Base class for billing and payment errors."""


class ValidationError(BillingError):
    """Bad input shape (phone number, amount, missing reference)."""


class ConfigError(BillingError):
    """Missing provider credentials or callback configuration."""


class ProviderError(BillingError):
    """Non-success response from the mobile-money provider."""

    def __init__(self, message: str, response_code: Optional[str] = None):
        super().__init__(message)
        self.response_code = response_code


class NotFoundError(BillingError):
    """Unknown plan, payment or checkout request id."""


class ReconciliationError(BillingError):
    """Callback references a checkout request id with no payment row."""


class PersistenceError(BillingError):
    """Provider accepted a request but the local record could not be saved."""
