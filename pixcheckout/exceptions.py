"""
Checkout error hierarchy.

Every failure that can reach the HTTP layer is one of these kinds; transport
and database errors are translated at the boundary that catches them.
"""
from typing import Any, Dict, Optional


class CheckoutError(Exception):
    """Base class for errors surfaced to operators and payers."""

    status_code = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(CheckoutError):
    """
    Input rejected before any side effect.

    Examples:
    - Amount below the PIX minimum
    - Submitting payer details while a charge is already active
    """

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("validation:invalid", message, details)


class ConfigurationError(CheckoutError):
    """Provider API key (or another required setting) is missing."""

    status_code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("config:missing", message, details)


class ProviderError(CheckoutError):
    """
    Provider rejected the request.

    The message is the provider's own, so the payer can correct the input
    (e.g. a malformed CPF) and resubmit.
    """

    status_code = 422

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("provider:rejected", message, details)


class TransientNetworkError(CheckoutError):
    """Provider unreachable, timed out or answered with a server error."""

    status_code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("provider:unavailable", message, details)


class NotFoundError(CheckoutError):
    """Intent id unknown: the link is invalid or expired."""

    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:not_found", message, details)


class PersistenceError(CheckoutError):
    """Intent store read or write failed."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("storage:unavailable", message, details)
