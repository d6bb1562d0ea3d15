"""Exception types raised by the credit basket engine."""

from typing import List, Optional


class CreditBasketError(Exception):
    """Base class for all errors raised by this package."""


class BasketConfigurationError(CreditBasketError, ValueError):
    """Invalid construction-time configuration (lengths, ranges, families)."""


class CopulaConfigurationError(BasketConfigurationError):
    """Unsupported copula family or invalid copula parameters."""


class BasketValidationError(CreditBasketError, ValueError):
    """Domain violations collected by ``validate(errors)`` before a computation.

    Attributes:
        errors: List of human readable error messages
    """

    def __init__(self, errors: List[str], context: Optional[str] = None):
        self.errors = list(errors)
        header = f"{context}: " if context else ""
        super().__init__(header + "; ".join(self.errors))


class StaleBasketError(CreditBasketError):
    """Query on a basket whose inputs changed since the last computation."""
