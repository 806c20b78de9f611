"""
Exception types shared across the revenue scan package.
"""

from __future__ import annotations


class LeakRadarError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(LeakRadarError):
    """Raised when an environment setting is present but unusable."""


class CredentialError(LeakRadarError):
    """Raised when a stored API key cannot be encrypted or decrypted."""


class BillingNotConnectedError(LeakRadarError):
    """Raised when an organization has no linked billing account."""


class ArrCalculationError(LeakRadarError):
    """Raised when ARR cannot be computed from billing data."""


class BillingAccountInUseError(LeakRadarError):
    """Raised when a Stripe account is already linked to another organization."""
