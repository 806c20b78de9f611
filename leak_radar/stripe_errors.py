"""
Classification of Stripe and network failures seen during a scan.
"""

from __future__ import annotations

from dataclasses import dataclass

import requests
import stripe


@dataclass(frozen=True)
class StripeErrorInfo:
    should_retry: bool
    is_partial: bool
    log_message: str


_NETWORK_CODES = {"ENOTFOUND", "ETIMEDOUT", "ECONNREFUSED"}

# Most specific classes first; several inherit from each other in the SDK.
_STRIPE_RULES = (
    (stripe.CardError, False, "Stripe card error - customer payment method issue"),
    (stripe.RateLimitError, True, "Stripe rate limit hit - will retry"),
    (stripe.IdempotencyError, False, "Stripe idempotency error"),
    (stripe.InvalidRequestError, False, "Stripe invalid request error"),
    (stripe.AuthenticationError, False, "Stripe authentication error - service issue"),
    (stripe.PermissionError, False, "Stripe permission error - API key issue"),
    (stripe.APIConnectionError, False, "Stripe connection error - service issue"),
    (stripe.APIError, False, "Stripe API error - service issue"),
)


def classify_stripe_error(error: BaseException) -> StripeErrorInfo:
    """Map an exception raised while talking to Stripe to a retry/log decision.

    Every failure marks the scan partial; only throttling and transient network
    problems are worth retrying on the next run.
    """
    for error_class, retry, message in _STRIPE_RULES:
        if isinstance(error, error_class):
            return StripeErrorInfo(should_retry=retry, is_partial=True, log_message=message)

    if isinstance(error, stripe.StripeError):
        return StripeErrorInfo(
            should_retry=False,
            is_partial=True,
            log_message=f"Stripe error type: {type(error).__name__}",
        )

    if isinstance(error, (requests.ConnectionError, requests.Timeout, TimeoutError, ConnectionError)):
        return StripeErrorInfo(
            should_retry=True,
            is_partial=True,
            log_message=f"Network error: {type(error).__name__}",
        )

    code = getattr(error, "code", None)
    if isinstance(code, str) and code in _NETWORK_CODES:
        return StripeErrorInfo(should_retry=True, is_partial=True, log_message=f"Network error: {code}")

    return StripeErrorInfo(
        should_retry=False,
        is_partial=True,
        log_message="Unknown Stripe error occurred",
    )
