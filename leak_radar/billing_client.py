"""
Billing provider access.

``BillingClient`` is the capability set the scan needs. ``StripeBillingClient``
implements it with the ``stripe`` SDK, passing the tenant's secret key on every
request so clients for different organizations never share global state.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Protocol

import stripe

from .config import DEFAULT_STRIPE_API_VERSION
from .credentials import CredentialCipher
from .errors import BillingNotConnectedError
from .fields import get_field
from .pagination import Page

LOG = logging.getLogger("leak_radar.billing_client")


class BillingClient(Protocol):
    def list_customers(self, *, limit: int = 100, starting_after: Optional[str] = None) -> Page: ...

    def list_subscriptions(
        self,
        *,
        status: Optional[str] = None,
        customer: Optional[str] = None,
        limit: int = 100,
        starting_after: Optional[str] = None,
    ) -> Page: ...

    def retrieve_subscription(self, subscription_id: str) -> Any: ...

    def list_invoices(
        self, *, status: Optional[str] = None, limit: int = 100, starting_after: Optional[str] = None
    ) -> Page: ...

    def retrieve_customer(self, customer_id: str) -> Any: ...

    def retrieve_payment_method(self, payment_method_id: str) -> Any: ...

    def list_disputes(
        self, *, status: Optional[str] = None, limit: int = 100, starting_after: Optional[str] = None
    ) -> Page: ...

    def retrieve_charge(self, charge_id: str) -> Any: ...


def configure_stripe(max_network_retries: int = 2) -> None:
    """Global SDK tuning; safe to call more than once."""
    stripe.max_network_retries = max_network_retries


def _params(**kwargs: Any) -> Dict[str, Any]:
    return {key: value for key, value in kwargs.items() if value is not None}


def _to_page(result: Any) -> Page:
    return Page(
        data=list(get_field(result, "data", []) or []),
        has_more=bool(get_field(result, "has_more", False)),
    )


class StripeBillingClient:
    """``BillingClient`` backed by one Stripe account's secret key."""

    def __init__(self, api_key: str, *, api_version: str = DEFAULT_STRIPE_API_VERSION):
        if not api_key:
            raise ValueError("api_key is required")
        self._request_opts = {"api_key": api_key, "stripe_version": api_version}

    def list_customers(self, *, limit: int = 100, starting_after: Optional[str] = None) -> Page:
        result = stripe.Customer.list(
            **self._request_opts, **_params(limit=limit, starting_after=starting_after)
        )
        return _to_page(result)

    def list_subscriptions(
        self,
        *,
        status: Optional[str] = None,
        customer: Optional[str] = None,
        limit: int = 100,
        starting_after: Optional[str] = None,
    ) -> Page:
        result = stripe.Subscription.list(
            **self._request_opts,
            **_params(status=status, customer=customer, limit=limit, starting_after=starting_after),
        )
        return _to_page(result)

    def retrieve_subscription(self, subscription_id: str) -> Any:
        return stripe.Subscription.retrieve(subscription_id, **self._request_opts)

    def list_invoices(
        self, *, status: Optional[str] = None, limit: int = 100, starting_after: Optional[str] = None
    ) -> Page:
        result = stripe.Invoice.list(
            **self._request_opts, **_params(status=status, limit=limit, starting_after=starting_after)
        )
        return _to_page(result)

    def retrieve_customer(self, customer_id: str) -> Any:
        return stripe.Customer.retrieve(customer_id, **self._request_opts)

    def retrieve_payment_method(self, payment_method_id: str) -> Any:
        return stripe.PaymentMethod.retrieve(payment_method_id, **self._request_opts)

    def list_disputes(
        self, *, status: Optional[str] = None, limit: int = 100, starting_after: Optional[str] = None
    ) -> Page:
        # The disputes endpoint has no status filter; filter the page locally
        # but keep the cursor of the unfiltered page.
        result = stripe.Dispute.list(
            **self._request_opts, **_params(limit=limit, starting_after=starting_after)
        )
        page = _to_page(result)
        if status is None:
            return page
        return Page(
            data=[d for d in page.data if get_field(d, "status") == status],
            has_more=page.has_more,
            next_cursor=page.next_cursor,
        )

    def retrieve_charge(self, charge_id: str) -> Any:
        return stripe.Charge.retrieve(charge_id, **self._request_opts)

    def retrieve_account(self) -> Any:
        return stripe.Account.retrieve(**self._request_opts)


def verify_stripe_key(api_key: str, *, api_version: str = DEFAULT_STRIPE_API_VERSION) -> Dict[str, Any]:
    """Call Stripe with ``api_key`` and return the account id and display name.

    Stripe errors propagate to the caller.
    """
    account = StripeBillingClient(api_key, api_version=api_version).retrieve_account()
    business_name = get_field(get_field(account, "business_profile"), "name")
    return {
        "account_id": get_field(account, "id"),
        "account_name": business_name or get_field(account, "email"),
    }


class StripeClientFactory:
    """Build a ``StripeBillingClient`` for an organization from its stored link."""

    def __init__(
        self,
        link_loader: Callable[[str], Any],
        cipher: CredentialCipher,
        *,
        api_version: str = DEFAULT_STRIPE_API_VERSION,
    ):
        self.link_loader = link_loader
        self.cipher = cipher
        self.api_version = api_version

    def __call__(self, organization_id: str) -> StripeBillingClient:
        link = self.link_loader(organization_id)
        if link is None:
            raise BillingNotConnectedError(f"Organization {organization_id} has no Stripe account linked")
        api_key = self.cipher.decrypt(get_field(link, "encrypted_api_key"))
        return StripeBillingClient(api_key, api_version=self.api_version)
