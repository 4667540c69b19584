"""Stripe billing client.

Thin wrapper over the Stripe SDK. The API key is held by the instance and
passed on every call instead of being set on the stripe module.
"""
import os
import logging
from typing import Optional, Dict, Any

import stripe

logger = logging.getLogger(__name__)


class BillingError(Exception):
    """Stripe call failed or billing is not configured."""
    pass


class WebhookVerificationError(Exception):
    """Webhook payload or signature is invalid."""
    pass


class BillingClient:
    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = (api_key if api_key is not None else (os.getenv("STRIPE_API_KEY") or "")).strip()
        self.webhook_secret = webhook_secret if webhook_secret is not None else os.getenv("STRIPE_WEBHOOK_SECRET")

    @property
    def mode(self) -> str:
        if not self.api_key:
            return "unconfigured"
        return "test" if self.api_key.startswith("sk_test_") else "live"

    def _check(self):
        if not self.api_key:
            raise BillingError("STRIPE_API_KEY is not set")

    def create_customer(self, email: Optional[str], name: str, user_id: str):
        self._check()
        try:
            return stripe.Customer.create(
                email=email,
                name=name,
                metadata={"user_id": user_id},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for user {user_id}: {e}")
            raise BillingError(str(e))

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ):
        self._check()
        try:
            return stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout creation failed: {e}")
            raise BillingError(str(e))

    def retrieve_subscription(self, subscription_id: str):
        self._check()
        try:
            return stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription retrieve failed for {subscription_id}: {e}")
            raise BillingError(str(e))

    def modify_subscription(self, subscription_id: str, **params):
        self._check()
        try:
            return stripe.Subscription.modify(subscription_id, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription modify failed for {subscription_id}: {e}")
            raise BillingError(str(e))

    def cancel_subscription(self, subscription_id: str):
        self._check()
        try:
            return stripe.Subscription.cancel(subscription_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription cancel failed for {subscription_id}: {e}")
            raise BillingError(str(e))

    def create_portal_session(self, customer_id: str, return_url: str):
        self._check()
        try:
            return stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe portal session failed: {e}")
            raise BillingError(str(e))

    def verify_webhook(self, payload: bytes, sig_header: Optional[str]) -> None:
        if not self.webhook_secret:
            raise WebhookVerificationError("STRIPE_WEBHOOK_SECRET is not set")
        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except ValueError:
            logger.error("Invalid webhook payload")
            raise WebhookVerificationError("Invalid payload")
        except stripe.SignatureVerificationError:
            logger.error("Invalid webhook signature")
            raise WebhookVerificationError("Invalid signature")


def stripe_field(obj: Any, key: str) -> Any:
    """Read a key from a Stripe object or plain dict; None when absent."""
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return None
