"""Subscription Service

Plan selection, Stripe checkout, cancellation, plan changes and the
webhook state machine that keeps user.subscription in sync:

- checkout.session.completed   -> plan from metadata, active, period dates
- invoice.payment_succeeded    -> active, period dates refreshed
- invoice.payment_failed       -> past_due
- customer.subscription.deleted -> back to free / active
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
import json
import logging
import os

from errors import BadRequestError, InternalError
from models.subscriptions import (
    BillingCycle,
    ChangePlanRequest,
    PLANS,
    SubscribeRequest,
    SubscriptionPlan,
    SubscriptionStatus,
)
from models.user import User
from services.billing_service import BillingClient, BillingError, stripe_field
from services.user_service import UserService

logger = logging.getLogger(__name__)

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


def _ts(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc)


def _period(stripe_sub) -> Dict[str, Optional[datetime]]:
    """Current period bounds; newer API versions keep them on the subscription item."""
    start = stripe_field(stripe_sub, "current_period_start")
    end = stripe_field(stripe_sub, "current_period_end")
    if start is None or end is None:
        items = stripe_field(stripe_field(stripe_sub, "items"), "data") or []
        if items:
            start = stripe_field(items[0], "current_period_start")
            end = stripe_field(items[0], "current_period_end")
    return {"start": _ts(start), "end": _ts(end)}


class SubscriptionService:
    def __init__(self, db, billing: BillingClient, users: UserService):
        self.db = db
        self.billing = billing
        self.users = users

    def get_plans(self):
        return [p.model_dump() for p in PLANS.values()]

    def describe(self, user: User) -> Dict[str, Any]:
        return {
            "subscription": user.subscription.model_dump(exclude={"stripe_customer_id", "stripe_subscription_id"}),
            "plan": PLANS[user.subscription.plan].model_dump(),
            "is_active": user.has_active_subscription(),
            "effective_plan": user.effective_plan().value,
        }

    async def _set_subscription(self, user_id: str, fields: Dict[str, Any]) -> None:
        updates = {f"subscription.{k}": v for k, v in fields.items()}
        updates["updated_at"] = datetime.now(timezone.utc)
        await self.db.users.update_one({"user_id": user_id}, {"$set": updates})

    async def _apply_free(self, user_id: str) -> None:
        await self._set_subscription(user_id, {
            "plan": SubscriptionPlan.FREE.value,
            "status": SubscriptionStatus.ACTIVE.value,
            "start_date": datetime.now(timezone.utc),
            "end_date": None,
            "stripe_subscription_id": None,
            "auto_renew": False,
        })

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def subscribe(self, user: User, request: SubscribeRequest) -> Dict[str, Any]:
        """Free is applied directly; paid plans return a Stripe checkout URL."""
        if request.plan == SubscriptionPlan.FREE:
            await self._apply_free(user.user_id)
            logger.info(f"User {user.user_id} switched to free plan")
            return {"plan": SubscriptionPlan.FREE.value, "checkout_url": None}

        if user.subscription.plan == request.plan and user.has_active_subscription():
            raise BadRequestError(f"Already subscribed to {request.plan.value}")

        plan = PLANS[request.plan]
        price_id = plan.price_id_for(request.billing_cycle)
        if not price_id:
            raise BadRequestError(f"No price configured for {request.plan.value} ({request.billing_cycle.value})")

        try:
            customer_id = user.subscription.stripe_customer_id
            if not customer_id:
                customer = self.billing.create_customer(user.email, user.name, user.user_id)
                customer_id = customer["id"]
                await self._set_subscription(user.user_id, {"stripe_customer_id": customer_id})

            session = self.billing.create_checkout_session(
                customer_id=customer_id,
                price_id=price_id,
                success_url=request.success_url or f"{FRONTEND_URL}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=request.cancel_url or f"{FRONTEND_URL}/subscription/cancel",
                metadata={
                    "user_id": user.user_id,
                    "plan": request.plan.value,
                    "billing_cycle": request.billing_cycle.value,
                },
            )
        except BillingError as e:
            raise InternalError("Billing provider request failed", details=str(e))

        logger.info(f"Checkout session {session['id']} created for user {user.user_id} ({request.plan.value})")
        return {"plan": request.plan.value, "checkout_url": session["url"], "session_id": session["id"]}

    async def cancel(self, user: User) -> Dict[str, Any]:
        sub = user.subscription
        if sub.plan == SubscriptionPlan.FREE or not sub.stripe_subscription_id:
            raise BadRequestError("No paid subscription to cancel")
        try:
            self.billing.modify_subscription(sub.stripe_subscription_id, cancel_at_period_end=True)
        except BillingError as e:
            raise InternalError("Billing provider request failed", details=str(e))

        await self._set_subscription(user.user_id, {
            "status": SubscriptionStatus.CANCELING.value,
            "auto_renew": False,
        })
        logger.info(f"Subscription for user {user.user_id} set to cancel at period end")
        return {"status": SubscriptionStatus.CANCELING.value, "end_date": sub.end_date}

    async def change_plan(self, user: User, request: ChangePlanRequest) -> Dict[str, Any]:
        sub = user.subscription
        if request.plan == sub.plan and request.billing_cycle == sub.billing_cycle:
            raise BadRequestError("Already on this plan")

        if request.plan == SubscriptionPlan.FREE:
            if sub.stripe_subscription_id:
                try:
                    self.billing.cancel_subscription(sub.stripe_subscription_id)
                except BillingError as e:
                    raise InternalError("Billing provider request failed", details=str(e))
            await self._apply_free(user.user_id)
            logger.info(f"User {user.user_id} downgraded to free")
            return {"plan": SubscriptionPlan.FREE.value, "checkout_url": None}

        if not sub.stripe_subscription_id:
            # No Stripe subscription yet: paid plan needs a checkout
            return await self.subscribe(user, SubscribeRequest(plan=request.plan, billing_cycle=request.billing_cycle))

        price_id = PLANS[request.plan].price_id_for(request.billing_cycle)
        try:
            stripe_sub = self.billing.retrieve_subscription(sub.stripe_subscription_id)
            items = stripe_field(stripe_field(stripe_sub, "items"), "data") or []
            if not items:
                raise InternalError(f"Stripe subscription {sub.stripe_subscription_id} has no items")
            updated = self.billing.modify_subscription(
                sub.stripe_subscription_id,
                items=[{"id": stripe_field(items[0], "id"), "price": price_id}],
                proration_behavior="create_prorations",
                cancel_at_period_end=False,
            )
        except BillingError as e:
            raise InternalError("Billing provider request failed", details=str(e))

        period = _period(updated)
        await self._set_subscription(user.user_id, {
            "plan": request.plan.value,
            "billing_cycle": request.billing_cycle.value,
            "status": SubscriptionStatus.ACTIVE.value,
            "auto_renew": True,
            "end_date": period["end"],
        })
        logger.info(f"User {user.user_id} changed plan to {request.plan.value} ({request.billing_cycle.value})")
        return {"plan": request.plan.value, "checkout_url": None}

    async def portal(self, user: User, return_url: Optional[str] = None) -> Dict[str, Any]:
        customer_id = user.subscription.stripe_customer_id
        if not customer_id:
            raise BadRequestError("No billing account found")
        try:
            session = self.billing.create_portal_session(customer_id, return_url or f"{FRONTEND_URL}/account")
        except BillingError as e:
            raise InternalError("Billing provider request failed", details=str(e))
        return {"portal_url": session["url"]}

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def handle_webhook(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify, de-duplicate and dispatch a Stripe event.

        Raises WebhookVerificationError for a bad payload or signature.
        """
        self.billing.verify_webhook(payload, sig_header)
        event = json.loads(payload)
        event_id = event.get("id")
        event_type = event.get("type")

        if event_id and await self.db.stripe_events.find_one({"event_id": event_id}, {"_id": 0}):
            logger.info(f"Duplicate Stripe event {event_id} ignored")
            return {"status": "duplicate", "event_type": event_type}

        obj = (event.get("data") or {}).get("object") or {}
        logger.info(f"Stripe webhook: {event_type}")

        if event_type == "checkout.session.completed":
            await self._on_checkout_completed(obj)
        elif event_type == "invoice.payment_succeeded":
            await self._on_payment_succeeded(obj)
        elif event_type == "invoice.payment_failed":
            await self._on_payment_failed(obj)
        elif event_type == "customer.subscription.deleted":
            await self._on_subscription_deleted(obj)
        else:
            logger.info(f"Unhandled Stripe event type: {event_type}")

        if event_id:
            await self.db.stripe_events.insert_one({
                "event_id": event_id,
                "type": event_type,
                "processed_at": datetime.now(timezone.utc),
            })
        return {"status": "success", "event_type": event_type}

    async def _user_for_customer(self, customer_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not customer_id:
            return None
        return await self.db.users.find_one({"subscription.stripe_customer_id": customer_id}, {"_id": 0})

    async def _on_checkout_completed(self, session: Dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("user_id")
        if not user_id:
            logger.error("No user_id in checkout session metadata")
            return

        try:
            plan = SubscriptionPlan(metadata.get("plan"))
            cycle = BillingCycle(metadata.get("billing_cycle", BillingCycle.MONTHLY.value))
        except ValueError:
            logger.error(f"Invalid plan metadata on checkout session {session.get('id')}")
            return

        fields: Dict[str, Any] = {
            "plan": plan.value,
            "billing_cycle": cycle.value,
            "status": SubscriptionStatus.ACTIVE.value,
            "auto_renew": True,
            "stripe_customer_id": session.get("customer"),
            "stripe_subscription_id": session.get("subscription"),
            "start_date": datetime.now(timezone.utc),
        }
        if session.get("subscription"):
            try:
                period = _period(self.billing.retrieve_subscription(session["subscription"]))
                fields["start_date"] = period["start"] or fields["start_date"]
                fields["end_date"] = period["end"]
            except BillingError:
                logger.warning(f"Could not read period for subscription {session['subscription']}")

        await self._set_subscription(user_id, fields)
        logger.info(f"User {user_id} subscribed to {plan.value} ({cycle.value})")

    async def _on_payment_succeeded(self, invoice: Dict[str, Any]) -> None:
        user = await self._user_for_customer(invoice.get("customer"))
        if not user:
            logger.warning(f"No user for customer {invoice.get('customer')} on paid invoice")
            return

        fields: Dict[str, Any] = {"status": SubscriptionStatus.ACTIVE.value}
        sub_id = invoice.get("subscription") or user.get("subscription", {}).get("stripe_subscription_id")
        if sub_id:
            try:
                period = _period(self.billing.retrieve_subscription(sub_id))
                if period["start"]:
                    fields["start_date"] = period["start"]
                if period["end"]:
                    fields["end_date"] = period["end"]
            except BillingError:
                logger.warning(f"Could not refresh period for subscription {sub_id}")

        await self._set_subscription(user["user_id"], fields)
        logger.info(f"Payment succeeded for user {user['user_id']}")

    async def _on_payment_failed(self, invoice: Dict[str, Any]) -> None:
        user = await self._user_for_customer(invoice.get("customer"))
        if not user:
            logger.warning(f"No user for customer {invoice.get('customer')} on failed invoice")
            return
        await self._set_subscription(user["user_id"], {"status": SubscriptionStatus.PAST_DUE.value})
        logger.warning(f"Payment failed for user {user['user_id']}")

    async def _on_subscription_deleted(self, stripe_sub: Dict[str, Any]) -> None:
        user = await self._user_for_customer(stripe_sub.get("customer"))
        if not user:
            logger.warning(f"No user for customer {stripe_sub.get('customer')} on subscription deletion")
            return
        await self._apply_free(user["user_id"])
        logger.info(f"Subscription ended for user {user['user_id']}, reverted to free")
