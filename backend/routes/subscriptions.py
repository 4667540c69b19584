from fastapi import APIRouter, Depends, Request
import logging

from errors import BadRequestError
from middleware import get_current_user, get_services
from models.subscriptions import ChangePlanRequest, PortalRequest, SubscribeRequest
from models.user import User
from services.billing_service import WebhookVerificationError
from services.container import ServiceContainer
from utils.responses import success

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.get("/plans")
async def get_plans(services: ServiceContainer = Depends(get_services)):
    """Public plan catalogue."""
    return success(services.subscriptions.get_plans())


@router.get("/my-subscription")
async def my_subscription(
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return success(services.subscriptions.describe(user))


@router.post("/subscribe")
async def subscribe(
    data: SubscribeRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.subscriptions.subscribe(user, data)
    message = "Checkout session created" if result.get("checkout_url") else "Plan updated"
    return success(result, message)


@router.post("/cancel")
async def cancel(
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.subscriptions.cancel(user)
    return success(result, "Subscription will be cancelled at the end of the billing period")


@router.post("/change-plan")
async def change_plan(
    data: ChangePlanRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.subscriptions.change_plan(user, data)
    return success(result, "Plan change requested")


@router.post("/portal")
async def billing_portal(
    data: PortalRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.subscriptions.portal(user, data.return_url)
    return success(result)


@router.post("/webhook")
async def stripe_webhook(request: Request, services: ServiceContainer = Depends(get_services)):
    """Stripe events. Authenticated by signature, not by bearer token."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    try:
        result = await services.subscriptions.handle_webhook(payload, sig_header)
    except WebhookVerificationError as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        raise BadRequestError(str(e))
    return success(result)
