"""Subscription plans and feature gating.

Three tiers:
- free: basic generation, always active
- premium: analysis, editing, templates
- enterprise: premium + team/API access

Stripe price ids come from the environment so test and live keys can
point at different products.
"""

from pydantic import BaseModel
from typing import Optional, List, Dict
from enum import Enum
import os


class SubscriptionPlan(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    TRIAL = "trial"
    PAST_DUE = "past_due"
    CANCELING = "canceling"  # cancel_at_period_end set in Stripe


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class PlanLimits(BaseModel):
    documents_per_month: Optional[int] = None  # None = unlimited
    analyses_per_month: Optional[int] = None
    storage_mb: int = 100


class PlanDetails(BaseModel):
    """Plan details for display and checkout"""
    plan: SubscriptionPlan
    name: str
    description: str
    monthly_price: float
    annual_price: float
    currency: str = "usd"
    features: List[str]
    limits: PlanLimits
    stripe_price_monthly: Optional[str] = None
    stripe_price_annual: Optional[str] = None

    def price_id_for(self, cycle: BillingCycle) -> Optional[str]:
        if cycle == BillingCycle.ANNUAL:
            return self.stripe_price_annual
        return self.stripe_price_monthly


# ============================================================================
# Feature gating
# ============================================================================

FREE_FEATURES = [
    "generate_basic_documents",
    "view_documents",
    "download_documents",
]

PREMIUM_FEATURES = FREE_FEATURES + [
    "generate_advanced_documents",
    "analyze_documents",
    "edit_documents",
    "save_templates",
]

ENTERPRISE_FEATURES = PREMIUM_FEATURES + [
    "team_access",
    "api_access",
    "priority_support",
]

FEATURE_ACCESS: Dict[SubscriptionPlan, List[str]] = {
    SubscriptionPlan.FREE: FREE_FEATURES,
    SubscriptionPlan.PREMIUM: PREMIUM_FEATURES,
    SubscriptionPlan.ENTERPRISE: ENTERPRISE_FEATURES,
}

FEATURE_NAMES = {
    "generate_basic_documents": "Basic Document Generation",
    "view_documents": "Document Vault",
    "download_documents": "Document Export",
    "generate_advanced_documents": "Advanced Document Generation",
    "analyze_documents": "Document Analysis",
    "edit_documents": "AI Document Editing",
    "save_templates": "Saved Templates",
    "team_access": "Team Access",
    "api_access": "API Access",
    "priority_support": "Priority Support",
}


def minimum_plan_for(feature: str) -> SubscriptionPlan:
    for plan in (SubscriptionPlan.FREE, SubscriptionPlan.PREMIUM, SubscriptionPlan.ENTERPRISE):
        if feature in FEATURE_ACCESS[plan]:
            return plan
    return SubscriptionPlan.ENTERPRISE


class PlanGatingError(Exception):
    """Raised when a feature needs a higher plan than the user holds."""
    def __init__(self, feature: str, current_plan: str):
        self.feature = feature
        self.current_plan = current_plan
        self.required_plan = minimum_plan_for(feature).value
        self.message = (
            f"Feature '{FEATURE_NAMES.get(feature, feature)}' requires {self.required_plan} plan or higher. "
            f"Current plan: {current_plan}"
        )
        super().__init__(self.message)


# ============================================================================
# Plan Configuration
# ============================================================================

PLANS: Dict[SubscriptionPlan, PlanDetails] = {
    SubscriptionPlan.FREE: PlanDetails(
        plan=SubscriptionPlan.FREE,
        name="Free",
        description="Generate basic documents at no cost",
        monthly_price=0,
        annual_price=0,
        features=[
            "5 documents per month",
            "Basic document types",
            "PDF and TXT export",
        ],
        limits=PlanLimits(documents_per_month=5, analyses_per_month=0, storage_mb=100),
    ),
    SubscriptionPlan.PREMIUM: PlanDetails(
        plan=SubscriptionPlan.PREMIUM,
        name="Premium",
        description="For professionals who draft and review documents every week",
        monthly_price=29.99,
        annual_price=299.88,
        features=[
            "Unlimited documents",
            "All document types",
            "Document analysis and risk review",
            "AI editing, translation and simplification",
            "Saved templates",
        ],
        limits=PlanLimits(documents_per_month=None, analyses_per_month=50, storage_mb=1024),
        stripe_price_monthly=os.getenv("STRIPE_PRICE_PREMIUM_MONTHLY", "price_monthly_premium"),
        stripe_price_annual=os.getenv("STRIPE_PRICE_PREMIUM_ANNUAL", "price_annual_premium"),
    ),
    SubscriptionPlan.ENTERPRISE: PlanDetails(
        plan=SubscriptionPlan.ENTERPRISE,
        name="Enterprise",
        description="Teams with API access and priority support",
        monthly_price=99.99,
        annual_price=999.88,
        features=[
            "Everything in Premium",
            "Unlimited analysis",
            "Team access",
            "API access",
            "Priority support",
        ],
        limits=PlanLimits(documents_per_month=None, analyses_per_month=None, storage_mb=10240),
        stripe_price_monthly=os.getenv("STRIPE_PRICE_ENTERPRISE_MONTHLY", "price_monthly_enterprise"),
        stripe_price_annual=os.getenv("STRIPE_PRICE_ENTERPRISE_ANNUAL", "price_annual_enterprise"),
    ),
}


class SubscribeRequest(BaseModel):
    plan: SubscriptionPlan
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class ChangePlanRequest(BaseModel):
    plan: SubscriptionPlan
    billing_cycle: BillingCycle = BillingCycle.MONTHLY


class PortalRequest(BaseModel):
    return_url: Optional[str] = None
