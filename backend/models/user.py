"""User Model

One account per person. Login is either local (email + password) or
delegated to an external identity (Apple, GitHub, phone OTP).
"""

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime, timezone
from enum import Enum
import re
import uuid

from models.subscriptions import (
    SubscriptionPlan,
    SubscriptionStatus,
    BillingCycle,
    FEATURE_ACCESS,
)

PHONE_PATTERN = re.compile(r"^\+?[0-9]{8,15}$")


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"  # bypasses document-level view/edit/delete checks


class AuthProvider(str, Enum):
    LOCAL = "local"
    APPLE = "apple"
    GITHUB = "github"
    PHONE = "phone"


class ProfileType(str, Enum):
    INDIVIDUAL = "individual"
    BUSINESS = "business"


class Language(str, Enum):
    ES = "es"
    EN = "en"


class Company(BaseModel):
    name: Optional[str] = None
    position: Optional[str] = None
    industry: Optional[str] = None


class NotificationPreferences(BaseModel):
    email: bool = True
    sms: bool = False


class UserPreferences(BaseModel):
    language: Language = Language.ES
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    theme: str = "light"


class UsageStats(BaseModel):
    documents_generated: int = 0
    documents_analyzed: int = 0
    documents_edited: int = 0
    last_activity: Optional[datetime] = None


class Subscription(BaseModel):
    plan: SubscriptionPlan = SubscriptionPlan.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    auto_renew: bool = True
    payment_method: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None

    model_config = {"extra": "ignore"}


class User(BaseModel):
    """Platform account.

    Exactly one login method: a local account carries a password hash,
    an external account carries the provider-assigned id.
    """
    user_id: str = Field(default_factory=lambda: f"USR-{uuid.uuid4().hex[:12].upper()}")
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    phone_verified: bool = False
    password_hash: Optional[str] = None

    role: UserRole = UserRole.USER
    profile_type: ProfileType = ProfileType.INDIVIDUAL
    company: Company = Field(default_factory=Company)
    is_active: bool = True

    # Verification (tokens stored as sha256 hashes)
    email_verified: bool = False
    verification_token_hash: Optional[str] = None
    verification_token_expires: Optional[datetime] = None
    reset_password_token_hash: Optional[str] = None
    reset_password_expires: Optional[datetime] = None

    subscription: Subscription = Field(default_factory=Subscription)
    preferences: UserPreferences = Field(default_factory=UserPreferences)

    auth_provider: AuthProvider = AuthProvider.LOCAL
    provider_id: Optional[str] = None

    usage_stats: UsageStats = Field(default_factory=UsageStats)

    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, v):
        return v.lower() if v else v

    @field_validator("phone")
    @classmethod
    def _validate_phone(cls, v):
        if v is not None and not PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone number")
        return v

    @model_validator(mode="after")
    def _check_login_method(self):
        if self.auth_provider == AuthProvider.LOCAL:
            if not self.password_hash:
                raise ValueError("Local accounts require a password")
            if not self.email:
                raise ValueError("Local accounts require an email")
            if self.provider_id:
                raise ValueError("Local accounts cannot carry a provider id")
        else:
            if not self.provider_id:
                raise ValueError(f"{self.auth_provider.value} accounts require a provider id")
            if self.password_hash:
                raise ValueError(f"{self.auth_provider.value} accounts cannot have a password")
        return self

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def has_active_subscription(self) -> bool:
        """Free is always active; paid plans need a live status and a current period."""
        sub = self.subscription
        if sub.plan == SubscriptionPlan.FREE:
            return True
        # canceling keeps access until the paid period ends
        if sub.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELING, SubscriptionStatus.TRIAL):
            return False
        if sub.end_date is None:
            return True
        end = sub.end_date
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        return end > datetime.now(timezone.utc)

    def effective_plan(self) -> SubscriptionPlan:
        if self.has_active_subscription():
            return self.subscription.plan
        return SubscriptionPlan.FREE

    def can_access(self, feature: str) -> bool:
        return feature in FEATURE_ACCESS[self.effective_plan()]


# ============================================================================
# Request / response models
# ============================================================================

class UserRegister(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str
    phone: Optional[str] = None
    profile_type: ProfileType = ProfileType.INDIVIDUAL
    company: Optional[Company] = None


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class AppleLoginRequest(BaseModel):
    identity_token: str
    name: Optional[str] = None


class GithubLoginRequest(BaseModel):
    code: str


class PhoneStartRequest(BaseModel):
    phone: str


class PhoneVerifyRequest(BaseModel):
    phone: str
    code: str = Field(min_length=6, max_length=6)
    name: Optional[str] = None


class PhoneConfirmRequest(BaseModel):
    code: str = Field(min_length=6, max_length=6)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    profile_type: Optional[ProfileType] = None
    company: Optional[Company] = None
    preferences: Optional[UserPreferences] = None

    model_config = {"extra": "ignore"}


class AdminUserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    plan: Optional[SubscriptionPlan] = None

    model_config = {"extra": "ignore"}


class UserResponse(BaseModel):
    """Public user view (no credential fields)"""
    user_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    phone_verified: bool = False
    role: UserRole
    profile_type: ProfileType
    company: Company
    is_active: bool
    email_verified: bool
    subscription: Subscription
    preferences: UserPreferences
    auth_provider: AuthProvider
    usage_stats: UsageStats
    last_login: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(**user.model_dump(include=set(cls.model_fields)))


class TokenResponse(BaseModel):
    token: str
    user: UserResponse