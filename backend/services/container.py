"""Service wiring.

Built once by the application lifespan and stored on app.state.services.
Tests build their own container around an in-memory database.
"""
from dataclasses import dataclass, field
from typing import Optional

from services.auth_service import AuthService
from services.billing_service import BillingClient
from services.document_service import DocumentService
from services.esignature_service import ESignatureClient
from services.generation_service import GenerationService
from services.subscription_service import SubscriptionService
from services.user_service import UserService
from utils.llm_chat import LLMClient
from utils.rate_limiter import RateLimiter


@dataclass
class ServiceContainer:
    db: object
    llm: LLMClient
    billing: BillingClient
    esignature: ESignatureClient
    users: UserService
    auth: AuthService
    documents: DocumentService
    generation: GenerationService
    subscriptions: SubscriptionService
    login_limiter: RateLimiter = field(default_factory=lambda: RateLimiter("login", 5, 15))
    otp_limiter: RateLimiter = field(default_factory=lambda: RateLimiter("phone_otp", 3, 10))


def build_services(
    db,
    llm: Optional[LLMClient] = None,
    billing: Optional[BillingClient] = None,
    esignature: Optional[ESignatureClient] = None,
) -> ServiceContainer:
    llm = llm or LLMClient()
    billing = billing or BillingClient()
    esignature = esignature or ESignatureClient()

    users = UserService(db)
    documents = DocumentService(db, esignature=esignature)
    return ServiceContainer(
        db=db,
        llm=llm,
        billing=billing,
        esignature=esignature,
        users=users,
        auth=AuthService(db, users),
        documents=documents,
        generation=GenerationService(llm, documents, users),
        subscriptions=SubscriptionService(db, billing, users),
    )
