from fastapi import APIRouter, Depends, Request, status
import logging

from errors import RateLimitedError
from middleware import client_ip, get_current_user, get_services
from models.user import (
    AppleLoginRequest,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    GithubLoginRequest,
    PhoneConfirmRequest,
    PhoneStartRequest,
    PhoneVerifyRequest,
    ProfileUpdate,
    ResetPasswordRequest,
    TokenResponse,
    User,
    UserLogin,
    UserRegister,
    UserResponse,
)
from services.container import ServiceContainer
from utils.responses import debug_enabled, success

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _session(token: str, user: User) -> dict:
    return TokenResponse(token=token, user=UserResponse.from_user(user)).model_dump()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(data: UserRegister, services: ServiceContainer = Depends(get_services)):
    """Create a local account and sign it in."""
    user, verification_token = await services.auth.register(data)
    token, user = await services.auth.issue_session(user)

    body = _session(token, user)
    if debug_enabled():
        body["debug_token"] = verification_token
    return success(body, "Registration successful. Check your email to verify your account.")


@router.post("/login")
async def login(request: Request, credentials: UserLogin, services: ServiceContainer = Depends(get_services)):
    key = f"{client_ip(request)}:{credentials.email.lower()}"
    wait = services.login_limiter.hit(key)
    if wait:
        raise RateLimitedError(f"Too many login attempts. Try again in {wait} seconds")

    token, user = await services.auth.login(credentials.email, credentials.password)
    services.login_limiter.reset(key)
    return success(_session(token, user), "Login successful")


@router.post("/login/apple")
async def login_apple(data: AppleLoginRequest, services: ServiceContainer = Depends(get_services)):
    token, user = await services.auth.login_with_apple(data.identity_token, data.name)
    return success(_session(token, user), "Login successful")


@router.post("/login/github")
async def login_github(data: GithubLoginRequest, services: ServiceContainer = Depends(get_services)):
    token, user = await services.auth.login_with_github(data.code)
    return success(_session(token, user), "Login successful")


@router.post("/login/phone/start")
async def phone_start(data: PhoneStartRequest, services: ServiceContainer = Depends(get_services)):
    wait = services.otp_limiter.hit(data.phone)
    if wait:
        raise RateLimitedError(f"Too many code requests. Try again in {wait} seconds")

    code = await services.auth.start_phone_login(data.phone)
    body = {"phone": data.phone}
    if debug_enabled():
        body["debug_code"] = code
    return success(body, "Verification code sent")


@router.post("/login/phone/verify")
async def phone_verify(data: PhoneVerifyRequest, services: ServiceContainer = Depends(get_services)):
    token, user = await services.auth.verify_phone_code(data.phone, data.code, data.name)
    services.otp_limiter.reset(data.phone)
    return success(_session(token, user), "Login successful")


@router.post("/phone/confirm")
async def phone_confirm(
    data: PhoneConfirmRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Verify the signed-in user's own number with a code from /login/phone/start."""
    updated = await services.auth.confirm_phone(user, data.code)
    services.otp_limiter.reset(updated.phone)
    return success(UserResponse.from_user(updated), "Phone number verified")


@router.post("/forgot-password")
async def forgot_password(data: ForgotPasswordRequest, services: ServiceContainer = Depends(get_services)):
    # Same answer whether or not the account exists
    reset_token = await services.auth.issue_password_reset(data.email)
    body = None
    if debug_enabled() and reset_token:
        body = {"debug_token": reset_token}
    return success(body, "If an account exists for this email, a reset link has been sent")


@router.post("/reset-password")
async def reset_password(data: ResetPasswordRequest, services: ServiceContainer = Depends(get_services)):
    await services.auth.reset_password(data.token, data.password)
    return success(message="Password has been reset")


@router.get("/verify-email/{token}")
async def verify_email(token: str, services: ServiceContainer = Depends(get_services)):
    user = await services.auth.verify_email(token)
    return success(UserResponse.from_user(user), "Email verified")


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    return success(UserResponse.from_user(user))


@router.put("/me")
async def update_me(
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    updated = await services.auth.update_profile(user, data)
    return success(UserResponse.from_user(updated), "Profile updated")


@router.post("/change-password")
async def change_password(
    data: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    await services.auth.change_password(user, data.current_password, data.new_password)
    return success(message="Password changed")


@router.post("/resend-verification")
async def resend_verification(
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    verification_token = await services.auth.issue_email_verification(user)
    body = {"debug_token": verification_token} if debug_enabled() else None
    return success(body, "Verification email sent")


@router.post("/logout")
async def logout(user: User = Depends(get_current_user)):
    """Tokens are stateless; the client discards its copy."""
    logger.info(f"User {user.user_id} logged out")
    return success(message="Logged out")
