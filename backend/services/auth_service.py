"""Authentication Service

Local email/password accounts plus external identities:
- Apple: identity token verified against Apple's published keys
- GitHub: OAuth code exchanged for the user's primary verified email
- Phone: 6-digit code, stored hashed, 10 minute TTL, 5 attempts

Email and SMS delivery is handled outside this service; issue_* methods
return the raw token/code so the caller can hand it to a sender.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
import logging
import os

import httpx
from jose import jwt, JWTError
from pymongo.errors import DuplicateKeyError

from auth import (
    EMAIL_VERIFICATION_TTL,
    PASSWORD_RESET_TTL,
    create_access_token,
    decode_access_token,
    generate_numeric_code,
    generate_secure_token,
    hash_password,
    hash_token,
    validate_password_strength,
    verify_password,
)
from errors import BadRequestError, UnauthorizedError
from models.user import (
    AuthProvider,
    PHONE_PATTERN,
    ProfileUpdate,
    User,
    UserRegister,
)
from services.user_service import UserService

logger = logging.getLogger(__name__)

APPLE_ISSUER = "https://appleid.apple.com"
APPLE_KEYS_URL = "https://appleid.apple.com/auth/keys"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_BASE = "https://api.github.com"

PHONE_CODE_TTL = timedelta(minutes=10)
PHONE_CODE_MAX_ATTEMPTS = 5


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class ExternalIdentity:
    """Verified identity assertion from an external provider."""
    def __init__(self, provider: AuthProvider, provider_id: str, email: Optional[str], name: Optional[str]):
        self.provider = provider
        self.provider_id = provider_id
        self.email = email.lower() if email else None
        self.name = name


class AuthService:
    def __init__(
        self,
        db,
        users: UserService,
        apple_client_id: Optional[str] = None,
        github_client_id: Optional[str] = None,
        github_client_secret: Optional[str] = None,
    ):
        self.db = db
        self.users = users
        self.apple_client_id = apple_client_id or os.getenv("APPLE_CLIENT_ID")
        self.github_client_id = github_client_id or os.getenv("GITHUB_CLIENT_ID")
        self.github_client_secret = github_client_secret or os.getenv("GITHUB_CLIENT_SECRET")

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def get_current_user(self, token: str) -> Optional[User]:
        payload = decode_access_token(token)
        if not payload or not payload.get("user_id"):
            return None
        user = await self.users.get_by_id(payload["user_id"])
        if not user or not user.is_active:
            return None
        return user

    async def issue_session(self, user: User) -> Tuple[str, User]:
        now = datetime.now(timezone.utc)
        await self.db.users.update_one({"user_id": user.user_id}, {"$set": {"last_login": now}})
        user.last_login = now
        return create_access_token(user.user_id), user

    # ------------------------------------------------------------------
    # Local accounts
    # ------------------------------------------------------------------

    async def register(self, data: UserRegister) -> Tuple[User, str]:
        """Create a local account. Returns the user and the raw email verification token."""
        email = data.email.lower()
        if await self.users.get_by_email(email):
            raise BadRequestError("A user with this email already exists")
        if data.phone:
            await self._ensure_phone_available(data.phone)

        ok, msg = validate_password_strength(data.password)
        if not ok:
            raise BadRequestError(msg)

        raw_token = generate_secure_token()
        try:
            user = User(
                name=data.name.strip(),
                email=email,
                phone=data.phone,
                password_hash=hash_password(data.password),
                profile_type=data.profile_type,
                company=data.company or {},
                auth_provider=AuthProvider.LOCAL,
                verification_token_hash=hash_token(raw_token),
                verification_token_expires=datetime.now(timezone.utc) + EMAIL_VERIFICATION_TTL,
            )
        except ValueError as e:
            raise BadRequestError(str(e))

        try:
            await self.db.users.insert_one(user.model_dump())
        except DuplicateKeyError:
            # unique indexes on email and phone
            raise BadRequestError("A user with this email or phone already exists")
        logger.info(f"Registered user {user.user_id}")
        return user, raw_token

    async def login(self, email: str, password: str) -> Tuple[str, User]:
        user = await self.users.get_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login for {email.lower()}")
            raise UnauthorizedError("Invalid credentials")
        if not user.is_active:
            raise UnauthorizedError("Account is disabled")
        logger.info(f"User {user.user_id} logged in")
        return await self.issue_session(user)

    async def issue_password_reset(self, email: str) -> Optional[str]:
        """Returns the raw reset token, or None if there is no local account for the email."""
        user = await self.users.get_by_email(email)
        if not user or user.auth_provider != AuthProvider.LOCAL:
            logger.info("Password reset requested for unknown or external account")
            return None

        raw_token = generate_secure_token()
        await self.db.users.update_one(
            {"user_id": user.user_id},
            {"$set": {
                "reset_password_token_hash": hash_token(raw_token),
                "reset_password_expires": datetime.now(timezone.utc) + PASSWORD_RESET_TTL,
            }},
        )
        logger.info(f"Password reset token issued for user {user.user_id}")
        return raw_token

    async def reset_password(self, token: str, new_password: str) -> None:
        doc = await self.db.users.find_one({"reset_password_token_hash": hash_token(token)}, {"_id": 0})
        if not doc:
            raise BadRequestError("Invalid or expired reset token")
        expires = _as_utc(doc.get("reset_password_expires"))
        if not expires or expires < datetime.now(timezone.utc):
            raise BadRequestError("Invalid or expired reset token")

        ok, msg = validate_password_strength(new_password)
        if not ok:
            raise BadRequestError(msg)

        await self.db.users.update_one(
            {"user_id": doc["user_id"]},
            {
                "$set": {"password_hash": hash_password(new_password), "updated_at": datetime.now(timezone.utc)},
                "$unset": {"reset_password_token_hash": "", "reset_password_expires": ""},
            },
        )
        logger.info(f"Password reset for user {doc['user_id']}")

    async def verify_email(self, token: str) -> User:
        doc = await self.db.users.find_one({"verification_token_hash": hash_token(token)}, {"_id": 0})
        if not doc:
            raise BadRequestError("Invalid or expired verification token")
        expires = _as_utc(doc.get("verification_token_expires"))
        if not expires or expires < datetime.now(timezone.utc):
            raise BadRequestError("Invalid or expired verification token")

        await self.db.users.update_one(
            {"user_id": doc["user_id"]},
            {
                "$set": {"email_verified": True, "updated_at": datetime.now(timezone.utc)},
                "$unset": {"verification_token_hash": "", "verification_token_expires": ""},
            },
        )
        logger.info(f"Email verified for user {doc['user_id']}")
        return await self.users.require_user(doc["user_id"])

    async def issue_email_verification(self, user: User) -> str:
        if user.email_verified:
            raise BadRequestError("Email is already verified")
        if not user.email:
            raise BadRequestError("Account has no email address")
        raw_token = generate_secure_token()
        await self.db.users.update_one(
            {"user_id": user.user_id},
            {"$set": {
                "verification_token_hash": hash_token(raw_token),
                "verification_token_expires": datetime.now(timezone.utc) + EMAIL_VERIFICATION_TTL,
            }},
        )
        return raw_token

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if user.auth_provider != AuthProvider.LOCAL:
            raise BadRequestError(f"Accounts using {user.auth_provider.value} sign-in have no password")
        if not verify_password(current_password, user.password_hash):
            raise UnauthorizedError("Current password is incorrect")
        ok, msg = validate_password_strength(new_password)
        if not ok:
            raise BadRequestError(msg)
        await self.db.users.update_one(
            {"user_id": user.user_id},
            {"$set": {"password_hash": hash_password(new_password), "updated_at": datetime.now(timezone.utc)}},
        )
        logger.info(f"Password changed for user {user.user_id}")

    async def update_profile(self, user: User, data: ProfileUpdate) -> User:
        updates: Dict[str, Any] = {}
        if data.name is not None:
            if not data.name.strip():
                raise BadRequestError("Name cannot be empty")
            updates["name"] = data.name.strip()
        if data.phone is not None:
            if not PHONE_PATTERN.match(data.phone):
                raise BadRequestError("Invalid phone number")
            if data.phone != user.phone:
                await self._ensure_phone_available(data.phone)
                updates["phone"] = data.phone
                updates["phone_verified"] = False
        if data.profile_type is not None:
            updates["profile_type"] = data.profile_type.value
        if data.company is not None:
            updates["company"] = data.company.model_dump()
        if data.preferences is not None:
            updates["preferences"] = data.preferences.model_dump()

        if updates:
            updates["updated_at"] = datetime.now(timezone.utc)
            await self.db.users.update_one({"user_id": user.user_id}, {"$set": updates})
        return await self.users.require_user(user.user_id)

    # ------------------------------------------------------------------
    # External identities
    # ------------------------------------------------------------------

    async def _login_external(self, identity: ExternalIdentity) -> Tuple[str, User]:
        """Find the account for an external identity, creating it on first login."""
        doc = await self.db.users.find_one(
            {"auth_provider": identity.provider.value, "provider_id": identity.provider_id},
            {"_id": 0},
        )
        if not doc and identity.email:
            doc = await self.db.users.find_one({"email": identity.email}, {"_id": 0})

        if doc:
            user = User(**doc)
        else:
            user = User(
                name=identity.name or (identity.email.split("@")[0] if identity.email else "User"),
                email=identity.email,
                email_verified=bool(identity.email),
                auth_provider=identity.provider,
                provider_id=identity.provider_id,
            )
            await self.db.users.insert_one(user.model_dump())
            logger.info(f"Created {identity.provider.value} account {user.user_id}")

        if not user.is_active:
            raise UnauthorizedError("Account is disabled")
        return await self.issue_session(user)

    async def _apple_keys(self) -> Dict[str, Any]:
        async with httpx.AsyncClient() as client:
            response = await client.get(APPLE_KEYS_URL, timeout=10.0)
            response.raise_for_status()
            return response.json()

    async def verify_apple_token(self, identity_token: str) -> Dict[str, Any]:
        if not self.apple_client_id:
            raise BadRequestError("Apple sign-in is not configured")
        try:
            header = jwt.get_unverified_header(identity_token)
            keys = await self._apple_keys()
            key = next((k for k in keys.get("keys", []) if k.get("kid") == header.get("kid")), None)
            if key is None:
                raise UnauthorizedError("Unknown Apple signing key")
            return jwt.decode(
                identity_token,
                key,
                algorithms=["RS256"],
                audience=self.apple_client_id,
                issuer=APPLE_ISSUER,
            )
        except JWTError as e:
            logger.warning(f"Apple identity token rejected: {e}")
            raise UnauthorizedError("Invalid Apple identity token")

    async def login_with_apple(self, identity_token: str, name: Optional[str] = None) -> Tuple[str, User]:
        claims = await self.verify_apple_token(identity_token)
        identity = ExternalIdentity(AuthProvider.APPLE, claims["sub"], claims.get("email"), name)
        return await self._login_external(identity)

    async def fetch_github_identity(self, code: str) -> ExternalIdentity:
        if not self.github_client_id or not self.github_client_secret:
            raise BadRequestError("GitHub sign-in is not configured")

        async with httpx.AsyncClient() as client:
            token_response = await client.post(
                GITHUB_TOKEN_URL,
                data={
                    "client_id": self.github_client_id,
                    "client_secret": self.github_client_secret,
                    "code": code,
                },
                headers={"Accept": "application/json"},
                timeout=10.0,
            )
            access_token = token_response.json().get("access_token")
            if not access_token:
                raise UnauthorizedError("Invalid GitHub authorization code")

            headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/vnd.github+json"}
            profile = (await client.get(f"{GITHUB_API_BASE}/user", headers=headers, timeout=10.0)).json()
            emails = (await client.get(f"{GITHUB_API_BASE}/user/emails", headers=headers, timeout=10.0)).json()

        primary = next((e["email"] for e in emails if e.get("primary") and e.get("verified")), None)
        if not primary:
            raise BadRequestError("GitHub account has no verified primary email")
        return ExternalIdentity(
            AuthProvider.GITHUB,
            str(profile["id"]),
            primary,
            profile.get("name") or profile.get("login"),
        )

    async def login_with_github(self, code: str) -> Tuple[str, User]:
        identity = await self.fetch_github_identity(code)
        return await self._login_external(identity)

    # ------------------------------------------------------------------
    # Phone
    # ------------------------------------------------------------------

    async def start_phone_login(self, phone: str) -> str:
        """Create or replace the login code for a phone. Returns the raw code."""
        if not PHONE_PATTERN.match(phone):
            raise BadRequestError("Invalid phone number")
        code = generate_numeric_code()
        now = datetime.now(timezone.utc)
        await self.db.phone_verifications.update_one(
            {"phone": phone},
            {"$set": {
                "phone": phone,
                "code_hash": hash_token(code),
                "attempts": 0,
                "created_at": now,
                "expires_at": now + PHONE_CODE_TTL,
            }},
            upsert=True,
        )
        logger.info("Phone login code issued")
        return code

    async def _consume_phone_code(self, phone: str, code: str) -> None:
        record = await self.db.phone_verifications.find_one({"phone": phone}, {"_id": 0})
        expires = _as_utc(record.get("expires_at")) if record else None
        if not record or not expires or expires < datetime.now(timezone.utc):
            raise BadRequestError("Invalid or expired code")
        if record.get("attempts", 0) >= PHONE_CODE_MAX_ATTEMPTS:
            raise BadRequestError("Too many attempts. Request a new code")
        if hash_token(code) != record["code_hash"]:
            await self.db.phone_verifications.update_one({"phone": phone}, {"$inc": {"attempts": 1}})
            raise BadRequestError("Invalid or expired code")
        await self.db.phone_verifications.delete_one({"phone": phone})

    async def _ensure_phone_available(self, phone: str) -> None:
        if not PHONE_PATTERN.match(phone):
            raise BadRequestError("Invalid phone number")
        if await self.users.get_by_phone(phone):
            raise BadRequestError("A user with this phone number already exists")

    async def verify_phone_code(self, phone: str, code: str, name: Optional[str] = None) -> Tuple[str, User]:
        """Sign in with a phone code.

        Only an account that has proven ownership of the number is signed in.
        An unverified claim on the number is released and a phone account is
        created for the code holder instead.
        """
        await self._consume_phone_code(phone, code)

        doc = await self.db.users.find_one(
            {"phone": phone, "$or": [{"phone_verified": True}, {"auth_provider": AuthProvider.PHONE.value}]},
            {"_id": 0},
        )
        if doc:
            user = User(**doc)
            if not user.is_active:
                raise UnauthorizedError("Account is disabled")
            return await self.issue_session(user)

        released = await self.db.users.update_one(
            {"phone": phone, "phone_verified": False},
            {"$unset": {"phone": ""}, "$set": {"updated_at": datetime.now(timezone.utc)}},
        )
        if released.modified_count:
            logger.warning("Released unverified phone claim after code verification")

        user = User(
            name=name or "User",
            phone=phone,
            phone_verified=True,
            auth_provider=AuthProvider.PHONE,
            provider_id=phone,
        )
        await self.db.users.insert_one(user.model_dump())
        logger.info(f"Created phone account {user.user_id}")
        return await self.issue_session(user)

    async def confirm_phone(self, user: User, code: str) -> User:
        """Mark the signed-in user's own number as verified."""
        if not user.phone:
            raise BadRequestError("Account has no phone number")
        if user.phone_verified:
            raise BadRequestError("Phone number is already verified")
        await self._consume_phone_code(user.phone, code)
        await self.db.users.update_one(
            {"user_id": user.user_id},
            {"$set": {"phone_verified": True, "updated_at": datetime.now(timezone.utc)}},
        )
        logger.info(f"Phone verified for user {user.user_id}")
        return await self.users.require_user(user.user_id)
