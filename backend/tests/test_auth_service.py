"""
AuthService: local accounts, password reset, email verification, phone codes
and external identities.
"""
from unittest.mock import AsyncMock, patch

import pytest

from auth import create_access_token, verify_password
from database import Database
from errors import BadRequestError, UnauthorizedError
from models.user import AuthProvider, ProfileUpdate, User, UserRegister
from services.auth_service import ExternalIdentity, PHONE_CODE_MAX_ATTEMPTS

PASSWORD = "Str0ngPassword"


async def _register(services, email="ana@example.com", password=PASSWORD, phone=None):
    return await services.auth.register(UserRegister(name="Ana", email=email, password=password, phone=phone))


class TestRegisterAndLogin:
    @pytest.mark.asyncio
    async def test_register_stores_hashed_password(self, db, services):
        user, token = await _register(services)
        stored = await db.users.find_one({"user_id": user.user_id}, {"_id": 0})
        assert stored["password_hash"] != PASSWORD
        assert verify_password(PASSWORD, stored["password_hash"])
        assert stored["verification_token_hash"] != token
        assert user.email_verified is False

    @pytest.mark.asyncio
    async def test_duplicate_email_is_rejected(self, services):
        await _register(services)
        with pytest.raises(BadRequestError):
            await _register(services, email="ANA@example.com")

    @pytest.mark.asyncio
    async def test_weak_password(self, services):
        with pytest.raises(BadRequestError) as exc:
            await _register(services, password="short")
        assert "8 characters" in exc.value.message

    @pytest.mark.asyncio
    async def test_login(self, services):
        user, _ = await _register(services)
        token, logged_in = await services.auth.login("Ana@Example.com", PASSWORD)
        assert logged_in.user_id == user.user_id
        assert logged_in.last_login is not None
        assert (await services.auth.get_current_user(token)).user_id == user.user_id

    @pytest.mark.asyncio
    async def test_wrong_password(self, services):
        await _register(services)
        with pytest.raises(UnauthorizedError):
            await services.auth.login("ana@example.com", "Wrong-Passw0rd")

    @pytest.mark.asyncio
    async def test_disabled_account(self, db, services):
        user, _ = await _register(services)
        await db.users.update_one({"user_id": user.user_id}, {"$set": {"is_active": False}})
        with pytest.raises(UnauthorizedError):
            await services.auth.login("ana@example.com", PASSWORD)
        assert await services.auth.get_current_user(create_access_token(user.user_id)) is None

    @pytest.mark.asyncio
    async def test_garbage_token(self, services):
        assert await services.auth.get_current_user("not-a-jwt") is None


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_reset_flow(self, services):
        await _register(services)
        token = await services.auth.issue_password_reset("ana@example.com")
        await services.auth.reset_password(token, "N3wPassword!")

        await services.auth.login("ana@example.com", "N3wPassword!")
        with pytest.raises(BadRequestError):
            await services.auth.reset_password(token, "An0therPassword")

    @pytest.mark.asyncio
    async def test_unknown_email_gets_no_token(self, services):
        assert await services.auth.issue_password_reset("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_change_password_checks_current(self, services):
        user, _ = await _register(services)
        with pytest.raises(UnauthorizedError):
            await services.auth.change_password(user, "wrong", "N3wPassword!")
        await services.auth.change_password(user, PASSWORD, "N3wPassword!")
        await services.auth.login("ana@example.com", "N3wPassword!")


class TestEmailVerification:
    @pytest.mark.asyncio
    async def test_verify_once(self, services):
        _, token = await _register(services)
        user = await services.auth.verify_email(token)
        assert user.email_verified is True
        with pytest.raises(BadRequestError):
            await services.auth.verify_email(token)
        with pytest.raises(BadRequestError):
            await services.auth.issue_email_verification(user)


class TestPhoneLogin:
    PHONE = "+34600111222"

    @pytest.mark.asyncio
    async def test_code_creates_phone_account(self, db, services):
        code = await services.auth.start_phone_login(self.PHONE)
        token, user = await services.auth.verify_phone_code(self.PHONE, code, name="Ana")

        assert user.auth_provider == AuthProvider.PHONE
        assert user.phone_verified is True
        assert token
        # code is single use
        with pytest.raises(BadRequestError):
            await services.auth.verify_phone_code(self.PHONE, code)

    @pytest.mark.asyncio
    async def test_attempts_are_capped(self, services):
        code = await services.auth.start_phone_login(self.PHONE)
        wrong = "000000" if code != "000000" else "111111"
        for _ in range(PHONE_CODE_MAX_ATTEMPTS):
            with pytest.raises(BadRequestError):
                await services.auth.verify_phone_code(self.PHONE, wrong)
        with pytest.raises(BadRequestError) as exc:
            await services.auth.verify_phone_code(self.PHONE, code)
        assert "Too many attempts" in exc.value.message

    @pytest.mark.asyncio
    async def test_invalid_phone(self, services):
        with pytest.raises(BadRequestError):
            await services.auth.start_phone_login("call me")


    @pytest.mark.asyncio
    async def test_phone_is_unique_on_register(self, db, services):
        code = await services.auth.start_phone_login(self.PHONE)
        await services.auth.verify_phone_code(self.PHONE, code)

        with pytest.raises(BadRequestError):
            await _register(services, phone=self.PHONE)
        assert await db.users.count_documents({"phone": self.PHONE}) == 1

    @pytest.mark.asyncio
    async def test_phone_is_unique_on_profile_update(self, db, services):
        await _register(services, phone=self.PHONE)
        ben, _ = await _register(services, email="ben@example.com")

        with pytest.raises(BadRequestError):
            await services.auth.update_profile(ben, ProfileUpdate(phone=self.PHONE))
        assert (await db.users.find_one({"user_id": ben.user_id}))["phone"] is None

    @pytest.mark.asyncio
    async def test_unverified_claim_is_not_signed_in(self, db, services):
        other, _ = await _register(services, phone=self.PHONE)

        code = await services.auth.start_phone_login(self.PHONE)
        _, user = await services.auth.verify_phone_code(self.PHONE, code)

        assert user.user_id != other.user_id
        assert user.auth_provider == AuthProvider.PHONE
        stored = await db.users.find_one({"user_id": other.user_id}, {"_id": 0})
        assert stored["phone_verified"] is False
        assert "phone" not in stored
        assert await db.users.count_documents({"phone": self.PHONE}) == 1

    @pytest.mark.asyncio
    async def test_confirmed_phone_signs_into_owner(self, services):
        ana, _ = await _register(services, phone=self.PHONE)

        code = await services.auth.start_phone_login(self.PHONE)
        confirmed = await services.auth.confirm_phone(ana, code)
        assert confirmed.phone_verified is True

        code = await services.auth.start_phone_login(self.PHONE)
        _, user = await services.auth.verify_phone_code(self.PHONE, code)
        assert user.user_id == ana.user_id

    @pytest.mark.asyncio
    async def test_confirm_requires_a_phone(self, services):
        ana, _ = await _register(services)
        with pytest.raises(BadRequestError):
            await services.auth.confirm_phone(ana, "123456")

    @pytest.mark.asyncio
    async def test_phone_index_is_unique(self):
        database = Database(mongo_url="mongodb://unused", db_name="unused")
        database.db = AsyncMock()
        await database._create_indexes()
        database.db.users.create_index.assert_any_call(
            "phone", unique=True, partialFilterExpression={"phone": {"$type": "string"}}
        )

class TestExternalIdentity:
    @pytest.mark.asyncio
    async def test_github_links_existing_email(self, db, services):
        user, _ = await _register(services)
        identity = ExternalIdentity(AuthProvider.GITHUB, "gh-42", "ANA@example.com", "Ana R")

        with patch.object(services.auth, "fetch_github_identity", AsyncMock(return_value=identity)):
            _, logged_in = await services.auth.login_with_github("code")

        assert logged_in.user_id == user.user_id
        assert await db.users.count_documents({}) == 1

    @pytest.mark.asyncio
    async def test_github_first_login_creates_account(self, db, services):
        identity = ExternalIdentity(AuthProvider.GITHUB, "gh-7", "ben@example.com", None)
        with patch.object(services.auth, "fetch_github_identity", AsyncMock(return_value=identity)):
            _, user = await services.auth.login_with_github("code")

        assert user.name == "ben"
        assert user.email_verified is True
        assert user.auth_provider == AuthProvider.GITHUB

    @pytest.mark.asyncio
    async def test_apple_not_configured(self, services):
        services.auth.apple_client_id = None
        with pytest.raises(BadRequestError):
            await services.auth.login_with_apple("token")


class TestLoginMethod:
    def test_external_account_cannot_have_password(self):
        with pytest.raises(ValueError):
            User(name="Ana", auth_provider=AuthProvider.APPLE, provider_id="apple-1", password_hash="h")

    def test_local_account_cannot_have_provider_id(self):
        with pytest.raises(ValueError):
            User(name="Ana", email="ana@example.com", password_hash="h", provider_id="gh-1")

    def test_phone_account(self):
        user = User(name="Ana", phone="+34600111222", auth_provider=AuthProvider.PHONE, provider_id="+34600111222")
        assert user.password_hash is None
