import logging
from dataclasses import dataclass

from auxin_api.errors import (
    InvalidCredentialsError,
    InvalidInputError,
    OAuthAccountError,
    UnauthorizedError,
    UserNotFoundError,
    VerificationRequiredError,
)
from auxin_api.models.user import public_user
from auxin_api.services.identity import AccountState
from auxin_api.utils.security import passwords_match

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    token: str
    user: dict

    def as_dict(self) -> dict:
        return {"token": self.token, "user": public_user(self.user)}


class AuthFlow:
    """Registration, password and Google sign-in, and session tokens."""

    def __init__(self, identity, verification, tokens, oauth):
        self.identity = identity
        self.verification = verification
        self.tokens = tokens
        self.oauth = oauth

    def _issue(self, user: dict) -> AuthResult:
        return AuthResult(token=self.tokens.create_access_token(user), user=user)

    async def register(self, name: str, email: str, password: str) -> dict:
        pending = await self.verification.start_signup(name, email, password)
        return {"email": pending["email"], "requiresVerification": True}

    async def login(self, email: str, password: str) -> AuthResult:
        if not email or not password:
            raise InvalidInputError("Email and password are required", code="MISSING_FIELDS")

        lookup = await self.identity.resolve(email)

        if not lookup.is_user:
            # A signup that never verified gets pointed at verification, but only
            # when the password proves it is theirs.
            if lookup.state is AccountState.PENDING and passwords_match(password, lookup.record.get("password")):
                raise VerificationRequiredError(
                    lookup.email, "Please verify your email before logging in"
                )
            raise InvalidCredentialsError()

        user = lookup.record
        if not user.get("password"):
            raise OAuthAccountError()
        if not passwords_match(password, user["password"]):
            raise InvalidCredentialsError()
        if lookup.state is AccountState.UNVERIFIED:
            raise VerificationRequiredError(lookup.email, "Please verify your email before logging in")

        logger.info("User logged in: %s", user["_id"])
        return self._issue(user)

    async def verify_otp(self, email: str, code: str) -> AuthResult:
        user = await self.verification.verify_code(email, code)
        return self._issue(user)

    async def oauth_callback(self, code: str) -> AuthResult:
        if not code:
            raise InvalidInputError("Authorization code is required", code="MISSING_CODE")

        profile = await self.oauth.exchange_code(code)
        user = await self.identity.find_user_for_oauth(profile.email, profile.google_id)

        if user:
            backfill = {}
            if not user.get("googleId"):
                backfill["googleId"] = profile.google_id
            if not user.get("avatar") and profile.avatar:
                backfill["avatar"] = profile.avatar
            if backfill:
                user = await self.identity.update_user(user["_id"], backfill)
                logger.info("Linked Google account to user %s", user["_id"])
        else:
            user = await self.identity.create_user(
                name=profile.name or profile.email.split("@")[0],
                email=profile.email,
                google_id=profile.google_id,
                avatar=profile.avatar,
                is_email_verified=True,
            )
            logger.info("Created user %s from Google sign-in", user["_id"])

        return self._issue(user)

    async def verify_session(self, token: str) -> dict:
        """Returns the user document behind a bearer token."""
        if not token:
            raise UnauthorizedError()
        payload = self.tokens.decode_access_token(token)
        user = await self.identity.find_user_by_id(payload["userId"])
        if not user:
            raise UserNotFoundError()
        return user

    async def refresh(self, token: str) -> AuthResult:
        if not token:
            raise UnauthorizedError("Token is required", code="MISSING_TOKEN")
        user = await self.verify_session(token)
        return self._issue(user)
