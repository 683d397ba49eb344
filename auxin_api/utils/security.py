import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from auxin_api.errors import InvalidTokenError, TokenConfigError, TokenExpiredError


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def passwords_match(plain_password: str, stored: Optional[str]) -> bool:
    """Check a password against a stored value that may predate hashing.

    Records written before passwords were hashed hold the plaintext, so
    anything passlib does not recognise is compared as a plain string.
    """
    if not stored or plain_password is None:
        return False
    if pwd_context.identify(stored) is not None:
        return verify_password(plain_password, stored)
    return hmac.compare_digest(plain_password.encode("utf-8"), stored.encode("utf-8"))


class TokenService:
    """Signs and verifies session tokens carrying ``{userId, email}``."""

    def __init__(self, secret: str, algorithm: str = "HS256", expires_minutes: int = 7 * 24 * 60):
        self.secret = secret
        self.algorithm = algorithm
        self.expires_minutes = expires_minutes

    def _secret(self) -> str:
        if not self.secret:
            raise TokenConfigError("JWT_SECRET environment variable is required")
        return self.secret

    def create_access_token(self, user: dict, expires_delta: timedelta = None) -> str:
        now = datetime.now(timezone.utc)
        if expires_delta:
            expire = now + expires_delta
        else:
            expire = now + timedelta(minutes=self.expires_minutes)

        user_id = str(user["_id"])
        to_encode = {
            "sub": user_id,
            "userId": user_id,
            "email": user["email"],
            "iat": now,
            "exp": expire,
        }
        return jwt.encode(to_encode, self._secret(), algorithm=self.algorithm)

    def decode_access_token(self, token: str) -> dict:
        try:
            payload = jwt.decode(token, self._secret(), algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError:
            raise InvalidTokenError()

        if not payload.get("userId"):
            raise InvalidTokenError("Invalid token payload")
        return payload
