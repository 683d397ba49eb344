"""Email verification: pending signups, one-time codes and promotion.

Per email the record moves ``NoRecord -> PendingUnverified -> Verified``;
accounts that exist as a User but never verified (imported data) start at
``RegisteredUnverified`` and reach the same terminal state.
"""

import hmac
import logging
import secrets
from datetime import timedelta

from pymongo.errors import DuplicateKeyError

from auxin_api.errors import (
    CodeExpiredError,
    DuplicateAccountError,
    InvalidCodeError,
    InvalidInputError,
    NoActiveCodeError,
    SignupNotFoundError,
    VerificationRequiredError,
)
from auxin_api.services.identity import AccountState, normalize_email
from auxin_api.utils.clock import utcnow
from auxin_api.utils.security import get_password_hash

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=2)


def generate_code() -> str:
    """Six digits, uniform over 100000..999999."""
    return str(100000 + secrets.randbelow(900000))


def codes_match(stored, provided) -> bool:
    # opaque strings: "012345" must not equal 12345
    return hmac.compare_digest(str(stored).encode("utf-8"), str(provided).encode("utf-8"))


class VerificationEngine:
    def __init__(self, identity, mailer, clock=utcnow, code_ttl: timedelta = CODE_TTL,
                 code_factory=generate_code):
        self.identity = identity
        self.mailer = mailer
        self._clock = clock
        self.code_ttl = code_ttl
        self._code_factory = code_factory

    async def start_signup(self, name: str, email: str, password: str) -> dict:
        lookup = await self.identity.resolve(email)

        if lookup.state is AccountState.VERIFIED:
            raise DuplicateAccountError()
        if lookup.state is AccountState.UNVERIFIED:
            # The account already exists; only verification is missing.
            raise VerificationRequiredError(lookup.email)

        pending = await self.identity.upsert_pending(name, lookup.email, get_password_hash(password))
        logger.info("Pending signup stored for %s", lookup.email)
        return pending

    async def issue_code(self, email: str):
        """Persists a fresh code, then delivers it. Returns the expiry.

        The code is stored before delivery is attempted, so when the mail
        transport fails the caller gets MailDeliveryError but the stored code
        stays valid until it expires or the next issue overwrites it.
        """
        if not normalize_email(email):
            raise InvalidInputError("Email is required", code="MISSING_EMAIL")

        self.mailer.ensure_configured()

        lookup = await self.identity.resolve(email)
        if lookup.state is AccountState.NOT_FOUND:
            logger.info("No signup found for %s", lookup.email)
            raise SignupNotFoundError()

        code = self._code_factory()
        expires = self._clock() + self.code_ttl
        await self.identity.set_verification_code(lookup, code, expires)

        await self.mailer.send_verification_code(
            lookup.email, code, int(self.code_ttl.total_seconds() // 60)
        )
        return expires

    async def verify_code(self, email: str, code: str) -> dict:
        """Returns the verified user document."""
        if not normalize_email(email) or not code:
            raise InvalidInputError("Email and code are required", code="MISSING_FIELDS")

        lookup = await self.identity.resolve(email)

        if lookup.state is AccountState.NOT_FOUND:
            raise NoActiveCodeError()
        if lookup.state is AccountState.VERIFIED:
            return lookup.record

        record = lookup.record
        stored_code = record.get("emailVerificationCode")
        stored_expires = record.get("emailVerificationExpires")
        if not stored_code or not stored_expires:
            raise NoActiveCodeError(status_code=400)

        if self._clock() > stored_expires:
            raise CodeExpiredError()
        if not codes_match(stored_code, code):
            raise InvalidCodeError()

        if lookup.state is AccountState.UNVERIFIED:
            return await self.identity.mark_verified(record["_id"])
        return await self._promote(record)

    async def _promote(self, pending: dict) -> dict:
        # Create first, delete second: a failed create keeps the pending data,
        # a failed delete leaves a stale PendingUser that resolve() ignores.
        try:
            user = await self.identity.create_user(
                name=pending["name"],
                email=pending["email"],
                password=pending.get("password"),
                is_email_verified=True,
            )
        except DuplicateKeyError:
            # A concurrent verify with the same code promoted this signup first.
            lookup = await self.identity.resolve(pending["email"])
            if lookup.state is not AccountState.VERIFIED:
                raise
            logger.info("Pending signup for %s was already promoted to user %s",
                        pending["email"], lookup.record["_id"])
            user = lookup.record
        try:
            await self.identity.delete_pending(pending["_id"])
        except Exception:
            logger.exception(
                "Promoted %s to user %s but could not delete pending record %s; needs manual cleanup",
                pending["email"], user["_id"], pending["_id"],
            )
        logger.info("Pending signup promoted to user %s", user["_id"])
        return user
