from dataclasses import dataclass

from auxin_api import config
from auxin_api.db import MongoPool
from auxin_api.services.auth_flow import AuthFlow
from auxin_api.services.booking import BookingEngine
from auxin_api.services.identity import IdentityStore
from auxin_api.services.verification import VerificationEngine
from auxin_api.utils.clock import utcnow
from auxin_api.utils.email import SendGridMailer
from auxin_api.utils.oauth import GoogleOAuthClient
from auxin_api.utils.security import TokenService


@dataclass
class Services:
    pool: MongoPool
    identity: IdentityStore
    verification: VerificationEngine
    auth: AuthFlow
    booking: BookingEngine


def wire_services(pool, mailer, tokens, oauth, clock=utcnow, timezone="UTC") -> Services:
    identity = IdentityStore(pool, clock=clock)
    verification = VerificationEngine(identity, mailer, clock=clock)
    return Services(
        pool=pool,
        identity=identity,
        verification=verification,
        auth=AuthFlow(identity, verification, tokens, oauth),
        booking=BookingEngine(pool, clock=clock, timezone=timezone),
    )


def build_services() -> Services:
    """Everything the routes need, configured from the environment."""
    return wire_services(
        pool=MongoPool(config.MONGO_URI, config.MONGO_DB_NAME),
        mailer=SendGridMailer(config.SENDGRID_API_KEY, config.SENDER_EMAIL),
        tokens=TokenService(
            config.JWT_SECRET,
            algorithm=config.JWT_ALGORITHM,
            expires_minutes=config.JWT_EXPIRES_MINUTES,
        ),
        oauth=GoogleOAuthClient(
            config.GOOGLE_CLIENT_ID,
            config.GOOGLE_CLIENT_SECRET,
            config.GOOGLE_REDIRECT_URI,
        ),
        timezone=config.BUSINESS_TIMEZONE,
    )
