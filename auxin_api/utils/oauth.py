import logging
from urllib.parse import urlencode

import httpx
from google.auth.transport import requests
from google.oauth2 import id_token
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from auxin_api.errors import OAuthExchangeError, OAuthNotConfiguredError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]


class GoogleUser(BaseModel):
    google_id: str
    email: str
    name: str = ""
    avatar: str = ""


def verify_google_id_token(token: str, client_id: str) -> dict:
    """Checks the ID token's signature, expiry and audience (our client ID)."""
    return id_token.verify_oauth2_token(token, requests.Request(), client_id)


class GoogleOAuthClient:
    def __init__(self, client_id: str, client_secret: str, redirect_uri: str,
                 transport: httpx.AsyncBaseTransport = None, timeout: float = 10.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._transport = transport
        self._timeout = timeout

    def _ensure_configured(self) -> None:
        if not self.client_id or not self.client_secret or not self.redirect_uri:
            raise OAuthNotConfiguredError("Missing Google OAuth environment variables")

    def authorization_url(self, state: str = None) -> str:
        self._ensure_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> GoogleUser:
        """Trades an authorization code for the signed-in user's profile."""
        self._ensure_configured()
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
                response.raise_for_status()
                tokens = response.json()
        except httpx.HTTPError as e:
            logger.error("Google token exchange failed: %s", e)
            raise OAuthExchangeError() from e

        raw_id_token = tokens.get("id_token")
        if not raw_id_token:
            logger.error("Google token response carried no id_token")
            raise OAuthExchangeError()

        try:
            id_info = await run_in_threadpool(verify_google_id_token, raw_id_token, self.client_id)
        except ValueError as e:
            # invalid token, expired token, or wrong client ID
            logger.error("Google ID token verification error: %s", e)
            raise OAuthExchangeError() from e

        if not id_info.get("email"):
            raise OAuthExchangeError("Google account has no email address")

        return GoogleUser(
            google_id=id_info["sub"],
            email=id_info["email"],
            name=id_info.get("name", ""),
            avatar=id_info.get("picture", ""),
        )
