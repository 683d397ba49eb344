import json
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import RedirectResponse

from auxin_api import config
from auxin_api.errors import ServiceError
from auxin_api.middleware.auth_middleware import bearer_token, get_services, require_user
from auxin_api.models.user import (
    EmailRequest,
    GoogleCallbackRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    public_user,
)

logger = logging.getLogger("uvicorn.error")

router = APIRouter()


def frontend_redirect(path: str, **params) -> RedirectResponse:
    url = f"{config.FRONTEND_URL.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


@router.post("/register", status_code=201)
async def register(body: RegisterRequest, request: Request):
    services = get_services(request)
    result = await services.auth.register(body.name, body.email, body.password)
    return {
        "message": "Registration successful. Please verify your email.",
        "email": result["email"],
        "requiresVerification": True,
    }


@router.post("/login")
async def login(body: LoginRequest, request: Request):
    services = get_services(request)
    result = await services.auth.login(body.email, body.password)
    return {"message": "Login successful", **result.as_dict()}


@router.get("/google")
async def google_login(request: Request):
    services = get_services(request)
    try:
        return RedirectResponse(services.auth.oauth.authorization_url(), status_code=302)
    except ServiceError as e:
        logger.error("Google sign-in unavailable: %s", e.message)
        return frontend_redirect("/login", error=e.code.lower())


@router.get("/google/callback")
async def google_callback_redirect(request: Request, code: str = None, error: str = None):
    """Browser leg of the OAuth dance: always ends on the frontend."""
    if error:
        logger.info("Google sign-in declined: %s", error)
        return frontend_redirect("/auth/google/callback", error=error)

    services = get_services(request)
    try:
        result = await services.auth.oauth_callback(code)
    except ServiceError as e:
        logger.error("Google callback failed: %s", e.message)
        return frontend_redirect("/auth/google/callback", error=e.message)
    except Exception:
        logger.exception("Google callback failed")
        return frontend_redirect("/auth/google/callback", error="server_error")

    return frontend_redirect(
        "/auth/google/callback",
        token=result.token,
        user=json.dumps(public_user(result.user)),
    )


@router.post("/google/callback")
async def google_callback(body: GoogleCallbackRequest, request: Request):
    services = get_services(request)
    result = await services.auth.oauth_callback(body.code)
    return {"message": "Google authentication successful", **result.as_dict()}


@router.get("/verify")
async def verify(user: dict = Depends(require_user)):
    return {"success": True, "user": public_user(user)}


@router.post("/refresh-token")
async def refresh_token(request: Request, body: RefreshTokenRequest = None,
                        authorization: str = Header(None)):
    # the token may come in the body or as a bearer header
    token = (body.token if body else None) or bearer_token(authorization)
    services = get_services(request)
    result = await services.auth.refresh(token)
    return {"success": True, "token": result.token}


@router.post("/forgot-password")
async def forgot_password(body: EmailRequest):
    # Same answer whether or not the account exists.
    logger.info("Password reset requested")
    return {
        "success": True,
        "message": "If an account exists with this email, you will receive password reset instructions.",
    }


@router.post("/logout")
async def logout():
    # Tokens are stateless; the client discards its copy.
    return {"success": True, "message": "Logged out successfully"}
