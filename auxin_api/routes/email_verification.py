import logging

from fastapi import APIRouter, Request

from auxin_api.middleware.auth_middleware import get_services
from auxin_api.models.user import EmailRequest, OtpVerificationRequest

logger = logging.getLogger("uvicorn.error")

router = APIRouter()


@router.post("/send-otp")
async def send_otp(body: EmailRequest, request: Request):
    services = get_services(request)
    expires = await services.verification.issue_code(body.email)
    logger.info("Verification code issued, valid until %s UTC", expires.isoformat())
    return {"success": True, "message": "Verification code sent to your email"}


@router.post("/verify-otp")
async def verify_otp(body: OtpVerificationRequest, request: Request):
    services = get_services(request)
    result = await services.auth.verify_otp(body.email, body.code)
    return {"success": True, "message": "Email verified successfully", **result.as_dict()}
