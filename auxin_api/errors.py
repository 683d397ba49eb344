"""Error taxonomy shared by the engines and the HTTP layer.

Every error carries the HTTP status it maps to, a stable machine code the
frontend switches on, and a message that is safe to show to the caller.
``main.py`` renders them as ``{"success": false, "error": ..., "code": ...}``.
"""

from typing import Optional


class ServiceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None,
                 status_code: Optional[int] = None, **extra):
        self.message = message or self.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code}
        payload.update(self.extra)
        return payload


# --- 400: malformed input ---

class InvalidInputError(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


# --- conflicts ---

class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflict"


class SlotUnavailableError(ConflictError):
    code = "SLOT_UNAVAILABLE"
    message = "Time slot not available"


class DuplicateDayBookingError(ConflictError):
    code = "DUPLICATE_DATE_BOOKING"
    message = "You already have an appointment on this date"


class DuplicateAccountError(ConflictError):
    status_code = 400
    code = "USER_EXISTS"
    message = "User already exists with this email"


class AlreadyCancelledError(ConflictError):
    status_code = 400
    code = "ALREADY_CANCELLED"
    message = "Appointment is already cancelled"


class CancellationTooLateError(ServiceError):
    status_code = 400
    code = "CANCELLATION_TOO_LATE"
    message = "Cannot cancel appointment less than 1 hour before scheduled time"


# --- 404 ---

class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class AppointmentNotFoundError(NotFoundError):
    code = "APPOINTMENT_NOT_FOUND"
    message = "Appointment not found"


class SignupNotFoundError(NotFoundError):
    code = "SIGNUP_NOT_FOUND"
    message = "No signup found for this email"


class NoActiveCodeError(NotFoundError):
    code = "NO_ACTIVE_CODE"
    message = "No active verification code. Please request a new code."


# --- 401 / 403 ---

class UnauthorizedError(ServiceError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Access token required"


class InvalidTokenError(UnauthorizedError):
    code = "INVALID_TOKEN"
    message = "Invalid or expired token"


class TokenExpiredError(UnauthorizedError):
    code = "TOKEN_EXPIRED"
    message = "Token expired"


class UserNotFoundError(UnauthorizedError):
    code = "USER_NOT_FOUND"
    message = "User not found"


class InvalidCredentialsError(UnauthorizedError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class OAuthAccountError(UnauthorizedError):
    code = "OAUTH_ACCOUNT"
    message = 'This account was created with Google. Please use "Continue with Google" to sign in.'


class VerificationRequiredError(ServiceError):
    status_code = 403
    code = "EMAIL_NOT_VERIFIED"
    message = "Email not verified"

    def __init__(self, email: str, message: Optional[str] = None):
        super().__init__(message, requiresVerification=True, email=email)


# --- verification codes ---

class CodeExpiredError(ServiceError):
    status_code = 400
    code = "CODE_EXPIRED"
    message = "Verification code has expired"


class InvalidCodeError(ServiceError):
    status_code = 400
    code = "INVALID_CODE"
    message = "Invalid verification code"


# --- 500: upstream collaborators ---

class UpstreamError(ServiceError):
    status_code = 500
    code = "UPSTREAM_ERROR"
    message = "Upstream service failed"


class MailNotConfiguredError(UpstreamError):
    code = "MAIL_NOT_CONFIGURED"
    message = "Email service not configured"


class MailDeliveryError(UpstreamError):
    code = "MAIL_DELIVERY_FAILED"
    message = "Failed to send verification code"


class OAuthNotConfiguredError(UpstreamError):
    code = "OAUTH_NOT_CONFIGURED"
    message = "Google authentication is not configured"


class OAuthExchangeError(UpstreamError):
    code = "OAUTH_EXCHANGE_FAILED"
    message = "Failed to authenticate with Google"


class TokenConfigError(UpstreamError):
    code = "TOKEN_CONFIG_ERROR"
    message = "Authentication is not configured"
