import logging

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from starlette.concurrency import run_in_threadpool

from auxin_api.errors import MailDeliveryError, MailNotConfiguredError

logger = logging.getLogger(__name__)


def verification_email_html(code: str, ttl_minutes: int) -> str:
    return f"""<div style="font-family:Arial,sans-serif;line-height:1.6;color:#333;max-width:600px;margin:0 auto">
  <div style="background:#000;padding:20px;text-align:center">
    <h1 style="color:#39FF14;margin:0">AUXIN</h1>
  </div>
  <div style="background:#fff;padding:30px">
    <h2 style="color:#333;margin-top:0">Verify Your Email</h2>
    <p style="color:#666;font-size:16px">Thank you for signing up! Please enter the following verification code to complete your registration:</p>
    <div style="background:#f5f5f5;border:2px solid #39FF14;padding:20px;text-align:center;margin:30px 0;border-radius:8px">
      <div style="font-size:32px;letter-spacing:12px;font-weight:bold;color:#39FF14;font-family:'Courier New',monospace">{code}</div>
    </div>
    <p style="color:#666;font-size:14px">This code will expire in {ttl_minutes} minutes.</p>
    <p style="color:#999;font-size:12px;margin-top:30px;padding-top:20px;border-top:1px solid #eee">If you didn't create an account with Auxin, please ignore this email.</p>
  </div>
</div>"""


class SendGridMailer:
    """Delivers verification codes through the SendGrid web API."""

    def __init__(self, api_key: str, sender: str, sender_name: str = "Auxin"):
        self.api_key = api_key
        self.sender = sender
        self.sender_name = sender_name

    def ensure_configured(self) -> None:
        if not self.api_key:
            logger.error("SENDGRID_API_KEY not set")
            raise MailNotConfiguredError(
                "Email service not configured. Please set the SENDGRID_API_KEY environment variable."
            )
        if not self.sender:
            logger.error("SENDER_EMAIL not set; it must be a verified sender address")
            raise MailNotConfiguredError(
                "Email sender not configured. Please set SENDER_EMAIL to a verified sender email."
            )

    def _send(self, message: Mail) -> int:
        sg = SendGridAPIClient(self.api_key)
        response = sg.send(message)
        status_code = int(getattr(response, "status_code", 0))
        if not 200 <= status_code < 300:
            raise RuntimeError(f"SendGrid returned status {status_code}")
        return status_code

    async def send_verification_code(self, to_email: str, code: str, ttl_minutes: int = 2) -> None:
        self.ensure_configured()
        message = Mail(
            from_email=(self.sender, self.sender_name),
            to_emails=to_email,
            subject="Your Auxin Verification Code",
            html_content=verification_email_html(code, ttl_minutes),
        )
        try:
            status_code = await run_in_threadpool(self._send, message)
        except Exception as e:
            # python_http_client raises HTTPError subclasses for 4xx/5xx
            logger.error("SendGrid delivery to %s failed: %s", to_email, e)
            raise MailDeliveryError() from e
        logger.info("Verification email sent to %s (status %s)", to_email, status_code)
