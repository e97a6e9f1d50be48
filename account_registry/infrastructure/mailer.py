"""Mail Transport — delivers verification codes over an HTTP mail API.

Invariants:
    - send_code() either returns after the provider accepted the message or
      raises MailSendError wrapping the underlying cause
    - Codes are never logged by HttpMailTransport

Design Decisions:
    - Synchronous httpx.Client: called from FastAPI worker threads after the
      account lock has been released, never from the event loop
    - Mailgun-style form POST with basic auth `api:<key>`
    - LoggingMailTransport when no API URL is configured (local development)
"""

import logging

import httpx

from account_registry.config import Settings
from account_registry.core.domain_types import CodePurpose
from account_registry.core.errors import MailSendError
from account_registry.core.repository_protocols import MailTransport

logger = logging.getLogger(__name__)

_SUBJECTS = {
    CodePurpose.ACTIVATE: "Your account activation code",
    CodePurpose.RESET_PASSWORD: "Your password reset code",
}


def _render_body(code: int, purpose: CodePurpose, ttl_minutes: int) -> str:
    action = "activate your account" if purpose is CodePurpose.ACTIVATE else "reset your password"
    return (
        f"Your verification code is {code:06d}.\n\n"
        f"Use it to {action}. It expires in {ttl_minutes} minutes.\n\n"
        "If you didn't request this, you can safely ignore this email."
    )


class HttpMailTransport:
    """Send codes through an HTTP mail provider."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: str,
        timeout: float = 10.0,
        ttl_minutes: int = 15,
        client: httpx.Client | None = None,
    ):
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        self._ttl_minutes = ttl_minutes
        self._client = client or httpx.Client(timeout=timeout)

    def send_code(self, email: str, code: int, purpose: CodePurpose) -> None:
        data = {
            "from": self._sender,
            "to": email,
            "subject": _SUBJECTS[purpose],
            "text": _render_body(code, purpose, self._ttl_minutes),
        }
        try:
            resp = self._client.post(self._api_url, auth=("api", self._api_key), data=data)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                f"Failed to send verification mail: {e}",
                extra={"purpose": purpose.value},
            )
            raise MailSendError(e)
        logger.info("Verification mail sent", extra={"purpose": purpose.value})

    def close(self) -> None:
        self._client.close()


class LoggingMailTransport:
    """Development transport: writes the code to the log instead of mailing it."""

    def send_code(self, email: str, code: int, purpose: CodePurpose) -> None:
        logger.info(
            f"Development mode: verification code for {email} is {code:06d}",
            extra={"purpose": purpose.value},
        )

    def close(self) -> None:
        pass


def build_mail_transport(settings: Settings) -> MailTransport:
    if not settings.mail_api_url:
        logger.warning("MAIL_API_URL not set, verification codes will only be logged")
        return LoggingMailTransport()
    return HttpMailTransport(
        api_url=settings.mail_api_url,
        api_key=settings.mail_api_key,
        sender=settings.mail_from,
        timeout=settings.mail_timeout_seconds,
        ttl_minutes=settings.verification_code_ttl_minutes,
    )
