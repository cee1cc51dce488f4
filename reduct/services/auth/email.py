from __future__ import annotations

import asyncio
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import smtplib

from reduct.core.config import get_settings


logger = logging.getLogger(__name__)

VERIFICATION_SUBJECT = "[ReductAI] 회원가입 인증번호"


def render_verification_html(code: str, *, ttl_minutes: int) -> str:
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>ReductAI 회원가입 인증</h2>
  <p>안녕하세요,</p>
  <p>요청하신 회원가입 인증번호입니다.</p>
  <div style="background-color: #f5f5f5; padding: 20px; text-align: center; border-radius: 5px; margin: 20px 0;">
    <h1 style="letter-spacing: 5px; margin: 0;">{code}</h1>
  </div>
  <p>이 코드는 {ttl_minutes}분간 유효합니다.</p>
  <p>본인이 요청하지 않았다면 이 메일을 무시해주세요.</p>
</div>
"""


def _send_blocking(to_email: str, subject: str, html_body: str) -> None:
    settings = get_settings()
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from
    msg["To"] = to_email
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_s) as server:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_user and settings.smtp_password:
            server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.smtp_from, [to_email], msg.as_string())


async def send_verification_email(to_email: str, code: str) -> bool:
    """Send the signup verification code. Returns False when delivery failed."""
    settings = get_settings()
    if not settings.smtp_host:
        # No relay configured in local development.
        logger.info("verification_email_skipped email=%s reason=smtp_disabled", to_email)
        return True
    html_body = render_verification_html(code, ttl_minutes=max(1, settings.otp_ttl_seconds // 60))
    try:
        await asyncio.to_thread(_send_blocking, to_email, VERIFICATION_SUBJECT, html_body)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("verification_email_send_failed email=%s", to_email, exc_info=exc)
        return False
    logger.info("verification_email_sent email=%s", to_email)
    return True
