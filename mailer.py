import logging
import os
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)

SUBJECTS = {
    "registration": "RentCar - Email Verification OTP",
    "password_reset": "RentCar - Password Reset OTP",
}

INTROS = {
    "registration": (
        "Welcome to RentCar!",
        "Thank you for registering with RentCar. To complete your registration, please use the following OTP:",
    ),
    "password_reset": (
        "Password Reset Request",
        "You requested a password reset for your RentCar account. Use the following OTP to reset your password:",
    ),
}

HTML_TEMPLATE = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2563eb;">{heading}</h2>
  <p>{intro}</p>
  <div style="background-color: #f3f4f6; padding: 20px; text-align: center; margin: 20px 0;">
    <h1 style="color: #1f2937; font-size: 32px; margin: 0; letter-spacing: 5px;">{code}</h1>
  </div>
  <p>This OTP will expire in 10 minutes.</p>
  <p>If you didn't request this, please ignore this email.</p>
  <p style="color: #6b7280; font-size: 14px;">Best regards,<br>RentCar Team</p>
</div>
"""


def use_test_email() -> bool:
    return os.getenv("USE_TEST_EMAIL", "false").lower() == "true"


def build_otp_message(to: str, code: str, purpose: str) -> EmailMessage:
    heading, intro = INTROS[purpose]
    msg = EmailMessage()
    msg["Subject"] = SUBJECTS[purpose]
    msg["From"] = os.getenv("EMAIL_USER", "no-reply@rentcar.local")
    msg["To"] = to
    msg.set_content(f"{intro}\n\n{code}\n\nThis OTP will expire in 10 minutes.")
    msg.add_alternative(HTML_TEMPLATE.format(heading=heading, intro=intro, code=code), subtype="html")
    return msg


def send_otp(to: str, code: str, purpose: str) -> None:
    """Email an OTP, or log it when USE_TEST_EMAIL is set. SMTP errors propagate."""
    if use_test_email():
        logger.info("TEST MODE: %s OTP for %s is %s", purpose, to, code)
        return

    msg = build_otp_message(to, code, purpose)
    host = os.getenv("SMTP_HOST", "smtp.gmail.com")
    port = int(os.getenv("SMTP_PORT", 587))
    timeout = float(os.getenv("SMTP_TIMEOUT", 10))
    with smtplib.SMTP(host, port, timeout=timeout) as smtp:
        smtp.starttls()
        user = os.getenv("EMAIL_USER")
        if user:
            smtp.login(user, os.getenv("EMAIL_PASS", ""))
        smtp.send_message(msg)
    logger.info("Sent %s OTP to %s", purpose, to)
