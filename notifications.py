"""Outbound customer email over SMTP."""
import logging
import os
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Optional

logger = logging.getLogger(__name__)

EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD")
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
STORE_NAME = os.getenv("STORE_NAME", "Nairobi Electronics")
STORE_PHONE = os.getenv("STORE_PHONE", "0717888333")
STORE_ADDRESS = os.getenv("STORE_ADDRESS", "10 Woodvale Grove, Nairobi")
SITE_URL = os.getenv("SITE_URL", "https://localhost:5000")


def _signature() -> str:
    return f"""
      <p style="color: #666; margin-top: 30px;">
        Best regards,<br>
        The {STORE_NAME} Team<br>
        {STORE_ADDRESS}<br>
        Phone: {STORE_PHONE}
      </p>"""


def send_email(to: str, subject: str, html: str, text: Optional[str] = None) -> bool:
    """Send one message. Returns False when SMTP is not configured, raises on transport errors."""
    if not EMAIL_USER or not EMAIL_PASSWORD:
        logger.warning("Email not configured, skipping %r to %s", subject, to)
        return False

    msg = EmailMessage()
    msg["From"] = f'"{STORE_NAME}" <{EMAIL_USER}>'
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text or "This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")

    with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=30) as server:
        server.starttls()
        server.login(EMAIL_USER, EMAIL_PASSWORD)
        server.send_message(msg)
    logger.info("Email %r sent to %s", subject, to)
    return True


def send_welcome_email(to: str, first_name: str) -> bool:
    subject = f"Welcome to {STORE_NAME}!"
    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h1 style="color: #3b82f6;">Welcome to {STORE_NAME}!</h1>
      <p>Hi {escape(first_name)},</p>
      <p>Thank you for joining {STORE_NAME}! We're excited to have you as part of our community.</p>
      <ul>
        <li>Browse our latest electronics and gadgets</li>
        <li>Enjoy cash-on-delivery payment options</li>
        <li>Get fast delivery across Kenya</li>
      </ul>
      <p style="margin-top: 30px;">
        <a href="{SITE_URL}" style="background-color: #3b82f6; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px;">
          Start Shopping
        </a>
      </p>{_signature()}
    </div>
    """
    return send_email(to, subject, html)


def send_order_dispatch_email(to: str, first_name: str, order_id: str, shipping_address: str) -> bool:
    subject = "Your Order Has Been Dispatched!"
    reference = order_id[:8]
    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h1 style="color: #3b82f6;">Your Order is On Its Way!</h1>
      <p>Hi {escape(first_name)},</p>
      <p>Great news! Your order <strong>#{reference}...</strong> has been dispatched and is on its way to you!</p>
      <div style="background-color: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <h3 style="margin-top: 0;">Delivery Details:</h3>
        <p><strong>Delivery Address:</strong><br>{escape(shipping_address)}</p>
        <p><strong>Expected Delivery:</strong> Within 1-2 business days</p>
        <p><strong>Payment Method:</strong> Cash on Delivery</p>
      </div>
      <p><strong>What to expect:</strong></p>
      <ul>
        <li>Our delivery team will contact you before arrival</li>
        <li>Have your cash ready for payment</li>
        <li>Inspect your items before payment</li>
      </ul>
      <p>If you have any questions about your delivery, please contact us at {STORE_PHONE}.</p>{_signature()}
    </div>
    """
    text = (
        f"Hi {first_name}, your order #{reference} has been dispatched to {shipping_address}. "
        "Payment: cash on delivery."
    )
    return send_email(to, subject, html, text)
