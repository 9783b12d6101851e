"""Transactional e-mail bodies."""

from __future__ import annotations

from html import escape

PAYMENT_FAILED_SUBJECT = "Action required: your payment failed"


def build_payment_failed_html(name: str | None, billing_url: str) -> str:
    """HTML body asking the customer to update their payment method."""
    greeting = escape(name or "there")
    url = escape(billing_url, quote=True)
    return (
        "<div style=\"font-family: sans-serif; max-width: 560px;\">"
        f"<p>Hi {greeting},</p>"
        "<p>We couldn't process the latest payment for your subscription. "
        "Your access stays active for now, but please update your payment "
        "method to avoid an interruption.</p>"
        f"<p><a href=\"{url}\">Update billing details</a></p>"
        "<p>If you've already updated your card you can ignore this message.</p>"
        "</div>"
    )


def build_payment_failed_text(name: str | None, billing_url: str) -> str:
    return (
        f"Hi {name or 'there'},\n\n"
        "We couldn't process the latest payment for your subscription. "
        "Please update your payment method to avoid an interruption:\n\n"
        f"{billing_url}\n"
    )
