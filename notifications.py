"""Order confirmation email."""
import asyncio
import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Dict, Optional, Protocol

from config import (
    CURRENCY_SYMBOL,
    EMAIL_PASS,
    EMAIL_USER,
    SMTP_HOST,
    SMTP_PORT,
    UPSTREAM_TIMEOUT_SECONDS,
)
from schemas import Order

logger = logging.getLogger("storefront.notifications")


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html_body: str) -> None: ...


class SmtpMailer:
    def __init__(self, user: Optional[str] = EMAIL_USER, password: Optional[str] = EMAIL_PASS,
                 host: str = SMTP_HOST, port: int = SMTP_PORT, timeout: float = UPSTREAM_TIMEOUT_SECONDS):
        self.user = user
        self.password = password
        self.host = host
        self.port = port
        self.timeout = timeout

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.login(self.user, self.password)
            smtp.send_message(message)

    async def send(self, to: str, subject: str, html_body: str) -> None:
        if not self.user:
            logger.warning("EMAIL_USER not set; not sending %r to %s", subject, to)
            return
        message = EmailMessage()
        message["From"] = self.user
        message["To"] = to
        message["Subject"] = subject
        message.set_content("Your order has been confirmed.")
        message.add_alternative(html_body, subtype="html")
        await asyncio.to_thread(self._send_sync, message)


def _amount(value: float) -> str:
    return f"{CURRENCY_SYMBOL}{value:,.2f}"


def render_order_confirmation(order: Order, product_names: Dict[str, str]) -> str:
    a = order.shipping_address
    lines = "".join(
        f"<li>{escape(product_names.get(i.product_id, i.product_id))} (x{i.quantity}) - "
        f"{_amount(i.price * i.quantity)}</li>"
        for i in order.items
    )
    shipping = ", ".join(escape(part) for part in (a.street, a.city, a.state, a.zip, a.country))
    return (
        f"<h2>Order #{order.id} Confirmed!</h2>"
        "<p>Thank you for your purchase. Your order has been successfully placed.</p>"
        f"<p>Total: {_amount(order.total)}</p>"
        f"<p>Shipping to: {shipping}</p>"
        f"<p>Items:</p><ul>{lines}</ul>"
    )
