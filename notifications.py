"""
Order emails

Sent over SMTP with aiosmtplib. Callers schedule these as background tasks
through dispatch(), which logs and swallows every failure: an order never
fails because an email did.
"""
import logging
from email.message import EmailMessage
from typing import Awaitable, Callable, Protocol

import aiosmtplib
from jinja2 import Environment, select_autoescape

from config import Settings, get_settings
from errors import NotificationError

logger = logging.getLogger(__name__)

STORE_NAME = "Dastkar Rugs"

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))

_ITEMS_HTML = """
<table width="100%" cellpadding="6" style="border-collapse: collapse;">
  {% for item in order["items"] %}
  <tr style="border-bottom: 1px solid #eee;">
    <td>{% if item.image %}<img src="{{ item.image }}" width="64" alt="">{% endif %}</td>
    <td>{{ item.title }}{% if item.size %} <small>({{ item.size }})</small>{% endif %}</td>
    <td>{{ item.quantity }} x {{ money(item.unitPrice) }}</td>
    <td align="right">{{ money(item.lineTotal) }}</td>
  </tr>
  {% endfor %}
  <tr><td colspan="3">Shipping</td><td align="right">{{ money(order.shippingFee) }}</td></tr>
  <tr><td colspan="3"><strong>Total</strong></td><td align="right"><strong>{{ money(order.totalPrice) }}</strong></td></tr>
</table>
"""

_ITEMS_TEXT = """{% for item in order["items"] %}- {{ item.title }}{% if item.size %} ({{ item.size }}){% endif %}: {{ item.quantity }} x {{ money(item.unitPrice) }} = {{ money(item.lineTotal) }}
{% endfor %}Shipping: {{ money(order.shippingFee) }}
Total: {{ money(order.totalPrice) }}"""

CONFIRMATION_TEXT = _env.from_string(
    "Hi {{ order.username }},\n\n"
    "Thank you for your order #{{ order_id }}. It is confirmed and will be paid at delivery.\n\n"
    + _ITEMS_TEXT
    + "\n\n" + STORE_NAME
)
CONFIRMATION_HTML = _env.from_string(
    "<h2>Thank you for your order, {{ order.username }}</h2>"
    "<p>Order <strong>#{{ order_id }}</strong> is confirmed. Payment method: pay at location.</p>"
    + _ITEMS_HTML
)
DELIVERED_TEXT = _env.from_string(
    "Hi {{ order.username }},\n\n"
    "Your order #{{ order_id }} is on its way. Tracking number: {{ order.trackingNumber }}\n"
    "{% if order.address %}Delivering to: {{ order.address }}{% if order.city %}, {{ order.city }}{% endif %}"
    "{% if order.country %}, {{ order.country }}{% endif %}\n{% endif %}\n"
    + _ITEMS_TEXT
    + "\n\n" + STORE_NAME
)
DELIVERED_HTML = _env.from_string(
    "<h2>Your order is on its way, {{ order.username }}</h2>"
    "<p>Order <strong>#{{ order_id }}</strong>, tracking number <strong>{{ order.trackingNumber }}</strong>.</p>"
    + _ITEMS_HTML
)


class Notifier(Protocol):
    async def send_order_confirmation(self, order: dict) -> None: ...

    async def send_order_delivered(self, order: dict) -> None: ...


def _money_formatter(currency: str) -> Callable[[int], str]:
    def money(amount) -> str:
        return f"{currency} {int(amount or 0):,}"
    return money


class EmailNotifier:
    def __init__(self, settings: Settings):
        self.settings = settings

    def _context(self, order: dict) -> dict:
        return {
            "order": order,
            "order_id": str(order.get("_id", order.get("id", ""))),
            "money": _money_formatter(order.get("currency", self.settings.store_currency)),
        }

    async def send(self, to: str, subject: str, text: str, html: str) -> None:
        if not self.settings.smtp_host:
            raise NotificationError("SMTP_HOST is not configured")
        if not self.settings.email_from:
            raise NotificationError("EMAIL_FROM is not configured")

        message = EmailMessage()
        message["From"] = self.settings.email_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        message.add_alternative(html, subtype="html")

        try:
            await aiosmtplib.send(
                message,
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_user,
                password=self.settings.smtp_pass,
                use_tls=self.settings.smtp_secure,
            )
        except aiosmtplib.SMTPException as e:
            raise NotificationError(f"SMTP delivery to {to} failed: {e}") from e
        logger.info("Email '%s' sent to %s", subject, to)

    async def send_order_confirmation(self, order: dict) -> None:
        ctx = self._context(order)
        await self.send(
            order["email"],
            f"Order Confirmation #{ctx['order_id']} - {STORE_NAME}",
            CONFIRMATION_TEXT.render(**ctx),
            CONFIRMATION_HTML.render(**ctx),
        )

    async def send_order_delivered(self, order: dict) -> None:
        ctx = self._context(order)
        await self.send(
            order["email"],
            f"Your Order #{ctx['order_id']} Has Been Shipped - {STORE_NAME}",
            DELIVERED_TEXT.render(**ctx),
            DELIVERED_HTML.render(**ctx),
        )


async def dispatch(send: Callable[[dict], Awaitable[None]], order: dict) -> None:
    try:
        await send(order)
    except Exception:
        logger.exception("Error sending %s for order %s", getattr(send, "__name__", "email"), order.get("_id"))


def get_notifier() -> Notifier:
    return EmailNotifier(get_settings())
