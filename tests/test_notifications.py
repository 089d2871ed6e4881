"""Tests for order emails."""

import asyncio

import pytest

from config import Settings
from errors import NotificationError
from notifications import CONFIRMATION_HTML, DELIVERED_TEXT, EmailNotifier, dispatch

ORDER = {
    "_id": "65f0c0ffee0000000000abcd",
    "email": "sana@dastkar.pk",
    "username": "Sana <b>",
    "items": [
        {"title": "Kashan Silk", "size": "5x8", "quantity": 2, "unitPrice": 7500, "lineTotal": 15000, "image": ""},
    ],
    "shippingFee": 500,
    "totalPrice": 15500,
    "currency": "PKR",
    "trackingNumber": "TRK-7",
    "address": "12 Mall Road",
    "city": "Lahore",
    "country": "Pakistan",
}


def context():
    return EmailNotifier(Settings())._context(ORDER)


def test_confirmation_html_is_escaped():
    html = CONFIRMATION_HTML.render(**context())
    assert "Sana &lt;b&gt;" in html
    assert "PKR 15,500" in html


def test_delivered_text_has_tracking_and_address():
    text = DELIVERED_TEXT.render(**context())
    assert "TRK-7" in text
    assert "12 Mall Road, Lahore, Pakistan" in text
    assert "Kashan Silk (5x8): 2 x PKR 7,500 = PKR 15,000" in text


def test_send_without_smtp_host():
    notifier = EmailNotifier(Settings(email_from="shop@dastkar.pk"))
    with pytest.raises(NotificationError):
        asyncio.run(notifier.send_order_confirmation(ORDER))


def test_send_without_sender():
    notifier = EmailNotifier(Settings(smtp_host="smtp.dastkar.pk"))
    with pytest.raises(NotificationError):
        asyncio.run(notifier.send_order_delivered(ORDER))


def test_dispatch_swallows_failures(caplog):
    notifier = EmailNotifier(Settings())
    asyncio.run(dispatch(notifier.send_order_confirmation, ORDER))
    assert "Error sending send_order_confirmation" in caplog.text
