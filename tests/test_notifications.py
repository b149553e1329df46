import pytest
from botocore.exceptions import ClientError

from conftest import FakeMailer
from exceptions import NotificationError
from mailer import Mailer
from notifications import (
    notify_order_placed,
    render_order_html,
    render_order_text,
    send_order_notification,
)

ORDER = {
    "id": "64b000000000000000000001",
    "customer": {
        "name": "Jane",
        "email": "jane@x.com",
        "phone": "0712345678",
        "address": "12 Main St",
        "notes": None,
    },
    "items": [
        {"name": "Mug", "price": 10.0, "qty": 2, "image": "https://cdn.shop.com/orders/1.png"},
        {"name": "<b>Plate</b>", "price": 2.5, "qty": 1, "image": None},
    ],
    "total": 22.5,
    "status": "pending",
}


class FakeSES:
    def __init__(self, error=None):
        self.messages = []
        self.error = error

    def send_email(self, **kwargs):
        if self.error:
            raise self.error
        self.messages.append(kwargs)
        return {"MessageId": "ses-1"}


def test_text_summary_lists_items_and_total():
    text = render_order_text(ORDER, "New order received")

    assert "Customer: Jane (jane@x.com)" in text
    assert "Notes: None" in text
    assert "Mug x2 @ $10.00 = $20.00 (image: https://cdn.shop.com/orders/1.png)" in text
    assert "Total: $22.50" in text


def test_html_summary_escapes_values():
    html = render_order_html(ORDER, "New Order")

    assert "&lt;b&gt;Plate&lt;/b&gt;" in html
    assert "<b>Plate</b>" not in html
    assert '<img src="https://cdn.shop.com/orders/1.png"' in html
    assert "$22.50" in html


def test_operator_and_customer_copies(settings):
    mailer = FakeMailer()
    sent = send_order_notification(ORDER, mailer, settings.model_copy(update={"notify_customer": True}))

    assert sent == 2
    assert [m["to"] for m in mailer.sent] == ["ops@shop.com", "jane@x.com"]


def test_operator_failure_does_not_skip_customer_copy(settings):
    mailer = FakeMailer()
    mailer.fail_for.add("ops@shop.com")

    with pytest.raises(NotificationError):
        send_order_notification(ORDER, mailer, settings.model_copy(update={"notify_customer": True}))
    assert [m["to"] for m in mailer.sent] == ["jane@x.com"]


def test_notify_swallows_failures(settings):
    mailer = FakeMailer()
    mailer.fail = True

    assert notify_order_placed(ORDER, mailer, settings) is False
    assert notify_order_placed(ORDER, None, settings) is False


def test_notify_reports_success(settings):
    mailer = FakeMailer()
    assert notify_order_placed(ORDER, mailer, settings) is True
    assert len(mailer.sent) == 1


def test_mailer_builds_ses_message():
    ses = FakeSES()
    mailer = Mailer("shop@shop.com", client=ses)

    assert mailer.send("ops@shop.com", "Subject", "text", "<p>html</p>") == "ses-1"

    [call] = ses.messages
    assert call["Source"] == "shop@shop.com"
    assert call["Destination"] == {"ToAddresses": ["ops@shop.com"]}
    assert call["Message"]["Body"]["Text"]["Data"] == "text"
    assert call["Message"]["Body"]["Html"]["Data"] == "<p>html</p>"


def test_mailer_wraps_ses_errors():
    error = ClientError({"Error": {"Code": "MessageRejected", "Message": "nope"}}, "SendEmail")
    mailer = Mailer("shop@shop.com", client=FakeSES(error=error))

    with pytest.raises(NotificationError):
        mailer.send("ops@shop.com", "Subject", "text", "<p>html</p>")
