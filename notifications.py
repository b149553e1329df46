"""
Order emails

The summary goes to the shop operator (EMAIL_TO) and, when NOTIFY_CUSTOMER is
on, a confirmation copy goes to the customer. Sending is best effort:
notify_order_placed logs every failure and never raises, because the order is
already stored by the time it runs.
"""
import logging
from html import escape
from typing import Any, Dict, List, Optional, Tuple

from config import Settings
from exceptions import NotificationError
from mailer import Mailer

logger = logging.getLogger(__name__)

OPERATOR_SUBJECT = "New Order Received"
CUSTOMER_SUBJECT = "We received your order"


def _money(amount: float) -> str:
    return f"${amount:,.2f}"


def _line(item: Dict[str, Any]) -> Tuple[str, int, float, float, Optional[str]]:
    qty = int(item.get("qty") or 1)
    price = float(item.get("price") or 0)
    return item.get("name", ""), qty, price, round(price * qty, 2), item.get("image")


def render_order_text(order: Dict[str, Any], heading: str) -> str:
    customer = order["customer"]
    lines: List[str] = [
        heading,
        f"Order: {order.get('id', '')}",
        f"Customer: {customer['name']} ({customer['email']})",
        f"Phone: {customer['phone']}",
        f"Address: {customer['address']}",
        f"Notes: {customer.get('notes') or 'None'}",
        "Items:",
    ]
    for item in order["items"]:
        name, qty, price, extended, image = _line(item)
        entry = f"  - {name} x{qty} @ {_money(price)} = {_money(extended)}"
        if image:
            entry += f" (image: {image})"
        lines.append(entry)
    lines.append(f"Total: {_money(order['total'])}")
    return "\n".join(lines)


def render_order_html(order: Dict[str, Any], heading: str) -> str:
    customer = order["customer"]
    rows = []
    for item in order["items"]:
        name, qty, price, extended, image = _line(item)
        row = f"<li>{escape(name)} x{qty} @ {_money(price)} = {_money(extended)}"
        if image and image.lower().startswith(("http://", "https://")):
            row += f'<br><img src="{escape(image, quote=True)}" width="100" style="margin-top:5px"/>'
        rows.append(row + "</li>")
    return (
        f"<h2>{escape(heading)}</h2>"
        f"<p><b>Order:</b> {escape(str(order.get('id', '')))}</p>"
        f"<p><b>Name:</b> {escape(customer['name'])}</p>"
        f"<p><b>Email:</b> {escape(customer['email'])}</p>"
        f"<p><b>Phone:</b> {escape(customer['phone'])}</p>"
        f"<p><b>Address:</b> {escape(customer['address'])}</p>"
        f"<p><b>Notes:</b> {escape(customer.get('notes') or 'None')}</p>"
        f"<h3>Items</h3><ul>{''.join(rows)}</ul>"
        f"<p><b>Total:</b> {_money(order['total'])}</p>"
    )


def send_order_notification(order: Dict[str, Any], mailer: Mailer, settings: Settings) -> int:
    """Send the operator summary and optional customer copy.

    Every recipient is attempted. Returns the number of messages sent; raises
    NotificationError afterwards if any dispatch failed.
    """
    messages = []
    if settings.email_to:
        messages.append((
            settings.email_to,
            OPERATOR_SUBJECT,
            render_order_text(order, "New order received"),
            render_order_html(order, "New Order"),
        ))
    else:
        logger.warning("EMAIL_TO not set, operator summary for order %s skipped", order.get("id"))

    if settings.notify_customer:
        messages.append((
            order["customer"]["email"],
            CUSTOMER_SUBJECT,
            render_order_text(order, "Thank you for your order"),
            render_order_html(order, "Thank you for your order"),
        ))

    sent = 0
    failed = []
    for to, subject, text_body, html_body in messages:
        try:
            mailer.send(to, subject, text_body, html_body)
        except NotificationError as e:
            logger.error("Order email to %s failed for order %s: %s", to, order.get("id"), e)
            failed.append(to)
            continue
        sent += 1
    if failed:
        raise NotificationError(f"{len(failed)} of {len(messages)} order emails failed: {', '.join(failed)}")
    return sent


def notify_order_placed(order: Dict[str, Any], mailer: Optional[Mailer], settings: Settings) -> bool:
    """Error-observation wrapper around send_order_notification."""
    if mailer is None:
        logger.info("Mailer not configured, no email for order %s", order.get("id"))
        return False
    try:
        send_order_notification(order, mailer, settings)
    except NotificationError:
        logger.exception("Order email failed for order %s", order.get("id"))
        return False
    except Exception:
        logger.exception("Unexpected error while emailing order %s", order.get("id"))
        return False
    return True
