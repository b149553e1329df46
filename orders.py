"""
Order workflow

create_order runs the placement sequence:

    validate -> bind user -> upload inline images -> persist -> notify

Validation and identity failures stop the request before anything is written.
Image uploads and the notification email are best effort; a failed write is
the only late failure the caller sees.
"""
import asyncio
import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks
from pydantic import ValidationError as PydanticValidationError

import database
from auth import load_user
from config import Settings
from exceptions import NotFoundError, UploadError, ValidationError
from mailer import Mailer
from media import ImageStore, is_resolved_url
from notifications import notify_order_placed
from schemas import Customer, Order, OrderItem, OrderRequest, OrderUpdate

logger = logging.getLogger(__name__)

COLLECTION = "order"
NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


# ---------------------- Validation ----------------------
def field_errors(exc: PydanticValidationError) -> List[Dict[str, str]]:
    details = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "body"
        details.append({"field": field, "message": err["msg"]})
    return details


def validate_order(payload: Any) -> OrderRequest:
    try:
        request = OrderRequest.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid order data", details=field_errors(e)) from e
    if not math.isfinite(compute_total(request.items)):
        raise ValidationError("Invalid order data", details=[
            {"field": "items", "message": "Order total is out of range"},
        ])
    return request


# ---------------------- Images ----------------------
async def _resolve_image(item: OrderItem, store: ImageStore, folder: str, timeout: float) -> OrderItem:
    try:
        url = await asyncio.wait_for(asyncio.to_thread(store.upload, item.image, folder), timeout)
    except UploadError as e:
        logger.warning("Image upload failed for item %r: %s", item.name, e)
        return item
    except asyncio.TimeoutError:
        logger.warning("Image upload for item %r timed out after %ss", item.name, timeout)
        return item
    except Exception:
        logger.exception("Unexpected error uploading image for item %r", item.name)
        return item
    return item.model_copy(update={"image": url})


async def materialize_images(
    items: List[OrderItem], store: Optional[ImageStore], settings: Settings
) -> List[OrderItem]:
    """Swap inline image payloads for hosted URLs, keeping the payload on failure."""
    inline = [bool(item.image) and not is_resolved_url(item.image) for item in items]
    if not any(inline):
        return list(items)
    if store is None:
        logger.warning("Image store not configured, %d inline image(s) kept as submitted", sum(inline))
        return list(items)

    async def keep(item: OrderItem) -> OrderItem:
        return item

    return list(await asyncio.gather(*(
        _resolve_image(item, store, settings.upload_folder, settings.external_timeout) if upload else keep(item)
        for item, upload in zip(items, inline)
    )))


# ---------------------- Assembly & persistence ----------------------
def compute_total(items: List[OrderItem]) -> float:
    return round(sum(item.price * item.qty for item in items), 2)


def serialize_order(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


def persist_order(user: Dict[str, Any], request: OrderRequest, items: List[OrderItem]) -> Dict[str, Any]:
    total = compute_total(items)
    if request.total is not None and round(request.total, 2) != total:
        logger.warning(
            "Declared total %.2f differs from computed %.2f for user %s; using computed",
            request.total, total, user["_id"],
        )
    order = Order(
        user_id=str(user["_id"]),
        customer=Customer(
            name=user["name"],
            email=user["email"],
            phone=request.phone,
            address=request.address,
            notes=request.notes,
        ),
        items=items,
        total=total,
        status="pending",
    )
    doc = database.insert_document(COLLECTION, order)
    logger.info("Order %s created for user %s (total %.2f)", doc["_id"], user["_id"], total)
    return serialize_order(doc)


# ---------------------- Notification ----------------------
async def dispatch_notification(
    order: Dict[str, Any],
    mailer: Optional[Mailer],
    settings: Settings,
    background_tasks: BackgroundTasks,
) -> None:
    if settings.notify_mode == "background":
        background_tasks.add_task(notify_order_placed, order, mailer, settings)
        return
    try:
        await asyncio.wait_for(
            asyncio.to_thread(notify_order_placed, order, mailer, settings),
            settings.external_timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "Order email for %s still pending after %ss, not waiting", order["id"], settings.external_timeout
        )


async def create_order(
    payload: Any,
    claims: Dict[str, Any],
    settings: Settings,
    store: Optional[ImageStore],
    mailer: Optional[Mailer],
    background_tasks: BackgroundTasks,
) -> Dict[str, Any]:
    request = validate_order(payload)
    user = await asyncio.to_thread(load_user, claims, settings)
    items = await materialize_images(request.items, store, settings)
    order = await asyncio.to_thread(persist_order, user, request, items)
    await dispatch_notification(order, mailer, settings, background_tasks)
    return order


# ---------------------- Queries & admin ----------------------
def list_user_orders(user_id: str) -> List[Dict[str, Any]]:
    docs = database.get_documents(COLLECTION, {"user_id": user_id}, sort=NEWEST_FIRST)
    return [serialize_order(d) for d in docs]


def list_all_orders() -> List[Dict[str, Any]]:
    return [serialize_order(d) for d in database.get_documents(COLLECTION, sort=NEWEST_FIRST)]


def get_order(order_id: str) -> Dict[str, Any]:
    _id = database.to_object_id(order_id)
    doc = database.get_document(COLLECTION, {"_id": _id}) if _id is not None else None
    if not doc:
        raise NotFoundError("Order not found")
    return serialize_order(doc)


def update_order(order_id: str, payload: Any) -> Dict[str, Any]:
    """Admin update. Only status and notes are written; other keys are dropped."""
    try:
        body = OrderUpdate.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid order update", details=field_errors(e)) from e

    changes: Dict[str, Any] = {}
    supplied = body.model_dump(exclude_unset=True)
    if supplied.get("status") is not None:
        changes["status"] = supplied["status"]
    if "notes" in supplied:
        changes["customer.notes"] = supplied["notes"]
    if not changes:
        raise ValidationError("No updatable fields supplied", details=[
            {"field": "body", "message": "Provide status and/or notes"},
        ])

    _id = database.to_object_id(order_id)
    doc = database.update_document(COLLECTION, _id, changes) if _id is not None else None
    if not doc:
        raise NotFoundError("Order not found")
    logger.info("Order %s updated: %s", order_id, ", ".join(sorted(changes)))
    return serialize_order(doc)


def delete_order(order_id: str) -> None:
    _id = database.to_object_id(order_id)
    if _id is None or not database.delete_document(COLLECTION, _id):
        raise NotFoundError("Order not found")
    logger.info("Order %s deleted", order_id)
