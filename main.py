import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, BackgroundTasks, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import orders
from auth import (
    apply_owner_role,
    get_current_user,
    get_token_claims,
    hash_password,
    issue_token,
    public_user,
    require_admin,
    role_for_new_user,
    verify_password,
)
from config import Settings, get_settings
from exceptions import ApiError, AuthenticationError, InvalidImageError, NotFoundError, UploadError, ValidationError
from mailer import Mailer, build_mailer
from media import ImageStore, build_image_store
from schemas import LoginBody, RegisterBody, User

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

limiter = Limiter(key_func=get_remote_address)
# one budget per client across every /api/orders route
order_limit = limiter.shared_limit(settings.order_rate_limit, scope="orders")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.mailer = build_mailer(settings)
    app.state.image_store = build_image_store(settings)
    yield


app = FastAPI(title="Storefront Orders API", lifespan=lifespan)
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------- Error responses ----------------------
def error_body(message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": False, "error": message}
    if details:
        payload["details"] = details
    return payload


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    details = exc.details if isinstance(exc, ValidationError) else None
    if exc.status_code >= 500:
        # internal detail stays in the logs
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body("Server error"))
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, details))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body") or "body", "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=error_body("Invalid request data", details))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("Rate limit hit by %s on %s", get_remote_address(request), request.url.path)
    return JSONResponse(status_code=429, content=error_body("Too many requests, please try again later"))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Server error"))


# ---------------------- Injected capabilities ----------------------
def get_mailer(request: Request) -> Optional[Mailer]:
    return getattr(request.app.state, "mailer", None)


def get_image_store(request: Request) -> Optional[ImageStore]:
    return getattr(request.app.state, "image_store", None)


# ---------------------- Auth ----------------------
@app.post("/api/auth/register", status_code=201)
def register(body: RegisterBody, settings: Settings = Depends(get_settings)):
    email = body.email.lower()
    if database.get_document("user", {"email": email}):
        raise ValidationError("User already exists")
    model = User(
        name=body.name,
        email=email,
        password_hash=hash_password(body.password),
        role=role_for_new_user(email, settings),
        is_active=True,
    )
    user = database.insert_document("user", model)
    return {
        "message": "User registered successfully",
        "token": issue_token(user, settings),
        "user": public_user(user),
    }


@app.post("/api/auth/login")
def login(body: LoginBody, settings: Settings = Depends(get_settings)):
    user = database.get_document("user", {"email": body.email.lower()})
    if not user or not verify_password(body.password, user.get("password_hash", "")):
        raise ValidationError("Invalid credentials")
    if not user.get("is_active", True):
        raise AuthenticationError("Account disabled")
    user = apply_owner_role(user, settings)
    return {
        "message": "Login successful",
        "token": issue_token(user, settings),
        "user": public_user(user),
    }


@app.get("/api/auth/profile")
def profile(user=Depends(get_current_user)):
    return public_user(user)


# ---------------------- Uploads ----------------------
@app.post("/api/upload")
async def upload_image(
    image: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    store: Optional[ImageStore] = Depends(get_image_store),
):
    if image is None or not image.filename:
        raise ValidationError("No file uploaded")
    if store is None:
        raise ApiError("Image storage not configured", status_code=503)
    data = await image.read()
    try:
        url = await asyncio.to_thread(store.upload_bytes, data, settings.upload_folder, image.content_type)
    except InvalidImageError as e:
        raise ValidationError(str(e)) from e
    except UploadError as e:
        raise ApiError(f"Upload failed: {e}", status_code=502) from e
    logger.info("User %s uploaded %s", user["_id"], url)
    return {"success": True, "url": url}


# ---------------------- Orders ----------------------
@app.post("/api/orders", status_code=201)
@order_limit
async def place_order(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Any = Body(None),
    claims: Dict[str, Any] = Depends(get_token_claims),
    settings: Settings = Depends(get_settings),
    store: Optional[ImageStore] = Depends(get_image_store),
    mailer: Optional[Mailer] = Depends(get_mailer),
):
    order = await orders.create_order(payload, claims, settings, store, mailer, background_tasks)
    return {"success": True, "data": order}


@app.get("/api/orders/my")
@order_limit
def my_orders(request: Request, user=Depends(get_current_user)):
    items = orders.list_user_orders(str(user["_id"]))
    if not items:
        raise NotFoundError("No orders found")
    return {"success": True, "data": items}


@app.get("/api/orders")
@order_limit
def list_orders(request: Request, admin=Depends(require_admin)):
    return {"success": True, "data": orders.list_all_orders()}


@app.get("/api/orders/{order_id}")
@order_limit
def get_order(request: Request, order_id: str, admin=Depends(require_admin)):
    return {"success": True, "data": orders.get_order(order_id)}


@app.put("/api/orders/{order_id}")
@order_limit
def update_order(request: Request, order_id: str, payload: Any = Body(None), admin=Depends(require_admin)):
    order = orders.update_order(order_id, payload)
    return {"success": True, "message": "Order updated", "data": order}


@app.delete("/api/orders/{order_id}")
@order_limit
def delete_order(request: Request, order_id: str, admin=Depends(require_admin)):
    orders.delete_order(order_id)
    return {"success": True, "message": "Order deleted"}


# ---------------------- Misc ----------------------
@app.get("/")
def read_root():
    return {"message": "Storefront Orders API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
        "database_name": settings.database_name or "❌ Not Set",
        "collections": [],
    }
    if database.db is None:
        return response
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
