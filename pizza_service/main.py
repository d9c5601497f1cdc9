"""
main.py — FastAPI Entry Point for the Pizza Service

This module provides the REST API of the pizza ordering backend and wires
the components together.

Responsibilities:
    • Users, login/logout and cart management
    • Token CRUD
    • Read access to the item catalog
    • Order administration
    • The checkout action (PUT /user/checkout), which pays for the cart
    • Mapping every ServiceError onto one status code and a JSON error body

Run with:
    uvicorn pizza_service.main:app
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .catalog import Catalog
from .clients import MailClient, PaymentClient
from .datastore import DataStore
from .errors import InvalidRequest, NotFound, ServiceError
from .logging_config import get_logger, setup_logging
from .models import (
    CartItemRequest,
    CartRequest,
    CheckoutRequest,
    CheckoutResult,
    LoginRequest,
    LogoutRequest,
    NewOrderRequest,
    OrderUpdateRequest,
    TokenExtendRequest,
    UserCreateRequest,
    UserUpdateRequest,
)
from .orders import OrderLifecycle
from .tokens import TokenService
from .users import UserLedger
from .workflow import CheckoutWorkflow

log = get_logger(__name__)

router = APIRouter()


class Services:
    """The wired components of one application instance."""

    def __init__(self, store: DataStore, payment: PaymentClient, mailer: MailClient):
        self.store = store
        self.payment = payment
        self.mailer = mailer
        self.catalog = Catalog(store)
        self.tokens = TokenService(store)
        self.users = UserLedger(store, self.catalog)
        self.orders = OrderLifecycle(store, self.catalog, payment, mailer)
        self.workflow = CheckoutWorkflow(self.tokens, self.users, self.orders)

    async def close(self):
        await self.workflow.background.drain()
        await self.payment.aclose()
        await self.mailer.aclose()


def _services(request: Request) -> Services:
    return request.app.state.services


# --- Ping / Health ---

@router.get("/ping")
async def ping():
    return "OK"


@router.get("/health")
async def health_check():
    """Liveness probe for container orchestrators."""
    return {"status": "ok"}


# --- Users ---

@router.post("/users")
async def create_user(body: UserCreateRequest, request: Request):
    user = await _services(request).users.create(body)
    return user.public_dict()


@router.get("/users")
async def get_user(request: Request, email: Optional[str] = None, tokenid: Optional[str] = Header(None)):
    svc = _services(request)
    if email is None:
        raise InvalidRequest("Missing required field: email")
    await svc.workflow.authorize(tokenid, email)
    user = await svc.users.get(email)
    return user.public_dict()


@router.put("/users")
async def update_user(body: UserUpdateRequest, request: Request, tokenid: Optional[str] = Header(None)):
    svc = _services(request)
    await svc.workflow.authorize(tokenid, body.email)
    user = await svc.users.update(body)
    return user.public_dict()


@router.delete("/users")
async def delete_user(request: Request, email: Optional[str] = None, tokenid: Optional[str] = Header(None)):
    svc = _services(request)
    if email is None:
        raise InvalidRequest("Missing required field: email")
    token = await svc.tokens.verify(tokenid, email)
    user = await svc.users.delete(email, token.id)
    return {"deleted": user.email, "orders": user.orders}


@router.post("/user/login")
async def login(body: LoginRequest, request: Request):
    token = await _services(request).tokens.issue(body.email, body.password)
    return token.model_dump()


@router.put("/user/logout")
async def logout(body: LogoutRequest, request: Request):
    await _services(request).tokens.revoke(body.tokenId)
    return {}


@router.put("/user/addToCart")
async def add_to_cart(body: CartItemRequest, request: Request, tokenid: Optional[str] = Header(None)):
    svc = _services(request)
    await svc.workflow.authorize(tokenid, body.email)
    user = await svc.users.set_cart_item(body.email, body.itemId, body.quantity)
    return user.public_dict()


@router.put("/user/removeFromCart")
async def remove_from_cart(body: CartItemRequest, request: Request, tokenid: Optional[str] = Header(None)):
    svc = _services(request)
    await svc.workflow.authorize(tokenid, body.email)
    user = await svc.users.remove_from_cart(body.email, body.itemId)
    return user.public_dict()


@router.put("/user/emptyCart")
async def empty_cart(body: CartRequest, request: Request, tokenid: Optional[str] = Header(None)):
    svc = _services(request)
    await svc.workflow.authorize(tokenid, body.email)
    user = await svc.users.empty_cart(body.email)
    return user.public_dict()


@router.put("/user/checkout", response_model=CheckoutResult)
async def checkout(body: CheckoutRequest, request: Request, tokenid: Optional[str] = Header(None)):
    """
    Places an order with every item in the user's cart and pays for it.

    Returns:
        CheckoutResult: The charge receipt and whether the invoice was mailed.
    """
    log.info(f"[User: {body.email}] Checkout requested.")
    return await _services(request).workflow.checkout(body.email, tokenid, body.paymentToken)


# --- Tokens ---

@router.post("/tokens")
async def create_token(body: LoginRequest, request: Request):
    token = await _services(request).tokens.issue(body.email, body.password)
    return token.model_dump()


@router.get("/tokens")
async def get_token(request: Request, id: Optional[str] = None):
    token = await _services(request).tokens.get(id)
    return token.model_dump()


@router.put("/tokens")
async def extend_token(body: TokenExtendRequest, request: Request):
    if not body.extend:
        raise InvalidRequest("Missing required field(s) or field(s) are invalid.")
    token = await _services(request).tokens.extend(body.id)
    return token.model_dump()


@router.delete("/tokens")
async def delete_token(request: Request, id: Optional[str] = None):
    await _services(request).tokens.revoke(id)
    return {}


# --- Items (read only over HTTP) ---

@router.get("/items")
async def get_items(request: Request, id: Optional[str] = None):
    catalog = _services(request).catalog
    if id is None:
        return [item.model_dump() for item in await catalog.list()]
    item = await catalog.by_id(id)
    if item is None:
        raise NotFound("Cannot find an item with the given ID")
    return item.model_dump()


# --- Orders ---

@router.post("/orders")
async def create_order(body: NewOrderRequest, request: Request):
    order = await _services(request).orders.create(body.email, body.items)
    return order.model_dump()


@router.get("/orders")
async def get_orders(request: Request, id: Optional[str] = None):
    orders = _services(request).orders
    if id is None:
        return [order.model_dump() for order in await orders.list()]
    order = await orders.get(id)
    return order.model_dump()


@router.put("/orders")
async def update_order(body: OrderUpdateRequest, request: Request):
    order = await _services(request).orders.update(body)
    return order.model_dump()


@router.delete("/orders")
async def delete_order(request: Request, id: Optional[str] = None):
    order = await _services(request).orders.delete(id)
    return order.model_dump()


# --- Error mapping ---

async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc.reason}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [
        {"field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
        for error in exc.errors()
    ]
    body = InvalidRequest("Missing required field(s) or field(s) are invalid.", {"fields": fields}).to_dict()
    return JSONResponse(status_code=400, content=body)


def create_app(store: DataStore = None, payment: PaymentClient = None, mailer: MailClient = None) -> FastAPI:
    """
    Builds the application. Every collaborator can be injected (tests pass a
    temporary store and clients bound to the mock gateways).
    """
    services = Services(store or DataStore(), payment or PaymentClient(), mailer or MailClient())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Pizza service starting...")
        yield
        log.info("Pizza service shutting down, waiting for background tasks...")
        await services.close()

    app = FastAPI(title="Pizza Service", lifespan=lifespan)
    app.state.services = services
    app.include_router(router)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    return app


# Initialization
setup_logging()
app = create_app()


def main():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3000)


if __name__ == "__main__":
    main()
