"""
models.py — Persisted Records and Request/Response Models

This module defines the data structures of the pizza service using Pydantic,
both for the JSON documents kept in the document store and for the payloads
accepted and returned by the REST API.

Records (one JSON document per key, all carrying `schemaVersion`):
    - ItemRecord: A catalog entry (pizza, drink, ...) with its unit price.
    - TokenRecord: An authentication token bound to a user email.
    - UserRecord: A user with their cart and list of order ids.
    - OrderRecord: A purchase, created from a cart and completed by payment.

Requests:
    - UserCreateRequest, UserUpdateRequest, LoginRequest, LogoutRequest
    - CartItemRequest, CartRequest, CheckoutRequest
    - NewOrderRequest, OrderUpdateRequest, TokenExtendRequest

Responses:
    - CheckoutResult: The outcome of completing an order.
"""

import time
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import InvalidRequest
from .validators import is_valid_email, is_valid_password

SCHEMA_VERSION = 1


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def _check_email(value: str) -> str:
    if not is_valid_email(value):
        raise ValueError("invalid email address")
    return value.strip()


def _check_quantities(value: Dict[str, int]) -> Dict[str, int]:
    for item_id, quantity in value.items():
        if quantity <= 0:
            raise ValueError(f"quantity for item {item_id} must be greater than zero")
    return value


# --- Records ---

class ItemRecord(BaseModel):
    """
    A catalog entry.

    Attributes:
        id (str): 10 character item identifier.
        name (str): Display name.
        description (str): Free text shown on the menu and the invoice.
        imageURL (str): Optional picture.
        unitPrice (float): Price per unit in major currency units. Must be positive.
    """
    schemaVersion: int = SCHEMA_VERSION
    id: str
    name: str
    description: Optional[str] = ""
    imageURL: Optional[str] = ""
    unitPrice: float = Field(..., gt=0)


class TokenRecord(BaseModel):
    """
    A short-lived capability binding a user email to a token id.

    Attributes:
        id (str): 20 character token identifier.
        email (str): The owning user.
        expiration (int): Expiry timestamp, milliseconds since the epoch.
    """
    schemaVersion: int = SCHEMA_VERSION
    id: str
    email: str
    expiration: int

    def is_expired(self, at: Optional[int] = None) -> bool:
        return self.expiration <= (now_ms() if at is None else at)


class UserRecord(BaseModel):
    """
    A user and their ledger: the current cart and the ids of completed orders.

    `password` holds the HMAC hash, never the clear text.
    """
    schemaVersion: int = SCHEMA_VERSION
    email: str
    password: str
    firstName: str = ""
    lastName: str = ""
    streetAddress: str = ""
    cart: Dict[str, int] = Field(default_factory=dict)
    orders: List[str] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return f"{self.firstName} {self.lastName}".strip()

    def public_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data.pop("password", None)
        return data


class OrderRecord(BaseModel):
    """
    A purchase owned by one user.

    Attributes:
        id (str): 20 character order identifier.
        email (str): The owner's email.
        createdOn (int): Creation timestamp (ms).
        completedOn (int, optional): Payment completion timestamp (ms), never before createdOn.
        paymentInfo (dict, optional): The gateway's charge receipt, set once at completion.
        total (float): Amount charged in major units; 0 until completion.
        items (dict): item id -> positive quantity.
    """
    schemaVersion: int = SCHEMA_VERSION
    id: str
    email: str
    createdOn: int = Field(default_factory=now_ms)
    completedOn: Optional[int] = None
    paymentInfo: Optional[Dict[str, Any]] = None
    total: float = Field(0.0, ge=0)
    items: Dict[str, int]

    @field_validator("items")
    @classmethod
    def check_items(cls, value):
        return _check_quantities(value)

    @model_validator(mode="after")
    def check_completion_not_before_creation(self):
        if self.completedOn is not None and self.completedOn < self.createdOn:
            raise ValueError("completedOn must not precede createdOn")
        return self

    @property
    def is_completed(self) -> bool:
        return self.completedOn is not None and self.createdOn <= self.completedOn

    def mark_completed(self, receipt: Dict[str, Any], completed_on: int) -> None:
        """Records the payment receipt. Completion happens at most once and never moves backward."""
        if self.is_completed:
            raise InvalidRequest("Order already completed", {"completedOn": self.completedOn})
        if completed_on < self.createdOn:
            raise InvalidRequest("completedOn must not precede createdOn")
        self.paymentInfo = receipt
        self.completedOn = completed_on


# --- Requests ---

class UserCreateRequest(BaseModel):
    email: str
    password: str
    firstName: str
    lastName: str
    tosAgreement: bool
    streetAddress: str = ""

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def check_password(cls, value):
        if not is_valid_password(value):
            raise ValueError("password must be at least 6 characters long")
        return value.strip()

    @field_validator("firstName", "lastName")
    @classmethod
    def check_name(cls, value):
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("tosAgreement")
    @classmethod
    def check_tos(cls, value):
        if not value:
            raise ValueError("the terms of service must be accepted")
        return value


class UserUpdateRequest(BaseModel):
    email: str
    password: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    streetAddress: Optional[str] = None
    cart: Optional[Dict[str, int]] = None
    orders: Optional[List[str]] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def check_password(cls, value):
        if value is not None and not is_valid_password(value):
            raise ValueError("password must be at least 6 characters long")
        return value

    @model_validator(mode="after")
    def check_something_to_update(self):
        fields = (self.password, self.firstName, self.lastName, self.streetAddress, self.cart, self.orders)
        if all(field is None for field in fields):
            raise ValueError("Missing fields to update.")
        return self


class LoginRequest(BaseModel):
    email: str
    password: str


class LogoutRequest(BaseModel):
    tokenId: str


class TokenExtendRequest(BaseModel):
    id: str
    extend: bool


class CartRequest(BaseModel):
    email: str


class CartItemRequest(BaseModel):
    """A cart change. A quantity of zero or less removes the item."""
    email: str
    itemId: str
    quantity: int = 1


class CheckoutRequest(BaseModel):
    """
    Checkout payload.

    Attributes:
        email (str): The user placing the order.
        paymentToken (str, optional): Payment method token; defaults to config.DEFAULT_PAYMENT_SOURCE.
            Also accepted as `stripeToken`.
    """
    email: str
    paymentToken: Optional[str] = Field(None, validation_alias=AliasChoices("paymentToken", "stripeToken"))


class NewOrderRequest(BaseModel):
    email: str
    items: Dict[str, int]


class OrderUpdateRequest(BaseModel):
    """Administrative order change. Totals, timestamps and receipts are never client supplied."""
    model_config = ConfigDict(extra="forbid")

    id: str
    email: Optional[str] = None
    items: Optional[Dict[str, int]] = None


# --- Responses ---

class CheckoutResult(BaseModel):
    """
    Outcome of completing an order.

    Attributes:
        orderId (str): The completed order.
        total (float): Amount charged in major units.
        completedOn (int): Completion timestamp (ms).
        receipt (dict): The gateway's charge receipt.
        alreadyCompleted (bool): True when the order had been completed by an earlier call.
        invoice (str): "sent", "failed" or "skipped".
        info (str): Human readable summary.
    """
    orderId: str
    total: float
    completedOn: int
    receipt: Optional[Dict[str, Any]] = None
    alreadyCompleted: bool = False
    invoice: str = "skipped"
    info: str = ""
