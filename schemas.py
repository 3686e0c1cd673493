"""
API Schemas

Pydantic models for request bodies and response payloads.
Every response carries a human readable ``message``. Password hashes and
salts never appear in any response model.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from identifiers import INT64_MIN, UINT64_LIMIT, public_id
from models import ProductModel, PurchaseModel, UserModel


class Message(BaseModel):
    message: str


class Created(Message):
    id: int


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------
class UserCreate(BaseModel):
    """Signup / profile payload. Emptiness and email format are checked by the service."""

    login: str = Field("", description="Unique login")
    password: str = Field("", description="Plain password, replaced by its digest on create")
    name: str = Field("", description="Display name")
    last_name: str = Field("", alias="lastName")
    phone_number: str = Field("", alias="phoneNumber")
    email: str = Field("", description="Email address")
    wallet_usdt: Decimal = Field(Decimal("0"), ge=0, decimal_places=2, description="Wallet balance")

    model_config = {"populate_by_name": True}


class UserUpdate(UserCreate):
    number_purchases: Optional[int] = Field(None, ge=0)


class LoginRequest(BaseModel):
    login: str = ""
    password: str = ""


class Token(BaseModel):
    message: str = "login successful"
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    message: str = "user found"
    id: int
    login: str
    name: str
    last_name: str = Field(serialization_alias="lastName")
    phone_number: str = Field(serialization_alias="phoneNumber")
    email: str
    wallet_usdt: Decimal
    number_purchases: int
    created_at: datetime = Field(serialization_alias="createdAt")

    @classmethod
    def from_model(cls, user: UserModel, message: str = "user found") -> "UserOut":
        return cls(
            message=message,
            id=public_id(user.id),
            login=user.login,
            name=user.name,
            last_name=user.last_name,
            phone_number=user.phone_number,
            email=user.email,
            wallet_usdt=Decimal(user.wallet_usdt),
            number_purchases=user.number_purchases,
            created_at=user.created_at,
        )


class UserList(Message):
    items: List[UserOut]


# ----------------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------------
class ProductIn(BaseModel):
    name: str = ""
    cost: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    quantity_stock: int = Field(0, ge=0)
    guarantees: Optional[datetime] = Field(None, description="Guarantee expiry")
    country: str = ""


class ProductOut(BaseModel):
    message: str = "product found"
    id: int
    name: str
    cost: Decimal
    quantity_stock: int
    guarantees: Optional[datetime] = None
    country: str
    like: int

    @classmethod
    def from_model(cls, product: ProductModel, message: str = "product found") -> "ProductOut":
        return cls(
            message=message,
            id=public_id(product.id),
            name=product.name,
            cost=Decimal(product.cost),
            quantity_stock=product.quantity_stock,
            guarantees=product.guarantees,
            country=product.country,
            like=product.likes,
        )


class ProductList(Message):
    items: List[ProductOut]


# ----------------------------------------------------------------------------
# Purchases
# ----------------------------------------------------------------------------
class PurchaseCreate(BaseModel):
    product_id: int = Field(..., ge=INT64_MIN, lt=UINT64_LIMIT)
    user_id: Optional[int] = Field(
        None, ge=INT64_MIN, lt=UINT64_LIMIT, description="Must be the authenticated user when given"
    )


class PurchaseUpdate(BaseModel):
    product_id: Optional[int] = Field(None, ge=INT64_MIN, lt=UINT64_LIMIT)
    cost: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    wallet_usdt: Optional[Decimal] = Field(None, ge=0, decimal_places=2)


class PurchaseOut(BaseModel):
    message: str = "purchase found"
    id: int
    user_id: int
    product_id: Optional[int] = None
    date: datetime
    wallet_usdt: Decimal
    cost: Decimal

    @classmethod
    def from_model(cls, purchase: PurchaseModel, message: str = "purchase found") -> "PurchaseOut":
        return cls(
            message=message,
            id=public_id(purchase.id),
            user_id=public_id(purchase.user_id),
            product_id=public_id(purchase.product_id) if purchase.product_id else None,
            date=purchase.created_at,
            wallet_usdt=Decimal(purchase.wallet_usdt),
            cost=Decimal(purchase.cost),
        )


class PurchaseList(Message):
    items: List[PurchaseOut]
