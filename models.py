from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.orm import relationship

from database import Base

CENT = Decimal("0.01")


class Money(TypeDecorator):
    """
    Decimal amount stored as an exact count of cents.

    SQLite has no decimal type, so a NUMERIC column would be compared and
    subtracted as a float there. Integer cents keep ``wallet >= cost`` and
    ``wallet - cost`` exact on every backend.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            value = str(value)
        return int(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP).scaleb(2))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(int(value)).scaleb(-2)


def utcnow():
    return datetime.now(timezone.utc)


class UserModel(Base):
    __tablename__ = "users"
    id = Column(Uuid, primary_key=True)
    login = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(120), nullable=False, default="")
    last_name = Column(String(120), nullable=False, default="")
    phone_number = Column(String(32), nullable=False, default="")
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(128), nullable=False)
    password_salt = Column(String(64), nullable=False)
    wallet_usdt = Column(Money(), nullable=False, default=0)
    number_purchases = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    purchases = relationship("PurchaseModel", back_populates="user", passive_deletes=True)


class ProductModel(Base):
    __tablename__ = "products"
    id = Column(Uuid, primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    cost = Column(Money(), nullable=False, default=0)
    quantity_stock = Column(Integer, nullable=False, default=0)
    guarantees = Column(DateTime(timezone=True), nullable=True)  # guarantee expiry
    country = Column(String(80), nullable=False, default="")
    likes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    purchases = relationship("PurchaseModel", back_populates="product", passive_deletes=True)


class PurchaseModel(Base):
    __tablename__ = "purchases"
    id = Column(Uuid, primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # nullable: the cost snapshot outlives a deleted product
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    wallet_usdt = Column(Money(), nullable=False)  # balance left after the debit
    cost = Column(Money(), nullable=False)

    user = relationship("UserModel", back_populates="purchases")
    product = relationship("ProductModel", back_populates="purchases")
