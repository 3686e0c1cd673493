import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.ext.asyncio import AsyncSession

from database import unit_of_work
from errors import (
    ConflictError,
    InsufficientFunds,
    InvalidCredentials,
    MalformedCredential,
    NotFoundError,
    ValidationError,
)
from identifiers import allocate_id, public_id, to_storage_key
from models import ProductModel, PurchaseModel, UserModel
from repositories import ProductRepository, PurchaseRepository, UserRepository
from schemas import ProductIn, PurchaseUpdate, UserCreate, UserUpdate
from security import CredentialHasher, TokenService

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def storage_key(n: int, what: str) -> uuid.UUID:
    try:
        return to_storage_key(n)
    except ValueError:
        raise NotFoundError(f"{what} not found")


def check_page(offset: int, limit: int) -> None:
    if offset < 0:
        raise ValidationError("offset must be >= 0")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


def normalize_email(email: str) -> str:
    if not email:
        raise ValidationError("email is required")
    try:
        info = validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise ValidationError(f"invalid email: {email}")
    return info.normalized


def validate_user(candidate: UserCreate) -> str:
    """Checks shared by signup and profile update; returns the normalized email."""
    if not candidate.login:
        raise ValidationError("login is required")
    if not candidate.password:
        raise ValidationError("password is required")
    return normalize_email(candidate.email)


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------
class UserService:
    def __init__(self, session: AsyncSession, hasher: CredentialHasher, tokens: TokenService):
        self.session = session
        self.repo = UserRepository(session)
        self.hasher = hasher
        self.tokens = tokens

    async def create_user(self, candidate: UserCreate) -> UserModel:
        """
        Validate, check uniqueness, hash and persist a new user.

        ``candidate.password`` is overwritten with the digest before the row
        is written; the plaintext must not be reused by the caller.
        """
        email = validate_user(candidate)

        async with unit_of_work(self.session):
            if await self.repo.exists_by_email(email):
                raise ConflictError("user with this email already exists")
            if await self.repo.exists_by_login(candidate.login):
                raise ConflictError("user with this login already exists")

            digest, salt = self.hasher.hash(candidate.password)
            candidate.password = digest

            user = UserModel(
                id=to_storage_key(allocate_id()),
                login=candidate.login,
                name=candidate.name,
                last_name=candidate.last_name,
                phone_number=candidate.phone_number,
                email=email,
                password_hash=digest,
                password_salt=salt,
                wallet_usdt=candidate.wallet_usdt,
                number_purchases=0,
            )
            await self.repo.create(user)

        logger.info("User created: id=%s login=%s", public_id(user.id), user.login)
        return user

    async def authenticate(self, login: str, password: str) -> str:
        if not login or not password:
            raise InvalidCredentials()

        user = await self.repo.get_by_login(login)
        if user is None:
            self.hasher.verify_missing(password)
            logger.warning("Login failed: unknown login %s", login)
            raise InvalidCredentials()

        try:
            valid = self.hasher.verify(password, user.password_hash, user.password_salt)
        except MalformedCredential:
            logger.error("Stored credential for login %s is malformed", login)
            raise InvalidCredentials()
        if not valid:
            logger.warning("Login failed: wrong password for %s", login)
            raise InvalidCredentials()

        return self.tokens.issue(public_id(user.id))

    async def get_by_id(self, user_id: int) -> UserModel:
        key = storage_key(user_id, "user")
        if not await self.repo.exists_by_id(key):
            raise NotFoundError("user not found")
        user = await self.repo.get(key)
        if user is None:
            raise NotFoundError("user not found")
        return user

    async def get_by_email(self, email: str) -> UserModel:
        email = normalize_email(email)
        if not await self.repo.exists_by_email(email):
            raise NotFoundError("email not found")
        user = await self.repo.get_by_email(email)
        if user is None:
            raise NotFoundError("email not found")
        return user

    async def list(self, offset: int = 0, limit: int = 50) -> List[UserModel]:
        check_page(offset, limit)
        return await self.repo.list(offset, limit)

    async def update(self, user_id: int, candidate: UserUpdate) -> UserModel:
        """Profile update. The password is required but is not re-hashed or stored."""
        key = storage_key(user_id, "user")
        async with unit_of_work(self.session):
            if not await self.repo.exists_by_id(key):
                raise NotFoundError("user not found")
            email = validate_user(candidate)

            user = await self.repo.get(key)
            if user is None:
                raise NotFoundError("user not found")
            if email != user.email and await self.repo.exists_by_email(email):
                raise ConflictError("user with this email already exists")
            if candidate.login != user.login and await self.repo.exists_by_login(candidate.login):
                raise ConflictError("user with this login already exists")

            user.login = candidate.login
            user.name = candidate.name
            user.last_name = candidate.last_name
            user.phone_number = candidate.phone_number
            user.email = email
            user.wallet_usdt = candidate.wallet_usdt
            if candidate.number_purchases is not None:
                user.number_purchases = candidate.number_purchases
            await self.repo.update(user)

        logger.info("User updated: id=%s", user_id)
        return user

    async def delete(self, user_id: int) -> None:
        key = storage_key(user_id, "user")
        async with unit_of_work(self.session):
            if not await self.repo.exists_by_id(key):
                raise NotFoundError("user not found")
            await self.repo.delete(key)
        logger.info("User deleted: id=%s", user_id)


# ----------------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------------
class ProductService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = ProductRepository(session)

    async def create(self, data: ProductIn) -> ProductModel:
        if not data.name:
            raise ValidationError("product name is required")
        product = ProductModel(
            id=to_storage_key(allocate_id()),
            name=data.name,
            cost=data.cost,
            quantity_stock=data.quantity_stock,
            guarantees=data.guarantees,
            country=data.country,
            likes=0,
        )
        async with unit_of_work(self.session):
            await self.repo.create(product)
        logger.info("Product created: id=%s name=%s", public_id(product.id), product.name)
        return product

    async def get(self, product_id: int) -> ProductModel:
        product = await self.repo.get(storage_key(product_id, "product"))
        if product is None:
            raise NotFoundError("product not found")
        return product

    async def list(self, offset: int = 0, limit: int = 50) -> List[ProductModel]:
        check_page(offset, limit)
        return await self.repo.list(offset, limit)

    async def find_by_name(self, name: str) -> List[ProductModel]:
        if not name:
            raise ValidationError("product name is required")
        return await self.repo.find_by_name(name)

    async def update(self, product_id: int, data: ProductIn) -> ProductModel:
        if not data.name:
            raise ValidationError("product name is required")
        key = storage_key(product_id, "product")
        async with unit_of_work(self.session):
            product = await self.repo.get(key)
            if product is None:
                raise NotFoundError("product not found")
            product.name = data.name
            product.cost = data.cost
            product.quantity_stock = data.quantity_stock
            product.guarantees = data.guarantees
            product.country = data.country
            await self.repo.update(product)
        return product

    async def delete(self, product_id: int) -> None:
        key = storage_key(product_id, "product")
        async with unit_of_work(self.session):
            if not await self.repo.exists_by_id(key):
                raise NotFoundError("product not found")
            await self.repo.delete(key)

    async def add_like(self, product_id: int) -> None:
        key = storage_key(product_id, "product")
        async with unit_of_work(self.session):
            if not await self.repo.exists_by_id(key):
                raise NotFoundError("product not found")
            await self.repo.increment_likes(key)

    async def remove_like(self, product_id: int) -> None:
        key = storage_key(product_id, "product")
        async with unit_of_work(self.session):
            if not await self.repo.exists_by_id(key):
                raise NotFoundError("product not found")
            # counter stays at zero rather than going negative
            await self.repo.decrement_likes(key)


# ----------------------------------------------------------------------------
# Purchases
# ----------------------------------------------------------------------------
class PurchaseService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = PurchaseRepository(session)
        self.users = UserRepository(session)
        self.products = ProductRepository(session)

    async def create_purchase(self, user_id: int, product_id: int) -> PurchaseModel:
        """
        Settle a purchase: funds check, debit and purchase row in one transaction.

        The debit is a conditional UPDATE guarded by ``wallet >= cost``, so two
        concurrent purchases against the same wallet can't both pass the check.
        """
        user_key = storage_key(user_id, "user")
        product_key = storage_key(product_id, "product")

        async with unit_of_work(self.session):
            balance = await self.users.lock_wallet(user_key)
            if balance is None:
                raise NotFoundError("user not found")
            cost = await self.products.get_cost(product_key)
            if cost is None:
                raise NotFoundError("product not found")

            balance, cost = Decimal(balance), Decimal(cost)
            if balance < cost or not await self.users.debit_wallet(user_key, cost):
                logger.warning(
                    "Insufficient funds: user=%s product=%s cost=%s", user_id, product_id, cost
                )
                raise InsufficientFunds()
            remaining = await self.users.lock_wallet(user_key)

            purchase = PurchaseModel(
                id=to_storage_key(allocate_id()),
                user_id=user_key,
                product_id=product_key,
                created_at=datetime.now(timezone.utc),
                wallet_usdt=remaining,
                cost=cost,
            )
            await self.repo.create(purchase)

        logger.info(
            "Purchase settled: id=%s user=%s product=%s cost=%s",
            public_id(purchase.id), user_id, product_id, cost,
        )
        return purchase

    async def get(self, purchase_id: int) -> PurchaseModel:
        purchase = await self.repo.get(storage_key(purchase_id, "purchase"))
        if purchase is None:
            raise NotFoundError("purchase not found")
        return purchase

    async def list(self, offset: int = 0, limit: int = 50) -> List[PurchaseModel]:
        check_page(offset, limit)
        return await self.repo.list(offset, limit)

    async def update(self, purchase_id: int, changes: PurchaseUpdate) -> PurchaseModel:
        key = storage_key(purchase_id, "purchase")
        async with unit_of_work(self.session):
            if not await self.repo.exists_by_id(key):
                raise NotFoundError("purchase not found")
            purchase = await self.repo.get(key)
            if purchase is None:
                raise NotFoundError("purchase not found")

            if changes.product_id is not None:
                product_key = storage_key(changes.product_id, "product")
                if not await self.products.exists_by_id(product_key):
                    raise NotFoundError("product not found")
                purchase.product_id = product_key
            if changes.cost is not None:
                purchase.cost = changes.cost
            if changes.wallet_usdt is not None:
                purchase.wallet_usdt = changes.wallet_usdt
            await self.repo.update(purchase)
        return purchase

    async def delete(self, purchase_id: int) -> None:
        key = storage_key(purchase_id, "purchase")
        async with unit_of_work(self.session):
            if not await self.repo.exists_by_id(key):
                raise NotFoundError("purchase not found")
            await self.repo.delete(key)
        logger.info("Purchase deleted: id=%s", purchase_id)
