"""
Storage collaborator: thin async repositories over one ``AsyncSession``.

Repositories flush but never commit; the calling service owns the
transaction (see ``database.unit_of_work``). SQLAlchemy failures are
re-raised as ``StorageError`` naming the attempted operation, except unique
violations on user writes, which are ``ConflictError``.
"""

import functools
import logging
import uuid
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, exists, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, StorageError
from models import ProductModel, PurchaseModel, UserModel, utcnow

logger = logging.getLogger(__name__)


def storage_operation(operation: str, conflict: Optional[str] = None):
    """
    Re-raise SQLAlchemy failures as ``StorageError``.

    With ``conflict`` set, a unique-constraint violation becomes a
    ``ConflictError`` with that message instead: the pre-insert existence
    check can lose a race against a concurrent writer.
    """

    def decorator(func_):
        @functools.wraps(func_)
        async def wrapper(*args, **kwargs):
            try:
                return await func_(*args, **kwargs)
            except IntegrityError as exc:
                if conflict is None:
                    logger.error("Storage operation %s failed: %s", operation, exc.__class__.__name__)
                    raise StorageError(operation, exc) from exc
                logger.warning("Storage operation %s hit a unique constraint", operation)
                raise ConflictError(conflict) from exc
            except SQLAlchemyError as exc:
                logger.error("Storage operation %s failed: %s", operation, exc.__class__.__name__)
                raise StorageError(operation, exc) from exc

        return wrapper

    return decorator


class Repository:
    model = None

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _create(self, row):
        self.session.add(row)
        await self.session.flush()
        return row

    async def _get(self, key: uuid.UUID):
        result = await self.session.execute(select(self.model).where(self.model.id == key))
        return result.scalar_one_or_none()

    async def _list(self, offset: int, limit: int) -> List:
        query = (
            select(self.model)
            .order_by(self.model.created_at.asc(), self.model.id.asc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _exists_by_id(self, key: uuid.UUID) -> bool:
        result = await self.session.execute(select(exists().where(self.model.id == key)))
        return bool(result.scalar())

    async def _update(self, row):
        await self.session.flush()
        return row

    async def _delete(self, key: uuid.UUID) -> int:
        result = await self.session.execute(delete(self.model).where(self.model.id == key))
        return result.rowcount


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------
class UserRepository(Repository):
    model = UserModel

    @storage_operation("users.create", conflict="user with this email or login already exists")
    async def create(self, row: UserModel) -> UserModel:
        return await self._create(row)

    @storage_operation("users.get")
    async def get(self, key: uuid.UUID) -> Optional[UserModel]:
        return await self._get(key)

    @storage_operation("users.list")
    async def list(self, offset: int, limit: int) -> List[UserModel]:
        return await self._list(offset, limit)

    @storage_operation("users.update", conflict="user with this email or login already exists")
    async def update(self, row: UserModel) -> UserModel:
        row.updated_at = utcnow()
        return await self._update(row)

    @storage_operation("users.delete")
    async def delete(self, key: uuid.UUID) -> int:
        return await self._delete(key)

    @storage_operation("users.exists_by_id")
    async def exists_by_id(self, key: uuid.UUID) -> bool:
        return await self._exists_by_id(key)

    @storage_operation("users.exists_by_email")
    async def exists_by_email(self, email: str) -> bool:
        result = await self.session.execute(select(exists().where(UserModel.email == email)))
        return bool(result.scalar())

    @storage_operation("users.exists_by_login")
    async def exists_by_login(self, login: str) -> bool:
        result = await self.session.execute(select(exists().where(UserModel.login == login)))
        return bool(result.scalar())

    @storage_operation("users.get_by_email")
    async def get_by_email(self, email: str) -> Optional[UserModel]:
        result = await self.session.execute(select(UserModel).where(UserModel.email == email))
        return result.scalar_one_or_none()

    @storage_operation("users.get_by_login")
    async def get_by_login(self, login: str) -> Optional[UserModel]:
        result = await self.session.execute(select(UserModel).where(UserModel.login == login))
        return result.scalar_one_or_none()

    @storage_operation("users.lock_wallet")
    async def lock_wallet(self, key: uuid.UUID) -> Optional[Decimal]:
        # FOR UPDATE is a no-op on SQLite, where writers are serialized anyway
        result = await self.session.execute(
            select(UserModel.wallet_usdt).where(UserModel.id == key).with_for_update()
        )
        return result.scalar_one_or_none()

    @storage_operation("users.debit_wallet")
    async def debit_wallet(self, key: uuid.UUID, amount: Decimal) -> bool:
        """Debit ``amount`` only if the balance still covers it."""
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == key, UserModel.wallet_usdt >= amount)
            .values(
                wallet_usdt=UserModel.wallet_usdt - amount,
                number_purchases=UserModel.number_purchases + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


# ----------------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------------
class ProductRepository(Repository):
    model = ProductModel

    @storage_operation("products.create")
    async def create(self, row: ProductModel) -> ProductModel:
        return await self._create(row)

    @storage_operation("products.get")
    async def get(self, key: uuid.UUID) -> Optional[ProductModel]:
        return await self._get(key)

    @storage_operation("products.list")
    async def list(self, offset: int, limit: int) -> List[ProductModel]:
        return await self._list(offset, limit)

    @storage_operation("products.update")
    async def update(self, row: ProductModel) -> ProductModel:
        return await self._update(row)

    @storage_operation("products.delete")
    async def delete(self, key: uuid.UUID) -> int:
        return await self._delete(key)

    @storage_operation("products.exists_by_id")
    async def exists_by_id(self, key: uuid.UUID) -> bool:
        return await self._exists_by_id(key)

    @storage_operation("products.find_by_name")
    async def find_by_name(self, name: str) -> List[ProductModel]:
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.name == name).order_by(ProductModel.created_at.asc())
        )
        return list(result.scalars().all())

    @storage_operation("products.get_cost")
    async def get_cost(self, key: uuid.UUID) -> Optional[Decimal]:
        result = await self.session.execute(select(ProductModel.cost).where(ProductModel.id == key))
        return result.scalar_one_or_none()

    @storage_operation("products.increment_likes")
    async def increment_likes(self, key: uuid.UUID) -> int:
        result = await self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == key)
            .values(likes=ProductModel.likes + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @storage_operation("products.decrement_likes")
    async def decrement_likes(self, key: uuid.UUID) -> int:
        result = await self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == key, ProductModel.likes > 0)
            .values(likes=ProductModel.likes - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


# ----------------------------------------------------------------------------
# Purchases
# ----------------------------------------------------------------------------
class PurchaseRepository(Repository):
    model = PurchaseModel

    @storage_operation("purchases.create")
    async def create(self, row: PurchaseModel) -> PurchaseModel:
        return await self._create(row)

    @storage_operation("purchases.get")
    async def get(self, key: uuid.UUID) -> Optional[PurchaseModel]:
        return await self._get(key)

    @storage_operation("purchases.list")
    async def list(self, offset: int, limit: int) -> List[PurchaseModel]:
        return await self._list(offset, limit)

    @storage_operation("purchases.update")
    async def update(self, row: PurchaseModel) -> PurchaseModel:
        return await self._update(row)

    @storage_operation("purchases.delete")
    async def delete(self, key: uuid.UUID) -> int:
        return await self._delete(key)

    @storage_operation("purchases.exists_by_id")
    async def exists_by_id(self, key: uuid.UUID) -> bool:
        return await self._exists_by_id(key)
