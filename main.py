import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Path, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from database import Base, create_engine, create_session_factory, get_db, init_models
from errors import ForbiddenError, InvalidCredentials, NotFoundError, ShopError, TokenError
from identifiers import INT64_MIN, UINT64_LIMIT, public_id
from models import UserModel
from schemas import (
    Created,
    LoginRequest,
    Message,
    ProductIn,
    ProductList,
    ProductOut,
    PurchaseCreate,
    PurchaseList,
    PurchaseOut,
    PurchaseUpdate,
    Token,
    UserCreate,
    UserList,
    UserOut,
    UserUpdate,
)
from security import CredentialHasher, TokenService
from services import ProductService, PurchaseService, UserService

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/users/login", auto_error=False)

IdPath = Annotated[int, Path(ge=INT64_MIN, lt=UINT64_LIMIT)]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


# ----------------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------------
def get_user_service(request: Request, db: AsyncSession = Depends(get_db)) -> UserService:
    state = request.app.state
    return UserService(db, state.hasher, state.tokens)


def get_product_service(db: AsyncSession = Depends(get_db)) -> ProductService:
    return ProductService(db)


def get_purchase_service(db: AsyncSession = Depends(get_db)) -> PurchaseService:
    return PurchaseService(db)


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    users: UserService = Depends(get_user_service),
) -> UserModel:
    if not token:
        raise TokenError("Not authenticated")
    subject_id = request.app.state.tokens.verify(token)
    try:
        return await users.get_by_id(subject_id)
    except NotFoundError:
        raise TokenError()


def require_self(user_id: int, current_user: UserModel) -> None:
    if user_id != public_id(current_user.id):
        raise ForbiddenError()


# ----------------------------------------------------------------------------
# Error handlers
# ----------------------------------------------------------------------------
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    headers = None
    if isinstance(exc, (TokenError, InvalidCredentials)):
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message}, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        err = dict(err)
        ctx = err.get("ctx")
        if isinstance(ctx, dict) and "error" in ctx:
            err["ctx"] = dict(ctx, error=str(ctx["error"]))
        err.pop("input", None)  # may echo a submitted password
        errors.append(err)
    return JSONResponse(
        status_code=422,
        content={"message": "Invalid request", "detail": errors},
    )


# ----------------------------------------------------------------------------
# App setup
# ----------------------------------------------------------------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = create_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting shop backend (sqlite fallback: %s)", settings.using_sqlite)
        await init_models(engine)
        yield
        await engine.dispose()
        logger.info("Database connections closed")

    app = FastAPI(title="Shop API", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.hasher = CredentialHasher.from_settings(settings)
    app.state.tokens = TokenService.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    # ------------------------------------------------------------------------
    # Health & test
    # ------------------------------------------------------------------------
    @app.get("/")
    async def read_root():
        return {"message": "Shop backend is running"}

    @app.get("/test")
    async def test_database(request: Request):
        settings: Settings = request.app.state.settings
        info = {
            "message": "database check",
            "backend": "running",
            "database_url": make_url(settings.database_url).render_as_string(hide_password=True),
            "using_sqlite_fallback": settings.using_sqlite,
            "connection_status": "Not Connected",
            "database": "Not Available",
        }
        try:
            async with request.app.state.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                await conn.execute(text("SELECT 1"))
                info["database"] = "Available"
                info["connection_status"] = "Connected"
        except Exception as e:
            info["database"] = f"Error: {e.__class__.__name__}"
        return info

    # ------------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------------
    @app.post("/users", response_model=Created, status_code=status.HTTP_201_CREATED)
    async def create_user(payload: UserCreate, users: UserService = Depends(get_user_service)):
        user = await users.create_user(payload)
        return Created(message="user created", id=public_id(user.id))

    @app.post("/users/login", response_model=Token)
    async def login(payload: LoginRequest, users: UserService = Depends(get_user_service)):
        access_token = await users.authenticate(payload.login, payload.password)
        return Token(access_token=access_token)

    @app.get("/users")
    async def list_users(
        email: Optional[str] = None,
        offset: int = Query(0, ge=0),
        limit: int = Query(50, ge=1, le=100),
        users: UserService = Depends(get_user_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        if email is not None:
            return UserOut.from_model(await users.get_by_email(email))
        items = [UserOut.from_model(u, message="get user") for u in await users.list(offset, limit)]
        return UserList(message="users found", items=items)

    @app.get("/users/{user_id}", response_model=UserOut)
    async def get_user(
        user_id: IdPath,
        users: UserService = Depends(get_user_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        return UserOut.from_model(await users.get_by_id(user_id))

    @app.put("/users/{user_id}", response_model=UserOut)
    async def update_user(
        payload: UserUpdate,
        user_id: IdPath,
        users: UserService = Depends(get_user_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        require_self(user_id, current_user)
        user = await users.update(user_id, payload)
        return UserOut.from_model(user, message="user updated")

    @app.delete("/users/{user_id}", response_model=Message)
    async def delete_user(
        user_id: IdPath,
        users: UserService = Depends(get_user_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        require_self(user_id, current_user)
        await users.delete(user_id)
        return Message(message="user deleted")

    # ------------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------------
    @app.post("/products", response_model=Created, status_code=status.HTTP_201_CREATED)
    async def create_product(
        payload: ProductIn,
        products: ProductService = Depends(get_product_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        product = await products.create(payload)
        return Created(message="product created", id=public_id(product.id))

    @app.get("/products", response_model=ProductList)
    async def list_products(
        name: Optional[str] = None,
        offset: int = Query(0, ge=0),
        limit: int = Query(50, ge=1, le=100),
        products: ProductService = Depends(get_product_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        if name is not None:
            found = await products.find_by_name(name)
        else:
            found = await products.list(offset, limit)
        items = [ProductOut.from_model(p, message="get product") for p in found]
        return ProductList(message="products found", items=items)

    @app.get("/products/{product_id}", response_model=ProductOut)
    async def get_product(
        product_id: IdPath,
        products: ProductService = Depends(get_product_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        return ProductOut.from_model(await products.get(product_id))

    @app.put("/products/{product_id}", response_model=ProductOut)
    async def update_product(
        payload: ProductIn,
        product_id: IdPath,
        products: ProductService = Depends(get_product_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        product = await products.update(product_id, payload)
        return ProductOut.from_model(product, message="product updated")

    @app.delete("/products/{product_id}", response_model=Message)
    async def delete_product(
        product_id: IdPath,
        products: ProductService = Depends(get_product_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        await products.delete(product_id)
        return Message(message="product deleted")

    @app.patch("/products/{product_id}/like", response_model=Message)
    async def add_like(
        product_id: IdPath,
        products: ProductService = Depends(get_product_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        await products.add_like(product_id)
        return Message(message="like added")

    @app.delete("/products/{product_id}/like", response_model=Message)
    async def remove_like(
        product_id: IdPath,
        products: ProductService = Depends(get_product_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        await products.remove_like(product_id)
        return Message(message="like removed")

    # ------------------------------------------------------------------------
    # Purchases
    # ------------------------------------------------------------------------
    @app.post("/purchases", response_model=PurchaseOut, status_code=status.HTTP_201_CREATED)
    async def create_purchase(
        payload: PurchaseCreate,
        purchases: PurchaseService = Depends(get_purchase_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        buyer = public_id(current_user.id)
        if payload.user_id is not None:
            require_self(payload.user_id, current_user)
        purchase = await purchases.create_purchase(buyer, payload.product_id)
        return PurchaseOut.from_model(purchase, message="purchase created")

    @app.get("/purchases", response_model=PurchaseList)
    async def list_purchases(
        offset: int = Query(0, ge=0),
        limit: int = Query(50, ge=1, le=100),
        purchases: PurchaseService = Depends(get_purchase_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        items = [PurchaseOut.from_model(p, message="get purchase") for p in await purchases.list(offset, limit)]
        return PurchaseList(message="purchases found", items=items)

    @app.get("/purchases/{purchase_id}", response_model=PurchaseOut)
    async def get_purchase(
        purchase_id: IdPath,
        purchases: PurchaseService = Depends(get_purchase_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        return PurchaseOut.from_model(await purchases.get(purchase_id))

    @app.put("/purchases/{purchase_id}", response_model=PurchaseOut)
    async def update_purchase(
        payload: PurchaseUpdate,
        purchase_id: IdPath,
        purchases: PurchaseService = Depends(get_purchase_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        purchase = await purchases.update(purchase_id, payload)
        return PurchaseOut.from_model(purchase, message="purchase updated")

    @app.delete("/purchases/{purchase_id}", response_model=Message)
    async def delete_purchase(
        purchase_id: IdPath,
        purchases: PurchaseService = Depends(get_purchase_service),
        current_user: UserModel = Depends(get_current_user),
    ):
        await purchases.delete(purchase_id)
        return Message(message="purchase deleted")


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
