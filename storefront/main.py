import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import configure_mappers

from storefront import config
from storefront.db import Base, engine
from storefront.errors import ShopError

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

# 1) Импортируем все модели до create_all(),
#    чтобы SQLAlchemy знал про классы и связи
import storefront.models  # noqa: F401,E402

configure_mappers()

# 2) Создаём таблицы
Base.metadata.create_all(bind=engine)


# ==== FastAPI app ====
app = FastAPI(title=config.APP_NAME)


# ==== Errors ====
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse({"success": False, "message": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # тот же формат, что и у ValidationFailed
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        err = errors[0]
        where = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header"))
        message = f"{where}: {err.get('msg')}" if where else str(err.get("msg"))
    return JSONResponse({"success": False, "message": message}, status_code=400)


@app.exception_handler(SQLAlchemyError)
async def db_error_handler(request: Request, exc: SQLAlchemyError):
    # сессию откатывает get_db при закрытии
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse({"success": False, "message": "Database error"}, status_code=500)


# ==== Routers ====
from storefront.routers import admin_orders, admin_outbox, admin_settings, admin_shipments  # noqa: E402
from storefront.routers import auth as auth_router  # noqa: E402
from storefront.routers import cart, checkout, orders, payments  # noqa: E402

app.include_router(cart.router)
app.include_router(checkout.router)
app.include_router(payments.router)
app.include_router(orders.router)
app.include_router(auth_router.router)
app.include_router(admin_orders.router)
app.include_router(admin_shipments.router)
app.include_router(admin_settings.router)
app.include_router(admin_outbox.router)


@app.get("/health")
def health():
    return {"success": True, "status": "ok", "env": config.ENV}


# ==== Debug route ====
@app.get("/__routes")
def __routes():
    return [getattr(r, "path", str(r)) for r in app.routes]
