import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

from campus_store.api import auto_confirm, cart, checkout, notifications, orders, products, stock_movements
from campus_store.config import settings
from campus_store.database import SessionLocal, init_db
from campus_store.errors import StoreError
from campus_store.services.auto_confirm_service import auto_confirm_claimed_orders
from campus_store.services.events import EventPublisher, build_publisher
from campus_store.services.mailer import ReceiptMailer, build_mailer
from campus_store.services.scheduler import PeriodicTask, daily_at


def build_auto_confirm_task(session_factory, publisher: EventPublisher, mailer: ReceiptMailer) -> PeriodicTask:
    return PeriodicTask(
        "auto-confirm",
        lambda: auto_confirm_claimed_orders(session_factory, publisher, mailer),
        daily_at(settings.AUTO_CONFIRM_HOUR, settings.AUTO_CONFIRM_MINUTE),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.publisher = build_publisher()
    app.state.mailer = build_mailer()
    app.state.auto_confirm_task = build_auto_confirm_task(SessionLocal, app.state.publisher, app.state.mailer)
    if settings.AUTO_CONFIRM_ENABLED:
        app.state.auto_confirm_task.start()
    yield
    app.state.auto_confirm_task.stop()
    shutdown = getattr(app.state.publisher, "shutdown", None)
    if shutdown:
        shutdown()


app = FastAPI(
    title="Campus Store API",
    description="Cart checkout, stock ledger and order lifecycle for the campus store",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": message, "details": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return JSON for unhandled exceptions so clients can parse the error."""
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": "Internal server error"})


app.include_router(checkout.router, prefix="/api/v1")
app.include_router(orders.router, prefix="/api/v1")
app.include_router(cart.router, prefix="/api/v1")
app.include_router(products.router, prefix="/api/v1")
app.include_router(stock_movements.router, prefix="/api/v1")
app.include_router(notifications.router, prefix="/api/v1")
app.include_router(auto_confirm.router, prefix="/api/v1")


@app.get("/health")
def health():
    return {"status": "ok"}
