import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from .admin_routes import router as admin_router
from .auth_routes import router as auth_router
from .db import build_engine, check_db_connection, create_db_and_tables, get_session
from .order_service import OrderError
from .realtime import RedisNotifier
from .security import SESSION_COOKIE, ForcedSignOut
from .settings import settings
from .stock import StockPolicyError
from .waiter_routes import router as waiter_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    # Engine and notifier live for the lifetime of the app, one per process
    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine(settings)
    create_db_and_tables(app.state.engine)
    if getattr(app.state, "notifier", None) is None:
        app.state.notifier = RedisNotifier(settings.redis_url)
    yield
    app.state.notifier.close()
    app.state.engine.dispose()
    logger.info("Application stopped")


app = FastAPI(
    title="Restaurant Orders API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Parse CORS origins from environment (comma-separated)
cors_origins_list = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, tags=["Auth"])
app.include_router(admin_router, tags=["Admin"])
app.include_router(waiter_router, tags=["Waiter"])


@app.exception_handler(ForcedSignOut)
async def forced_sign_out_handler(request: Request, exc: ForcedSignOut):
    logger.info(f"Redirecting {request.method} {request.url.path} to login: {exc.reason}")
    response = RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(key=SESSION_COOKIE, path="/")
    return response


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(status_code=409, content={"detail": "Conflicts with existing data"})


@app.exception_handler(StockPolicyError)
async def stock_policy_error_handler(request: Request, exc: StockPolicyError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/db")
def health_db(session: Session = Depends(get_session)) -> dict:
    """Check database connection."""
    try:
        check_db_connection(session.get_bind())
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        raise HTTPException(status_code=503, detail="Database unavailable")
