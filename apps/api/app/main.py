import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import Response

from app.config import allowed_origins, ensure_secure_runtime_settings, is_production_mode, settings
from app.db.migration_check import assert_db_is_up_to_date, maybe_create_schema
from app.db.session import engine
from app.observability import configure_logging, log_event, metrics_store, set_request_id
from app.routers.commissions import router as commissions_router
from app.routers.couriers import router as couriers_router
from app.routers.dispatch import router as dispatch_router
from app.routers.health import router as health_router
from app.routers.metrics import router as metrics_router
from app.routers.notifications import router as notifications_router
from app.routers.orders import router as orders_router


@asynccontextmanager
async def lifespan(_app: FastAPI):
    import app.models  # noqa: F401 (register all SQLAlchemy models)

    ensure_secure_runtime_settings()
    if settings.log_json:
        configure_logging()
    maybe_create_schema(engine)
    if is_production_mode() or settings.require_migrations:
        assert_db_is_up_to_date(engine)
    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Order lifecycle and courier dispatch API for the Nearcart marketplace",
    lifespan=lifespan,
)


def custom_openapi():
    """
    Adds HTTP Bearer (JWT) auth to the OpenAPI schema so Swagger UI shows an
    'Authorize' button and sends the Authorization: Bearer <token> header.
    """
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    components = openapi_schema.setdefault("components", {})
    security_schemes = components.setdefault("securitySchemes", {})
    security_schemes["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
    }
    openapi_schema["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    set_request_id(request_id)

    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    metrics_store.increment("http_requests_total")
    metrics_store.observe("http_request_duration_seconds", elapsed)
    log_event(
        "http_request",
        order_id=request.path_params.get("order_id"),
        detail=f"{request.method} {request.url.path} {response.status_code}",
    )
    return response


app.include_router(health_router)
app.include_router(orders_router)
app.include_router(dispatch_router)
app.include_router(couriers_router)
app.include_router(commissions_router)
app.include_router(notifications_router)
app.include_router(metrics_router)
