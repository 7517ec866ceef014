import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.admin_users import router as admin_users_router
from app.api.v1.audit import router as audit_router
from app.api.v1.inspections import router as inspections_router
from app.api.v1.me import router as me_router
from app.api.v1.organizations import router as organizations_router
from app.api.v1.role_permissions import router as role_permissions_router
from app.core.config import settings
from app.core.errors import CompiaError, compia_error_handler
from app.db.init_db import ensure_rbac_defaults, init_schema
from app.db.session import SessionLocal, engine

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("compia")

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Compia - Inspecoes de seguranca do trabalho",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(CompiaError, compia_error_handler)


@app.on_event("startup")
def on_startup() -> None:
    init_schema(engine)
    with SessionLocal() as db:
        ensure_rbac_defaults(db)
    if settings.ENV.lower() == "production":
        if settings.JWT_SECRET == "dev-secret-change-me":
            logger.warning("JWT_SECRET esta usando valor padrao em producao.")
        if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            logger.warning("SQLALCHEMY_DATABASE_URI aponta para SQLite em producao.")


app.include_router(me_router, prefix="/api")
app.include_router(organizations_router, prefix="/api")
app.include_router(inspections_router, prefix="/api")
app.include_router(role_permissions_router, prefix="/api")
app.include_router(audit_router, prefix="/api")
app.include_router(admin_users_router, prefix="/api")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.get("/api/health")
def health():
    return {"status": "ok"}
