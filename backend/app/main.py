import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.middleware.exceptions import register_exception_handlers
from app.middleware.tenant import TenantMiddleware
from app.routers import collector, deposits, health, reconciliation
from app.services.scheduler import lifespan

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="FieldCash",
    description="ISP field collection and cash settlement",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (outermost first) ─────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Tenant context (innermost - processes request data)
app.add_middleware(TenantMiddleware)

# ── Routers ──────────────────────────────────────────────────
# Public (no tenant context needed)
app.include_router(health.router)

# Tenant-scoped (require tenant_schema in JWT)
app.include_router(collector.router, prefix="/api/collector", tags=["collector"])
app.include_router(deposits.router, prefix="/api/deposits", tags=["deposits"])
app.include_router(reconciliation.router, prefix="/api/reconciliation", tags=["reconciliation"])
