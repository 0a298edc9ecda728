"""Repair Shop – FastAPI application (tenant isolation status endpoints)."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI

from repairshop.config import get_settings
from repairshop.database import Base, engine
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from repairshop.models import Shop, User, Customer, Repair, ActivityLog  # noqa: F401
from repairshop.routers import health

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.include_router(health.router)

log = logging.getLogger("uvicorn.error")


@app.on_event("startup")
def startup():
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        log.warning("Database startup failed (tables skipped). Check DATABASE_URL and network. Error: %s", e)
        return
    if not settings.tenant_apply_on_startup:
        return
    from repairshop.tenancy.installer import InvariantInstaller
    from repairshop.tenancy.verifier import InvariantVerifier
    report = InvariantInstaller(engine).apply_all()
    for outcome in report.failed + report.skipped:
        log.warning("Tenant isolation: %s", outcome.line())
    verification = InvariantVerifier(engine).verify()
    if verification.secure:
        log.info("Tenant isolation controls active")
    else:
        log.error("Tenant isolation INCOMPLETE: %s", "; ".join(verification.details))


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}
