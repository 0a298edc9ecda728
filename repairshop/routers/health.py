"""Health checks. /health/tenant-security runs the read-only verifier (safe on a hot database)."""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from repairshop.database import engine
from repairshop.schemas.tenant_security import VerificationReportResponse
from repairshop.tenancy.verifier import InvariantVerifier

router = APIRouter(prefix="/health", tags=["health"])


def get_engine() -> Engine:
    return engine


@router.get("")
def health():
    return {"status": "healthy"}


@router.get("/tenant-security", response_model=VerificationReportResponse)
def tenant_security(db_engine: Engine = Depends(get_engine)):
    """200 when every control is active, 503 otherwise (partial coverage included)."""
    report = InvariantVerifier(db_engine).verify()
    body = VerificationReportResponse.from_report(report)
    if not report.secure:
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
