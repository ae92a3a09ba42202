from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.api.dependencies.auth import get_db_session
from src.platform.db_readiness import (
    REQUIRED_AUTH_TABLES,
    check_required_tables,
)

router = APIRouter()

@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/readiness")
def readiness(db=Depends(get_db_session)):
    """Readiness check that validates required auth tables exist."""
    result = check_required_tables(db, REQUIRED_AUTH_TABLES)
    return JSONResponse(
        status_code=200 if result.ready else 503,
        content={
            "status": "ready" if result.ready else "not_ready",
            "checks": {
                "database": "ok",
                "auth_tables": {
                    "required": result.checked_tables,
                    "missing": result.missing_tables,
                },
            },
        },
    )
