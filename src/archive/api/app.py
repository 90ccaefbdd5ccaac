"""
FastAPI application for the Slack archive.
"""

import logging

from fastapi import FastAPI, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from archive.common import settings
from archive.common.db.connection import get_session
from archive.api.auth import router as auth_router
from archive.api.audit_logs import router as audit_logs_router
from archive.api.channels import router as channels_router
from archive.api.messages import router as messages_router
from archive.api.sync import router as sync_router
from archive.api.users import router as users_router

logger = logging.getLogger(__name__)


app = FastAPI(title="Slack Archive API")
# allow_credentials=True requires specific origins, not wildcards.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.SERVER_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(messages_router)
app.include_router(channels_router)
app.include_router(users_router)
app.include_router(sync_router)
app.include_router(audit_logs_router)


@app.get("/health")
def health_check(db: Session = Depends(get_session)):
    """Health check endpoint that verifies the database is reachable."""
    checks = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
        healthy = True
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        checks["database"] = f"unhealthy: {str(e)[:100]}"
        healthy = False

    checks["status"] = "healthy" if healthy else "degraded"
    return JSONResponse(checks, status_code=200 if healthy else 503)
