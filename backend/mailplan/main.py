"""
Mailplan Backend API
FastAPI application that turns inbound emails into tool plans and replies.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from mailplan.db import supabase_admin
from mailplan.routers import interactions, webhook

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Mailplan API",
    description="Email-triggered tool planning, execution and reply dispatch",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes http://localhost:3000 (dashboard dev server). Additional
    origins come from CORS_ORIGINS as a comma-separated list, e.g.:
        CORS_ORIGINS=https://app.example.com,https://preview.example.com

    Duplicates are removed while preserving order.
    """
    candidates = ["http://localhost:3000"]
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        candidates += [o.strip() for o in cors_env.split(",") if o.strip()]

    seen: set = set()
    origins: List[str] = []
    for origin in candidates:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)
    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhook.router, prefix="/api/webhooks", tags=["webhooks"])
app.include_router(interactions.router, prefix="/api/interactions", tags=["interactions"])


@app.get("/")
async def root():
    return {"message": "Mailplan API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection.

    Runs a one-row SELECT on email_interactions with the admin client.
    Returns 503 on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table("email_interactions").select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
