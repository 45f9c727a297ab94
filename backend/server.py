"""
Field Reporting - API Backend

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config import CORS_ORIGINS

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("field_reporting")

app = FastAPI(
    title="Field Reporting",
    description="Weekly field activity reports and admin analytics",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== IMPORT DES ROUTES ====================

from routes import analytics, weekly_reports

app.include_router(analytics.router, prefix="/api")
app.include_router(weekly_reports.router, prefix="/api")


@app.get("/")
async def root():
    return {"name": "Field Reporting API", "version": "1.0.0", "status": "running", "docs": "/docs"}


@app.get("/api/health")
async def health():
    return {"status": "ok"}


# ==================== STARTUP ====================

@app.on_event("startup")
async def startup():
    from config import db

    await db.users.create_index("id", unique=True)
    await db.users.create_index("role")
    await db.weekly_reports.create_index([("salesman_id", 1), ("week_key", 1)], unique=True)
    await db.weekly_reports.create_index("week_key")
    await db.exception_cases.create_index("case_key", unique=True)
    await db.exception_cases.create_index("id", unique=True)
    await db.exception_cases.create_index([("status", 1), ("rule_id", 1)])
    await db.event_log.create_index("created_at")

    logger.info("✅ Index MongoDB créés")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
